# Copyright 2024 Canonical Ltd.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""The grammar of a single one-line-style `sources.list` entry.

    line         := source_type (" "+ option_list)? (" "+ param){3,} (" "* comment)?
    source_type  := "deb-src" | "deb"
    option_list  := "[" " "* option (" "+ option)* " "* "]"
    option       := name "=" value ("," value)*
    name         := [A-Za-z0-9]+ ("-" [A-Za-z0-9]+)*
    value        := any run of characters except whitespace, "," "[" and "]"
    param        := any run of characters except whitespace, "[" and "]"
    comment      := "#" anything

Only ASCII spaces separate tokens. `match_line` checks the shape of a line and nothing else;
deciding whether option names are meaningful is left to the parser.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from debctl.errors import MalformedLineError, MissingParameterError

COMMENT_CHAR = "#"
POSITIONAL_PARAMS = ("URI", "suite", "component")

_SPACES = re.compile(r" +")
# longest match first, so "deb-src" isn't read as "deb"
_SOURCE_TYPE = re.compile(r"deb-src|deb")
_OPTION_NAME = re.compile(r"[A-Za-z0-9]+(?:-[A-Za-z0-9]+)*")
_OPTION_VALUE = re.compile(r"[^\s,\[\]]+")
_PARAM = re.compile(r"[^\s\[\]]+")


@dataclass
class LineMatch:
    """The pieces of a line that matched the grammar."""

    source_type: str
    options: list[tuple[str, list[str]]] = field(default_factory=list)
    params: list[str] = field(default_factory=list)


class _Cursor:
    """A position in the line being matched."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return self.text[self.pos : self.pos + 1]

    def take(self, pattern: re.Pattern[str]) -> str | None:
        result = pattern.match(self.text, self.pos)
        if result is None:
            return None
        self.pos = result.end()
        return result.group()

    def skip_spaces(self) -> bool:
        return self.take(_SPACES) is not None

    def fail(self, reason: str) -> MalformedLineError:
        return MalformedLineError(reason, line=self.text, column=self.pos)


def strip_comment(text: str) -> str:
    """Drop a trailing `#` comment and surrounding spaces."""
    body, _, _ = text.partition(COMMENT_CHAR)
    return body.strip(" \r\n")


def _match_option(cursor: _Cursor) -> tuple[str, list[str]]:
    name = cursor.take(_OPTION_NAME)
    if name is None:
        raise cursor.fail("expected an option name")
    if cursor.peek() != "=":
        raise cursor.fail(f"expected `=` after option name `{name}`")
    cursor.pos += 1
    values: list[str] = []
    while True:
        value = cursor.take(_OPTION_VALUE)
        if value is None:
            raise cursor.fail(f"expected a value for option `{name}`")
        values.append(value)
        if cursor.peek() != ",":
            return name, values
        cursor.pos += 1


def _match_option_list(cursor: _Cursor) -> list[tuple[str, list[str]]]:
    cursor.pos += 1  # "["
    cursor.skip_spaces()
    options: list[tuple[str, list[str]]] = []
    separated = True
    while True:
        if cursor.at_end():
            raise cursor.fail("the option list is not closed with `]`")
        if cursor.peek() == "]":
            if not options:
                raise cursor.fail("the option list is empty")
            cursor.pos += 1
            return options
        if options and not separated:
            raise cursor.fail("options must be separated by spaces")
        options.append(_match_option(cursor))
        separated = cursor.skip_spaces()


def _require_separator(cursor: _Cursor, params: list[str]) -> None:
    """Consume the spaces before the next positional parameter."""
    if cursor.at_end():
        raise MissingParameterError(
            POSITIONAL_PARAMS[len(params)], line=cursor.text, column=cursor.pos
        )
    if not cursor.skip_spaces():
        raise cursor.fail(f"unexpected character `{cursor.peek()}`")


def match_line(text: str) -> LineMatch:
    """Match one one-line-style entry against the grammar.

    Args:
        text: the entry, without any leading disable marker

    Returns:
        the source type, the options in the order written, and the positional parameters

    Raises:
        MissingParameterError if fewer than three positional parameters are present
        MalformedLineError if the line doesn't otherwise match
    """
    cursor = _Cursor(strip_comment(text))

    source_type = cursor.take(_SOURCE_TYPE)
    if source_type is None or not (cursor.at_end() or cursor.peek() == " "):
        raise cursor.fail("the entry must start with `deb` or `deb-src`")
    result = LineMatch(source_type=source_type)

    _require_separator(cursor, result.params)
    if cursor.peek() == "[":
        result.options = _match_option_list(cursor)
        _require_separator(cursor, result.params)

    while True:
        param = cursor.take(_PARAM)
        if param is None:
            if cursor.peek() in ("[", "]"):
                raise cursor.fail("unexpected bracket outside the option list")
            raise cursor.fail(f"unexpected character `{cursor.peek()}`")
        result.params.append(param)
        if cursor.at_end() and len(result.params) >= len(POSITIONAL_PARAMS):
            return result
        _require_separator(cursor, result.params)
