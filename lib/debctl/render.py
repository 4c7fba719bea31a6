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

"""Read and write deb822-style `.sources` files.

In contrast to one-line-style, the deb822 format specifies a repository using a multi-line
stanza. Stanzas are separated by blank lines, and each definition consists of lines that are
either `Key: value` pairs or continuations of the previous value.

Read more about the deb822 format here:
    https://manpages.ubuntu.com/manpages/noble/en/man5/sources.list.5.html

Rendering always writes the fields in the same order: `Enabled`, `Types`, `URIs`, `Suites`,
`Components`, `Signed-By`, then any other options in the order the entry holds them. Values
that were comma-separated in a one-line-style option list are space-separated here.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping, Sequence

from debctl.entry import Comment, Entry, SourceType, canonical_option_name
from debctl.errors import BadValueError, MissingRequiredKeyError
from debctl.grammar import COMMENT_CHAR

logger = logging.getLogger(__name__)

# a key line inside a folded value that was empty before folding
_EMPTY_CONTINUATION = "."


def _fold(value: str) -> str:
    """Fold a multi-line value so that every line after the first is a continuation line."""
    first, *rest = value.strip("\n").split("\n")
    folded = [first.rstrip()]
    for line in rest:
        line = line.rstrip()
        folded.append(f" {line}" if line else f" {_EMPTY_CONTINUATION}")
    return "\n".join(folded)


def _unfold(parts: Sequence[str]) -> str:
    """Reverse `_fold` for the lines making up one value."""
    first, *rest = parts
    lines = [first]
    for line in rest:
        line = line[1:] if line.startswith(" ") else line.lstrip()
        lines.append("" if line == _EMPTY_CONTINUATION else line)
    return "\n".join(lines)


def _comment_lines(text: str) -> list[str]:
    return [
        line if line.startswith(COMMENT_CHAR) else f"{COMMENT_CHAR} {line}".rstrip()
        for line in text.strip().splitlines()
    ]


def render_entry(entry: Entry) -> str:
    """Render one entry as a deb822 paragraph, without a trailing newline.

    A leading comment, if any, is written immediately above the paragraph.
    """
    lines: list[str] = []
    if entry.leading_comment:
        lines.extend(_comment_lines(entry.leading_comment))
    fields = [
        ("Enabled", "yes" if entry.enabled else "no"),
        ("Types", " ".join(t.value for t in entry.types)),
        ("URIs", " ".join(entry.uris)),
        ("Suites", " ".join(entry.suites)),
    ]
    if entry.components:
        fields.append(("Components", " ".join(entry.components)))
    if entry.inline_key:
        fields.append(("Signed-By", _fold(entry.signed_by)))
    elif entry.signed_by:
        fields.append(("Signed-By", entry.signed_by))
    fields.extend((name, " ".join(values)) for name, values in entry.options.items())
    lines.extend(f"{name}: {value}" for name, value in fields)
    return "\n".join(lines)


def render_entries(items: Iterable[Entry | Comment]) -> str:
    """Render parsed items as the contents of a `.sources` file.

    Paragraphs are separated by exactly one blank line. A trailing `Comment` is written after
    the last paragraph.
    """
    blocks: list[str] = []
    for item in items:
        if isinstance(item, Comment):
            blocks.append("\n".join(_comment_lines(item.text)))
        else:
            blocks.append(render_entry(item))
    if not blocks:
        return ""
    return "\n\n".join(blocks) + "\n"


def _iter_deb822_stanzas(lines: Iterable[str]) -> Iterator[list[tuple[int, str]]]:
    """Given lines from a deb822 format file, yield a stanza of lines.

    Args:
        lines: an iterable of lines from a deb822 sources file

    Yields:
        lists of numbered lines (a tuple of line number and line) that make up
        a deb822 stanza, comments included
    """
    current_stanza: list[tuple[int, str]] = []
    for n, line in enumerate(lines, start=1):  # 1 indexed line numbers
        if not line.strip():  # blank lines separate stanzas
            if current_stanza:
                yield current_stanza
                current_stanza = []
            continue
        current_stanza.append((n, line.rstrip("\r\n")))
    if current_stanza:
        yield current_stanza


def _deb822_stanza_to_fields(
    lines: Iterable[tuple[int, str]], filename: str = ""
) -> tuple[dict[str, str], dict[str, int], list[str]]:
    """Turn numbered lines into a dict of fields, a dict of line numbers, and comments.

    Args:
        lines: an iterable of numbered lines (a tuple of line number and line)
        filename: the file the lines were read from (for errors)

    Returns:
        a dictionary of field names to (potentially multiline) values,
        a dictionary of field names to starting line number, and
        the comment lines found in the stanza
    """
    parts: dict[str, list[str]] = {}
    line_numbers: dict[str, int] = {}
    comments: list[str] = []
    current = None
    for n, line in lines:
        if line.lstrip().startswith(COMMENT_CHAR):
            comments.append(line.strip())
            continue
        if line.startswith((" ", "\t")):  # continuation of previous key's value
            if current is None:
                raise BadValueError(
                    "continuation line without a field",
                    file=filename,
                    line=n,
                    key="",
                    value=line,
                )
            parts[current].append(line.rstrip())  # preserve indent
            continue
        raw_key, _, raw_value = line.partition(":")
        current = raw_key.strip()
        parts[current] = [raw_value.strip()]
        line_numbers[current] = n
    fields = {k: _unfold(v) for k, v in parts.items()}
    return fields, line_numbers, comments


def _deb822_fields_to_entry(
    fields: dict[str, str],
    comments: list[str],
    line_numbers: Mapping[str, int] = {},
    filename: str = "",
) -> Entry:
    """Build an entry from the fields of one stanza.

    Raises:
        InvalidSourceError if any fields are malformed or required fields are missing
    """
    first_line = min(line_numbers.values()) if line_numbers else None
    # Enabled
    enabled_field = fields.pop("Enabled", "yes")
    if enabled_field == "yes":
        enabled = True
    elif enabled_field == "no":
        enabled = False
    else:
        raise BadValueError(
            "Must be one of yes or no (default: yes).",
            file=filename,
            line=line_numbers.get("Enabled"),
            key="Enabled",
            value=enabled_field,
        )
    # Types, URIs, Suites
    try:
        raw_types = fields.pop("Types").split()
        uris = fields.pop("URIs").split()
        suites = fields.pop("Suites").split()
    except KeyError as e:
        [key] = e.args
        raise MissingRequiredKeyError(key=key, line=first_line, file=filename) from e
    try:
        types = {SourceType(t) for t in raw_types}
    except ValueError:
        raise BadValueError(
            "Must be deb and/or deb-src.",
            file=filename,
            line=line_numbers.get("Types"),
            key="Types",
            value=" ".join(raw_types),
        ) from None
    components = fields.pop("Components", "").split()
    signed_by = fields.pop("Signed-By", "").strip("\n")
    options = {
        canonical_option_name(name, force_literal=True): value.split()
        for name, value in fields.items()
    }
    return Entry(
        enabled=enabled,
        source_types=types,
        uris=uris,
        suites=suites,
        components=components,
        options=options,
        signed_by=signed_by or None,
        leading_comment="\n".join(comments) or None,
    )


def parse_deb822(lines: Iterable[str], filename: str = "") -> list[Entry]:
    """Parse the lines of a deb822 source file into entries.

    Comment lines inside or directly above a stanza become that entry's `leading_comment`.

    Raises:
        MissingRequiredKeyError if `Types`, `URIs` or `Suites` is missing from a stanza
        BadValueError if `Enabled` or `Types` has a value apt wouldn't accept
    """
    entries: list[Entry] = []
    pending: list[str] = []
    for numbered_lines in _iter_deb822_stanzas(lines):
        fields, line_numbers, comments = _deb822_stanza_to_fields(numbered_lines, filename)
        if not fields:
            # a stanza made only of comments belongs to whatever comes next
            pending.extend(comments)
            continue
        entries.append(
            _deb822_fields_to_entry(
                fields, pending + comments, line_numbers=line_numbers, filename=filename
            )
        )
        pending = []
    if pending:
        logger.debug("ignoring %d trailing comment line(s) in '%s'", len(pending), filename)
    return entries
