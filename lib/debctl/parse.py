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

"""Parse one-line-style `sources.list` files into `Entry` objects.

A line starting with `#` is either a commented-out entry or a plain comment. The two are told
apart by stripping the `#` and matching what's left against the grammar: if it matches, the line
becomes a disabled entry, otherwise it is kept as a comment and attached to the next entry.

```python
with open("/etc/apt/sources.list.d/docker.list") as f:
    items = parse_lines(f, filename=f.name)
for item in items:
    if isinstance(item, Entry):
        print(item.uris, item.enabled)
```
"""

from __future__ import annotations

import logging
from typing import Iterable

from debctl.entry import Comment, Entry, SourceType, canonical_option_name
from debctl.errors import DuplicateOptionError, MalformedLineError, ParseError, SourceFileError
from debctl.grammar import COMMENT_CHAR, match_line

logger = logging.getLogger(__name__)


def _collect_options(
    pairs: Iterable[tuple[str, list[str]]], line: str
) -> dict[str, list[str]]:
    """Canonicalize option names, merging identical repeats and rejecting conflicting ones."""
    options: dict[str, list[str]] = {}
    for name, values in pairs:
        canonical = canonical_option_name(name)
        existing = options.get(canonical)
        if existing is None:
            options[canonical] = values
        elif existing != values:
            raise DuplicateOptionError(canonical, [existing, values], line=line)
        else:
            logger.debug("option %s repeated with the same value in `%s`", canonical, line)
    return options


def parse_line(
    line: str, *, enabled: bool = True, leading_comment: str | None = None
) -> Entry:
    """Parse a single one-line-style entry.

    Args:
        line: the entry, without a leading `#`
        enabled: whether the entry is active
        leading_comment: comment text to keep with the entry

    Raises:
        MalformedLineError if the line doesn't match the grammar or names an unknown option
        DuplicateOptionError if an option is given twice with different values
    """
    try:
        match = match_line(line)
        options = _collect_options(match.options, line)
    except MalformedLineError as e:
        e.line = e.line or line
        raise
    signed_by = options.pop("Signed-By", None)
    uri, suite, *components = match.params
    return Entry(
        enabled=enabled,
        source_types={SourceType(match.source_type)},
        uris=[uri],
        suites=[suite],
        components=components,
        options=options,
        signed_by=" ".join(signed_by) if signed_by else None,
        leading_comment=leading_comment,
    )


def parse_lines(
    lines: Iterable[str],
    *,
    filename: str = "",
    skip_comments: bool = False,
    skip_disabled: bool = False,
) -> list[Entry | Comment]:
    """Parse the lines of a one-line-style source file.

    Comments are attached to the entry that follows them. Comments with no entry after them are
    returned as a single trailing `Comment`.

    Args:
        lines: an iterable of lines from a `.list` file
        filename: the file the lines were read from (for error messages)
        skip_comments: drop plain comments instead of preserving them
        skip_disabled: drop commented-out entries instead of converting them to disabled ones

    Raises:
        MalformedLineError if a line that isn't commented out doesn't match the grammar
        DuplicateOptionError if an option is given twice with different values
    """
    items: list[Entry | Comment] = []
    pending: list[str] = []
    for n, raw in enumerate(lines, start=1):  # 1 indexed line numbers
        line = raw.strip()
        if not line:
            continue
        comment = "\n".join(pending) or None
        try:
            if line.startswith(COMMENT_CHAR):
                try:
                    entry = parse_line(line[1:].strip(), enabled=False, leading_comment=comment)
                except MalformedLineError:
                    logger.debug("line %d of '%s' is a comment", n, filename)
                    if not skip_comments:
                        pending.append(line)
                    continue
                if skip_disabled:
                    logger.debug("skipping disabled entry on line %d of '%s'", n, filename)
                    continue
            else:
                entry = parse_line(line, leading_comment=comment)
        except ParseError as e:
            e.lineno = n
            e.filename = filename
            e.line = line
            raise
        items.append(entry)
        pending = []

    if pending:
        items.append(Comment("\n".join(pending)))
    logger.debug(
        "parsed %d item(s) from %s", len(items), f"'{filename}'" if filename else "input"
    )
    return items


def parse_file(path: str, **kwargs) -> list[Entry | Comment]:
    """Parse a one-line-style source file from disk.

    Keyword arguments are passed through to `parse_lines`.

    Raises:
        ParseError if any line can't be parsed
        SourceFileError if the file isn't valid UTF-8
    """
    try:
        with open(path, encoding="utf-8") as f:
            items = parse_lines(f, filename=str(path), **kwargs)
    except UnicodeDecodeError as e:
        raise SourceFileError(f"{path} is not valid UTF-8: {e.reason}") from e
    entries = sum(isinstance(item, Entry) for item in items)
    logger.info("parsed %d apt package repositories from %s", entries, path)
    return items
