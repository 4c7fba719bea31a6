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

"""The format-agnostic representation of an APT repository source.

An `Entry` is what a one-line-style `sources.list` line is parsed into, and what a deb822
`.sources` paragraph is rendered from. It knows nothing about either syntax beyond the names of
the options documented in sources.list(5).

Example:
```python
entry = Entry.from_fields(
    types=[SourceType.BINARY],
    uris=["https://download.docker.com/linux/ubuntu"],
    suites=["jammy"],
    components=["stable"],
    options={"arch": ["amd64"]},
)
entry.validate()
```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

from debctl.errors import InvalidEntryError, InvalidOptionNameError

logger = logging.getLogger(__name__)

REPOLIB_NAME = "X-Repolib-Name"


class SourceType(Enum):
    """The kind of archive a source points at."""

    BINARY = "deb"
    SOURCE = "deb-src"

    @classmethod
    def ordered(cls, types: Iterable[SourceType]) -> list[SourceType]:
        """Return `types` in declaration order, binary before source."""
        present = set(types)
        return [t for t in cls if t in present]


# deb822 spelling -> names accepted for it in a one-line-style option list.
# Matching is case-insensitive, and the deb822 spelling itself is always accepted.
KNOWN_OPTIONS: dict[str, tuple[str, ...]] = {
    "Architectures": ("arch",),
    "Languages": ("lang",),
    "Targets": ("target",),
    "PDiffs": ("pdiffs",),
    "By-Hash": ("by-hash",),
    "Allow-Insecure": ("allow-insecure",),
    "Allow-Weak": ("allow-weak",),
    "Allow-Downgrade-To-Insecure": ("allow-downgrade-to-insecure",),
    "Trusted": ("trusted",),
    "Signed-By": ("signed-by",),
    "Check-Valid-Until": ("check-valid-until",),
    "Valid-Until-Min": ("valid-until-min",),
    "Valid-Until-Max": ("valid-until-max",),
    "Check-Date": ("check-date",),
    "Date-Max-Future": ("date-max-future",),
    "InRelease-Path": ("inrelease-path",),
    "Snapshot": ("snapshot",),
}

_OPTION_LOOKUP = {
    alias.lower(): name
    for name, aliases in KNOWN_OPTIONS.items()
    for alias in (name, *aliases)
}


def canonical_option_name(name: str, force_literal: bool = False) -> str:
    """Return the deb822 spelling of an option name.

    Args:
        name: an option name as written in either syntax, in any case
        force_literal: keep names that aren't documented in sources.list(5) as they are,
            instead of rejecting them

    Raises:
        InvalidOptionNameError if the name is unknown and `force_literal` is false
    """
    try:
        return _OPTION_LOOKUP[name.lower()]
    except KeyError:
        if force_literal:
            logger.debug("keeping unrecognized option name '%s' as-is", name)
            return name
        raise InvalidOptionNameError(name) from None


@dataclass
class Comment:
    """A run of comment lines that isn't attached to any entry."""

    text: str


@dataclass
class Entry:
    """An APT repository source."""

    enabled: bool = True
    source_types: set[SourceType] = field(default_factory=set)
    uris: list[str] = field(default_factory=list)
    suites: list[str] = field(default_factory=list)
    components: list[str] = field(default_factory=list)
    options: dict[str, list[str]] = field(default_factory=dict)
    signed_by: str | None = None
    leading_comment: str | None = None

    @classmethod
    def from_fields(
        cls,
        *,
        types: Iterable[SourceType],
        uris: Iterable[str],
        suites: Iterable[str],
        components: Iterable[str] = (),
        options: Mapping[str, Iterable[str]] | None = None,
        enabled: bool = True,
        description: str | None = None,
        force_literal: bool = False,
    ) -> Entry:
        """Build an entry from explicit fields rather than from a parsed line.

        Option names are canonicalized and, since there is no original order to preserve,
        sorted alphabetically.

        Raises:
            InvalidOptionNameError if an option name is unknown and `force_literal` is false
        """
        collected: dict[str, list[str]] = {}
        for name, values in (options or {}).items():
            values = [v for v in values if v]
            if values:
                collected.setdefault(canonical_option_name(name, force_literal), []).extend(values)
        if description:
            collected[REPOLIB_NAME] = [description]
        signed_by = collected.pop("Signed-By", None)
        return cls(
            enabled=enabled,
            source_types=set(types),
            uris=list(uris),
            suites=list(suites),
            components=list(components),
            options={k: collected[k] for k in sorted(collected)},
            signed_by=" ".join(signed_by) if signed_by else None,
        )

    @property
    def types(self) -> list[SourceType]:
        """Return the source types in a stable order."""
        return SourceType.ordered(self.source_types)

    @property
    def inline_key(self) -> bool:
        """Whether `signed_by` holds key material rather than a path."""
        return self.signed_by is not None and "\n" in self.signed_by

    def validate(self) -> None:
        """Check the fields every repository needs.

        Raises:
            InvalidEntryError if there is no source type, URI or suite
        """
        if not self.source_types:
            raise InvalidEntryError("a source entry needs at least one type (deb or deb-src)")
        if not self.uris:
            raise InvalidEntryError("a source entry needs at least one URI")
        if not self.suites:
            raise InvalidEntryError("a source entry needs at least one suite")
