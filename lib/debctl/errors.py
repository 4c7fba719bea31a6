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

"""Exceptions raised by debctl.

Every error that a user can trigger through ordinary use derives from `Error`, so callers
(the CLI in particular) can print a readable message instead of a traceback.
"""

from __future__ import annotations


class Error(Exception):
    """Base class of most errors raised by this library."""

    def __repr__(self):
        """Represent the Error."""
        return f"<{type(self).__module__}.{type(self).__name__} {self.args}>"

    @property
    def name(self):
        """Return a string representation of the model plus class."""
        return f"<{type(self).__module__}.{type(self).__name__}>"

    @property
    def message(self):
        """Return the message passed as an argument."""
        return self.args[0]


class ParseError(Error):
    """Raised when a one-line-style source entry cannot be parsed."""


class MalformedLineError(ParseError):
    """A line does not match the one-line-style grammar.

    `lineno` and `filename` are filled in by the file parser once the line's position is known.
    """

    def __init__(
        self,
        reason: str,
        *,
        line: str = "",
        column: int | None = None,
        lineno: int | None = None,
        filename: str = "",
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.line = line
        self.column = column
        self.lineno = lineno
        self.filename = filename

    @property
    def message(self):
        """Return the reason, prefixed with where the bad line was found."""
        location = ""
        if self.filename and self.lineno is not None:
            location = f"{self.filename}:{self.lineno}: "
        elif self.lineno is not None:
            location = f"line {self.lineno}: "
        if self.line:
            return f"{location}{self.reason}: `{self.line}`"
        return f"{location}{self.reason}"

    def __str__(self) -> str:
        """Return the full message."""
        return self.message


class MissingParameterError(MalformedLineError):
    """A line has fewer than the three required positional parameters."""

    def __init__(self, missing: str, **kwargs) -> None:
        super().__init__(f"missing {missing}", **kwargs)
        self.missing = missing


class InvalidOptionNameError(MalformedLineError):
    """An option name is not one of the options listed in sources.list(5)."""

    def __init__(self, option: str, **kwargs) -> None:
        super().__init__(f"this is not a valid option name: `{option}`", **kwargs)
        self.option = option


class DuplicateOptionError(ParseError):
    """The same option is given contradictory values in one entry."""

    def __init__(
        self,
        option: str,
        values: list[list[str]],
        *,
        line: str = "",
        lineno: int | None = None,
        filename: str = "",
    ) -> None:
        rendered = " and ".join(",".join(v) for v in values)
        super().__init__(f"option {option} is given conflicting values {rendered}")
        self.option = option
        self.values = values
        self.line = line
        self.lineno = lineno
        self.filename = filename

    @property
    def message(self):
        """Return the message, prefixed with the line number if known."""
        if self.lineno is None:
            return self.args[0]
        if self.filename:
            return f"{self.filename}:{self.lineno}: {self.args[0]}"
        return f"line {self.lineno}: {self.args[0]}"

    def __str__(self) -> str:
        """Return the full message."""
        return self.message


class InvalidEntryError(Error):
    """An entry is missing a field that every repository needs."""


class InvalidSourceError(Error):
    """Exceptions for invalid deb822 source stanzas."""


class MissingRequiredKeyError(InvalidSourceError):
    """Missing a required value in a source file."""

    def __init__(self, message: str = "", *, file: str, line: int | None, key: str) -> None:
        super().__init__(message or f"missing required field {key}", file, line, key)
        self.file = file
        self.line = line
        self.key = key


class BadValueError(InvalidSourceError):
    """Bad value for an entry in a source file."""

    def __init__(
        self,
        message: str = "",
        *,
        file: str,
        line: int | None,
        key: str,
        value: str,
    ) -> None:
        super().__init__(message, file, line, key, value)
        self.file = file
        self.line = line
        self.key = key
        self.value = value


class GPGKeyError(Error):
    """Exceptions for GPG keys."""


class KeyDownloadError(GPGKeyError):
    """A signing key could not be fetched from a URL or keyserver."""


class SourceFileError(Error):
    """A source file could not be read, created or replaced."""


class CodenameError(Error):
    """The running distribution's version codename could not be determined."""
