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

"""Install repository sources into `/etc/apt/sources.list.d`.

Three workflows are supported:

- a new source built from explicit fields (`RepositorySource.from_fields`)
- a new source built from a one-line-style entry (`RepositorySource.from_line`)
- converting an existing `.list` file to a `.sources` file (`SourceConverter`)

```python
source = RepositorySource.from_line(
    "deb [arch=amd64] https://download.docker.com/linux/ubuntu jammy stable",
    name="docker",
    key=UrlKeySource("https://download.docker.com/linux/ubuntu/gpg"),
)
source.install_key()
source.install(OverwriteAction.Fail)
```

Nothing is written until parsing has fully succeeded, and files are replaced atomically.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from dataclasses import replace
from enum import Enum
from typing import Iterable

from debctl.entry import REPOLIB_NAME, Comment, Entry, SourceType
from debctl.errors import CodenameError, InvalidSourceError, ParseError, SourceFileError
from debctl.fs import atomic_write, create_exclusive
from debctl.key import (
    APT_KEYRINGS_DIR,
    KeyDestination,
    KeyringDestination,
    KeySource,
    default_keyring_path,
    resolve_key,
)
from debctl.parse import parse_line, parse_lines
from debctl.render import parse_deb822, render_entries, render_entry

logger = logging.getLogger(__name__)

APT_SOURCES_DIR = "/etc/apt/sources.list.d"
OS_RELEASE_PATH = "/etc/os-release"
BACKUP_EXTENSION = "bak"
STDIO_PATH = "-"


class OverwriteAction(Enum):
    """What to do if the source file being written already exists."""

    Overwrite = "overwrite"
    Append = "append"
    Fail = "fail"


class InstallPlan(Enum):
    """What installing a source file will do to the filesystem."""

    Create = "create"
    Overwrite = "overwrite"
    Append = "append"


def parse_os_release(lines: Iterable[str]) -> str | None:
    """Return VERSION_CODENAME from the lines of an os-release file, if present."""
    for line in lines:
        key, sep, value = line.strip().partition("=")
        if sep and key.strip() == "VERSION_CODENAME":
            return value.strip().strip("\"'") or None
    return None


def get_version_codename() -> str:
    """Return the running distribution's version codename, like `jammy`.

    `lsb_release` is asked first, falling back to `/etc/os-release`.

    Raises:
        CodenameError if neither source knows the codename
    """
    try:
        result = subprocess.run(
            ["lsb_release", "--short", "--codename"], capture_output=True, check=True, text=True
        )
        codename = result.stdout.strip()
        if codename:
            return codename
    except FileNotFoundError:
        logger.debug("lsb_release is not installed, reading %s", OS_RELEASE_PATH)
    except subprocess.CalledProcessError as e:
        logger.debug("lsb_release failed (%s), reading %s", e.stderr, OS_RELEASE_PATH)

    try:
        with open(OS_RELEASE_PATH, encoding="utf-8") as f:
            codename = parse_os_release(f)
    except FileNotFoundError:
        codename = None
    if not codename:
        raise CodenameError(
            "Could not infer the distro version codename. Pass a suite explicitly."
        )
    return codename


def parse_custom_option(option: str) -> tuple[str, list[str]]:
    """Parse an option given on the command line in `key=value[,value...]` format.

    Raises:
        ParseError if there is no `=`
    """
    key, sep, value = option.strip().partition("=")
    if not sep or not key:
        raise ParseError(f"This option is not in `key=value` format: {option}")
    return key, [v for v in value.split(",") if v]


def plan_install(path: str, action: OverwriteAction) -> InstallPlan:
    """Work out what installing to `path` will do.

    Raises:
        SourceFileError if the file exists and `action` is `OverwriteAction.Fail`
    """
    if not os.path.exists(path):
        return InstallPlan.Create
    if action is OverwriteAction.Overwrite:
        return InstallPlan.Overwrite
    if action is OverwriteAction.Append:
        return InstallPlan.Append
    raise SourceFileError(
        f"This source file already exists: {path}. Pass --overwrite or --append."
    )


class RepositorySource:
    """A single repository source to be installed as a `.sources` file."""

    def __init__(
        self,
        name: str,
        entry: Entry,
        key: KeySource | None = None,
        key_destination: KeyDestination | None = None,
        sources_dir: str = APT_SOURCES_DIR,
        keyring_dir: str = APT_KEYRINGS_DIR,
    ):
        self._name = name
        self._entry = entry
        self._key = key
        self._key_destination = key_destination or KeyringDestination(
            default_keyring_path(name, keyring_dir)
        )
        self._sources_dir = sources_dir

    @property
    def name(self) -> str:
        """Return the source's name, used as its file name."""
        return self._name

    @property
    def entry(self) -> Entry:
        """Return the entry that will be written."""
        return self._entry

    @property
    def path(self) -> str:
        """Return the path of the `.sources` file."""
        return os.path.join(self._sources_dir, f"{self._name}.sources")

    @classmethod
    def from_fields(
        cls,
        name: str,
        *,
        uris: list[str],
        suites: list[str] | None = None,
        components: Iterable[str] = (),
        types: list[SourceType] | None = None,
        arch: Iterable[str] = (),
        lang: Iterable[str] = (),
        options: Iterable[str] = (),
        force_literal_options: bool = False,
        description: str | None = None,
        enabled: bool = True,
        **kwargs,
    ) -> RepositorySource:
        """Build a source from explicit fields.

        The suite defaults to the running distribution's codename.

        Raises:
            ParseError if a custom option is malformed or unknown
            InvalidEntryError if a required field is empty
            CodenameError if no suite was given and it can't be inferred
        """
        collected: dict[str, list[str]] = {}
        for option in options:
            key, values = parse_custom_option(option)
            collected.setdefault(key, []).extend(values)
        if arch:
            collected.setdefault("Architectures", []).extend(arch)
        if lang:
            collected.setdefault("Languages", []).extend(lang)
        entry = Entry.from_fields(
            types=types or [SourceType.BINARY],
            uris=uris,
            suites=suites or [get_version_codename()],
            components=components,
            options=collected,
            enabled=enabled,
            description=description,
            force_literal=force_literal_options,
        )
        entry.validate()
        return cls(name, entry, **kwargs)

    @classmethod
    def from_line(
        cls,
        line: str,
        name: str,
        *,
        description: str | None = None,
        enabled: bool = True,
        **kwargs,
    ) -> RepositorySource:
        """Build a source from a one-line-style entry.

        Raises:
            MalformedLineError if the line doesn't match the one-line-style grammar
            DuplicateOptionError if the line gives an option conflicting values
        """
        entry = parse_line(line.strip(), enabled=enabled)
        if description:
            entry = replace(entry, options={**entry.options, REPOLIB_NAME: [description]})
        entry.validate()
        return cls(name, entry, **kwargs)

    @property
    def has_key(self) -> bool:
        """Whether the source will be signed by some key."""
        return self._key is not None or bool(self._entry.signed_by)

    def install_key(self, dry_run: bool = False) -> None:
        """Fetch the signing key, if there is one, and attach it to the entry.

        With `dry_run`, nothing is fetched or written. A keyring path is still attached, so the
        rendered source shows where the key would go.
        """
        if self._key is None:
            return
        if self._entry.inline_key:
            logger.warning(
                "replacing the inline key of source '%s' with the provided key", self._name
            )
        elif self._entry.signed_by:
            logger.warning(
                "replacing Signed-By %s of source '%s' with the provided key",
                self._entry.signed_by,
                self._name,
            )
        if not dry_run:
            self._entry.signed_by = resolve_key(self._key, self._key_destination)
        elif isinstance(self._key_destination, KeyringDestination):
            self._entry.signed_by = self._key_destination.path
        else:
            logger.info("would inline the signing key from %s", self._key)
            self._entry.signed_by = None

    def render(self) -> str:
        """Return the paragraph this source adds to its file."""
        return render_entry(self._entry) + "\n"

    def install(self, action: OverwriteAction = OverwriteAction.Fail) -> InstallPlan:
        """Write the source to its `.sources` file.

        Raises:
            SourceFileError if the file exists and `action` is `Fail`, can't be written,
                or can't be appended to because it isn't a valid deb822 file
        """
        plan = plan_install(self.path, action)
        contents = self.render()
        if plan is InstallPlan.Append:
            try:
                with open(self.path, encoding="utf-8") as f:
                    existing = f.read()
            except UnicodeDecodeError as e:
                raise SourceFileError(f"{self.path} is not valid UTF-8: {e.reason}") from e
            except OSError as e:
                raise SourceFileError(f"Could not read '{self.path}': {e.strerror}") from e
            try:
                parse_deb822(existing.splitlines(), filename=self.path)
            except InvalidSourceError as e:
                raise SourceFileError(
                    f"Refusing to append to {self.path}, "
                    f"it is not a valid deb822 file: {e.message}"
                ) from e
            existing = existing.rstrip("\n")
            if existing:
                # stanzas in a deb822 file must have a blank line between them
                contents = f"{existing}\n\n{contents}"
        atomic_write(self.path, contents)
        logger.info("%s source file %s", _PLAN_VERBS[plan], self.path)
        return plan


_PLAN_VERBS = {
    InstallPlan.Create: "created",
    InstallPlan.Overwrite: "overwrote",
    InstallPlan.Append: "appended to",
}


class SourceConverter:
    """Converts a one-line-style `.list` file into a deb822 `.sources` file.

    Use `-` as a path to read from stdin or write to stdout.
    """

    def __init__(
        self,
        in_path: str,
        out_path: str,
        backup_path: str | None = None,
        remove_original: bool = False,
        skip_comments: bool = False,
        skip_disabled: bool = False,
    ):
        self.in_path = in_path
        self.out_path = out_path
        self.backup_path = backup_path if in_path != STDIO_PATH else None
        self.remove_original = remove_original and in_path != STDIO_PATH
        self.skip_comments = skip_comments
        self.skip_disabled = skip_disabled

    @classmethod
    def from_name(
        cls,
        name: str,
        sources_dir: str = APT_SOURCES_DIR,
        backup: bool = False,
        backup_to: str | None = None,
        **kwargs,
    ) -> SourceConverter:
        """Convert `<sources_dir>/<name>.list` in place to `<sources_dir>/<name>.sources`.

        The original file is removed once the new one is written.
        """
        in_path = os.path.join(sources_dir, f"{name}.list")
        backup_path = backup_to or (f"{in_path}.{BACKUP_EXTENSION}" if backup else None)
        return cls(
            in_path,
            os.path.join(sources_dir, f"{name}.sources"),
            backup_path=backup_path,
            remove_original=True,
            **kwargs,
        )

    def _read(self) -> list[Entry | Comment]:
        options = {"skip_comments": self.skip_comments, "skip_disabled": self.skip_disabled}
        try:
            if self.in_path == STDIO_PATH:
                return parse_lines(sys.stdin, filename="<stdin>", **options)
            with open(self.in_path, encoding="utf-8") as f:
                return parse_lines(f, filename=self.in_path, **options)
        except FileNotFoundError:
            raise SourceFileError(f"The source file does not exist: {self.in_path}") from None
        except UnicodeDecodeError as e:
            raise SourceFileError(f"{self.in_path} is not valid UTF-8: {e.reason}") from e
        except OSError as e:
            raise SourceFileError(f"Could not read '{self.in_path}': {e.strerror}") from e

    def render(self) -> str:
        """Parse the input and return the converted file contents without writing anything.

        Raises:
            ParseError if any line of the input can't be parsed
            InvalidEntryError if an entry is missing a required field
        """
        items = self._read()
        for item in items:
            if isinstance(item, Entry):
                item.validate()
        logger.debug("converted %d item(s) from %s", len(items), self.in_path)
        return render_entries(items)

    def _backup(self) -> None:
        if self.backup_path is None:
            return
        with open(self.in_path, "rb") as f:
            create_exclusive(self.backup_path, f.read())
        logger.info("backed up %s to %s", self.in_path, self.backup_path)

    def convert(self) -> str:
        """Convert the file, returning the new contents.

        Raises:
            ParseError or InvalidEntryError if the input isn't valid, before anything is written
            SourceFileError if the output or backup already exists or can't be written
        """
        contents = self.render()
        if self.out_path == STDIO_PATH:
            sys.stdout.write(contents)
            return contents
        if os.path.exists(self.out_path):
            raise SourceFileError(f"The converted source file already exists: {self.out_path}")
        self._backup()
        atomic_write(self.out_path, contents)
        logger.info("converted %s to %s", self.in_path, self.out_path)
        if self.remove_original:
            try:
                os.remove(self.in_path)
            except PermissionError as e:
                raise SourceFileError(
                    f"Permission denied removing '{self.in_path}'. "
                    "You must run this command as root."
                ) from e
            except OSError as e:
                raise SourceFileError(f"Could not remove '{self.in_path}': {e.strerror}") from e
            logger.info("removed original source file %s", self.in_path)
        return contents


__all__ = [
    "InstallPlan",
    "OverwriteAction",
    "RepositorySource",
    "SourceConverter",
    "get_version_codename",
    "parse_custom_option",
]
