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

"""Fetch repository signing keys and make them usable from a deb822 `Signed-By` field.

A key can come from a local file, a URL, or a keyserver, and can be either installed as a
binary keyring under `/etc/apt/keyrings` or inlined into the source file as an ASCII-armored
block. `gpg` is used to convert between the two encodings, as we trust its validation better
than our own.

```python
source = key_source_from_location("https://download.docker.com/linux/ubuntu/gpg")
path = resolve_key(source, KeyringDestination("/etc/apt/keyrings/docker-archive-keyring.gpg"))
```
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Union

from debctl.errors import GPGKeyError, KeyDownloadError
from debctl.fs import atomic_write

logger = logging.getLogger(__name__)

APT_KEYRINGS_DIR = "/etc/apt/keyrings"
DEFAULT_KEYSERVER = "keyserver.ubuntu.com"
DOWNLOAD_TIMEOUT = 30.0

PGP_ARMOR_MATCHER = re.compile(r"^\s*-----\s*BEGIN PGP PUBLIC KEY BLOCK\s*-----\s*$")
_KEYSERVER_LOOKUP = "https://{host}/pks/lookup?op=get&options=mr&exact=on&search=0x{fingerprint}"


class KeyEncoding(Enum):
    """The encoding of a PGP public key."""

    Armored = "armored"
    Binary = "binary"


@dataclass(frozen=True)
class FileKeySource:
    """A key stored in a local file."""

    path: str


@dataclass(frozen=True)
class UrlKeySource:
    """A key to download over HTTP(S)."""

    url: str


@dataclass(frozen=True)
class KeyserverKeySource:
    """A key to fetch from a keyserver by fingerprint."""

    fingerprint: str
    keyserver: str = DEFAULT_KEYSERVER


@dataclass(frozen=True)
class KeyringDestination:
    """Install the key as a binary keyring file."""

    path: str


@dataclass(frozen=True)
class InlineDestination:
    """Embed the armored key in the source file itself."""


KeySource = Union[FileKeySource, UrlKeySource, KeyserverKeySource]
KeyDestination = Union[KeyringDestination, InlineDestination]


def default_keyring_path(name: str, keyring_dir: str = APT_KEYRINGS_DIR) -> str:
    """Return where the keyring for the source called `name` is installed by default."""
    return os.path.join(keyring_dir, f"{name}-archive-keyring.gpg")


def key_source_from_location(location: str, keyserver: str | None = None) -> KeySource:
    """Work out where a key given on the command line comes from.

    Args:
        location: a URL, a path to a local file, or a fingerprint when `keyserver` is given
        keyserver: a keyserver host or URL to fetch the fingerprint from

    Raises:
        GPGKeyError if the location is neither a URL nor an existing file
    """
    if keyserver:
        return KeyserverKeySource(fingerprint=location, keyserver=keyserver)
    if urllib.parse.urlparse(location).scheme in ("http", "https"):
        return UrlKeySource(url=location)
    if os.path.isfile(location):
        return FileKeySource(path=location)
    raise GPGKeyError(f"The key location is not a URL or an existing file: {location}")


def probe_key_encoding(key: bytes) -> KeyEncoding:
    """Return whether `key` is ASCII-armored, judging by its first line."""
    first_line, _, _ = key.partition(b"\n")
    try:
        text = first_line.decode("utf-8")
    except UnicodeDecodeError:
        # not valid UTF-8, so it can't be armored
        return KeyEncoding.Binary
    if PGP_ARMOR_MATCHER.match(text):
        return KeyEncoding.Armored
    return KeyEncoding.Binary


def _gpg(args: list[str], key_material: bytes = b"") -> bytes:
    """Run gpg non-interactively and return its stdout.

    Raises:
        GPGKeyError if gpg is missing, rejects the key, or fails for any other reason
    """
    cmd = ["gpg", "--batch", "--quiet", *args]
    try:
        ps = subprocess.run(cmd, capture_output=True, input=key_material)
    except FileNotFoundError:
        raise GPGKeyError("gpg is not installed; it is needed to process signing keys") from None
    err = ps.stderr.decode(errors="replace")
    if "no valid OpenPGP data found" in err:
        raise GPGKeyError("Invalid GPG key material provided")
    if ps.returncode != 0:
        logger.error("%s:\nstderr:\n%s", " ".join(cmd), err)
        raise GPGKeyError(f"gpg exited with status {ps.returncode}: {err.strip()}")
    return ps.stdout


def verify_key(key: bytes) -> None:
    """Check that `key` holds at least one PGP public key.

    Raises:
        GPGKeyError if gpg finds no public key in the key material
    """
    listing = _gpg(["--show-keys", "--with-colons"], key)
    if not any(line.startswith(b"pub:") for line in listing.splitlines()):
        raise GPGKeyError("The provided key material is not a PGP public key")


def dearmor_key(key: bytes) -> bytes:
    """Convert a key to the binary format apt reads from keyring files."""
    if probe_key_encoding(key) is KeyEncoding.Binary:
        return key
    return _gpg(["--dearmor"], key)


def enarmor_key(key: bytes) -> str:
    """Convert a key to ASCII armor, for inlining in a source file.

    A binary key is imported into a throwaway gpg home and exported again with `--armor`.
    """
    if probe_key_encoding(key) is KeyEncoding.Armored:
        return key.decode("utf-8").strip()
    with tempfile.TemporaryDirectory(prefix="debctl-gnupg-") as home:
        _gpg(["--homedir", home, "--import"], key)
        armored = _gpg(["--homedir", home, "--armor", "--export"])
    if not armored.strip():
        raise GPGKeyError("gpg exported no public key from the provided key material")
    return armored.decode("utf-8").strip()


def _download(url: str) -> bytes:
    logger.debug("downloading signing key from %s", url)
    try:
        with urllib.request.urlopen(url, timeout=DOWNLOAD_TIMEOUT) as response:
            return response.read()
    except urllib.error.HTTPError as e:
        raise KeyDownloadError(f"Failed to download key from {url}: {e.code} {e.reason}") from e
    except urllib.error.URLError as e:
        raise KeyDownloadError(f"Failed to download key from {url}: {e.reason}") from e


def _keyserver_url(source: KeyserverKeySource) -> str:
    """Build the HTTPS lookup URL for a fingerprint.

    `hkp://` and `hkps://` keyserver URLs are queried over HTTPS on the same host.
    """
    parsed = urllib.parse.urlparse(source.keyserver)
    host = parsed.netloc or parsed.path or DEFAULT_KEYSERVER
    fingerprint = source.fingerprint.replace(" ", "")
    if fingerprint.lower().startswith("0x"):
        fingerprint = fingerprint[2:]
    return _KEYSERVER_LOOKUP.format(host=host.rstrip("/"), fingerprint=fingerprint)


def fetch_key(source: KeySource) -> bytes:
    """Return the raw key material from `source`.

    Raises:
        GPGKeyError if a local key file can't be read
        KeyDownloadError if the key can't be downloaded or the keyserver doesn't return a key
    """
    if isinstance(source, FileKeySource):
        try:
            with open(source.path, "rb") as f:
                key = f.read()
        except OSError as e:
            raise GPGKeyError(f"Could not read key file {source.path}: {e.strerror}") from e
    elif isinstance(source, UrlKeySource):
        key = _download(source.url)
    else:
        key = _download(_keyserver_url(source))
        if probe_key_encoding(key) is not KeyEncoding.Armored:
            raise KeyDownloadError(
                f"Keyserver {source.keyserver} returned no key for {source.fingerprint}"
            )
    if not key.strip():
        raise GPGKeyError(f"The key from {source} is empty")
    return key


def resolve_key(source: KeySource, destination: KeyDestination) -> str:
    """Fetch a key and make it available to apt.

    Args:
        source: where to get the key from
        destination: whether to install a keyring file or inline the key

    Returns:
        the path of the installed keyring, or the armored key to inline

    Raises:
        GPGKeyError if the key is malformed or can't be processed
        KeyDownloadError if the key can't be fetched
        SourceFileError if the keyring can't be written
    """
    key = fetch_key(source)
    verify_key(key)
    if isinstance(destination, InlineDestination):
        logger.debug("inlining signing key from %s", source)
        return enarmor_key(key)
    logger.info("installing signing key from %s to %s", source, destination.path)
    atomic_write(destination.path, dearmor_key(key))
    return destination.path
