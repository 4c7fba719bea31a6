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

"""Whole-file writes into the APT configuration tree."""

from __future__ import annotations

import logging
import os
import tempfile

from debctl.errors import SourceFileError

logger = logging.getLogger(__name__)


def atomic_write(path: str, data: bytes | str, mode: int = 0o644) -> None:
    """Replace the file at `path` with `data`.

    The data is written to a temporary file in the same directory, which is then moved into
    place, so readers never see a half-written file.

    Raises:
        SourceFileError if the destination can't be written
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".debctl-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    except PermissionError as e:
        raise SourceFileError(
            f"Permission denied writing '{path}'. You must run this command as root."
        ) from e
    except OSError as e:
        raise SourceFileError(f"Could not write '{path}': {e.strerror}") from e
    logger.debug("wrote %d bytes to %s", len(data), path)


def create_exclusive(path: str, data: bytes) -> None:
    """Write `data` to a new file at `path`, failing if it already exists.

    Raises:
        SourceFileError if the file exists or can't be created
    """
    try:
        with open(path, "xb") as f:
            f.write(data)
    except FileExistsError:
        raise SourceFileError(f"This file already exists: {path}") from None
    except PermissionError as e:
        raise SourceFileError(
            f"Permission denied writing '{path}'. You must run this command as root."
        ) from e
    except OSError as e:
        raise SourceFileError(f"Could not write '{path}': {e.strerror}") from e
