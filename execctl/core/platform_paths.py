# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Working directory rendering per container platform.

The launcher asks path_style_for(platform) once and never branches on the
platform itself.
"""

import posixpath
import re

from execctl.errors import BadRequestError

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


class PathStyle:
    name = ""

    def render(self, path: str) -> str:
        raise NotImplementedError


class PosixPathStyle(PathStyle):
    """/tmp stays /tmp."""

    name = "posix"

    def render(self, path: str) -> str:
        if not path.startswith("/"):
            raise BadRequestError(
                f"the working directory '{path}' is invalid, it needs to be an absolute path"
            )
        return posixpath.normpath(path).replace("//", "/")


class WindowsPathStyle(PathStyle):
    """/tmp becomes C:/tmp; separators are always forward slashes."""

    name = "windows"

    def __init__(self, system_drive: str = "C:"):
        self.system_drive = system_drive

    def render(self, path: str) -> str:
        path = path.replace("\\", "/")
        if _DRIVE_PATTERN.match(path):
            return path[0].upper() + path[1:]
        if not path.startswith("/"):
            raise BadRequestError(
                f"the working directory '{path}' is invalid, it needs to be an absolute path"
            )
        return f"{self.system_drive}{posixpath.normpath(path)}".replace("//", "/")


_POSIX = PosixPathStyle()
_WINDOWS = WindowsPathStyle()


def path_style_for(platform: str) -> PathStyle:
    """Pick the style for a platform string such as "linux" or "windows/amd64"."""
    if platform.lower().split("/", 1)[0] == "windows":
        return _WINDOWS
    return _POSIX
