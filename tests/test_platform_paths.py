# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for execctl/core/platform_paths.py"""

import pytest

from execctl.core.platform_paths import PosixPathStyle, WindowsPathStyle, path_style_for
from execctl.errors import BadRequestError


class TestPosixPathStyle:
    """Test linux working directory rendering"""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/tmp", "/tmp"),
            ("/tmp/", "/tmp"),
            ("//tmp", "/tmp"),
            ("/srv/app/../data", "/srv/data"),
            ("/", "/"),
        ],
    )
    def test_render(self, path, expected):
        assert PosixPathStyle().render(path) == expected

    def test_relative_path_rejected(self):
        with pytest.raises(BadRequestError, match="absolute path"):
            PosixPathStyle().render("tmp")


class TestWindowsPathStyle:
    """Test windows working directory rendering"""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/tmp", "C:/tmp"),
            ("\\tmp", "C:/tmp"),
            ("c:\\Users\\app", "C:/Users/app"),
            ("D:/data", "D:/data"),
        ],
    )
    def test_render(self, path, expected):
        assert WindowsPathStyle().render(path) == expected

    def test_other_system_drive(self):
        assert WindowsPathStyle("E:").render("/tmp") == "E:/tmp"

    def test_relative_path_rejected(self):
        with pytest.raises(BadRequestError):
            WindowsPathStyle().render("tmp")


class TestPathStyleFor:
    """Test style selection by platform string"""

    @pytest.mark.parametrize(
        "platform,name",
        [
            ("linux", "posix"),
            ("linux/arm64", "posix"),
            ("windows", "windows"),
            ("Windows/amd64", "windows"),
        ],
    )
    def test_selection(self, platform, name):
        assert path_style_for(platform).name == name
