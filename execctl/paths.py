# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Centralized host path definitions for execctl.

Usage:
    from execctl.paths import HostPaths

    config_file = HostPaths.config_file()
    socket = HostPaths.execctld_socket()
"""

import os
import platform
from pathlib import Path


class HostPaths:
    """Paths on the host machine where the daemon and CLI run."""

    @staticmethod
    def config_dir() -> Path:
        """~/.config/execctl/"""
        return Path.home() / ".config" / "execctl"

    @staticmethod
    def config_file() -> Path:
        """~/.config/execctl/config.yml (or $EXECCTL_CONFIG)"""
        env_config = os.getenv("EXECCTL_CONFIG")
        if env_config:
            return Path(env_config)
        return HostPaths.config_dir() / "config.yml"

    @staticmethod
    def state_dir() -> Path:
        """~/.local/state/execctl/"""
        return Path.home() / ".local" / "state" / "execctl"

    @staticmethod
    def log_dir() -> Path:
        """~/.local/state/execctl/logs/"""
        return HostPaths.state_dir() / "logs"

    @staticmethod
    def runtime_dir() -> Path:
        """XDG runtime dir (platform-aware: macOS vs Linux)."""
        xdg = os.getenv("XDG_RUNTIME_DIR")
        if xdg:
            return Path(xdg)
        if platform.system() == "Darwin":
            # macOS: no /run/user
            return Path(os.getenv("TMPDIR", "/tmp").rstrip("/"))
        return Path(f"/run/user/{os.getuid()}")

    @staticmethod
    def execctld_dir() -> Path:
        """Runtime directory for the execctld daemon."""
        return HostPaths.runtime_dir() / "execctld"

    @staticmethod
    def execctld_socket() -> Path:
        """Main execctld control socket."""
        return HostPaths.execctld_dir() / "execctld.sock"


class ContainerDefaults:
    """Values the runtime applies when neither the container nor the request sets them."""

    PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
    TERM = "xterm"
    WORKING_DIR = "/"
    PLATFORM = "linux"
