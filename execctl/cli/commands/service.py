# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Daemon commands: run execctld in the foreground and check it is alive."""

import asyncio
from pathlib import Path

import click

from execctl.cli import cli
from execctl.cli.helpers import console, handle_errors
from execctl.host_config import HostConfig, get_config


@cli.command("serve")
@click.option(
    "--socket",
    "socket_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Control socket path (default from config)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default ~/.config/execctl/config.yml)",
)
@handle_errors
def serve(socket_path, config_path):
    """Run the execctld daemon in the foreground."""
    from execctl import execctld
    from execctl.utils.logging import log_startup_info

    config = HostConfig(config_path) if config_path else get_config()
    log_startup_info()
    execctld.run(config, socket_path)


@cli.command("ping")
@handle_errors
def ping():
    """Check that the daemon answers."""
    from execctl.client import ExecClient

    info = asyncio.run(ExecClient().ping())
    console.print(
        f"[green]✓ execctld {info.get('version')} ({info.get('sessions', 0)} sessions)[/green]"
    )
