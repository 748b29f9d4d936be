# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""execctl CLI package."""

import click

from execctl import __version__
from execctl.utils.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="execctl")
@click.option("--debug", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(ctx, debug):
    """execctl - Run and attach to processes inside running containers."""
    configure_logging(debug=debug, daemon=ctx.invoked_subcommand == "serve")


def main():
    """Main entry point."""
    cli()


from execctl.cli.commands import exec_cmds  # noqa: E402,F401
from execctl.cli.commands import service  # noqa: E402,F401
