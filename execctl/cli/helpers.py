# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Shared helpers for CLI commands."""

import functools
import sys
from typing import Callable

import click
from rich.console import Console
from rich.panel import Panel

from execctl.errors import ExecError

console = Console()
_err_console = Console(stderr=True)


def show_error_panel(title: str, message: str, hint: str = None) -> None:
    """Display a formatted error panel on stderr."""
    content = message
    if hint:
        content += f"\n\n[blue]Hint:[/blue] {hint}"
    _err_console.print(Panel(content, title=f"[red]{title}[/red]", border_style="red"))


def handle_errors(func: Callable) -> Callable:
    """Decorator that wraps CLI commands with standard error handling.

    - ExecError: panel titled after the error kind, with hint if provided
    - ConnectionError: daemon not reachable, with a hint to start it
    - ClickException: left to click
    - Other exceptions: generic error panel

    Usage:
        @cli.command()
        @handle_errors
        def my_command():
            ...
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SystemExit:
            raise
        except ExecError as exc:
            title = exc.kind.replace("_", " ").title()
            show_error_panel(title, str(exc), exc.hint)
            sys.exit(1)
        except ConnectionError as exc:
            show_error_panel("Daemon Unavailable", str(exc), "start it with: execctl serve")
            sys.exit(1)
        except click.ClickException:
            raise
        except Exception as exc:
            show_error_panel("Error", str(exc))
            sys.exit(1)

    return wrapper
