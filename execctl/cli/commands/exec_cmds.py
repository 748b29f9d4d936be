# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Exec session commands (exec/inspect/ls/resize)."""

import asyncio
import json
import os
import shutil
import stat
import sys
import termios
import tty as tty_mod
from typing import List, Optional, Tuple

import click
from rich.table import Table

from execctl.cli import cli
from execctl.cli.helpers import console, handle_errors
from execctl.client import ExecClient, HijackedConnection
from execctl.protocol import FrameDecoder, StreamType


async def _forward_stdin(conn: HijackedConnection) -> None:
    """Copy our stdin to the session, then half-close."""
    loop = asyncio.get_running_loop()
    fd = sys.stdin.fileno()
    if stat.S_ISREG(os.fstat(fd).st_mode):
        await conn.write(sys.stdin.buffer.read())
        await conn.close_write()
        return

    reader = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
    )
    try:
        while True:
            data = await reader.read(4096)
            if not data:
                break
            await conn.write(data)
        await conn.close_write()
    finally:
        transport.close()


async def _copy_output(conn: HijackedConnection) -> None:
    decoder = None if conn.tty else FrameDecoder()
    while True:
        data = await conn.read()
        if not data:
            return
        if decoder is None:
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
            continue
        for stream, payload in decoder.feed(data):
            target = sys.stderr if stream is StreamType.STDERR else sys.stdout
            target.buffer.write(payload)
            target.buffer.flush()


async def _run_exec(
    client: ExecClient,
    container: str,
    cmd: List[str],
    interactive: bool,
    tty: bool,
    detach: bool,
    env: List[str],
    workdir: str,
    user: str,
) -> int:
    console_size: Optional[Tuple[int, int]] = None
    if tty and sys.stdout.isatty():
        size = shutil.get_terminal_size()
        console_size = (size.lines, size.columns)

    exec_id = await client.exec_create(
        container,
        cmd,
        env=env,
        working_dir=workdir,
        user=user,
        tty=tty,
        attach_stdin=interactive and not detach,
        attach_stdout=not detach,
        attach_stderr=not detach,
        console_size=console_size,
    )
    if detach:
        await client.exec_start(exec_id, detach=True)
        click.echo(exec_id)
        return 0

    conn = await client.exec_start(exec_id)
    async with conn:
        forward = asyncio.create_task(_forward_stdin(conn)) if interactive else None
        try:
            await _copy_output(conn)
        finally:
            if forward is not None:
                forward.cancel()
                await asyncio.gather(forward, return_exceptions=True)

    info = await client.exec_inspect(exec_id)
    return info.get("exit_code") or 0


@cli.command(
    "exec",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.option("-i", "--interactive", is_flag=True, help="Keep stdin attached")
@click.option("-t", "--tty", is_flag=True, help="Allocate a pseudo-terminal")
@click.option("-d", "--detach", is_flag=True, help="Run in the background, print the exec id")
@click.option("-e", "--env", multiple=True, help="KEY=VALUE, repeatable")
@click.option("-w", "--workdir", default="", help="Working directory inside the container")
@click.option("-u", "--user", default="", help="uid[:gid] or name[:group]")
@click.argument("container")
@click.argument("cmd", nargs=-1, required=True, type=click.UNPROCESSED)
@handle_errors
def exec_command(interactive, tty, detach, env, workdir, user, container, cmd):
    """Run CMD inside a running CONTAINER."""
    client = ExecClient()
    use_raw = tty and interactive and sys.stdin.isatty()
    saved = termios.tcgetattr(sys.stdin.fileno()) if use_raw else None
    try:
        if use_raw:
            tty_mod.setraw(sys.stdin.fileno())
        code = asyncio.run(
            _run_exec(client, container, list(cmd), interactive, tty, detach, list(env), workdir, user)
        )
    finally:
        if saved is not None:
            termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, saved)
    sys.exit(code)


@cli.command("inspect")
@click.argument("exec_id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@handle_errors
def inspect(exec_id, as_json):
    """Show the state of an exec session."""
    info = asyncio.run(ExecClient().exec_inspect(exec_id))
    if as_json:
        click.echo(json.dumps(info, indent=2))
        return

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("ID", info["id"])
    table.add_row("Container", info["container_id"][:12])
    table.add_row("State", info["state"])
    table.add_row("Exit code", "-" if info["exit_code"] is None else str(info["exit_code"]))
    table.add_row("PID", "-" if info["pid"] is None else str(info["pid"]))
    process = info.get("process_config") or {}
    if process:
        table.add_row("Command", " ".join([process["entrypoint"], *process["arguments"]]))
        table.add_row("User", process["user"] or "(default)")
        table.add_row("Working dir", process["working_dir"])
        table.add_row("TTY", "yes" if process["tty"] else "no")
    console.print(table)


@cli.command("ls")
@click.argument("container")
@handle_errors
def list_execs(container):
    """List exec ids of a container."""
    for exec_id in asyncio.run(ExecClient().exec_list(container)):
        click.echo(exec_id)


@cli.command("resize")
@click.argument("exec_id")
@click.argument("height", type=int)
@click.argument("width", type=int)
@handle_errors
def resize(exec_id, height, width):
    """Resize the pty of a running tty session."""
    asyncio.run(ExecClient().exec_resize(exec_id, height, width))
