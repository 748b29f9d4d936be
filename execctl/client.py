# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Async client for the execctld socket.

Every call opens its own connection. exec_start without detach keeps the
connection and hands it back as a HijackedConnection carrying the attach
stream.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from execctl.errors import ClientTimeoutError
from execctl.protocol import ControlChannel, demux


@dataclass
class ExecResult:
    """Outcome of exec_run."""

    exit_code: int
    stdout: bytes
    stderr: bytes

    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


class HijackedConnection:
    """The attach stream of a started exec session.

    close_write() half-closes the connection: the process sees end-of-input
    while its output keeps arriving until the daemon closes its side.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, tty: bool):
        self.reader = reader
        self.writer = writer
        self.tty = tty

    async def read(self, n: int = 32 * 1024) -> bytes:
        return await self.reader.read(n)

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def close_write(self) -> None:
        if self.writer.can_write_eof():
            self.writer.write_eof()

    async def read_all(self, timeout: Optional[float] = None) -> bytes:
        """Read until the daemon closes the stream.

        A timeout only abandons this wait; the remote process keeps running.
        """
        try:
            return await asyncio.wait_for(self.reader.read(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ClientTimeoutError(f"no end of stream within {timeout}s")

    async def read_demuxed(self, timeout: Optional[float] = None) -> Tuple[bytes, bytes]:
        """Read everything and split it into (stdout, stderr)."""
        data = await self.read_all(timeout)
        if self.tty:
            return data, b""
        return demux(data)

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def __aenter__(self) -> "HijackedConnection":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class ExecClient:
    """Talks to one execctld instance."""

    def __init__(self, socket_path: Optional[Path] = None, timeout: float = 30.0):
        if socket_path is None:
            from execctl.host_config import get_config

            socket_path = get_config().socket_path
        self.socket_path = Path(socket_path)
        self.timeout = timeout

    async def _open(self) -> ControlChannel:
        try:
            reader, writer = await asyncio.open_unix_connection(str(self.socket_path))
        except (FileNotFoundError, ConnectionRefusedError) as e:
            raise ConnectionError(f"execctld is not reachable at {self.socket_path}: {e}") from e
        return ControlChannel(reader, writer, peer="execctld")

    async def _request(self, msg_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        channel = await self._open()
        try:
            return await channel.request(msg_type, payload, timeout=self.timeout)
        finally:
            channel.close()

    async def ping(self) -> Dict[str, Any]:
        return await self._request("ping", {})

    async def exec_create(
        self,
        container: str,
        cmd: Sequence[str],
        env: Sequence[str] = (),
        working_dir: str = "",
        user: str = "",
        tty: bool = False,
        attach_stdin: bool = False,
        attach_stdout: bool = True,
        attach_stderr: bool = True,
        console_size: Optional[Tuple[int, int]] = None,
    ) -> str:
        data = await self._request(
            "exec_create",
            {
                "container": container,
                "cmd": list(cmd),
                "env": list(env),
                "working_dir": working_dir,
                "user": user,
                "tty": tty,
                "attach_stdin": attach_stdin,
                "attach_stdout": attach_stdout,
                "attach_stderr": attach_stderr,
                "console_size": list(console_size) if console_size else None,
            },
        )
        return data["id"]

    async def exec_inspect(self, exec_id: str) -> Dict[str, Any]:
        return await self._request("exec_inspect", {"id": exec_id})

    async def exec_list(self, container: str) -> List[str]:
        data = await self._request("exec_list", {"container": container})
        return data.get("ids", [])

    async def exec_resize(self, exec_id: str, height: int, width: int) -> None:
        await self._request("exec_resize", {"id": exec_id, "height": height, "width": width})

    async def exec_start(self, exec_id: str, detach: bool = False) -> Optional[HijackedConnection]:
        """Start a session; unless detached, return its attach stream.

        Whether the stream is raw or framed follows the session's own tty
        setting as reported by the daemon.
        """
        channel = await self._open()
        try:
            data = await channel.request(
                "exec_start", {"id": exec_id, "detach": detach}, timeout=self.timeout
            )
        except BaseException:
            channel.close()
            raise
        if detach:
            channel.close()
            return None
        return HijackedConnection(channel.reader, channel.writer, bool(data.get("tty")))

    async def exec_run(
        self,
        container: str,
        cmd: Sequence[str],
        timeout: Optional[float] = None,
        **create_options: Any,
    ) -> ExecResult:
        """Run a command to completion and collect its output and exit code."""
        create_options.setdefault("attach_stdout", True)
        create_options.setdefault("attach_stderr", True)
        exec_id = await self.exec_create(container, cmd, **create_options)
        conn = await self.exec_start(exec_id)
        async with conn:
            if create_options.get("attach_stdin"):
                await conn.close_write()
            stdout, stderr = await conn.read_demuxed(timeout)
        info = await self.exec_inspect(exec_id)
        return ExecResult(exit_code=info["exit_code"], stdout=stdout, stderr=stderr)
