# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Async access to a launched process's stdio.

PipeStreams wraps the pipes of an asyncio subprocess (non-tty sessions).
PtyStreams wraps the master side of a pseudo-terminal (tty sessions);
stdout and stderr are merged there, so only STDOUT is readable.

read() returns b"" once the stream has reached end-of-file.
"""

import asyncio
import errno
import fcntl
import logging
import os
import select
import struct
import termios
from typing import Dict, Optional, Tuple

from execctl.protocol import StreamType

logger = logging.getLogger(__name__)

EOT = b"\x04"


class ProcessStreams:
    readable: Tuple[StreamType, ...] = ()
    writable = False

    async def read(self, stream: StreamType) -> bytes:
        raise NotImplementedError

    async def write(self, data: bytes) -> bool:
        raise NotImplementedError

    async def close_input(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PipeStreams(ProcessStreams):
    """stdin/stdout/stderr pipes of an asyncio.subprocess.Process."""

    def __init__(self, process: asyncio.subprocess.Process, chunk_size: int = 32 * 1024):
        self.process = process
        self.chunk_size = chunk_size
        self._readers: Dict[StreamType, asyncio.StreamReader] = {}
        if process.stdout is not None:
            self._readers[StreamType.STDOUT] = process.stdout
        if process.stderr is not None:
            self._readers[StreamType.STDERR] = process.stderr
        self.readable = tuple(self._readers)
        self.writable = process.stdin is not None

    async def read(self, stream: StreamType) -> bytes:
        reader = self._readers.get(stream)
        if reader is None:
            return b""
        return await reader.read(self.chunk_size)

    async def write(self, data: bytes) -> bool:
        """Forward input. False once the process no longer reads stdin."""
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            return False
        try:
            stdin.write(data)
            await stdin.drain()
            return True
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin of pid {self.process.pid} closed: {e}")
            return False

    async def close_input(self) -> None:
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            return
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass


class PtyStreams(ProcessStreams):
    """Master side of the pty given to a tty session."""

    readable = (StreamType.STDOUT,)
    writable = True

    def __init__(self, master_fd: int, chunk_size: int = 32 * 1024):
        self.master_fd = master_fd
        self.chunk_size = chunk_size
        self._closed = False

    def _blocking_read(self) -> Optional[bytes]:
        """Read with a short timeout. None at EOF, b"" when idle."""
        if self._closed:
            return None
        try:
            ready, _, _ = select.select([self.master_fd], [], [], 0.1)
            if not ready:
                return b""
            data = os.read(self.master_fd, self.chunk_size)
            return data or None
        except OSError as e:
            # EIO: every slave fd is closed, i.e. the process is gone
            if e.errno in (errno.EIO, errno.EBADF):
                return None
            raise

    async def read(self, stream: StreamType) -> bytes:
        if stream is not StreamType.STDOUT:
            return b""
        loop = asyncio.get_running_loop()
        while True:
            data = await loop.run_in_executor(None, self._blocking_read)
            if data is None:
                return b""
            if data:
                return data

    async def write(self, data: bytes) -> bool:
        if self._closed:
            return False
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_all, data)
            return True
        except OSError as e:
            logger.debug(f"pty write failed: {e}")
            return False

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self.master_fd, view)
            view = view[written:]

    async def close_input(self) -> None:
        # A pty cannot be half-closed; EOT makes a canonical-mode read return EOF
        await self.write(EOT)

    def resize(self, height: int, width: int) -> None:
        fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, struct.pack("HHHH", height, width, 0, 0))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            os.close(self.master_fd)
        except OSError:
            pass
