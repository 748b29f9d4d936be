# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Attach multiplexer: binds a client connection to a session's stdio.

Each direction is its own task. Output tasks (one per attached output
stream) copy process output to the client until EOF. The input task copies
client bytes to stdin; when the client closes its write half it closes
stdin and sets ``input_closed``, without touching the output side. The
connection is closed by the server only once every output stream hit EOF
and the process exited, so output produced in reaction to end-of-input
still reaches the client.
"""

import asyncio
import logging
from typing import List, Optional, Set

from execctl.core.registry import SessionRegistry
from execctl.core.state import ExecSession
from execctl.core.streams import ProcessStreams
from execctl.errors import InvalidStateError
from execctl.protocol import StreamType, encode_frame

logger = logging.getLogger(__name__)


class RawMode:
    """tty sessions: bytes pass through untouched."""

    name = "raw"

    def encode(self, stream: StreamType, data: bytes) -> bytes:
        return data


class FramedMode:
    """Non-tty sessions: every chunk carries a stream header."""

    name = "framed"

    def encode(self, stream: StreamType, data: bytes) -> bytes:
        return encode_frame(stream, data)


def mode_for(tty: bool):
    return RawMode() if tty else FramedMode()


class AttachConnection:
    """One live attach between a client connection and a running session."""

    def __init__(
        self,
        session: ExecSession,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        flush_timeout: float = 2.0,
        chunk_size: int = 32 * 1024,
    ):
        self.session = session
        self.streams: ProcessStreams = session.streams
        self.mode = mode_for(session.config.tty)
        self.reader = reader
        self.writer = writer
        self.flush_timeout = flush_timeout
        self.chunk_size = chunk_size

        self.input_closed = asyncio.Event()
        self.disconnected = asyncio.Event()
        self._write_lock = asyncio.Lock()

    def _output_streams(self) -> List[StreamType]:
        config = self.session.config
        wanted = []
        if config.attach_stdout or config.tty:
            wanted.append(StreamType.STDOUT)
        if config.attach_stderr and not config.tty:
            wanted.append(StreamType.STDERR)
        return [s for s in wanted if s in self.streams.readable]

    async def _send(self, data: bytes) -> None:
        async with self._write_lock:
            self.writer.write(data)
            await self.writer.drain()

    async def _pump_output(self, stream: StreamType) -> None:
        while True:
            data = await self.streams.read(stream)
            if not data:
                return
            try:
                await self._send(self.mode.encode(stream, data))
            except (ConnectionError, OSError) as e:
                logger.debug(f"exec {self.session.id[:12]}: client went away: {e}")
                self.disconnected.set()
                return

    async def _pump_input(self) -> None:
        try:
            while True:
                try:
                    data = await self.reader.read(self.chunk_size)
                except (ConnectionError, OSError):
                    self.disconnected.set()
                    break
                if not data:
                    logger.debug(f"exec {self.session.id[:12]}: client closed stdin")
                    break
                if not await self.streams.write(data):
                    break
        finally:
            self.input_closed.set()
            await self.streams.close_input()

    async def run(self) -> None:
        """Serve the attach until the process is done or the client is gone."""
        outputs = [asyncio.create_task(self._pump_output(s)) for s in self._output_streams()]
        tasks: Set[asyncio.Task] = set(outputs)
        if self.session.config.attach_stdin and self.streams.writable:
            tasks.add(asyncio.create_task(self._pump_input()))

        exited = asyncio.create_task(self.session.wait_exited())
        gone = asyncio.create_task(self.disconnected.wait())
        drained: Optional[asyncio.Task] = None
        if outputs:
            drained = asyncio.create_task(asyncio.wait(outputs))
            tasks.add(drained)
        try:
            if drained is not None:
                await asyncio.wait({drained, exited, gone}, return_when=asyncio.FIRST_COMPLETED)
                if not drained.done() and not gone.done():
                    # process is gone; whatever is still buffered gets a bounded window
                    try:
                        await asyncio.wait_for(asyncio.shield(drained), self.flush_timeout)
                    except asyncio.TimeoutError:
                        logger.warning(
                            f"exec {self.session.id[:12]}: output still open "
                            f"{self.flush_timeout}s after exit, closing"
                        )
            if not gone.done():
                await asyncio.wait({exited, gone}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = tasks | {exited, gone}
            for task in pending:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"exec {self.session.id[:12]}: attach task failed: {result!r}")
            await self._close_writer()

    async def _close_writer(self) -> None:
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class AttachMultiplexer:
    """Binds connections to sessions and keeps unattached output flowing."""

    def __init__(
        self,
        registry: SessionRegistry,
        flush_timeout: float = 2.0,
        chunk_size: int = 32 * 1024,
    ):
        self.registry = registry
        self.flush_timeout = flush_timeout
        self.chunk_size = chunk_size
        self._background: Set[asyncio.Task] = set()

    def attach(
        self,
        session_id: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> AttachConnection:
        """Reserve the session's single attach.

        Raises:
            NotFoundError: unknown session
            InvalidStateError: session not running, or already attached
        """
        session = self.registry.get(session_id)
        session.claim_attach()
        if session.streams is None:
            raise InvalidStateError(f"exec {session_id[:12]} has no process streams")
        return AttachConnection(session, reader, writer, self.flush_timeout, self.chunk_size)

    async def serve(self, connection: AttachConnection) -> None:
        """Run an attach; afterwards keep draining so the process never blocks."""
        session = connection.session
        logger.info(f"Attached to exec {session.id[:12]} ({connection.mode.name})")
        try:
            await connection.run()
        finally:
            logger.info(f"Detached from exec {session.id[:12]}")
            self.release(session)

    def release(self, session: ExecSession) -> None:
        """Give up a claimed attach: drain a live process, else free its streams."""
        if session.running:
            self._spawn_drain(session)
        else:
            session.streams.close()

    def run_detached(self, session_id: str) -> None:
        """Detached start: nobody attaches, output is discarded."""
        session = self.registry.get(session_id)
        session.claim_attach()
        if not session.config.tty:
            self._track(asyncio.create_task(session.streams.close_input()))
        self._spawn_drain(session)

    def _spawn_drain(self, session: ExecSession) -> None:
        self._track(asyncio.create_task(self._drain(session)))

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _drain(self, session: ExecSession) -> None:
        streams = session.streams

        async def discard(stream: StreamType) -> None:
            while await streams.read(stream):
                pass

        try:
            await asyncio.gather(*(discard(s) for s in streams.readable))
            await session.wait_exited()
        finally:
            streams.close()

    async def close(self) -> None:
        """Cancel background drains (daemon shutdown)."""
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
