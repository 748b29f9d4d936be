# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for execctl/core/attach.py"""

import asyncio
import socket

import pytest

from execctl.core.attach import AttachMultiplexer, FramedMode, RawMode, mode_for
from execctl.core.launcher import ProcessLauncher
from execctl.errors import InvalidStateError, NotFoundError
from execctl.models.exec_config import ExecConfig
from execctl.protocol import StreamType, demux, encode_frame


async def connection_pair():
    """(server reader, server writer, client reader, client writer)"""
    left, right = socket.socketpair()
    server = await asyncio.open_connection(sock=left)
    client = await asyncio.open_connection(sock=right)
    return server + client


async def start(registry, **config):
    session_id = registry.create("web", ExecConfig(**config))
    await ProcessLauncher(registry).start(session_id)
    return session_id


class TestModes:
    """Test raw vs framed encoding"""

    def test_mode_for(self):
        assert isinstance(mode_for(True), RawMode)
        assert isinstance(mode_for(False), FramedMode)

    def test_raw_passthrough(self):
        assert RawMode().encode(StreamType.STDOUT, b"\x1b[0m") == b"\x1b[0m"

    def test_framed(self):
        assert FramedMode().encode(StreamType.STDOUT, b"x") == encode_frame(StreamType.STDOUT, b"x")


class TestAttachRules:
    """Test who may attach when"""

    def test_unknown_session(self, registry):
        with pytest.raises(NotFoundError):
            AttachMultiplexer(registry).attach("missing", None, None)

    def test_not_started(self, registry):
        session_id = registry.create("web", ExecConfig(cmd=["true"]))

        with pytest.raises(InvalidStateError):
            AttachMultiplexer(registry).attach(session_id, None, None)

    @pytest.mark.asyncio
    async def test_second_attach_rejected(self, registry):
        session_id = await start(registry, cmd=["sh", "-c", "sleep 0.2"])
        multiplexer = AttachMultiplexer(registry, flush_timeout=1.0)
        sr, sw, cr, cw = await connection_pair()

        connection = multiplexer.attach(session_id, sr, sw)
        with pytest.raises(InvalidStateError, match="already has an attach"):
            multiplexer.attach(session_id, sr, sw)

        await asyncio.wait_for(multiplexer.serve(connection), 5)
        cw.close()


class TestAttachStreams:
    """Test data flow through a live attach"""

    @pytest.mark.asyncio
    async def test_stdout_and_stderr_are_framed_separately(self, registry):
        session_id = await start(registry, cmd=["sh", "-c", "echo out; echo err >&2"])
        multiplexer = AttachMultiplexer(registry, flush_timeout=1.0)
        sr, sw, cr, cw = await connection_pair()

        serve = asyncio.create_task(multiplexer.serve(multiplexer.attach(session_id, sr, sw)))
        data = await asyncio.wait_for(cr.read(), 5)
        await serve

        assert demux(data) == (b"out\n", b"err\n")
        assert registry.get(session_id).exit_code == 0
        cw.close()

    @pytest.mark.asyncio
    async def test_half_close_flushes_output(self, registry):
        session_id = await start(
            registry, cmd=["sh", "-c", "cat && echo closeIO"], attach_stdin=True
        )
        multiplexer = AttachMultiplexer(registry, flush_timeout=1.0)
        sr, sw, cr, cw = await connection_pair()
        connection = multiplexer.attach(session_id, sr, sw)
        serve = asyncio.create_task(multiplexer.serve(connection))

        cw.write(b"hello\n")
        await cw.drain()
        cw.write_eof()
        data = await asyncio.wait_for(cr.read(), 3)
        await serve

        assert connection.input_closed.is_set()
        assert demux(data)[0] == b"hello\ncloseIO\n"
        cw.close()

    @pytest.mark.asyncio
    async def test_stderr_not_attached(self, registry):
        session_id = await start(
            registry, cmd=["sh", "-c", "echo out; echo err >&2"], attach_stderr=False
        )
        multiplexer = AttachMultiplexer(registry, flush_timeout=1.0)
        sr, sw, cr, cw = await connection_pair()

        serve = asyncio.create_task(multiplexer.serve(multiplexer.attach(session_id, sr, sw)))
        data = await asyncio.wait_for(cr.read(), 5)
        await serve

        assert demux(data) == (b"out\n", b"")
        cw.close()

    @pytest.mark.asyncio
    async def test_tty_output_is_raw(self, registry):
        session_id = await start(registry, cmd=["sh", "-c", "echo raw"], tty=True)
        multiplexer = AttachMultiplexer(registry, flush_timeout=1.0)
        sr, sw, cr, cw = await connection_pair()

        serve = asyncio.create_task(multiplexer.serve(multiplexer.attach(session_id, sr, sw)))
        data = await asyncio.wait_for(cr.read(), 5)
        await serve

        assert data == b"raw\r\n"
        cw.close()

    @pytest.mark.asyncio
    async def test_client_disconnect_keeps_process_draining(self, registry):
        session_id = await start(
            registry, cmd=["sh", "-c", "sleep 0.3; head -c 200000 /dev/zero"]
        )
        multiplexer = AttachMultiplexer(registry, flush_timeout=1.0)
        sr, sw, cr, cw = await connection_pair()
        serve = asyncio.create_task(multiplexer.serve(multiplexer.attach(session_id, sr, sw)))

        cw.close()
        await asyncio.wait_for(serve, 5)

        session = registry.get(session_id)
        assert await asyncio.wait_for(session.wait_exited(), 5) == 0
        await multiplexer.close()


class TestDetached:
    """Test detached starts"""

    @pytest.mark.asyncio
    async def test_run_detached_discards_output(self, registry):
        session_id = await start(registry, cmd=["sh", "-c", "head -c 200000 /dev/zero; exit 4"])
        multiplexer = AttachMultiplexer(registry)

        multiplexer.run_detached(session_id)

        assert await asyncio.wait_for(registry.get(session_id).wait_exited(), 5) == 4
        with pytest.raises(InvalidStateError):
            multiplexer.attach(session_id, None, None)
        await multiplexer.close()
