# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Wire formats spoken on the execctld socket.

Control messages:
- Framing: 4-byte big-endian length prefix + UTF-8 JSON
- Envelope: {kind, type, id, ts, payload}
- kind: "request" or "response"; responses carry {ok, data?, error?, error_kind?}

Attach streams (after a successful exec_start without detach):
- tty: raw bytes, no framing
- non-tty output: [stream type:1][0:3][length:4 big-endian][payload]
  stream type 1 = stdout, 2 = stderr; input stays unframed
"""

from __future__ import annotations

import asyncio
import json
import struct
import time
import uuid
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from execctl.errors import ExecError, error_from_kind

MAX_MESSAGE_SIZE = 5 * 1024 * 1024  # 5MB max single control message
FRAME_HEADER = struct.Struct(">B3xI")
FRAME_HEADER_SIZE = FRAME_HEADER.size


class StreamType(IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2


def encode_frame(stream: StreamType, payload: bytes) -> bytes:
    return FRAME_HEADER.pack(int(stream), len(payload)) + payload


class FrameDecoder:
    """Incremental decoder for the multiplexed output stream.

    Feed arbitrary chunks; complete frames come out in order.
    """

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[Tuple[StreamType, bytes]]:
        self._buffer.extend(data)
        frames = []
        while len(self._buffer) >= FRAME_HEADER_SIZE:
            stream, length = FRAME_HEADER.unpack_from(self._buffer)
            end = FRAME_HEADER_SIZE + length
            if len(self._buffer) < end:
                break
            payload = bytes(self._buffer[FRAME_HEADER_SIZE:end])
            del self._buffer[:end]
            try:
                frames.append((StreamType(stream), payload))
            except ValueError:
                raise ExecError(f"unknown stream type {stream} in attach stream")
        return frames

    @property
    def pending(self) -> int:
        """Bytes of an incomplete trailing frame."""
        return len(self._buffer)


def demux(data: bytes) -> Tuple[bytes, bytes]:
    """Split a complete multiplexed capture into (stdout, stderr)."""
    decoder = FrameDecoder()
    out, err = bytearray(), bytearray()
    for stream, payload in decoder.feed(data):
        if stream is StreamType.STDERR:
            err.extend(payload)
        else:
            out.extend(payload)
    return bytes(out), bytes(err)


class ControlChannel:
    """Length-prefixed JSON messages over one stream connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer: str = "unknown",
    ):
        self.reader = reader
        self.writer = writer
        self.peer = peer
        self._write_lock = asyncio.Lock()
        self._closed = False

    async def send(self, message: dict) -> None:
        """Send a message with length prefix."""
        if self._closed:
            raise ConnectionError("Control channel closed")

        if "ts" not in message:
            message["ts"] = time.time()

        data = json.dumps(message, ensure_ascii=False).encode("utf-8")
        if len(data) > MAX_MESSAGE_SIZE:
            raise ValueError(f"Message too large: {len(data)} bytes")

        async with self._write_lock:
            try:
                self.writer.write(struct.pack(">I", len(data)) + data)
                await self.writer.drain()
            except (BrokenPipeError, ConnectionResetError, OSError) as e:
                self._closed = True
                raise ConnectionError(f"Failed to send: {e}")

    async def recv(self) -> Optional[dict]:
        """Receive a message. Returns None on EOF or a broken message."""
        if self._closed:
            return None

        try:
            header = await self.reader.readexactly(4)
            length = struct.unpack(">I", header)[0]
            if length > MAX_MESSAGE_SIZE:
                raise ConnectionError(f"Message too large: {length} bytes from {self.peer}")
            if length == 0:
                return {}
            data = await self.reader.readexactly(length)
            return json.loads(data.decode("utf-8"))
        except asyncio.IncompleteReadError:
            self._closed = True
            return None
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConnectionError(f"Invalid message from {self.peer}: {e}")
        except (BrokenPipeError, ConnectionResetError):
            self._closed = True
            return None

    async def request(self, msg_type: str, payload: dict, timeout: float = 30.0) -> Dict[str, Any]:
        """Send a request and wait for its response; raises the remote error."""
        request_id = str(uuid.uuid4())
        await self.send(
            {
                "kind": "request",
                "type": msg_type,
                "id": request_id,
                "payload": payload,
            }
        )
        try:
            message = await asyncio.wait_for(self.recv(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Request {msg_type} timed out after {timeout}s")

        if message is None:
            raise ConnectionError(f"Connection closed while waiting for {msg_type}")
        if message.get("id") != request_id:
            raise ConnectionError(f"Unexpected response id for {msg_type}")

        response = message.get("payload", {})
        if not response.get("ok"):
            raise error_from_kind(response.get("error_kind"), response.get("error", "unknown error"))
        return response.get("data") or {}

    async def respond(
        self,
        request_id: Optional[str],
        msg_type: str,
        ok: bool,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> None:
        """Send a response to a request."""
        payload: Dict[str, Any] = {"ok": ok}
        if error:
            payload["error"] = error
            payload["error_kind"] = error_kind
        if data:
            payload["data"] = data

        await self.send(
            {
                "kind": "response",
                "type": msg_type,
                "id": request_id,
                "payload": payload,
            }
        )

    def close(self) -> None:
        self._closed = True
        self.writer.close()
