# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""execctl host daemon (execctld).

Serves the exec API on a Unix socket:
- exec_create / exec_inspect / exec_list: session registry
- exec_start: launch, then either detach or hijack the connection as the
  attach stream
- exec_resize: pty window size of tty sessions
- ping: liveness and version
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from execctl import __version__
from execctl.core.attach import AttachMultiplexer
from execctl.core.containers import ContainerSource, container_source_from_config
from execctl.core.launcher import NamespaceSpawner, ProcessLauncher
from execctl.core.registry import SessionRegistry
from execctl.errors import BadRequestError, ExecError
from execctl.host_config import HostConfig
from execctl.models.exec_config import ExecConfig
from execctl.protocol import ControlChannel
from execctl.utils.logging import get_daemon_logger

logger = get_daemon_logger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


def _require(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value in (None, ""):
        raise BadRequestError(f"missing {key!r}")
    return value


class execctld:
    """One daemon instance: registry, launcher and multiplexer share its lifetime."""

    def __init__(
        self,
        config: HostConfig,
        containers: Optional[ContainerSource] = None,
        spawner: Optional[NamespaceSpawner] = None,
    ) -> None:
        self.config = config
        chunk_size = config.attach.read_chunk_size
        self.registry = SessionRegistry(containers or container_source_from_config(config))
        self.launcher = ProcessLauncher(
            self.registry,
            spawner or NamespaceSpawner(config.nsenter_path),
            chunk_size=chunk_size,
        )
        self.multiplexer = AttachMultiplexer(
            self.registry,
            flush_timeout=config.attach.flush_timeout,
            chunk_size=chunk_size,
        )
        self.handlers: Dict[str, Handler] = {
            "ping": self._handle_ping,
            "exec_create": self._handle_create,
            "exec_inspect": self._handle_inspect,
            "exec_list": self._handle_list,
            "exec_resize": self._handle_resize,
        }
        self.socket_path: Optional[Path] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: set = set()

    # ========== Lifecycle ==========

    async def start(self, socket_path: Optional[Path] = None) -> None:
        self.socket_path = Path(socket_path or self.config.socket_path)
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        if self.socket_path.exists():
            self.socket_path.unlink()

        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self.socket_path)
        )
        os.chmod(self.socket_path, 0o600)
        logger.info(f"execctld {__version__} listening on {self.socket_path}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        try:
            await stop.wait()
            logger.info("Shutdown requested")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.stop()

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        for task in list(self._connections):
            task.cancel()
        await asyncio.gather(*self._connections, return_exceptions=True)
        await self.multiplexer.close()
        await self.launcher.close()
        if self.socket_path and self.socket_path.exists():
            self.socket_path.unlink()
        logger.info("execctld stopped")

    # ========== Connections ==========

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        channel = ControlChannel(reader, writer, peer="client")
        hijacked = False
        try:
            while True:
                message = await channel.recv()
                if message is None:
                    break
                if message.get("kind") != "request":
                    logger.debug(f"Ignoring {message.get('kind')!r} message")
                    continue

                msg_type = message.get("type")
                request_id = message.get("id")
                payload = message.get("payload") or {}

                if msg_type == "exec_start":
                    hijacked = await self._handle_start(channel, request_id, payload)
                    if hijacked:
                        return
                    continue

                await self._dispatch(channel, request_id, msg_type, payload)
        except ConnectionError as e:
            logger.debug(f"Client connection dropped: {e}")
        except asyncio.CancelledError:
            logger.debug("Connection handler cancelled")
        finally:
            self._connections.discard(task)
            if not hijacked:
                channel.close()

    async def _dispatch(
        self,
        channel: ControlChannel,
        request_id: Optional[str],
        msg_type: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        handler = self.handlers.get(msg_type or "")
        if handler is None:
            await channel.respond(
                request_id, msg_type, False, f"Unknown request: {msg_type}", BadRequestError.kind
            )
            return
        try:
            data = await handler(payload)
        except ExecError as e:
            logger.debug(f"{msg_type} failed: {e}")
            await channel.respond(request_id, msg_type, False, str(e), e.kind)
            return
        except Exception as e:
            logger.error(f"Request handler error for {msg_type}", exc=e)
            await channel.respond(request_id, msg_type, False, str(e), ExecError.kind)
            return
        await channel.respond(request_id, msg_type, True, data=data)

    async def _handle_start(
        self, channel: ControlChannel, request_id: Optional[str], payload: Dict[str, Any]
    ) -> bool:
        """Start a session. Returns True when the connection became an attach stream."""
        try:
            session_id = _require(payload, "id")
            detach = bool(payload.get("detach", False))
            session = await self.launcher.start(session_id)
            # no await between start and attach: the exit watcher has not run yet
            if detach:
                self.multiplexer.run_detached(session_id)
                connection = None
            else:
                connection = self.multiplexer.attach(session_id, channel.reader, channel.writer)
        except ExecError as e:
            logger.warning(f"exec_start failed: {e}")
            await channel.respond(request_id, "exec_start", False, str(e), e.kind)
            return False

        try:
            await channel.respond(request_id, "exec_start", True, data={"tty": session.config.tty})
        except ConnectionError:
            # client left before the reply; the process must not block on its output
            if connection is not None:
                self.multiplexer.release(session)
            raise
        if connection is None:
            return False
        await self.multiplexer.serve(connection)
        return True

    # ========== Handlers ==========

    async def _handle_ping(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"version": __version__, "sessions": len(self.registry)}

    async def _handle_create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        container = _require(payload, "container")
        try:
            config = ExecConfig.model_validate(payload)
        except ValidationError as e:
            raise BadRequestError(f"invalid exec config: {e}") from e
        return {"id": self.registry.create(container, config)}

    async def _handle_inspect(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.registry.inspect(_require(payload, "id"))

    async def _handle_list(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        container = payload.get("container")
        if container:
            # unknown containers are an error, not an empty list
            container = self.registry.containers.resolve(container).id
        return {"ids": self.registry.list(container)}

    async def _handle_resize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            height = int(_require(payload, "height"))
            width = int(_require(payload, "width"))
        except (TypeError, ValueError) as e:
            raise BadRequestError(f"invalid size: {e}") from e
        if height <= 0 or width <= 0:
            raise BadRequestError("height and width must be positive")
        self.launcher.resize(_require(payload, "id"), height, width)
        return {}


def run(config: HostConfig, socket_path: Optional[Path] = None) -> None:
    """Run the daemon until SIGINT/SIGTERM."""

    async def _main() -> None:
        daemon = execctld(config)
        await daemon.start(socket_path)
        await daemon.serve_forever()

    asyncio.run(_main())
