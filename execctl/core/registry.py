# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Exec session registry.

One registry per daemon instance. It is handed to the launcher and the
attach multiplexer explicitly, so tests can run several side by side.
"""

import logging
import secrets
import threading
from typing import Any, Dict, List, Optional

from execctl.core.containers import ContainerSource
from execctl.core.state import ExecSession
from execctl.errors import InvalidStateError, NotFoundError
from execctl.models.exec_config import ExecConfig

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Allocates exec ids and keeps every session this daemon knows about."""

    def __init__(self, containers: ContainerSource):
        self.containers = containers
        self._sessions: Dict[str, ExecSession] = {}
        self._lock = threading.RLock()

    def _new_id(self) -> str:
        # caller holds the lock
        while True:
            session_id = secrets.token_hex(32)
            if session_id not in self._sessions:
                return session_id

    def create(self, container_ref: str, config: ExecConfig) -> str:
        """Register a new session for a running container.

        Raises:
            NotFoundError: container reference does not resolve
            InvalidStateError: container is not running
        """
        container = self.containers.resolve(container_ref)
        if not container.running:
            raise InvalidStateError(
                f"Container {container.id[:12]} is not running",
                hint="start the container before creating exec sessions in it",
            )

        with self._lock:
            session_id = self._new_id()
            self._sessions[session_id] = ExecSession(
                session_id, container.id, container.name, config
            )

        logger.info(f"Created exec {session_id[:12]} in {container.name}: {config.cmd}")
        return session_id

    def get(self, session_id: str) -> ExecSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"No such exec instance: {session_id}")
        return session

    def inspect(self, session_id: str) -> Dict[str, Any]:
        return self.get(session_id).snapshot()

    def list(self, container_ref: Optional[str] = None) -> List[str]:
        """Exec ids, optionally only those of one container (by id or name)."""
        with self._lock:
            sessions = list(self._sessions.values())
        if container_ref is None:
            return [s.id for s in sessions]
        return [
            s.id
            for s in sessions
            if container_ref in (s.container_id, s.container_name)
            or s.container_id.startswith(container_ref)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
