# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Exec session record and its lifecycle state machine.

created -> running -> exited, plus created -> exited when the launch
fails. Transitions only move forward; the exit code exists exactly when
the state is exited.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from execctl.errors import InvalidStateError
from execctl.models.exec_config import ExecConfig

if TYPE_CHECKING:
    from execctl.core.streams import ProcessStreams


class ExecState(Enum):
    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"


_STATE_ORDER = {ExecState.CREATED: 0, ExecState.RUNNING: 1, ExecState.EXITED: 2}


@dataclass(frozen=True)
class ProcessConfig:
    """The process as it was actually launched."""

    entrypoint: str
    arguments: List[str]
    user: str
    working_dir: str
    tty: bool


class ExecSession:
    """One exec session tracked by the registry."""

    def __init__(self, session_id: str, container_id: str, container_name: str, config: ExecConfig):
        self.id = session_id
        self.container_id = container_id
        self.container_name = container_name
        self.config = config
        self.created_at = time.time()

        self.pid: Optional[int] = None
        self.process_config: Optional[ProcessConfig] = None
        self.streams: Optional["ProcessStreams"] = None

        self._state = ExecState.CREATED
        self._exit_code: Optional[int] = None
        self._start_claimed = False
        self._attach_claimed = False
        self._lock = threading.Lock()
        self._exited = asyncio.Event()

    @property
    def state(self) -> ExecState:
        return self._state

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def running(self) -> bool:
        return self._state is ExecState.RUNNING

    def _advance(self, target: ExecState) -> None:
        if _STATE_ORDER[target] <= _STATE_ORDER[self._state]:
            raise InvalidStateError(
                f"exec {self.id[:12]}: cannot move from {self._state.value} to {target.value}"
            )
        self._state = target

    def claim_start(self) -> None:
        """Reserve the single start allowed per session."""
        with self._lock:
            if self._start_claimed or self._state is not ExecState.CREATED:
                raise InvalidStateError(
                    f"exec {self.id[:12]} has already been started",
                    hint="create a new exec session to run the command again",
                )
            self._start_claimed = True

    def claim_attach(self) -> None:
        """Reserve the single attach allowed per session."""
        with self._lock:
            if self._state is not ExecState.RUNNING:
                raise InvalidStateError(
                    f"exec {self.id[:12]} is not running (state: {self._state.value})"
                )
            if self._attach_claimed:
                raise InvalidStateError(f"exec {self.id[:12]} already has an attach connection")
            self._attach_claimed = True

    def mark_running(
        self,
        pid: int,
        streams: "ProcessStreams",
        process_config: ProcessConfig,
    ) -> None:
        with self._lock:
            self._advance(ExecState.RUNNING)
            self.pid = pid
            self.streams = streams
            self.process_config = process_config

    def mark_exited(self, exit_code: int) -> None:
        with self._lock:
            self._advance(ExecState.EXITED)
            self._exit_code = exit_code
        self._exited.set()

    async def wait_exited(self) -> int:
        await self._exited.wait()
        return self._exit_code

    def snapshot(self) -> Dict[str, Any]:
        """Read-only copy of the session for inspect responses."""
        with self._lock:
            return {
                "id": self.id,
                "container_id": self.container_id,
                "state": self._state.value,
                "running": self._state is ExecState.RUNNING,
                "exit_code": self._exit_code,
                "pid": self.pid,
                "open_stdin": self.config.attach_stdin,
                "open_stdout": self.config.attach_stdout,
                "open_stderr": self.config.attach_stderr,
                "created_at": self.created_at,
                "process_config": asdict(self.process_config) if self.process_config else None,
            }
