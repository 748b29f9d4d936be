# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Process launcher for exec sessions.

Building the launch (environment, working directory, identity) is a pure
step so it can be checked without spawning anything. Spawning goes through
a NamespaceSpawner: nsenter into the container's init process, or a plain
spawn when the container shares the daemon's namespaces.
"""

import asyncio
import fcntl
import logging
import os
import pty
import subprocess
import termios
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from execctl.core.containers import ContainerInfo
from execctl.core.identity import Identity, UserDatabase, resolve_identity
from execctl.core.platform_paths import path_style_for
from execctl.core.registry import SessionRegistry
from execctl.core.state import ExecSession, ProcessConfig
from execctl.core.streams import PipeStreams, ProcessStreams, PtyStreams
from execctl.errors import ExecError, InvalidStateError, LaunchError
from execctl.models.exec_config import ExecConfig
from execctl.paths import ContainerDefaults

logger = logging.getLogger(__name__)

EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class LaunchPlan:
    argv: List[str]
    env: List[str]
    working_dir: str
    identity: Optional[Identity]
    tty: bool

    def env_dict(self) -> Dict[str, str]:
        return dict(entry.split("=", 1) for entry in self.env)


def merge_env(base: Sequence[str], overrides: Sequence[str]) -> List[str]:
    """Overlay KEY=VALUE overrides on base, keeping base order.

    Colliding keys take the override value in place; new keys are appended.
    """
    merged: Dict[str, str] = {}
    for entry in list(base) + list(overrides):
        key, _, value = entry.partition("=")
        merged[key] = value
    return [f"{key}={value}" for key, value in merged.items()]


def _setdefault_env(env: List[str], key: str, value: str) -> List[str]:
    if any(entry.partition("=")[0] == key for entry in env):
        return env
    return env + [f"{key}={value}"]


def build_plan(config: ExecConfig, container: ContainerInfo) -> LaunchPlan:
    """Resolve everything the spawn needs. Raises IdentityError/BadRequestError."""
    style = path_style_for(container.platform)
    working_dir = style.render(
        config.working_dir or container.working_dir or ContainerDefaults.WORKING_DIR
    )

    user_spec = config.user or container.user
    identity = resolve_identity(user_spec, UserDatabase(container.rootfs)) if user_spec else None

    # PWD follows the rendered working directory unless the request sets it
    env = merge_env(merge_env(container.env, [f"PWD={working_dir}"]), config.env)
    if style.name == "posix":
        env = _setdefault_env(env, "PATH", ContainerDefaults.PATH)
    if identity is not None:
        env = _setdefault_env(env, "HOME", identity.home)
    if config.tty:
        env = _setdefault_env(env, "TERM", ContainerDefaults.TERM)

    return LaunchPlan(
        argv=list(config.cmd),
        env=env,
        working_dir=working_dir,
        identity=identity,
        tty=config.tty,
    )


def _set_controlling_tty() -> None:
    # child side, after setsid; fd 0 is the pty slave
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


class NamespaceSpawner:
    """Starts the planned process inside a container's namespaces."""

    def __init__(self, nsenter_path: str = "nsenter"):
        self.nsenter_path = nsenter_path

    def command(self, plan: LaunchPlan, container: ContainerInfo) -> Tuple[List[str], Optional[str], dict]:
        """Return (argv, cwd, extra Popen kwargs) for the plan."""
        if path_style_for(container.platform).name != "posix":
            raise LaunchError(
                f"container {container.id[:12]} runs on {container.platform}, "
                "which this spawner cannot enter"
            )

        if container.pid is None:
            return plan.argv, plan.working_dir, self._host_identity_kwargs(plan.identity)

        argv = [
            self.nsenter_path,
            f"--target={container.pid}",
            "--mount",
            "--uts",
            "--ipc",
            "--net",
            "--pid",
            "--root",
            # nsenter opens --wd before entering the mount namespace
            f"--wd=/proc/{container.pid}/root{plan.working_dir}",
        ]
        if plan.identity is not None:
            argv += [f"--setuid={plan.identity.uid}", f"--setgid={plan.identity.gid}"]
            if plan.identity.supplementary_gids:
                # --setgid clears the group list inside the container
                logger.debug(
                    f"Supplementary groups {list(plan.identity.supplementary_gids)} "
                    f"are not applied when entering {container.name}"
                )
        return argv + ["--", *plan.argv], None, {}

    @staticmethod
    def _host_identity_kwargs(identity: Optional[Identity]) -> dict:
        if identity is None:
            return {}
        if identity.uid == os.geteuid() and identity.gid == os.getegid():
            return {}
        return {
            "user": identity.uid,
            "group": identity.gid,
            "extra_groups": list(identity.supplementary_gids),
        }

    async def spawn(
        self,
        plan: LaunchPlan,
        container: ContainerInfo,
        stdin,
        stdout,
        stderr,
    ) -> asyncio.subprocess.Process:
        argv, cwd, extra = self.command(plan, container)
        logger.debug(f"Spawning {argv} in {container.name} (cwd={cwd})")
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            cwd=cwd,
            env=plan.env_dict(),
            start_new_session=True,
            preexec_fn=_set_controlling_tty if plan.tty else None,
            **extra,
        )


class ProcessLauncher:
    """Starts exec sessions and records their exit."""

    def __init__(
        self,
        registry: SessionRegistry,
        spawner: Optional[NamespaceSpawner] = None,
        chunk_size: int = 32 * 1024,
    ):
        self.registry = registry
        self.spawner = spawner or NamespaceSpawner()
        self.chunk_size = chunk_size
        self._watchers: Set[asyncio.Task] = set()

    async def start(self, session_id: str) -> ExecSession:
        """Spawn the session's process; at most once per session.

        A launch that fails after the start was claimed leaves the session
        exited with 126 (127 when the executable does not exist).
        """
        session = self.registry.get(session_id)
        session.claim_start()

        try:
            container = self.registry.containers.resolve(session.container_id)
            if not container.running:
                raise InvalidStateError(f"Container {container.id[:12]} is not running")
            plan = build_plan(session.config, container)
            process, streams = await self._spawn(session.config, plan, container)
        except FileNotFoundError as e:
            session.mark_exited(EXIT_NOT_FOUND)
            raise LaunchError(f"exec {session.config.cmd[0]!r} failed: {e}") from e
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            session.mark_exited(EXIT_CANNOT_EXECUTE)
            raise LaunchError(f"exec {session.config.cmd[0]!r} failed: {e}") from e
        except ExecError:
            session.mark_exited(EXIT_CANNOT_EXECUTE)
            raise

        session.mark_running(
            process.pid,
            streams,
            ProcessConfig(
                entrypoint=plan.argv[0],
                arguments=plan.argv[1:],
                user=session.config.user or container.user,
                working_dir=plan.working_dir,
                tty=plan.tty,
            ),
        )
        logger.info(f"Started exec {session.id[:12]} as pid {process.pid}")

        watcher = asyncio.create_task(self._watch_exit(session, process))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return session

    async def _spawn(
        self,
        config: ExecConfig,
        plan: LaunchPlan,
        container: ContainerInfo,
    ) -> Tuple[asyncio.subprocess.Process, ProcessStreams]:
        if config.tty:
            master_fd, slave_fd = pty.openpty()
            try:
                streams = PtyStreams(master_fd, self.chunk_size)
                if config.console_size:
                    streams.resize(*config.console_size)
                process = await self.spawner.spawn(plan, container, slave_fd, slave_fd, slave_fd)
            except BaseException:
                os.close(master_fd)
                raise
            finally:
                # the child holds its own copy; EOF on the master depends on this
                os.close(slave_fd)
            return process, streams

        pipe = asyncio.subprocess.PIPE
        devnull = asyncio.subprocess.DEVNULL
        process = await self.spawner.spawn(
            plan,
            container,
            pipe if config.attach_stdin else devnull,
            pipe if config.attach_stdout else devnull,
            pipe if config.attach_stderr else devnull,
        )
        return process, PipeStreams(process, self.chunk_size)

    async def _watch_exit(self, session: ExecSession, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if returncode < 0:
            # killed by a signal, reported the way shells do
            exit_code = 128 - returncode
            logger.debug(f"exec {session.id[:12]} killed by signal {-returncode}")
        else:
            exit_code = returncode
        session.mark_exited(exit_code)
        logger.info(f"exec {session.id[:12]} exited with {exit_code}")

    def resize(self, session_id: str, height: int, width: int) -> None:
        """Change the pty size of a running tty session."""
        session = self.registry.get(session_id)
        if not session.running or not isinstance(session.streams, PtyStreams):
            raise InvalidStateError(f"exec {session_id[:12]} is not a running tty session")
        session.streams.resize(height, width)

    async def close(self) -> None:
        """Stop watching exits (daemon shutdown). Processes keep running."""
        for task in list(self._watchers):
            task.cancel()
        await asyncio.gather(*self._watchers, return_exceptions=True)
