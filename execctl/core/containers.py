# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Container lookup.

The exec subsystem never owns containers; it only needs a snapshot of a
running container at create and start time. Two sources exist:

- DockerContainerSource: asks the Docker Engine through the docker SDK
- StaticContainerSource: containers listed in config.yml (or built in tests)
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import docker
from docker.errors import APIError, DockerException
from docker.errors import NotFound as DockerNotFound

from execctl.errors import ExecError, NotFoundError
from execctl.host_config import HostConfig
from execctl.models.daemon_config import StaticContainerModel
from execctl.paths import ContainerDefaults

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerInfo:
    """Snapshot of a container as seen at lookup time.

    ``pid`` is the init process on the host; None means the container
    shares the daemon's namespaces. ``rootfs`` is where its /etc/passwd
    and /etc/group live when viewed from the host.
    """

    id: str
    name: str
    running: bool
    pid: Optional[int] = None
    env: Tuple[str, ...] = ()
    working_dir: str = ""
    user: str = ""
    platform: str = ContainerDefaults.PLATFORM
    rootfs: Path = field(default=Path("/"))


class ContainerSource:
    """Resolves a container reference (id, name or unique id prefix)."""

    def resolve(self, ref: str) -> ContainerInfo:
        raise NotImplementedError


class StaticContainerSource(ContainerSource):
    """In-memory containers, from config.yml or added directly."""

    def __init__(self, containers: Iterable[ContainerInfo] = ()):
        self._containers: Dict[str, ContainerInfo] = {}
        self._lock = threading.Lock()
        for info in containers:
            self.add(info)

    @classmethod
    def from_models(cls, models: Iterable[StaticContainerModel]) -> "StaticContainerSource":
        return cls(
            ContainerInfo(
                id=m.id,
                name=m.name or m.id,
                running=m.running,
                pid=m.pid,
                env=tuple(m.env),
                working_dir=m.working_dir,
                user=m.user,
                platform=m.platform,
                rootfs=Path(m.rootfs),
            )
            for m in models
        )

    def add(self, info: ContainerInfo) -> None:
        with self._lock:
            self._containers[info.id] = info

    def set_running(self, ref: str, running: bool) -> None:
        info = self.resolve(ref)
        with self._lock:
            self._containers[info.id] = replace(info, running=running)

    def resolve(self, ref: str) -> ContainerInfo:
        with self._lock:
            if ref in self._containers:
                return self._containers[ref]
            for info in self._containers.values():
                if info.name == ref:
                    return info
            matches: List[ContainerInfo] = [
                info for info in self._containers.values() if ref and info.id.startswith(ref)
            ]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise NotFoundError(f"multiple containers match prefix {ref!r}")
        raise NotFoundError(f"No such container: {ref}")


class DockerContainerSource(ContainerSource):
    """Looks containers up through the Docker Engine API."""

    def __init__(self, client=None):
        if client is None:
            try:
                client = docker.from_env()
            except DockerException as e:
                raise ExecError(
                    f"Could not connect to Docker: {e}",
                    hint="check that the Docker daemon is running or use container_source: static",
                ) from e
        self.client = client

    def resolve(self, ref: str) -> ContainerInfo:
        try:
            container = self.client.containers.get(ref)
        except DockerNotFound:
            raise NotFoundError(f"No such container: {ref}")
        except APIError as e:
            raise ExecError(f"Docker API error looking up {ref}: {e}") from e

        attrs = container.attrs or {}
        state = attrs.get("State") or {}
        config = attrs.get("Config") or {}
        pid = state.get("Pid") or None

        return ContainerInfo(
            id=container.id,
            name=(attrs.get("Name") or container.name or "").lstrip("/"),
            running=bool(state.get("Running")),
            pid=pid,
            env=tuple(config.get("Env") or ()),
            working_dir=config.get("WorkingDir") or "",
            user=config.get("User") or "",
            platform=(attrs.get("Platform") or ContainerDefaults.PLATFORM).lower(),
            # the container's root as seen through its init process
            rootfs=Path(f"/proc/{pid}/root") if pid else Path("/"),
        )


def container_source_from_config(config: HostConfig) -> ContainerSource:
    """Build the container source selected in config.yml."""
    if config.container_source == "static":
        logger.debug(f"Using {len(config.static_containers)} static container(s)")
        return StaticContainerSource.from_models(config.static_containers)
    return DockerContainerSource()
