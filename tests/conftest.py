# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pytest fixtures for execctl tests.

Sessions run in a static "container" that shares the test process's
namespaces (pid None), so real processes are spawned without Docker.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from execctl.client import ExecClient
from execctl.core.containers import ContainerInfo, StaticContainerSource
from execctl.core.registry import SessionRegistry
from execctl.execctld import execctld
from execctl.host_config import HostConfig
from execctl.models.daemon_config import AttachConfig, DaemonConfigModel

HOST_CONTAINER_ID = "c0ffee" + "0" * 58
STOPPED_CONTAINER_ID = "deadbeef" + "0" * 56

PASSWD = """\
root:x:0:0:root:/root:/bin/sh
daemon:x:1:1:daemon:/usr/sbin:/usr/sbin/nologin
# comment line
app:x:1000:1000:app user:/home/app:/bin/sh
broken line
"""

GROUP = """\
root:x:0:
daemon:x:1:
wheel:x:10:app
staff:x:50:app,daemon
app:x:1000:
"""


@pytest.fixture
def rootfs(tmp_path):
    """A container root filesystem with its own passwd and group files."""
    etc = tmp_path / "etc"
    etc.mkdir()
    (etc / "passwd").write_text(PASSWD)
    (etc / "group").write_text(GROUP)
    return tmp_path


@pytest.fixture
def host_container():
    """Running container sharing the test process's namespaces."""
    return ContainerInfo(
        id=HOST_CONTAINER_ID,
        name="web",
        running=True,
        pid=None,
        env=(f"PATH={os.environ.get('PATH', '/usr/bin:/bin')}", "LANG=C"),
        working_dir="/",
    )


@pytest.fixture
def containers(host_container):
    return StaticContainerSource(
        [
            host_container,
            ContainerInfo(id=STOPPED_CONTAINER_ID, name="stopped", running=False),
        ]
    )


@pytest.fixture
def registry(containers):
    return SessionRegistry(containers)


@pytest.fixture
def daemon_config():
    return HostConfig.from_model(DaemonConfigModel(attach=AttachConfig(flush_timeout=1.0)))


@pytest_asyncio.fixture
async def daemon(daemon_config, containers):
    """A running execctld on a short temporary socket path."""
    # AF_UNIX paths are limited to ~100 bytes, pytest's tmp_path is too long
    socket_dir = Path(tempfile.mkdtemp(prefix="ex"))
    instance = execctld(daemon_config, containers=containers)
    await instance.start(socket_dir / "d.sock")
    try:
        yield instance
    finally:
        await instance.stop()
        shutil.rmtree(socket_dir, ignore_errors=True)


@pytest.fixture
def client(daemon):
    return ExecClient(daemon.socket_path, timeout=10.0)
