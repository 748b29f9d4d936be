# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for execctl/core/registry.py"""

import re

import pytest

from execctl.core.state import ExecState
from execctl.errors import InvalidStateError, NotFoundError
from execctl.models.exec_config import ExecConfig

CONFIG = ExecConfig(cmd=["echo", "hi"])


class TestCreate:
    """Test registering sessions"""

    def test_create_returns_hex_id(self, registry, host_container):
        session_id = registry.create("web", CONFIG)

        assert re.fullmatch(r"[0-9a-f]{64}", session_id)
        session = registry.get(session_id)
        assert session.state is ExecState.CREATED
        assert session.container_id == host_container.id

    def test_ids_are_unique(self, registry):
        ids = {registry.create("web", CONFIG) for _ in range(20)}

        assert len(ids) == 20
        assert len(registry) == 20

    def test_create_by_id_prefix(self, registry, host_container):
        session_id = registry.create(host_container.id[:8], CONFIG)

        assert registry.get(session_id).container_name == "web"

    def test_unknown_container(self, registry):
        with pytest.raises(NotFoundError, match="No such container: nope"):
            registry.create("nope", CONFIG)

        assert len(registry) == 0

    def test_stopped_container(self, registry):
        with pytest.raises(InvalidStateError) as exc_info:
            registry.create("stopped", CONFIG)

        assert "not running" in str(exc_info.value)
        assert exc_info.value.hint


class TestLookup:
    """Test get/inspect/list"""

    def test_get_unknown(self, registry):
        with pytest.raises(NotFoundError, match="No such exec instance: missing"):
            registry.get("missing")

    def test_inspect_returns_snapshot(self, registry):
        session_id = registry.create("web", CONFIG)
        info = registry.inspect(session_id)

        assert info["id"] == session_id
        assert info["state"] == "created"
        assert info["exit_code"] is None

    def test_list_by_container(self, registry, containers, host_container):
        first = registry.create("web", CONFIG)
        second = registry.create(host_container.id, CONFIG)
        containers.set_running("stopped", True)
        other = registry.create("stopped", CONFIG)

        assert set(registry.list()) == {first, second, other}
        assert set(registry.list("web")) == {first, second}
        assert set(registry.list(host_container.id[:12])) == {first, second}
        assert registry.list(containers.resolve("stopped").id) == [other]

    def test_list_empty(self, registry):
        assert registry.list("web") == []
