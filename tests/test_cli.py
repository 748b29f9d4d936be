# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for the execctl CLI commands (daemon calls mocked)."""

from unittest.mock import AsyncMock, Mock, patch

from click.testing import CliRunner

from execctl.cli import cli
from execctl.errors import NotFoundError
from execctl.protocol import StreamType, encode_frame


class FakeConnection:
    """Stands in for a HijackedConnection with canned output."""

    def __init__(self, chunks, tty=False):
        self.chunks = list(chunks)
        self.tty = tty

    async def read(self, n=32 * 1024):
        return self.chunks.pop(0) if self.chunks else b""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


def mock_client(**methods):
    client = Mock()
    for name, value in methods.items():
        setattr(client, name, AsyncMock(**value))
    return client


class TestExecCommand:
    """Test execctl exec"""

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_detached_prints_id(self, mock_client_class):
        client = mock_client(
            exec_create={"return_value": "abc123"}, exec_start={"return_value": None}
        )
        mock_client_class.return_value = client

        result = CliRunner().invoke(cli, ["exec", "-d", "web", "sleep", "10"])

        assert result.exit_code == 0
        assert "abc123" in result.output
        args, kwargs = client.exec_create.call_args
        assert args == ("web", ["sleep", "10"])
        assert kwargs["attach_stdout"] is False
        client.exec_start.assert_awaited_once_with("abc123", detach=True)

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_output_and_exit_code(self, mock_client_class):
        frames = encode_frame(StreamType.STDOUT, b"hello\n") + encode_frame(
            StreamType.STDERR, b"warn\n"
        )
        client = mock_client(
            exec_create={"return_value": "abc123"},
            exec_start={"return_value": FakeConnection([frames[:5], frames[5:]])},
            exec_inspect={"return_value": {"exit_code": 3}},
        )
        mock_client_class.return_value = client

        result = CliRunner().invoke(
            cli, ["exec", "-e", "FOO=BAR", "-w", "/tmp", "-u", "1:1", "web", "sh", "-c", "x"]
        )

        assert result.exit_code == 3
        assert "hello" in result.stdout
        _, kwargs = client.exec_create.call_args
        assert kwargs["env"] == ["FOO=BAR"]
        assert kwargs["working_dir"] == "/tmp"
        assert kwargs["user"] == "1:1"
        assert kwargs["attach_stdin"] is False

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_error_panel(self, mock_client_class):
        mock_client_class.return_value = mock_client(
            exec_create={"side_effect": NotFoundError("No such container: ghost")}
        )

        result = CliRunner().invoke(cli, ["exec", "ghost", "true"])

        assert result.exit_code == 1
        assert "Not Found" in result.output

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_daemon_unavailable(self, mock_client_class):
        mock_client_class.return_value = mock_client(
            exec_create={"side_effect": ConnectionError("execctld is not reachable")}
        )

        result = CliRunner().invoke(cli, ["exec", "web", "true"])

        assert result.exit_code == 1
        assert "Daemon Unavailable" in result.output


class TestInspectCommand:
    """Test execctl inspect / ls / resize"""

    INFO = {
        "id": "f" * 64,
        "container_id": "c" * 64,
        "state": "exited",
        "running": False,
        "exit_code": 0,
        "pid": 99,
        "process_config": {
            "entrypoint": "sh",
            "arguments": ["-c", "true"],
            "user": "",
            "working_dir": "/",
            "tty": False,
        },
    }

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_inspect_json(self, mock_client_class):
        mock_client_class.return_value = mock_client(exec_inspect={"return_value": self.INFO})

        result = CliRunner().invoke(cli, ["inspect", "--json", "f" * 64])

        assert result.exit_code == 0
        assert '"state": "exited"' in result.output

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_inspect_table(self, mock_client_class):
        mock_client_class.return_value = mock_client(exec_inspect={"return_value": self.INFO})

        result = CliRunner().invoke(cli, ["inspect", "f" * 64])

        assert result.exit_code == 0
        assert "exited" in result.output
        assert "sh -c true" in result.output

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_ls(self, mock_client_class):
        mock_client_class.return_value = mock_client(exec_list={"return_value": ["a1", "b2"]})

        result = CliRunner().invoke(cli, ["ls", "web"])

        assert result.exit_code == 0
        assert result.output.split() == ["a1", "b2"]

    @patch("execctl.cli.commands.exec_cmds.ExecClient")
    def test_resize(self, mock_client_class):
        client = mock_client(exec_resize={"return_value": None})
        mock_client_class.return_value = client

        result = CliRunner().invoke(cli, ["resize", "abc", "40", "120"])

        assert result.exit_code == 0
        client.exec_resize.assert_awaited_once_with("abc", 40, 120)


class TestServiceCommands:
    """Test execctl serve / ping"""

    @patch("execctl.client.ExecClient.ping", new_callable=AsyncMock)
    def test_ping(self, mock_ping):
        mock_ping.return_value = {"version": "0.1.0", "sessions": 2}

        result = CliRunner().invoke(cli, ["ping"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    @patch("execctl.execctld.run")
    def test_serve_passes_socket(self, mock_run, tmp_path):
        result = CliRunner().invoke(cli, ["serve", "--socket", str(tmp_path / "s.sock")])

        assert result.exit_code == 0
        config, socket_path = mock_run.call_args[0]
        assert socket_path == tmp_path / "s.sock"
