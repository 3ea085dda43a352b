"""Tests for kiln.process - command execution, output streaming and timeouts."""
from __future__ import annotations

import time

from kiln.process import execute_command, inherited_env, minimal_env


class TestExecuteCommand:

    def test_lines_streamed_and_exit_code(self):
        lines = []
        result = execute_command("/bin/sh", ["-c", "echo one; echo two >&2; exit 3"], on_line=lines.append)
        assert not result.ok
        assert result.exit_code == 3
        assert result.error is None
        assert lines == ["one", "two"]
        assert result.describe() == "exit code 3"

    def test_success(self, tmp_path):
        result = execute_command("/bin/sh", ["-c", "pwd"], cwd=str(tmp_path))
        assert result.ok
        assert result.to_dict()["command"] == ["/bin/sh", "-c", "pwd"]

    def test_missing_program(self, tmp_path):
        result = execute_command(str(tmp_path / "no-such-binary"), [])
        assert not result.ok
        assert result.exit_code is None
        assert result.describe().startswith("execution error:")

    def test_silent_command_times_out(self):
        result = execute_command("/bin/sh", ["-c", "sleep 5"], timeout=1)
        assert not result.ok
        assert result.error == "timed out after 1s"
        assert result.duration < 4

    def test_timeout_kills_children(self, tmp_path):
        marker = tmp_path / "survived"
        lines = []
        result = execute_command("/bin/sh", ["-c", f'sleep 2 && touch "{marker}"; echo done'],
                                 timeout=1, on_line=lines.append)
        assert "timed out" in result.error
        assert result.duration < 2
        assert "done" not in lines
        time.sleep(1.5)
        assert not marker.exists()

    def test_env_replaces_environment(self):
        lines = []
        result = execute_command("/bin/sh", ["-c", 'echo "${HOME:-unset} $KILN_X"'],
                                 env=minimal_env("/usr/bin:/bin", {"KILN_X": "x"}), on_line=lines.append)
        assert result.ok
        assert lines == ["unset x"]


class TestEnvironments:

    def test_minimal_env(self):
        assert minimal_env("/usr/bin") == {"PATH": "/usr/bin"}

    def test_inherited_env_extends(self, monkeypatch):
        monkeypatch.setenv("KILN_INHERITED", "yes")
        env = inherited_env({"JOBS": "4"})
        assert env["KILN_INHERITED"] == "yes"
        assert env["JOBS"] == "4"
