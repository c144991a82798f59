"""shell.py 执行器 / run_git 单元测试"""

from __future__ import annotations

import os

import pytest

from bundlekit.utils.shell import CommandResult, GitError, LocalExecutor, run_git


class RecordingExecutor:
    """记录调用参数，返回预设结果"""

    def __init__(self, result: CommandResult) -> None:
        self.result = result
        self.calls: list[tuple[list[str], str]] = []

    def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
        self.calls.append((cmd, cwd))
        return self.result


class TestLocalExecutor:
    def test_success(self, tmp_path) -> None:
        r = LocalExecutor().execute(["echo", "hello"], cwd=str(tmp_path))
        assert r.success
        assert r.stdout.strip() == "hello"

    def test_failure_not_raised(self, tmp_path) -> None:
        r = LocalExecutor().execute(["false"], cwd=str(tmp_path))
        assert not r.success

    def test_env_passed(self, tmp_path) -> None:
        env = {**os.environ, "MY_TEST_VAR": "42"}
        r = LocalExecutor().execute(["env"], cwd=str(tmp_path), env=env)
        assert "MY_TEST_VAR=42" in r.stdout


class TestRunGit:
    def test_builds_command_with_config(self) -> None:
        executor = RecordingExecutor(CommandResult(0, "abc123\n", ""))
        out = run_git(executor, ["rev-parse", "HEAD"], cwd="/repo", config={"core.quotepath": "off"})
        assert out == "abc123"
        assert executor.calls == [(["git", "-c", "core.quotepath=off", "rev-parse", "HEAD"], "/repo")]

    def test_failure_carries_stderr(self) -> None:
        executor = RecordingExecutor(CommandResult(128, "", "fatal: not a git repository\n"))
        with pytest.raises(GitError, match="not a git repository") as exc:
            run_git(executor, ["status"])
        assert exc.value.result.returncode == 128
