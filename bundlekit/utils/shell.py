"""子进程执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
git 调用统一走 run_git()，失败时带上 stderr 摘要。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    测试时可注入 mock 实现，无需 patch subprocess。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


class LocalExecutor:
    """本地命令执行器（默认实现）"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        r = subprocess.run(
            cmd, capture_output=True, text=True,
            cwd=cwd, env=env, check=False, timeout=timeout,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


class GitError(Exception):
    """git 命令返回非零退出码"""

    def __init__(self, args: list[str], result: CommandResult) -> None:
        super().__init__(
            f"git {' '.join(args)} 失败 (rc={result.returncode}): "
            f"{result.stderr.strip()[:300]}"
        )
        self.result = result


def run_git(
    executor: CommandExecutor,
    args: list[str],
    *,
    cwd: str = ".",
    config: dict[str, str] | None = None,
) -> str:
    """执行 git 子命令，返回去掉首尾空白的 stdout

    参数:
        executor: 命令执行器
        args: git 之后的参数
        cwd: 工作目录
        config: 以 -c key=value 形式传入的临时配置
    """
    cmd = ["git"]
    for key, value in (config or {}).items():
        cmd += ["-c", f"{key}={value}"]
    cmd += args
    logger.debug("  git: %s (cwd=%s)", " ".join(args), cwd)
    result = executor.execute(cmd, cwd=cwd)
    if not result.success:
        raise GitError(args, result)
    return result.stdout.strip()
