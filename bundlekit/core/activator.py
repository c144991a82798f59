"""激活器 — 把进程可见的包集合限制为锁定集合

两种用法:
  - 进程内: setup(state) 改写 sys.path，锁定包的 load path 置前并移除全局 site-packages
  - 外部命令: exec_command() 以合并后的环境变量启动命令；Python 子进程由
    startup/sitecustomize 在启动时施加同样的限制

环境变量合并是纯函数且幂等：已激活的环境再次激活不会产生重复的路径片段。
"""

from __future__ import annotations

import importlib
import logging
import os
import shutil
import site
import subprocess
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from bundlekit.core.exceptions import CommandNotFound, InstallError, NotExecutable, ValidationError
from bundlekit.core.lockfile import Lockfile
from bundlekit.core.materializer import read_record
from bundlekit.core.startup import HOOK_DIR

logger = logging.getLogger(__name__)

ENV_MANIFEST = "BUNDLEKIT_MANIFEST"
ENV_LOCKFILE = "BUNDLEKIT_LOCKFILE"
ENV_WITHOUT = "BUNDLEKIT_WITHOUT"
ENV_LOAD_PATH = "BUNDLEKIT_LOAD_PATH"
BIN_DIR = "bin"


@dataclass
class ActivationState:
    """一次激活得到的受限环境（只含数据，不含副作用）"""

    load_paths: list[str] = field(default_factory=list)
    bin_dirs: list[str] = field(default_factory=list)
    executables: dict[str, str] = field(default_factory=dict)
    packages: list[str] = field(default_factory=list)
    manifest: str = ""
    lockfile: str = ""
    without: frozenset[str] = frozenset()


def activate(
    lockfile: Lockfile,
    install_root: str | Path,
    groups: Iterable[str],
    *,
    manifest_path: str = "",
    lockfile_path: str = "",
    without: Iterable[str] = (),
) -> ActivationState:
    """由锁文件和所选分组计算受限环境

    所选分组可达的包必须都已安装，否则抛 InstallError。
    """
    root = Path(install_root)
    state = ActivationState(
        manifest=manifest_path, lockfile=lockfile_path, without=frozenset(without),
    )
    for spec in lockfile.to_graph().for_groups(groups):
        record = read_record(root, spec)
        if not record:
            raise InstallError(spec.name, str(spec.source), "未安装，请先运行 bundlekit install")
        path = Path(record["path"])
        state.packages.append(spec.full_name)
        for entry in record.get("load_paths") or []:
            _append_unique(state.load_paths, str(path / entry))
        executables = record.get("executables") or []
        if executables:
            _append_unique(state.bin_dirs, str(path / BIN_DIR))
        for name in executables:
            if name in state.executables:
                logger.debug("  可执行文件 %s 已由其他包提供，忽略 %s", name, spec)
                continue
            state.executables[name] = str(path / BIN_DIR / name)
    logger.debug("已激活 %d 个包", len(state.packages))
    return state


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def merge_path_list(front: Iterable[str], existing: str) -> str:
    """front 置前，其后是 existing 中未出现过的片段（集合并，不重复）"""
    merged: list[str] = []
    for fragment in list(front) + existing.split(os.pathsep):
        if fragment and fragment not in merged:
            merged.append(fragment)
    return os.pathsep.join(merged)


def activation_env(inherited: Mapping[str, str], state: ActivationState) -> dict[str, str]:
    """由继承的环境和激活状态得到子进程环境（纯函数，幂等）

    子进程中的 Python 解释器通过 HOOK_DIR 下的 sitecustomize 施加与 setup()
    相同的 sys.path 限制，并且不加载用户级 site-packages。
    """
    env = dict(inherited)
    env["PYTHONPATH"] = merge_path_list(
        [HOOK_DIR, *state.load_paths], inherited.get("PYTHONPATH", ""),
    )
    env[ENV_LOAD_PATH] = os.pathsep.join(state.load_paths)
    env["PYTHONNOUSERSITE"] = "1"
    env["PATH"] = merge_path_list(state.bin_dirs, inherited.get("PATH", ""))
    if state.manifest:
        env[ENV_MANIFEST] = state.manifest
    if state.lockfile:
        env[ENV_LOCKFILE] = state.lockfile
    env[ENV_WITHOUT] = ":".join(sorted(state.without))
    return env


# =========================================================================
# 进程内激活
# =========================================================================


def site_directories() -> list[str]:
    """全局和用户级 site-packages 目录"""
    dirs = list(site.getsitepackages()) if hasattr(site, "getsitepackages") else []
    user_site = site.getusersitepackages()
    if isinstance(user_site, str):
        dirs.append(user_site)
    return dirs


def restricted_sys_path(
    current: Iterable[str], state: ActivationState, site_dirs: Iterable[str],
) -> list[str]:
    """锁定包的 load path 置前，去掉全局 site-packages，其余保持原顺序"""
    excluded = {os.path.normpath(d) for d in site_dirs}
    result: list[str] = []
    for entry in list(state.load_paths) + list(current):
        if entry in result:
            continue
        if entry and os.path.normpath(entry) in excluded:
            continue
        result.append(entry)
    return result


def setup(state: ActivationState) -> list[str]:
    """限制当前进程的 sys.path；已导入的模块不受影响"""
    sys.path[:] = restricted_sys_path(sys.path, state, site_directories())
    importlib.invalidate_caches()
    logger.debug("sys.path 已限制为 %d 项", len(sys.path))
    return list(sys.path)


# =========================================================================
# 命令分发
# =========================================================================


def find_executable(command: str, state: ActivationState, env: Mapping[str, str]) -> Path | None:
    """依次查找: 锁定包声明的可执行文件 -> 显式路径 -> 受限 PATH"""
    declared = state.executables.get(command)
    if declared is not None:
        return Path(declared) if Path(declared).is_file() else None
    if os.sep in command or (os.altsep and os.altsep in command):
        path = Path(command)
        return path if path.is_file() else None
    found = shutil.which(command, path=env.get("PATH", ""))
    return Path(found) if found else None


def exec_command(
    argv: list[str],
    state: ActivationState,
    inherited_env: Mapping[str, str] | None = None,
) -> int:
    """在受限环境中执行命令，返回子进程退出码

    异常:
        CommandNotFound: 找不到命令（退出码 127）
        NotExecutable: 找到但不可执行（退出码 126）
    """
    if not argv:
        raise ValidationError("exec 需要指定命令")
    env = activation_env(os.environ if inherited_env is None else inherited_env, state)
    command = argv[0]
    path = find_executable(command, state, env)
    if path is None:
        raise CommandNotFound(command)
    if not os.access(path, os.X_OK):
        raise NotExecutable(command)

    logger.info("exec: %s", " ".join(argv))
    try:
        result = subprocess.run([str(path), *argv[1:]], env=env, check=False)
    except PermissionError as e:
        raise NotExecutable(command) from e
    except OSError as e:
        # ENOEXEC: 没有解释器行的脚本
        raise NotExecutable(command) from e
    if result.returncode < 0:
        return 128 - result.returncode
    return result.returncode
