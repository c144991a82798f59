"""测试辅助函数: 本地 registry、git 仓库、项目清单

所有来源都建在 tmp_path 下：registry 是带 index.yml 的普通目录，
VCS 来源是真实的 git 仓库（系统没有 git 时相关用例跳过）。
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Any

import pytest
import yaml

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="需要 git")

_GIT_IDENTITY = [
    "-c", "user.name=bundlekit",
    "-c", "user.email=bundlekit@example.com",
    "-c", "commit.gpgsign=false",
    "-c", "tag.gpgsign=false",
    "-c", "protocol.file.allow=always",
]


# =========================================================================
# registry
# =========================================================================


def _script(text: str) -> str:
    return f"#!/bin/sh\necho {text}\n"


def build_registry(root: Path, packages: dict[str, list[dict[str, Any]]]) -> Path:
    """创建本地 registry；每个版本带 lib/<name>.py，executables 生成可执行脚本

    脚本输出 "<name> <version>"，用来确认实际调用的是哪个版本。
    """
    root.mkdir(parents=True, exist_ok=True)
    (root / "index.yml").write_text(yaml.safe_dump({"packages": packages}))
    for name, versions in packages.items():
        for entry in versions:
            version = entry["version"]
            platform = entry.get("platform", "any")
            full_name = f"{name}-{version}" if platform == "any" else f"{name}-{version}-{platform}"
            pkg = root / "packages" / full_name
            (pkg / "lib").mkdir(parents=True, exist_ok=True)
            (pkg / "lib" / f"{name}.py").write_text(f'VERSION = "{version}"\n')
            for exe in entry.get("executables", []):
                path = pkg / "bin" / exe
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(_script(f"{name} {version}"))
                path.chmod(0o755)
    return root


# =========================================================================
# git
# =========================================================================


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *_GIT_IDENTITY, *args],
        cwd=str(cwd), capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


def write_files(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        if rel.startswith("bin/") or "/bin/" in rel:
            path.chmod(0o755)


def make_git_repo(path: Path, files: dict[str, str], *, branch: str = "main") -> str:
    """初始化仓库并提交 files，返回提交 sha"""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    return commit(path, files, "init")


def commit(path: Path, files: dict[str, str], message: str = "update") -> str:
    write_files(path, files)
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", message)
    return git(path, "rev-parse", "HEAD")


def package_files(name: str, version: str, **extra: Any) -> dict[str, str]:
    """一个带 package.yml 的包目录（可执行文件输出名字和版本）"""
    descriptor = {"name": name, "version": version, **extra}
    files = {
        "package.yml": yaml.safe_dump(descriptor),
        f"lib/{name}.py": f'VERSION = "{version}"\n',
    }
    for exe in extra.get("executables", []):
        files[f"bin/{exe}"] = _script(f"{name} {version}")
    return files


# =========================================================================
# 项目
# =========================================================================


def write_manifest(project: Path, data: dict[str, Any]) -> Path:
    project.mkdir(parents=True, exist_ok=True)
    path = project / "bundle.yml"
    path.write_text(yaml.safe_dump(data, allow_unicode=True))
    return path
