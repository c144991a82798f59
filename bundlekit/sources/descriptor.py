"""包描述文件（package.yml）解析

registry 索引中的版本条目、VCS / path 来源目录树中的 package.yml
都使用同一结构:

    name: rack
    version: 1.0.0
    platform: any
    dependencies:
      rack_base: ">= 0.9"
    executables: [rackup]
    load_paths: [lib]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from bundlekit.core.exceptions import ManifestError, ValidationError
from bundlekit.core.models import ANY_PLATFORM, Requirement, SourceIdentity, Specification
from bundlekit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DESCRIPTOR_NAME = "package.yml"
_SKIP_DIRS = frozenset((".git", "node_modules", "__pycache__"))


def parse_dependencies(raw: Any) -> tuple[Requirement, ...]:
    """依赖可写成 {name: constraint} 或 ["name", "name >= 1.0"]"""
    if not raw:
        return ()
    if isinstance(raw, dict):
        items = [(str(k), str(v or "")) for k, v in raw.items()]
    elif isinstance(raw, list):
        items = []
        for entry in raw:
            parts = str(entry).split(None, 1)
            items.append((parts[0], parts[1] if len(parts) > 1 else ""))
    else:
        raise ManifestError(f"无法识别的依赖列表: {raw!r}")
    return tuple(
        Requirement(name=name, constraint=constraint)
        for name, constraint in sorted(items)
    )


def spec_from_dict(
    data: dict[str, Any],
    source: SourceIdentity,
    *,
    subdir: str = "",
    revision: str = "",
) -> Specification:
    """从描述字典构造 Specification"""
    try:
        return Specification(
            name=str(data["name"]),
            version=str(data["version"]),
            source=source,
            platform=str(data.get("platform") or ANY_PLATFORM),
            dependencies=parse_dependencies(data.get("dependencies")),
            executables=tuple(str(e) for e in data.get("executables") or []),
            load_paths=tuple(str(p) for p in data.get("load_paths") or ["lib"]),
            subdir=subdir,
            revision=revision,
        )
    except KeyError as e:
        raise ManifestError(f"包描述缺少字段 {e} ({source})") from e
    except ValidationError as e:
        raise ManifestError(f"包描述无效 ({source}): {e}") from e


def scan_tree(
    root: Path,
    source: SourceIdentity,
    *,
    revision: str = "",
    max_depth: int = 2,
) -> list[Specification]:
    """在目录树中查找 package.yml（根目录及 max_depth 层以内的子目录）"""
    found: list[Specification] = []
    pending: list[tuple[Path, int]] = [(root, 0)]
    while pending:
        current, depth = pending.pop()
        descriptor = current / DESCRIPTOR_NAME
        if descriptor.is_file():
            try:
                data = load_yaml(descriptor)
            except yaml.YAMLError as e:
                raise ManifestError(f"包描述格式错误 {descriptor}: {e}") from e
            subdir = current.relative_to(root).as_posix()
            found.append(spec_from_dict(
                data, source,
                subdir="" if subdir == "." else subdir,
                revision=revision,
            ))
        if depth >= max_depth:
            continue
        for child in sorted(current.iterdir()):
            if child.is_dir() and child.name not in _SKIP_DIRS and not child.is_symlink():
                pending.append((child, depth + 1))
    return found


def synthesize(
    name: str,
    version: str,
    root: Path,
    source: SourceIdentity,
    *,
    revision: str = "",
) -> Specification:
    """目录树里没有描述文件时，按清单给出的名字 / 版本生成规格

    可执行文件取 bin/ 下的全部文件。
    """
    bin_dir = root / "bin"
    executables = (
        tuple(sorted(p.name for p in bin_dir.iterdir() if p.is_file()))
        if bin_dir.is_dir() else ()
    )
    logger.info("  %s 无 %s，按清单生成规格: %s %s", source, DESCRIPTOR_NAME, name, version)
    return Specification(
        name=name, version=version, source=source,
        executables=executables, revision=revision,
    )
