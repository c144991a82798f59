"""清单（bundle.yml）加载

清单只是一个 YAML 映射，字段与 Requirement 一一对应:

    sources:
      - https://packages.example.com/index
    dependencies:
      - rack
      - name: rack_middleware
        version: "~> 1.0"
        groups: [middleware]
      - name: foo
        vcs: https://git.example.com/foo.git
        branch: omg
        submodules: true
      - name: fizz
        path: ../fizz
    group_selectors:
      ci: [test, lint]

相对 path 以清单所在目录为基准展开为绝对路径。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from bundlekit.core.exceptions import ManifestError, ValidationError
from bundlekit.core.models import DEFAULT_GROUP, Requirement, SourceIdentity
from bundlekit.utils.net import local_path
from bundlekit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class Manifest:
    """解析后的清单"""

    root: Path
    sources: list[SourceIdentity] = field(default_factory=list)
    requirements: list[Requirement] = field(default_factory=list)
    group_selectors: dict[str, frozenset[str]] = field(default_factory=dict)
    path: Path | None = None

    def __post_init__(self) -> None:
        self.requirements = _merge_requirements(self.requirements)

    @classmethod
    def load(cls, path: str | Path) -> Manifest:
        p = Path(path).resolve()
        if not p.exists():
            raise ManifestError(f"清单文件不存在: {p}")
        try:
            data = load_yaml(p)
        except yaml.YAMLError as e:
            raise ManifestError(f"清单文件格式错误 {p}: {e}") from e
        manifest = cls.from_dict(data, root=p.parent)
        manifest.path = p
        logger.info("已加载清单 %s: %d 个依赖", p, len(manifest.requirements))
        return manifest

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, root: Path) -> Manifest:
        sources = [
            SourceIdentity.registry(_absolute_uri(str(uri), root))
            for uri in data.get("sources") or []
        ]
        requirements = [
            _parse_requirement(entry, root) for entry in data.get("dependencies") or []
        ]
        selectors = {
            str(name): frozenset(str(g) for g in (groups or []))
            for name, groups in (data.get("group_selectors") or {}).items()
        }
        return cls(
            root=root, sources=sources, requirements=requirements,
            group_selectors=selectors,
        )

    @property
    def groups(self) -> frozenset[str]:
        """清单中出现过的全部分组"""
        result = {DEFAULT_GROUP}
        for req in self.requirements:
            result |= req.groups
        return frozenset(result)

    @property
    def pinned_sources(self) -> list[SourceIdentity]:
        """被依赖显式绑定的 VCS / path 来源（去重，保持声明顺序）"""
        seen: dict[SourceIdentity, None] = {}
        for req in self.requirements:
            if req.source is not None:
                seen.setdefault(req.source, None)
        return list(seen)

    def get(self, name: str) -> Requirement | None:
        for req in self.requirements:
            if req.name == name:
                return req
        return None

    def expand_groups(self, names: list[str] | frozenset[str]) -> frozenset[str]:
        """把分组选择器展开为分组名，未知名字按分组名本身处理"""
        result: set[str] = set()
        for name in names:
            result |= self.group_selectors.get(name, frozenset({name}))
        return frozenset(result)


def _absolute_uri(uri: str, root: Path) -> str:
    path = local_path(uri)
    if path is None or uri.startswith("file://"):
        return uri
    return str((root / path).resolve())


def _parse_requirement(entry: Any, root: Path) -> Requirement:
    if isinstance(entry, str):
        parts = entry.split(None, 1)
        entry = {"name": parts[0], "version": parts[1] if len(parts) > 1 else ""}
    if not isinstance(entry, dict):
        raise ManifestError(f"无法识别的依赖声明: {entry!r}")

    name = str(entry.get("name", ""))
    source: SourceIdentity | None = None
    try:
        if entry.get("vcs"):
            source = SourceIdentity.vcs(
                _absolute_uri(str(entry["vcs"]), root),
                branch=str(entry.get("branch", "") or ""),
                tag=str(entry.get("tag", "") or ""),
                ref=str(entry.get("ref", "") or ""),
                submodules=bool(entry.get("submodules", False)),
            )
        elif entry.get("path"):
            source = SourceIdentity.path(str((root / str(entry["path"])).resolve()))
        return Requirement(
            name=name,
            constraint=str(entry.get("version", "") or ""),
            source=source,
            groups=frozenset(str(g) for g in entry.get("groups") or [DEFAULT_GROUP]),
            platforms=frozenset(str(p) for p in entry.get("platforms") or []),
        )
    except ValidationError as e:
        raise ManifestError(f"依赖声明无效 {name or entry!r}: {e}") from e


def _merge_requirements(requirements: list[Requirement]) -> list[Requirement]:
    """同名同来源的声明合并分组与平台；同名不同来源或约束矛盾时报错"""
    merged: dict[str, Requirement] = {}
    for req in requirements:
        prev = merged.get(req.name)
        if prev is None:
            merged[req.name] = req
            continue
        if prev.source != req.source:
            raise ManifestError(
                f"依赖 {req.name} 被声明在不同来源: "
                f"{prev.source or '默认源'} / {req.source or '默认源'}"
            )
        if prev.constraint != req.constraint:
            raise ManifestError(
                f"依赖 {req.name} 的版本约束矛盾: "
                f"{prev.constraint or '任意'} / {req.constraint or '任意'}"
            )
        merged[req.name] = Requirement(
            name=req.name, constraint=req.constraint, source=req.source,
            groups=prev.groups | req.groups,
            platforms=(prev.platforms | req.platforms)
            if prev.platforms and req.platforms else frozenset(),
        )
    return list(merged.values())
