"""锁文件（bundle.lock）读写

锁文件是 YAML 文本，布局固定且全部列表有序，相同依赖图总是得到相同字节:

    sources:        按 kind、再按 key 排序；VCS 来源带解析出的 revision
    packages:       按 name、再按 platform 排序；dependencies 按名字排序
    dependencies:   清单顶层依赖（名字、约束、来源、分组、平台）
    platforms:      解析时的平台
    without:        install 时排除的分组

对任何合法锁文本 L，Lockfile.loads(L).dumps() == L。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from bundlekit.core.exceptions import CorruptLock, ManifestError, ValidationError
from bundlekit.core.models import (
    ANY_PLATFORM,
    SOURCE_VCS,
    DependencyGraph,
    Requirement,
    SourceIdentity,
    Specification,
)
from bundlekit.utils.yaml_io import atomic_write, dump_yaml, parse_yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockedSource:
    """锁定的来源：标识 + VCS 解析出的 revision"""

    identity: SourceIdentity
    revision: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = self.identity.to_dict()
        if self.identity.kind == SOURCE_VCS:
            data["revision"] = self.revision
        return data


@dataclass(frozen=True)
class LockEntry:
    """锁定的单个包"""

    name: str
    version: str
    platform: str
    source: str
    dependencies: tuple[Requirement, ...] = ()
    subdir: str = ""
    revision: str = ""

    def matches(self, spec: Specification) -> bool:
        return (
            spec.name == self.name
            and spec.version == self.version
            and spec.platform == self.platform
            and spec.source.key == self.source
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "platform": self.platform,
            "source": self.source,
            "dependencies": [_dependency_text(d) for d in self.dependencies],
        }
        if self.subdir:
            data["subdir"] = self.subdir
        return data


def _dependency_text(req: Requirement) -> str:
    return f"{req.name} {req.constraint}" if req.constraint else req.name


def _parse_dependency(text: Any) -> Requirement:
    parts = str(text).split(None, 1)
    return Requirement(name=parts[0], constraint=parts[1] if len(parts) > 1 else "")


@dataclass
class Lockfile:
    """锁文件内容"""

    sources: list[LockedSource] = field(default_factory=list)
    entries: list[LockEntry] = field(default_factory=list)
    requirements: list[Requirement] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)
    without: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        self.sources = sorted(self.sources, key=lambda s: s.identity.sort_key())
        self.entries = sorted(self.entries, key=lambda e: (e.name, e.platform))
        self.requirements = sorted(self.requirements, key=lambda r: r.name)
        self.platforms = sorted(set(self.platforms))
        self.without = frozenset(self.without)

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def from_graph(
        cls,
        graph: DependencyGraph,
        sources: list[LockedSource],
        *,
        without: frozenset[str] = frozenset(),
    ) -> Lockfile:
        entries = [
            LockEntry(
                name=spec.name,
                version=spec.version,
                platform=spec.platform,
                source=spec.source.key,
                dependencies=tuple(sorted(
                    (Requirement(name=d.name, constraint=d.constraint) for d in spec.dependencies),
                    key=lambda r: r.name,
                )),
                subdir=spec.subdir,
                revision=spec.revision,
            )
            for spec in graph
        ]
        return cls(
            sources=list(sources),
            entries=entries,
            requirements=list(graph.requirements),
            platforms=[graph.platform],
            without=without,
        )

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def entry(self, name: str) -> LockEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def source(self, key: str) -> LockedSource | None:
        for locked in self.sources:
            if locked.identity.key == key:
                return locked
        return None

    def revision_for(self, identity: SourceIdentity) -> str:
        locked = self.source(identity.key)
        return locked.revision if locked else ""

    def names_from(self, keys: set[str]) -> set[str]:
        """来自给定来源的全部包名"""
        return {e.name for e in self.entries if e.source in keys}

    def to_graph(self) -> DependencyGraph:
        """按锁文件重建依赖图（只含重现所需的字段）"""
        graph = DependencyGraph(
            requirements=list(self.requirements),
            platform=self.platforms[0] if self.platforms else ANY_PLATFORM,
        )
        for entry in self.entries:
            locked = self.source(entry.source)
            if locked is None:
                raise CorruptLock(f"包 {entry.name} 引用了未声明的来源: {entry.source}")
            graph.add(Specification(
                name=entry.name, version=entry.version, source=locked.identity,
                platform=entry.platform, dependencies=entry.dependencies,
                subdir=entry.subdir, revision=locked.revision,
            ))
        return graph

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources": [s.to_dict() for s in self.sources],
            "packages": [e.to_dict() for e in self.entries],
            "dependencies": [_requirement_to_dict(r) for r in self.requirements],
            "platforms": list(self.platforms),
            "without": sorted(self.without),
        }

    def dumps(self) -> str:
        return dump_yaml(self.to_dict())

    @classmethod
    def loads(cls, text: str) -> Lockfile:
        try:
            data = parse_yaml(text, source="lockfile")
        except yaml.YAMLError as e:
            raise CorruptLock(f"锁文件不是合法 YAML: {e}") from e
        if not isinstance(data, dict):
            raise CorruptLock("锁文件顶层必须是映射")
        try:
            return cls._from_dict(data)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise CorruptLock(f"锁文件结构无效: {e!r}") from e
        except (ValidationError, ManifestError) as e:
            raise CorruptLock(f"锁文件内容无效: {e}") from e

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> Lockfile:
        missing = [k for k in ("sources", "packages", "dependencies") if k not in data]
        if missing:
            raise CorruptLock(f"锁文件缺少段: {', '.join(missing)}")

        sources = [
            LockedSource(
                identity=SourceIdentity.from_dict(raw),
                revision=str(raw.get("revision", "") or ""),
            )
            for raw in _as_list(data["sources"], "sources")
        ]
        revisions = {s.identity.key: s.revision for s in sources}

        entries = []
        for raw in _as_list(data["packages"], "packages"):
            key = str(raw["source"])
            if key not in revisions:
                raise CorruptLock(f"包 {raw['name']} 引用了未声明的来源: {key}")
            entries.append(LockEntry(
                name=str(raw["name"]),
                version=str(raw["version"]),
                platform=str(raw.get("platform") or ANY_PLATFORM),
                source=key,
                dependencies=tuple(
                    _parse_dependency(d) for d in _as_list(raw.get("dependencies") or [], "dependencies")
                ),
                subdir=str(raw.get("subdir", "") or ""),
                revision=revisions[key],
            ))

        source_ids = {s.identity.key: s.identity for s in sources}
        requirements = [
            _requirement_from_dict(raw, source_ids)
            for raw in _as_list(data["dependencies"], "dependencies")
        ]
        return cls(
            sources=sources,
            entries=entries,
            requirements=requirements,
            platforms=[str(p) for p in data.get("platforms") or []],
            without=frozenset(str(g) for g in data.get("without") or []),
        )

    @classmethod
    def read(cls, path: str | Path) -> Lockfile | None:
        """读取锁文件，不存在返回 None"""
        p = Path(path)
        if not p.exists():
            return None
        return cls.loads(p.read_text(encoding="utf-8"))

    def write(self, path: str | Path) -> None:
        atomic_write(Path(path), self.dumps())
        logger.info("锁文件已写入: %s (%d 个包)", path, len(self.entries))


def _as_list(value: Any, label: str) -> list[Any]:
    if not isinstance(value, list):
        raise CorruptLock(f"锁文件段 {label} 必须是列表")
    return value


def _requirement_to_dict(req: Requirement) -> dict[str, Any]:
    data: dict[str, Any] = {"name": req.name}
    if req.constraint:
        data["version"] = req.constraint
    if req.source is not None:
        data["source"] = req.source.key
    data["groups"] = sorted(req.groups)
    if req.platforms:
        data["platforms"] = sorted(req.platforms)
    return data


def _requirement_from_dict(
    raw: dict[str, Any], sources: dict[str, SourceIdentity],
) -> Requirement:
    source = None
    if raw.get("source"):
        key = str(raw["source"])
        if key not in sources:
            raise CorruptLock(f"依赖 {raw.get('name')} 引用了未声明的来源: {key}")
        source = sources[key]
    return Requirement(
        name=str(raw["name"]),
        constraint=str(raw.get("version", "") or ""),
        source=source,
        groups=frozenset(str(g) for g in raw.get("groups") or []),
        platforms=frozenset(str(p) for p in raw.get("platforms") or []),
    )
