"""核心数据模型

所有核心数据类集中定义，消除 resolver ↔ lockfile ↔ sources 的循环依赖。
Requirement / Specification / SourceIdentity 均为不可变对象。
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from packaging.version import Version

from bundlekit.core.exceptions import ValidationError
from bundlekit.core.version import normalize_constraint, parse_version, satisfies

SOURCE_REGISTRY = "registry"
SOURCE_VCS = "vcs"
SOURCE_PATH = "path"
SOURCE_KINDS = (SOURCE_PATH, SOURCE_REGISTRY, SOURCE_VCS)

DEFAULT_GROUP = "default"
ANY_PLATFORM = "any"


# =========================================================================
# 来源标识
# =========================================================================


@dataclass(frozen=True)
class SourceIdentity:
    """来源标识，相等当且仅当 kind 和全部定义字段相同

    VCS 解析出的具体 revision 不属于标识，记录在锁文件的来源条目上。
    """

    kind: str
    uri: str
    branch: str = ""
    tag: str = ""
    ref: str = ""
    submodules: bool = False

    def __post_init__(self) -> None:
        if self.kind not in SOURCE_KINDS:
            raise ValidationError(f"不支持的来源类型: {self.kind}")
        if not self.uri:
            raise ValidationError(f"{self.kind} 来源必须指定地址")
        object.__setattr__(self, "uri", self.uri.rstrip("/") or self.uri)
        pins = [p for p in (self.branch, self.tag, self.ref) if p]
        if self.kind != SOURCE_VCS and (pins or self.submodules):
            raise ValidationError(
                f"{self.kind} 来源不支持 branch/tag/ref/submodules: {self.uri}"
            )
        if len(pins) > 1:
            raise ValidationError(f"branch / tag / ref 只能指定一个: {self.uri}")

    @classmethod
    def registry(cls, uri: str) -> SourceIdentity:
        return cls(SOURCE_REGISTRY, uri)

    @classmethod
    def vcs(
        cls, uri: str, *, branch: str = "", tag: str = "", ref: str = "",
        submodules: bool = False,
    ) -> SourceIdentity:
        return cls(SOURCE_VCS, uri, branch, tag, ref, submodules)

    @classmethod
    def path(cls, path: str) -> SourceIdentity:
        return cls(SOURCE_PATH, path)

    @property
    def key(self) -> str:
        """锁文件中引用来源用的稳定文本键"""
        text = f"{self.kind}:{self.uri}"
        for label, value in (("branch", self.branch), ("tag", self.tag), ("ref", self.ref)):
            if value:
                text += f"#{label}={value}"
        if self.submodules:
            text += "+submodules"
        return text

    @property
    def ref_spec(self) -> str:
        """需要在远端解析的引用，未指定时跟随远端默认分支"""
        return self.branch or self.tag or self.ref or "HEAD"

    @property
    def floating(self) -> bool:
        """跟随分支（而非 tag / 固定 revision）的 VCS 来源"""
        return self.kind == SOURCE_VCS and not self.tag and not self.ref

    def sort_key(self) -> tuple[str, str]:
        return (self.kind, self.key)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "uri": self.uri}
        if self.kind == SOURCE_VCS:
            for label in ("branch", "tag", "ref"):
                if getattr(self, label):
                    data[label] = getattr(self, label)
            data["submodules"] = self.submodules
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceIdentity:
        return cls(
            kind=str(data.get("kind", "")),
            uri=str(data.get("uri", "")),
            branch=str(data.get("branch", "") or ""),
            tag=str(data.get("tag", "") or ""),
            ref=str(data.get("ref", "") or ""),
            submodules=bool(data.get("submodules", False)),
        )

    def __str__(self) -> str:
        if self.kind == SOURCE_VCS:
            return f"{self.uri} (at {self.ref_spec})"
        return self.uri


# =========================================================================
# 依赖声明 / 包规格
# =========================================================================


@dataclass(frozen=True)
class Requirement:
    """一条依赖声明：名字 + 版本约束 + 可选来源 + 分组 + 平台"""

    name: str
    constraint: str = ""
    source: SourceIdentity | None = None
    groups: frozenset[str] = frozenset({DEFAULT_GROUP})
    platforms: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("依赖 name 为必填")
        object.__setattr__(self, "constraint", normalize_constraint(self.constraint))
        object.__setattr__(self, "groups", frozenset(self.groups) or frozenset({DEFAULT_GROUP}))
        object.__setattr__(self, "platforms", frozenset(self.platforms))

    def satisfied_by(self, version: str) -> bool:
        return satisfies(version, self.constraint)

    def is_active(self, groups: Iterable[str], platform: str) -> bool:
        """分组与所选分组有交集，且平台集合为空或包含 platform"""
        if self.platforms and platform not in self.platforms:
            return False
        return bool(self.groups & frozenset(groups))

    def __str__(self) -> str:
        return f"{self.name} ({self.constraint})" if self.constraint else self.name


@dataclass(frozen=True)
class Specification:
    """某个包的一个具体版本；相等性只看 name / version / platform / source"""

    name: str
    version: str
    source: SourceIdentity
    platform: str = ANY_PLATFORM
    dependencies: tuple[Requirement, ...] = field(default=(), compare=False)
    executables: tuple[str, ...] = field(default=(), compare=False)
    load_paths: tuple[str, ...] = field(default=("lib",), compare=False)
    subdir: str = field(default="", compare=False)
    revision: str = field(default="", compare=False)

    @property
    def parsed_version(self) -> Version:
        return parse_version(self.version)

    @property
    def full_name(self) -> str:
        if self.platform == ANY_PLATFORM:
            return f"{self.name}-{self.version}"
        return f"{self.name}-{self.version}-{self.platform}"

    def supports(self, platform: str) -> bool:
        return self.platform in (ANY_PLATFORM, platform)

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


# =========================================================================
# 依赖图
# =========================================================================


@dataclass
class DependencyGraph:
    """(name, platform) -> Specification，对依赖闭合

    requirements 为解析时的顶层依赖声明，用于按分组计算可达子集。
    """

    specs: dict[tuple[str, str], Specification] = field(default_factory=dict)
    requirements: list[Requirement] = field(default_factory=list)
    platform: str = ANY_PLATFORM

    def add(self, spec: Specification) -> None:
        self.specs[(spec.name, spec.platform)] = spec

    def get(self, name: str) -> Specification | None:
        for (spec_name, _), spec in self.specs.items():
            if spec_name == name:
                return spec
        return None

    def __contains__(self, name: object) -> bool:
        return any(spec_name == name for spec_name, _ in self.specs)

    def __iter__(self) -> Iterator[Specification]:
        return iter(sorted(self.specs.values(), key=lambda s: (s.name, s.platform)))

    def __len__(self) -> int:
        return len(self.specs)

    def names(self) -> set[str]:
        return {name for name, _ in self.specs}

    def for_groups(self, groups: Iterable[str]) -> list[Specification]:
        """从所选分组的顶层依赖出发，沿依赖边可达的全部包"""
        groups = frozenset(groups)
        queue = deque(
            r.name for r in self.requirements if r.is_active(groups, self.platform)
        )
        seen: dict[str, Specification] = {}
        while queue:
            name = queue.popleft()
            if name in seen:
                continue
            spec = self.get(name)
            if spec is None:
                continue
            seen[name] = spec
            queue.extend(
                dep.name for dep in spec.dependencies
                if not dep.platforms or self.platform in dep.platforms
            )
        return sorted(seen.values(), key=lambda s: (s.name, s.platform))

    def dependents_of(self, names: Iterable[str]) -> set[str]:
        """直接或间接依赖 names 中任一包的包名（不含 names 自身）"""
        reverse: dict[str, set[str]] = {}
        for spec in self.specs.values():
            for dep in spec.dependencies:
                reverse.setdefault(dep.name, set()).add(spec.name)
        start = set(names)
        result: set[str] = set()
        queue = deque(start)
        while queue:
            for parent in reverse.get(queue.popleft(), ()):
                if parent not in result and parent not in start:
                    result.add(parent)
                    queue.append(parent)
        return result

    def dependencies_of(self, names: Iterable[str]) -> set[str]:
        """names 直接或间接依赖的包名（不含 names 自身）"""
        start = set(names)
        result: set[str] = set()
        queue = deque(start)
        while queue:
            spec = self.get(queue.popleft())
            if spec is None:
                continue
            for dep in spec.dependencies:
                if dep.name not in result and dep.name not in start:
                    result.add(dep.name)
                    queue.append(dep.name)
        return result


# =========================================================================
# 操作参数
# =========================================================================


@dataclass(frozen=True)
class ResolveOptions:
    """一次解析的参数

    update_scope: 显式允许浮动的包名
    update_all:   忽略旧锁，全部重新解析
    """

    groups: frozenset[str]
    platform: str
    update_scope: frozenset[str] = frozenset()
    update_all: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", frozenset(self.groups))
        object.__setattr__(self, "update_scope", frozenset(self.update_scope))
        if not self.groups:
            raise ValidationError("至少需要选择一个分组")
        if not self.platform:
            raise ValidationError("platform 为必填")

    def unlocked(self, name: str) -> bool:
        return self.update_all or name in self.update_scope


@dataclass(frozen=True)
class UpdateRequest:
    """update 请求：names 为包名，source_names 为按来源解锁的包名"""

    names: frozenset[str] = frozenset()
    source_names: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "names", frozenset(self.names))
        object.__setattr__(self, "source_names", frozenset(self.source_names))

    @property
    def everything(self) -> bool:
        return not self.names and not self.source_names


@dataclass(frozen=True)
class InstallOptions:
    """install 参数：without 为不落盘的分组"""

    without: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "without", frozenset(self.without))
        if DEFAULT_GROUP in self.without:
            raise ValidationError(f"不能排除 {DEFAULT_GROUP} 分组")
