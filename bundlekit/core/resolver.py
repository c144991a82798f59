"""依赖解析器 — 带冲突回跳的回溯搜索

搜索状态保存在显式的选择点栈上（不使用递归），每个选择点记录:
包名、排好序的候选、当前下标、选择前的状态快照、对它提出约束的包名。

候选顺序:
  1. 旧锁中的版本（名字不在 update 范围内、也不是范围内包在旧锁中的传递依赖时）
  2. 来源优先级（默认 path > vcs > registry；清单绑定来源的包只看该来源）
  3. 版本从新到旧
  4. 同版本时平台专用包优先于 any

冲突时回跳到冲突集中最近的、仍有候选的选择点；选择点耗尽时把
对它提出约束的包名并入冲突集继续回跳。栈空则抛 ResolutionFailure。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from bundlekit.core.config import DEFAULT_SOURCE_PRIORITY, Config, get_config
from bundlekit.core.exceptions import Conflict, ConflictCause, ManifestError, ResolutionFailure
from bundlekit.core.lockfile import Lockfile
from bundlekit.core.models import (
    ANY_PLATFORM,
    DependencyGraph,
    Requirement,
    ResolveOptions,
    SourceIdentity,
    Specification,
)
from bundlekit.core.protocols import Source

logger = logging.getLogger(__name__)


# =========================================================================
# 候选索引
# =========================================================================


class CandidateIndex:
    """按包名缓存候选列表；独立的包名并发预取"""

    def __init__(
        self,
        sources: list[Source],
        *,
        pins: dict[str, SourceIdentity],
        platform: str,
        priority: list[str] | None = None,
        max_workers: int = 8,
    ) -> None:
        self.sources = list(sources)
        self.pins = dict(pins)
        self.platform = platform
        self.priority = list(priority or DEFAULT_SOURCE_PRIORITY)
        self._by_identity = {s.identity: s for s in self.sources}
        self._futures: dict[str, Future[list[Specification]]] = {}
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers))

        for name, identity in self.pins.items():
            if identity not in self._by_identity:
                raise ManifestError(f"依赖 {name} 绑定的来源未注册: {identity}")

    def prefetch(self, names: Iterable[str]) -> None:
        for name in names:
            if name not in self._futures:
                self._futures[name] = self._pool.submit(self._lookup, name)

    def get(self, name: str) -> list[Specification]:
        """name 的全部可用候选（已排序），来源不可达时抛 SourceUnavailable"""
        self.prefetch([name])
        return list(self._futures[name].result())

    def close(self) -> None:
        self._pool.shutdown(wait=True, cancel_futures=True)

    def _rank(self, kind: str) -> int:
        return self.priority.index(kind) if kind in self.priority else len(self.priority)

    def _lookup(self, name: str) -> list[Specification]:
        pinned = self.pins.get(name)
        sources = [self._by_identity[pinned]] if pinned is not None else self.sources
        found: list[Specification] = []
        for source in sources:
            found.extend(
                s for s in source.candidates(name)
                if s.name == name and s.supports(self.platform)
            )
        specs = list(dict.fromkeys(found))
        specs.sort(key=lambda s: s.platform == ANY_PLATFORM)
        specs.sort(key=lambda s: s.parsed_version, reverse=True)
        specs.sort(key=lambda s: self._rank(s.source.kind))
        logger.debug("候选 %s: %s", name, ", ".join(str(s) for s in specs) or "(无)")
        return specs


# =========================================================================
# 搜索状态
# =========================================================================


@dataclass(frozen=True)
class _Constraint:
    requirement: Requirement
    parent: str = ""
    chain: tuple[str, ...] = ()

    def cause(self) -> ConflictCause:
        return ConflictCause(self.requirement.name, self.requirement.constraint, self.chain)


@dataclass
class _State:
    activated: dict[str, Specification] = field(default_factory=dict)
    constraints: dict[str, list[_Constraint]] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)

    def copy(self) -> _State:
        return _State(
            activated=dict(self.activated),
            constraints={k: list(v) for k, v in self.constraints.items()},
            order=list(self.order),
        )

    def require(self, constraint: _Constraint) -> None:
        name = constraint.requirement.name
        if name not in self.constraints:
            self.order.append(name)
        self.constraints.setdefault(name, []).append(constraint)

    def next_unresolved(self) -> str | None:
        for name in self.order:
            if name not in self.activated:
                return name
        return None

    def chain_of(self, name: str) -> tuple[str, ...]:
        constraints = self.constraints.get(name)
        return constraints[0].chain if constraints else ()

    def allows(self, spec: Specification) -> bool:
        return all(
            c.requirement.satisfied_by(spec.version)
            for c in self.constraints.get(spec.name, ())
        )

    def requirers(self, name: str) -> set[str]:
        return {c.parent for c in self.constraints.get(name, ()) if c.parent}

    def activate(self, spec: Specification, platform: str) -> set[str]:
        """选中 spec 并登记其依赖；返回与已选版本冲突的包名"""
        self.activated[spec.name] = spec
        chain = self.chain_of(spec.name) + (str(spec),)
        clashes: set[str] = set()
        for dep in spec.dependencies:
            if dep.platforms and platform not in dep.platforms:
                continue
            self.require(_Constraint(dep, spec.name, chain))
            chosen = self.activated.get(dep.name)
            if chosen is not None and not dep.satisfied_by(chosen.version):
                clashes.add(dep.name)
        return clashes


@dataclass
class _ChoicePoint:
    name: str
    candidates: list[Specification]
    state: _State
    requirers: set[str]
    index: int = -1
    conflicts: set[str] = field(default_factory=set)


# =========================================================================
# 解析器
# =========================================================================


class Resolver:
    """把顶层依赖解析为依赖图"""

    def __init__(self, sources: list[Source], *, config: Config | None = None) -> None:
        self.sources = list(sources)
        self.config = config or get_config()

    def resolve(
        self,
        requirements: list[Requirement],
        options: ResolveOptions,
        prior: Lockfile | None = None,
    ) -> DependencyGraph:
        active = [r for r in requirements if r.is_active(options.groups, options.platform)]
        pins = {r.name: r.source for r in requirements if r.source is not None}
        index = CandidateIndex(
            self.sources, pins=pins, platform=options.platform,
            priority=self.config.source_priority, max_workers=self.config.max_workers,
        )
        try:
            index.prefetch(r.name for r in active)
            if prior is not None:
                index.prefetch(e.name for e in prior.entries)
            search = _Search(index, options, prior)
            chosen = search.run(active)
        finally:
            index.close()

        graph = DependencyGraph(requirements=list(requirements), platform=options.platform)
        for spec in chosen.values():
            graph.add(spec)
        logger.info(
            "解析完成: %d 个包 (%d 次尝试, %d 次回溯)",
            len(graph), search.attempts, search.backtracks,
        )
        return graph


class _Search:
    """单次解析的搜索过程，状态只在调用线程中修改"""

    def __init__(
        self, index: CandidateIndex, options: ResolveOptions, prior: Lockfile | None,
    ) -> None:
        self.index = index
        self.options = options
        self.prior = prior
        # 显式浮动的包及其旧锁中的全部传递依赖都不偏好锁定版本
        self._floating = set(options.update_scope)
        if prior is not None and self._floating:
            self._floating |= prior.to_graph().dependencies_of(self._floating)
        self.attempts = 0
        self.backtracks = 0
        self._last_conflict: Conflict | None = None

    def run(self, requirements: list[Requirement]) -> dict[str, Specification]:
        state = _State()
        for req in requirements:
            state.require(_Constraint(req))

        stack: list[_ChoicePoint] = []
        while True:
            name = state.next_unresolved()
            if name is None:
                return state.activated
            stack.append(_ChoicePoint(
                name=name,
                candidates=self._candidates(name, state),
                state=state,
                requirers=state.requirers(name),
            ))
            state = self._advance(stack)

    def _candidates(self, name: str, state: _State) -> list[Specification]:
        candidates = [s for s in self.index.get(name) if state.allows(s)]
        if not candidates:
            self._last_conflict = Conflict(
                name, tuple(c.cause() for c in state.constraints.get(name, ())),
            )
            return []

        entry = self.prior.entry(name) if self.prior is not None else None
        if entry is not None and not self.options.unlocked(name) and name not in self._floating:
            for i, spec in enumerate(candidates):
                if entry.matches(spec):
                    candidates.insert(0, candidates.pop(i))
                    break
        return candidates

    def _try_next(self, point: _ChoicePoint) -> _State | None:
        while point.index + 1 < len(point.candidates):
            point.index += 1
            spec = point.candidates[point.index]
            self.attempts += 1
            state = point.state.copy()
            clashes = state.activate(spec, self.options.platform)
            if not clashes:
                self.index.prefetch(d.name for d in spec.dependencies)
                return state
            logger.debug("  %s 与已选版本冲突: %s", spec, ", ".join(sorted(clashes)))
            point.conflicts |= clashes
            clash = sorted(clashes)[0]
            self._last_conflict = Conflict(
                clash,
                (ConflictCause(clash, f"=={state.activated[clash].version}", state.chain_of(clash)),)
                + tuple(c.cause() for c in state.constraints[clash] if c.parent == spec.name),
            )
        return None

    def _advance(self, stack: list[_ChoicePoint]) -> _State:
        """在栈顶选择点上取下一个可行候选，必要时回跳"""
        while stack:
            point = stack[-1]
            state = self._try_next(point)
            if state is not None:
                return state

            stack.pop()
            self.backtracks += 1
            conflicts = (point.conflicts | point.requirers) - {point.name}
            while stack and stack[-1].name not in conflicts:
                stack.pop()
            if stack:
                stack[-1].conflicts |= conflicts - {stack[-1].name}
                logger.debug("回跳到 %s (冲突集: %s)", stack[-1].name, ", ".join(sorted(conflicts)))

        raise ResolutionFailure([self._last_conflict] if self._last_conflict else [])
