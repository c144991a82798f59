"""项目级门面 — lock / install / update / check / exec

把清单、漂移检测、解析器、锁文件、物化器和激活器串起来:

    清单 + 旧锁 -> 漂移检测 -> 解析（全部分组） -> 写锁
    锁 -> 物化（排除 without 分组） -> 安装记录
    锁 + 安装记录 -> 激活 -> exec

用法:
    from bundlekit.core.bundle_manager import BundleManager, find_project_root

    bm = BundleManager(find_project_root())
    bm.install(without=["test"])
    bm.update(["rack"])
    code = bm.exec(["rackup", "--help"])
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from bundlekit.core.activator import ENV_MANIFEST, ActivationState, activate, exec_command
from bundlekit.core.config import Config, get_config
from bundlekit.core.drift import DriftReport, detect_drift
from bundlekit.core.exceptions import (
    BundleKitError,
    CorruptLock,
    InstallError,
    ManifestError,
    SourceUnavailable,
    ValidationError,
)
from bundlekit.core.lockfile import LockedSource, Lockfile
from bundlekit.core.manifest import Manifest
from bundlekit.core.materializer import Materializer, read_record
from bundlekit.core.models import (
    SOURCE_PATH,
    SOURCE_VCS,
    DependencyGraph,
    InstallOptions,
    ResolveOptions,
    UpdateRequest,
)
from bundlekit.core.protocols import Source
from bundlekit.core.resolver import Resolver
from bundlekit.core.version import exact_version
from bundlekit.sources import PathSource, RegistrySource, VcsCache, VcsSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


def find_project_root(start: str | Path | None = None, *, config: Config | None = None) -> Path:
    """向上查找最近的清单所在目录

    未指定 start 时优先使用 BUNDLEKIT_MANIFEST（嵌套 exec 沿用外层项目）。
    """
    cfg = config or get_config()
    if start is None:
        env_manifest = os.getenv(ENV_MANIFEST, "")
        if env_manifest:
            path = Path(env_manifest).resolve()
            if not path.is_file():
                raise ManifestError(f"{ENV_MANIFEST} 指向的清单不存在: {path}")
            return path.parent
    current = Path(start or os.getcwd()).resolve()
    for directory in (current, *current.parents):
        if (directory / cfg.manifest_name).is_file():
            return directory
    raise ManifestError(f"找不到 {cfg.manifest_name}（从 {current} 向上查找）")


@dataclass
class _Resolution:
    graph: DependencyGraph
    lockfile: Lockfile
    sources: list[Source]


class BundleManager:
    """单个项目（一个清单 + 一个锁 + 一个安装目录）的依赖管理入口"""

    def __init__(
        self,
        root: str | Path,
        *,
        config: Config | None = None,
        cache: VcsCache | None = None,
    ) -> None:
        self.config = config or get_config()
        self.root = Path(root).resolve()
        self.manifest_path = self.root / self.config.manifest_name
        self.lockfile_path = self.root / self.config.lockfile_name
        self.install_root = self.root / self.config.install_dir
        self.cache = cache or VcsCache(
            self.config.resolved_cache_dir, lock_timeout=self.config.lock_timeout,
        )
        self._manifest: Manifest | None = None

    @property
    def manifest(self) -> Manifest:
        if self._manifest is None:
            self._manifest = Manifest.load(self.manifest_path)
        return self._manifest

    def read_lock(self) -> Lockfile | None:
        return Lockfile.read(self.lockfile_path)

    # ------------------------------------------------------------------
    # 解析
    # ------------------------------------------------------------------

    def drift(self) -> DriftReport:
        """清单相对锁文件的漂移（不解析、不写锁）"""
        return detect_drift(self.manifest.requirements, self.manifest.sources, self.read_lock())

    def lock(self, update: UpdateRequest | None = None) -> Lockfile:
        """解析并写锁；update 为 None 时只重新解析漂移的包"""
        return self._resolve(update).lockfile

    def update(
        self, names: Iterable[str] = (), source_names: Iterable[str] = (),
    ) -> Lockfile:
        """update 不带参数时全部重新解析；否则只放开指定的包 / 来源"""
        return self.lock(UpdateRequest(names=frozenset(names), source_names=frozenset(source_names)))

    def _resolve(
        self,
        update: UpdateRequest | None,
        *,
        without: frozenset[str] | None = None,
    ) -> _Resolution:
        manifest = self.manifest
        prior = self.read_lock()
        drift = detect_drift(manifest.requirements, manifest.sources, prior)
        scope, update_all, unlocked = self._update_scope(manifest, prior, drift, update)

        def attempt() -> _Resolution:
            sources = self._build_sources(manifest, prior, unlocked, update_all)
            options = ResolveOptions(
                groups=manifest.groups,
                platform=self.config.resolved_platform,
                update_scope=scope,
                update_all=update_all,
            )
            graph = Resolver(sources, config=self.config).resolve(
                manifest.requirements, options, prior,
            )
            if without is not None:
                recorded = without
            else:
                recorded = prior.without if prior is not None else frozenset()
            lockfile = Lockfile.from_graph(
                graph, self._locked_sources(manifest, sources, graph), without=recorded,
            )
            return _Resolution(graph, lockfile, sources)

        resolution = self._with_retries(attempt)
        text = resolution.lockfile.dumps()
        if prior is None or prior.dumps() != text:
            resolution.lockfile.write(self.lockfile_path)
        else:
            logger.info("锁文件无变化: %s", self.lockfile_path)
        return resolution

    def _update_scope(
        self,
        manifest: Manifest,
        prior: Lockfile | None,
        drift: DriftReport,
        update: UpdateRequest | None,
    ) -> tuple[frozenset[str], bool, frozenset[str]]:
        """返回 (放开的包名, 是否全部放开, 放开的 VCS 来源键)"""
        if prior is None or (update is not None and update.everything):
            return frozenset(), True, frozenset()
        if update is None:
            return frozenset(drift.names), False, frozenset()

        known = {r.name for r in manifest.requirements} | {e.name for e in prior.entries}
        unknown = sorted((update.names | update.source_names) - known)
        if unknown:
            raise ValidationError(f"清单和锁文件中都没有这些包: {', '.join(unknown)}")

        scope = set(drift.names) | set(update.names)
        unlocked: set[str] = set()
        for name in update.names | update.source_names:
            key = self._source_key(manifest, prior, name)
            if key is None:
                continue
            unlocked.add(key)
            if name in update.source_names:
                scope |= prior.names_from({key})
                scope.add(name)
        logger.info("放开的包: %s", ", ".join(sorted(scope)) or "(无)")
        return frozenset(scope), False, frozenset(unlocked)

    @staticmethod
    def _source_key(manifest: Manifest, prior: Lockfile, name: str) -> str | None:
        req = manifest.get(name)
        if req is not None and req.source is not None:
            return req.source.key
        entry = prior.entry(name)
        return entry.source if entry is not None else None

    def _build_sources(
        self,
        manifest: Manifest,
        prior: Lockfile | None,
        unlocked: frozenset[str],
        update_all: bool,
    ) -> list[Source]:
        sources: list[Source] = [RegistrySource(identity) for identity in manifest.sources]
        for identity in manifest.pinned_sources:
            defaults = {
                r.name: exact_version(r.constraint) or "0"
                for r in manifest.requirements if r.source == identity
            }
            if identity.kind == SOURCE_VCS:
                sources.append(VcsSource(
                    identity, self.cache,
                    locked_revision=prior.revision_for(identity) if prior is not None else "",
                    unlocked=update_all or identity.key in unlocked,
                    default_versions=defaults,
                ))
            elif identity.kind == SOURCE_PATH:
                sources.append(PathSource(identity, default_versions=defaults))
        return sources

    @staticmethod
    def _locked_sources(
        manifest: Manifest, sources: list[Source], graph: DependencyGraph,
    ) -> list[LockedSource]:
        used = {spec.source for spec in graph}
        locked = [LockedSource(identity) for identity in manifest.sources]
        for source in sources:
            if source.identity.kind == SOURCE_VCS and source.identity in used:
                locked.append(LockedSource(source.identity, source.revision))
            elif source.identity.kind == SOURCE_PATH and source.identity in used:
                locked.append(LockedSource(source.identity))
        return locked

    def _with_retries(self, func: Callable[[], T]) -> T:
        """来源暂时不可达时按 config.fetch_retries 重试"""
        attempts = max(0, self.config.fetch_retries) + 1
        for attempt in range(1, attempts + 1):
            try:
                return func()
            except (SourceUnavailable, InstallError) as e:
                retryable = isinstance(e, SourceUnavailable) or isinstance(
                    e.__cause__, SourceUnavailable,
                )
                if not retryable or attempt == attempts:
                    raise
                logger.warning("来源不可用，重试 (%d/%d): %s", attempt, attempts - 1, e)
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # 安装 / 检查
    # ------------------------------------------------------------------

    def install(self, without: Iterable[str] | None = None) -> dict[str, Path]:
        """按锁安装（锁缺失或漂移时先解析），返回 name -> 包目录

        without 为 None 时沿用锁文件中记录的排除分组。
        """
        manifest = self.manifest
        if without is None:
            prior = self.read_lock()
            excluded = prior.without if prior is not None else frozenset()
        else:
            excluded = manifest.expand_groups(list(without))
        options = InstallOptions(without=excluded)

        resolution = self._resolve(None, without=options.without)
        groups = manifest.groups - options.without
        materializer = Materializer(resolution.sources, config=self.config)
        installed = self._with_retries(
            lambda: materializer.install(resolution.graph, self.install_root, groups),
        )
        if options.without:
            logger.info("已排除分组: %s", ", ".join(sorted(options.without)))
        return installed

    def check(self) -> list[str]:
        """检查锁是否与清单一致、所需的包是否都已安装；返回问题列表"""
        try:
            prior = self.read_lock()
        except CorruptLock as e:
            return [str(e)]
        if prior is None:
            return [f"尚未生成锁文件: {self.lockfile_path}"]

        drift = detect_drift(self.manifest.requirements, self.manifest.sources, prior)
        problems = [f"{name}: {reason}" for name, reason in sorted(drift.reasons.items())]
        if problems:
            return problems
        groups = self.manifest.groups - prior.without
        for spec in prior.to_graph().for_groups(groups):
            if not read_record(self.install_root, spec):
                problems.append(f"{spec.full_name}: 未安装")
        return problems

    # ------------------------------------------------------------------
    # 激活
    # ------------------------------------------------------------------

    def activation(self, without: Iterable[str] | None = None) -> ActivationState:
        """由当前锁得到受限环境；清单有漂移时先重新解析"""
        lockfile = self.read_lock()
        if lockfile is None or not self.drift().empty:
            logger.info("锁文件缺失或与清单不一致，重新解析")
            lockfile = self.lock()
        excluded = (
            lockfile.without if without is None
            else self.manifest.expand_groups(list(without))
        )
        return activate(
            lockfile, self.install_root, self.manifest.groups - excluded,
            manifest_path=str(self.manifest_path),
            lockfile_path=str(self.lockfile_path),
            without=excluded,
        )

    def exec(self, argv: list[str], env: dict[str, str] | None = None) -> int:
        """在受限环境中执行命令，返回退出码"""
        state = self.activation()
        return exec_command(argv, state, os.environ if env is None else env)

    def show(self) -> list[tuple[str, str, str]]:
        """锁定的包: (name, version, source)"""
        lockfile = self.read_lock()
        if lockfile is None:
            raise BundleKitError(f"尚未生成锁文件: {self.lockfile_path}")
        return [(e.name, e.version, _describe_source(lockfile, e.source)) for e in lockfile.entries]


def _describe_source(lockfile: Lockfile, key: str) -> str:
    locked = lockfile.source(key)
    if locked is None:
        return key
    text = str(locked.identity)
    if locked.revision:
        text += f" @ {locked.revision[:12]}"
    return text


