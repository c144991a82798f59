"""VCS（git）来源

revision 的确定规则:
  - 有锁定 revision 且未被解锁: 直接复用（缓存缺失该 revision 时才 fetch）
  - tag / 固定 ref: 一经解析即不变，解锁也保留锁定 revision
  - 跟随分支且被解锁: fetch 远端，取分支最新 tip

仓库中的包由 package.yml 描述；没有描述文件时按清单给出的名字和版本生成规格。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from bundlekit.core.exceptions import SourceUnavailable
from bundlekit.core.models import SourceIdentity, Specification
from bundlekit.sources.descriptor import scan_tree, synthesize
from bundlekit.sources.vcs_cache import VcsCache

logger = logging.getLogger(__name__)


class VcsSource:
    """由 VcsCache 支撑的 git 来源"""

    def __init__(
        self,
        identity: SourceIdentity,
        cache: VcsCache,
        *,
        locked_revision: str = "",
        unlocked: bool = False,
        default_versions: dict[str, str] | None = None,
    ) -> None:
        self.identity = identity
        self.cache = cache
        self.locked_revision = locked_revision
        self.unlocked = unlocked
        self.default_versions = dict(default_versions or {})
        self._revision = ""
        self._specs: list[Specification] | None = None
        self._lock = threading.Lock()
        self._checkout_lock = threading.Lock()
        self._specs_lock = threading.Lock()

    @property
    def revision(self) -> str:
        """本次操作使用的 revision（首次访问时解析）"""
        with self._lock:
            if not self._revision:
                self._revision = self._resolve_revision()
            return self._revision

    def _resolve_revision(self) -> str:
        uri = self.identity.uri
        keep_locked = self.locked_revision and (
            not self.unlocked or not self.identity.floating
        )
        if keep_locked:
            if not self.cache.has_revision(uri, self.locked_revision):
                self.cache.fetch_ref(uri, self.identity.ref_spec)
                if not self.cache.has_revision(uri, self.locked_revision):
                    raise SourceUnavailable(
                        uri, f"锁定的 revision {self.locked_revision} 已不存在",
                    )
            logger.info("使用锁定版本: %s @ %s", self.identity, self.locked_revision[:12])
            return self.locked_revision

        revision = self.cache.fetch_ref(uri, self.identity.ref_spec)
        logger.info("已解析: %s -> %s", self.identity, revision[:12])
        return revision

    def _snapshot(self) -> Path:
        """只读元数据快照，位于缓存目录下；启用子模块时子模块中的包也参与解析"""
        revision = self.revision
        suffix = "-submodules" if self.identity.submodules else ""
        dest = (
            self.cache.root / "checkouts"
            / f"{self.cache.entry_name(self.identity.uri)}-{revision[:12]}{suffix}"
        )
        with self._checkout_lock:
            return self.cache.checkout(
                self.identity.uri, revision, self.identity.submodules, dest,
            )

    def _all_specs(self) -> list[Specification]:
        with self._specs_lock:
            if self._specs is None:
                self._specs = scan_tree(
                    self._snapshot(), self.identity, revision=self.revision,
                )
            return self._specs

    def candidates(self, name: str) -> list[Specification]:
        specs = [s for s in self._all_specs() if s.name == name]
        if not specs and name in self.default_versions:
            specs = [synthesize(
                name, self.default_versions[name], self._snapshot(), self.identity,
                revision=self.revision,
            )]
        return specs

    def install_path(self, spec: Specification, install_root: Path) -> Path:
        return self._checkout_root(spec.revision or self.revision, install_root) / spec.subdir

    def _checkout_root(self, revision: str, install_root: Path) -> Path:
        suffix = "-submodules" if self.identity.submodules else ""
        return (
            install_root / "vcs"
            / f"{self.cache.entry_name(self.identity.uri)}-{revision[:12]}{suffix}"
        )

    def materialize(self, spec: Specification, install_root: Path) -> Path:
        """检出到 install_root/vcs/<repo>-<rev>[-submodules]，同一仓库的多个包共享"""
        revision = spec.revision or self.revision
        root = self._checkout_root(revision, install_root)
        with self._checkout_lock:
            self.cache.checkout(self.identity.uri, revision, self.identity.submodules, root)
        return root / spec.subdir
