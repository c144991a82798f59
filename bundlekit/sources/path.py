"""本地路径来源

直接读取本地目录树；物化只是引用原目录，不做复制，
因此目录中的文件改动立即可见。
"""

from __future__ import annotations

import logging
from pathlib import Path

from bundlekit.core.exceptions import SourceUnavailable
from bundlekit.core.models import SourceIdentity, Specification
from bundlekit.sources.descriptor import scan_tree, synthesize

logger = logging.getLogger(__name__)


class PathSource:
    """本地目录来源"""

    def __init__(
        self,
        identity: SourceIdentity,
        *,
        default_versions: dict[str, str] | None = None,
    ) -> None:
        self.identity = identity
        self.root = Path(identity.uri)
        self.default_versions = dict(default_versions or {})
        self._specs: list[Specification] | None = None

    def candidates(self, name: str) -> list[Specification]:
        if not self.root.is_dir():
            raise SourceUnavailable(self.identity.uri, "目录不存在")
        if self._specs is None:
            self._specs = scan_tree(self.root, self.identity)
        specs = [s for s in self._specs if s.name == name]
        if not specs and name in self.default_versions:
            specs = [synthesize(name, self.default_versions[name], self.root, self.identity)]
        return specs

    def install_path(self, spec: Specification, install_root: Path) -> Path:
        return self.root / spec.subdir

    def materialize(self, spec: Specification, install_root: Path) -> Path:
        path = self.install_path(spec, install_root)
        if not path.is_dir():
            raise SourceUnavailable(self.identity.uri, f"目录不存在: {path}")
        logger.info("  使用本地路径: %s -> %s", spec, path)
        return path
