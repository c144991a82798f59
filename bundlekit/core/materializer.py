"""物化器 — 把依赖图落到安装目录

安装目录布局（每个项目独立一份）:

    <root>/packages/<full_name>/                    registry 包
    <root>/vcs/<repo>-<rev12>[-submodules]/<subdir>  VCS 包（同仓库共享检出）
    <root>/specifications/<full_name>.yml           安装记录（激活器读取）

path 来源的包不复制，直接引用原目录。

各包并行物化；任一失败则删除本次新建的目录并抛 InstallError，
安装记录只在全部成功后写入，因此失败的安装不会留下可被激活的包。
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from bundlekit.core.config import Config, get_config
from bundlekit.core.exceptions import InstallError, RepositoryMissing, SourceUnavailable
from bundlekit.core.models import DependencyGraph, Specification
from bundlekit.core.protocols import Source
from bundlekit.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

SPECIFICATIONS_DIR = "specifications"
_MANAGED_DIRS = ("packages", "vcs")


def record_path(install_root: Path, spec: Specification) -> Path:
    return Path(install_root) / SPECIFICATIONS_DIR / f"{spec.full_name}.yml"


def read_record(install_root: Path, spec: Specification) -> dict[str, Any]:
    """读取 spec 的安装记录，未安装或记录与 spec 不符时返回 {}"""
    data = load_yaml(record_path(install_root, spec))
    if data.get("source") != spec.source.key:
        return {}
    if spec.revision and data.get("revision") != spec.revision:
        return {}
    return data


class Materializer:
    """按来源把依赖图中的包物化到安装目录"""

    def __init__(self, sources: list[Source], *, config: Config | None = None) -> None:
        self.config = config or get_config()
        self._by_identity = {s.identity: s for s in sources}

    def install(
        self,
        graph: DependencyGraph,
        install_root: str | Path,
        groups: frozenset[str],
    ) -> dict[str, Path]:
        """物化 groups 可达的全部包，返回 name -> 包目录"""
        root = Path(install_root)
        root.mkdir(parents=True, exist_ok=True)
        specs = graph.for_groups(groups)
        before = self._snapshot_dirs(root)
        logger.info("安装 %d 个包到 %s (分组: %s)", len(specs), root, ", ".join(sorted(groups)))

        results: dict[str, Path] = {}
        failure: tuple[Specification, Exception] | None = None
        with ThreadPoolExecutor(max_workers=max(1, self.config.max_workers)) as executor:
            futures = [(spec, executor.submit(self._materialize_one, spec, root)) for spec in specs]
            for spec, future in futures:
                try:
                    results[spec.name] = future.result()
                except (SourceUnavailable, RepositoryMissing, InstallError, OSError) as e:
                    logger.error("  物化失败: %s (%s): %s", spec, spec.source, e)
                    if failure is None:
                        failure = (spec, e)

        if failure is not None:
            self._rollback(root, before)
            spec, error = failure
            if isinstance(error, InstallError):
                raise error
            raise InstallError(spec.name, str(spec.source), str(error)) from error

        for spec in specs:
            self._write_record(root, spec, results[spec.name])
        logger.info("安装完成: %d 个包", len(results))
        return results

    def _materialize_one(self, spec: Specification, root: Path) -> Path:
        source = self._by_identity.get(spec.source)
        if source is None:
            raise InstallError(spec.name, str(spec.source), "来源未注册")
        return source.materialize(spec, root)

    @staticmethod
    def _snapshot_dirs(root: Path) -> set[Path]:
        existing: set[Path] = set()
        for name in _MANAGED_DIRS:
            base = root / name
            if base.is_dir():
                existing.update(base.iterdir())
        return existing

    def _rollback(self, root: Path, before: set[Path]) -> None:
        """删除本次安装新建的目录"""
        for path in sorted(self._snapshot_dirs(root) - before):
            logger.info("  回滚: %s", path)
            shutil.rmtree(path, ignore_errors=True)

    @staticmethod
    def _write_record(root: Path, spec: Specification, path: Path) -> None:
        save_yaml(record_path(root, spec), {
            "name": spec.name,
            "version": spec.version,
            "platform": spec.platform,
            "source": spec.source.key,
            "revision": spec.revision,
            "path": str(path),
            "executables": list(spec.executables),
            "load_paths": list(spec.load_paths),
        })
