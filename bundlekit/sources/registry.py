"""Registry 来源 — 版本化的包索引

索引位于 <uri>/index.yml:

    packages:
      rack:
        - version: 1.0.0
          executables: [rackup]
        - version: 0.9.1

包内容位于 <uri>/packages/<full_name>/（file:// 或本地目录）
或 <uri>/packages/<full_name>.tar.gz（http/https）。
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import tarfile
import threading
import uuid
from pathlib import Path

import yaml

from bundlekit.core.exceptions import ManifestError, SourceUnavailable
from bundlekit.core.models import SourceIdentity, Specification
from bundlekit.sources.descriptor import spec_from_dict
from bundlekit.utils.net import local_path, read_url
from bundlekit.utils.yaml_io import parse_yaml

logger = logging.getLogger(__name__)

INDEX_NAME = "index.yml"


class RegistrySource:
    """版本化 registry，列出某个包名的全部已发布版本（与锁无关）"""

    def __init__(self, identity: SourceIdentity, *, timeout: int = 60) -> None:
        self.identity = identity
        self.timeout = timeout
        self._index: dict[str, list[Specification]] | None = None
        self._lock = threading.Lock()

    def candidates(self, name: str) -> list[Specification]:
        return list(self._load_index().get(name, []))

    def _load_index(self) -> dict[str, list[Specification]]:
        with self._lock:
            if self._index is None:
                self._index = self._fetch_index()
            return self._index

    def _fetch_index(self) -> dict[str, list[Specification]]:
        url = f"{self.identity.uri}/{INDEX_NAME}"
        logger.info("获取索引: %s", url)
        raw = read_url(url, timeout=self.timeout)
        try:
            data = parse_yaml(raw.decode("utf-8"), source=url)
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise SourceUnavailable(self.identity.uri, f"索引格式错误: {e}") from e
        if not isinstance(data, dict):
            raise SourceUnavailable(self.identity.uri, "索引不是映射")

        index: dict[str, list[Specification]] = {}
        for name, versions in (data.get("packages") or {}).items():
            specs = []
            for entry in versions or []:
                if not isinstance(entry, dict):
                    raise ManifestError(f"索引条目无效 {name}: {entry!r}")
                specs.append(spec_from_dict({**entry, "name": name}, self.identity))
            index[str(name)] = specs
        logger.info("  索引包含 %d 个包", len(index))
        return index

    def install_path(self, spec: Specification, install_root: Path) -> Path:
        return install_root / "packages" / spec.full_name

    def materialize(self, spec: Specification, install_root: Path) -> Path:
        """本地已存在则直接复用，否则复制 / 下载解压到临时目录后原子改名"""
        dest = self.install_path(spec, install_root)
        if dest.exists():
            logger.info("  本地已存在，直接使用: %s -> %s", spec, dest)
            return dest

        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = dest.with_name(f".{dest.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            base = local_path(self.identity.uri)
            if base is not None:
                self._copy_tree(base / "packages" / spec.full_name, staging)
            else:
                self._extract_archive(spec, staging)
            os.replace(staging, dest)
        except (OSError, tarfile.TarError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise SourceUnavailable(self.identity.uri, f"{spec.full_name}: {e}") from e
        except SourceUnavailable:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        logger.info("  已安装: %s -> %s", spec, dest)
        return dest

    def _copy_tree(self, src: Path, staging: Path) -> None:
        if not src.is_dir():
            raise SourceUnavailable(self.identity.uri, f"包目录不存在: {src}")
        shutil.copytree(src, staging, symlinks=True)

    def _extract_archive(self, spec: Specification, staging: Path) -> None:
        url = f"{self.identity.uri}/packages/{spec.full_name}.tar.gz"
        data = read_url(url, timeout=self.timeout)
        staging.mkdir(parents=True)
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tf:
            tf.extractall(path=str(staging), filter="data")  # noqa: S202
