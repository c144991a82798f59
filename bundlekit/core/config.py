"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field

from bundlekit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_PRIORITY = ["path", "vcs", "registry"]


def current_platform() -> str:
    """当前解释器所在平台的标签（linux / darwin / windows / ...）"""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


@dataclass
class Config:
    """bundlekit 全局配置"""

    # 文件名
    manifest_name: str = "bundle.yml"
    lockfile_name: str = "bundle.lock"

    # 目录
    install_dir: str = ".bundle"
    cache_dir: str = "~/.cache/bundlekit"

    # 解析
    platform: str = ""
    source_priority: list[str] = field(
        default_factory=lambda: list(DEFAULT_SOURCE_PRIORITY),
    )

    # 执行
    max_workers: int = 8
    lock_timeout: float = 600.0
    fetch_retries: int = 2

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        path = path or os.getenv("BUNDLEKIT_CONFIG", "")
        if not path:
            return cls()
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    @property
    def resolved_platform(self) -> str:
        return self.platform or current_platform()

    @property
    def resolved_cache_dir(self) -> str:
        return os.path.expanduser(
            os.getenv("BUNDLEKIT_CACHE_DIR", "") or self.cache_dir,
        )

    def to_dict(self) -> dict:
        from dataclasses import asdict
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path or "(默认)")
    return _current
