"""包来源 — Registry / VCS / Path 三种实现 + VCS 缓存

各来源都满足 bundlekit.core.protocols.Source 协议。
"""

from bundlekit.sources.path import PathSource
from bundlekit.sources.registry import RegistrySource
from bundlekit.sources.vcs import VcsSource
from bundlekit.sources.vcs_cache import VcsCache

__all__ = [
    "RegistrySource",
    "VcsSource",
    "VcsCache",
    "PathSource",
]
