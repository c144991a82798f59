"""领域协议定义

使用 typing.Protocol 而非 ABC，使 Registry / VCS / Path 三种来源无需共同基类。
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from bundlekit.core.models import SourceIdentity, Specification


class Source(Protocol):
    """包来源协议

    candidates() 返回该来源提供的某个包的全部版本（可能触发网络 / VCS IO，
    实现方自行缓存）；materialize() 把某个版本落到 install_root 下并返回包目录。
    """

    identity: SourceIdentity

    def candidates(self, name: str) -> list[Specification]:
        """返回 name 的全部候选版本，来源不可达时抛 SourceUnavailable"""
        ...

    def install_path(self, spec: Specification, install_root: Path) -> Path:
        """spec 物化后的包目录（不触发 IO）"""
        ...

    def materialize(self, spec: Specification, install_root: Path) -> Path:
        """物化 spec，返回包目录；失败抛 SourceUnavailable / RepositoryMissing"""
        ...
