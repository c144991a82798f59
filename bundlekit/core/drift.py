"""清单与锁文件的漂移检测

漂移的包名在本次解析中隐式解锁（等同被纳入 update 范围），
依赖它们的包也随之解锁。漂移不是错误。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bundlekit.core.lockfile import Lockfile
from bundlekit.core.models import Requirement, SourceIdentity

logger = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """names: 需要重新解析的包名；sources: 锁中已失效的来源键"""

    names: set[str] = field(default_factory=set)
    sources: set[str] = field(default_factory=set)
    reasons: dict[str, str] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.names and not self.sources

    def mark(self, name: str, reason: str) -> None:
        self.names.add(name)
        self.reasons.setdefault(name, reason)


def detect_drift(
    requirements: list[Requirement],
    manifest_sources: list[SourceIdentity],
    lockfile: Lockfile | None,
) -> DriftReport:
    """比较清单依赖与锁文件，返回漂移报告

    以下情况视为漂移:
      - 依赖不在锁中
      - 生效来源变化（VCS 的 branch / tag / submodules、来源被移出清单）
      - 锁定版本不再满足约束
    """
    report = DriftReport()
    if lockfile is None:
        for req in requirements:
            report.mark(req.name, "尚未锁定")
        return report

    live = {s.key for s in manifest_sources}
    live |= {r.source.key for r in requirements if r.source is not None}
    for locked in lockfile.sources:
        if locked.identity.key not in live:
            report.sources.add(locked.identity.key)
    for name in sorted(lockfile.names_from(report.sources)):
        report.mark(name, "来源已从清单移除或变更")

    for req in requirements:
        entry = lockfile.entry(req.name)
        if entry is None:
            report.mark(req.name, "尚未锁定")
        elif req.source is not None and entry.source != req.source.key:
            report.mark(req.name, f"来源变更: {entry.source} -> {req.source.key}")
        elif req.source is None and entry.source not in live:
            report.mark(req.name, f"来源变更: {entry.source} -> 未绑定")
        elif not req.satisfied_by(entry.version):
            report.mark(req.name, f"锁定版本 {entry.version} 不满足 {req.constraint}")

    if report.names:
        dependents = lockfile.to_graph().dependents_of(report.names)
        for name in sorted(dependents):
            report.mark(name, "依赖的包发生漂移")

    for name in sorted(report.reasons):
        logger.info("  漂移: %s (%s)", name, report.reasons[name])
    return report
