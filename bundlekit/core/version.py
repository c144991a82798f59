"""版本号与版本约束

版本号按 PEP 440 解析（packaging.version）。约束在 PEP 440 specifier 之外
还接受常见简写：

    ""           任意版本
    "0.9.1"      精确版本，等价于 "==0.9.1"
    "= 0.9.1"    同上
    "~> 1.2"     等价于 "~=1.2"（单段 "~> 1" 等价于 ">=1,<2"）
    ">= 1.0, < 2"
"""

from __future__ import annotations

import re
from functools import lru_cache

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from bundlekit.core.exceptions import ManifestError

_OPERATOR_RE = re.compile(r"^\s*(~>|===|==|!=|>=|<=|~=|=|>|<)?\s*(\S+)\s*$")


@lru_cache(maxsize=4096)
def parse_version(text: str) -> Version:
    """解析版本号，非法时抛 ManifestError"""
    try:
        return Version(str(text))
    except InvalidVersion as e:
        raise ManifestError(f"非法版本号: {text!r}") from e


def _normalize_clause(clause: str) -> str:
    m = _OPERATOR_RE.match(clause)
    if m is None:
        raise ManifestError(f"非法版本约束: {clause!r}")
    op, version = m.group(1) or "==", m.group(2)
    if op == "=":
        op = "=="
    elif op == "~>":
        if "." not in version:
            return f">={version},<{parse_version(version).release[0] + 1}"
        op = "~="
    return f"{op}{version}"


@lru_cache(maxsize=4096)
def normalize_constraint(text: str) -> str:
    """把约束文本规整为 PEP 440 specifier 串（子句按文本排序，逗号分隔）"""
    text = (text or "").strip()
    if not text or text in ("*", ">=0"):
        return ""
    clauses = sorted(
        part for c in text.split(",") if c.strip()
        for part in _normalize_clause(c).split(",")
    )
    normalized = ",".join(clauses)
    try:
        SpecifierSet(normalized)
    except InvalidSpecifier as e:
        raise ManifestError(f"非法版本约束: {text!r}") from e
    return normalized


@lru_cache(maxsize=4096)
def _specifier(constraint: str) -> SpecifierSet:
    return SpecifierSet(constraint, prereleases=True)


def satisfies(version: str, constraint: str) -> bool:
    """version 是否满足（已规整的）constraint，空约束总是满足"""
    if not constraint:
        return True
    return _specifier(constraint).contains(parse_version(version), prereleases=True)


def exact_version(constraint: str) -> str:
    """约束若为单个精确版本（==x）返回该版本，否则返回空串"""
    if "," in constraint or "*" in constraint or constraint.startswith("==="):
        return ""
    if constraint.startswith("=="):
        return constraint[2:]
    return ""
