"""版本号与约束规整测试"""

from __future__ import annotations

import pytest

from bundlekit.core.exceptions import ManifestError
from bundlekit.core.version import exact_version, normalize_constraint, parse_version, satisfies


class TestNormalizeConstraint:
    @pytest.mark.parametrize("text, expected", [
        ("", ""),
        ("*", ""),
        (">= 0", ">=0"),
        ("0.9.1", "==0.9.1"),
        ("= 0.9.1", "==0.9.1"),
        ("== 0.9.1", "==0.9.1"),
        ("~> 1.2", "~=1.2"),
        ("~> 1", "<2,>=1"),
        (">= 1.0, < 2", "<2,>=1.0"),
        ("<2,>=1.0", "<2,>=1.0"),
    ])
    def test_shorthands(self, text: str, expected: str) -> None:
        assert normalize_constraint(text) == expected

    def test_clause_order_does_not_matter(self) -> None:
        assert normalize_constraint("<2, >=1") == normalize_constraint(">=1, <2")

    @pytest.mark.parametrize("text", ["not a version", ">= 1.0 beta", "~= 1"])
    def test_invalid_raises(self, text: str) -> None:
        with pytest.raises(ManifestError, match="非法版本约束"):
            normalize_constraint(text)


class TestSatisfies:
    def test_empty_constraint_accepts_everything(self) -> None:
        assert satisfies("0.0.1", "")
        assert satisfies("99.0", "")

    def test_exact(self) -> None:
        assert satisfies("0.9.1", "==0.9.1")
        assert not satisfies("1.0.0", "==0.9.1")

    def test_range(self) -> None:
        assert satisfies("1.5", "<2,>=1.0")
        assert not satisfies("2.0", "<2,>=1.0")

    def test_prerelease_allowed_when_in_range(self) -> None:
        assert satisfies("2.0.0rc1", ">=1.0")

    def test_compatible_release(self) -> None:
        assert satisfies("1.4", "~=1.2")
        assert not satisfies("2.0", "~=1.2")

    def test_single_segment_pessimistic(self) -> None:
        """"~> 1" 不跨越下一个主版本"""
        constraint = normalize_constraint("~> 1")
        assert satisfies("1.9", constraint)
        assert not satisfies("2.5", constraint)
        assert not satisfies("0.9", constraint)


class TestParseVersion:
    def test_ordering(self) -> None:
        assert parse_version("1.0.0") > parse_version("0.9.1")
        assert parse_version("1.10") > parse_version("1.9")

    def test_invalid_raises(self) -> None:
        with pytest.raises(ManifestError, match="非法版本号"):
            parse_version("one.two")


class TestExactVersion:
    @pytest.mark.parametrize("constraint, expected", [
        ("==0.9.1", "0.9.1"),
        (">=1.0", ""),
        ("<2,>=1.0", ""),
        ("==1.*", ""),
        ("", ""),
    ])
    def test_exact_version(self, constraint: str, expected: str) -> None:
        assert exact_version(constraint) == expected
