"""本地路径来源测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from bundlekit.core.exceptions import SourceUnavailable
from bundlekit.core.models import SourceIdentity
from bundlekit.sources.path import PathSource
from helpers import package_files, write_files


class TestPathSource:
    def test_reads_descriptor(self, tmp_path: Path) -> None:
        root = tmp_path / "rack"
        write_files(root, package_files("rack", "1.2", executables=["rackup"]))
        source = PathSource(SourceIdentity.path(str(root)))
        (spec,) = source.candidates("rack")
        assert spec.version == "1.2"
        assert spec.executables == ("rackup",)
        assert spec.subdir == ""

    def test_nested_packages(self, tmp_path: Path) -> None:
        root = tmp_path / "mono"
        write_files(root, {
            **{f"core/{k}": v for k, v in package_files("mono_core", "0.1").items()},
            **{f"gems/web/{k}": v for k, v in package_files("mono_web", "0.1").items()},
        })
        source = PathSource(SourceIdentity.path(str(root)))
        (web,) = source.candidates("mono_web")
        assert web.subdir == "gems/web"
        assert source.materialize(web, tmp_path / ".bundle") == root / "gems" / "web"

    def test_synthesized_without_descriptor(self, tmp_path: Path) -> None:
        root = tmp_path / "tool"
        write_files(root, {"bin/tool": "#!/bin/sh\necho tool\n", "lib/tool.py": ""})
        source = PathSource(SourceIdentity.path(str(root)), default_versions={"tool": "0"})
        (spec,) = source.candidates("tool")
        assert spec.version == "0"
        assert spec.executables == ("tool",)
        assert source.candidates("other") == []

    def test_materialize_references_original(self, tmp_path: Path) -> None:
        root = tmp_path / "rack"
        write_files(root, package_files("rack", "1.2"))
        source = PathSource(SourceIdentity.path(str(root)))
        (spec,) = source.candidates("rack")
        path = source.materialize(spec, tmp_path / ".bundle")
        assert path == root
        assert not (tmp_path / ".bundle").exists()

    def test_missing_directory(self, tmp_path: Path) -> None:
        source = PathSource(SourceIdentity.path(str(tmp_path / "gone")))
        with pytest.raises(SourceUnavailable, match="目录不存在"):
            source.candidates("rack")
