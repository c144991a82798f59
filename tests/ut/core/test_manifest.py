"""清单加载测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from bundlekit.core.exceptions import ManifestError
from bundlekit.core.manifest import Manifest
from bundlekit.core.models import SourceIdentity

from helpers import write_manifest


class TestManifestLoad:
    def test_string_and_mapping_entries(self, tmp_path: Path) -> None:
        path = write_manifest(tmp_path, {
            "sources": ["file:///srv/registry"],
            "dependencies": [
                "rack",
                "rake >= 0.8",
                {"name": "rspec", "version": "~> 2.0", "groups": ["test"]},
            ],
        })
        manifest = Manifest.load(path)
        assert manifest.sources == [SourceIdentity.registry("file:///srv/registry")]
        assert manifest.get("rack").constraint == ""
        assert manifest.get("rake").constraint == ">=0.8"
        assert manifest.get("rspec").groups == frozenset({"test"})
        assert manifest.groups == frozenset({"default", "test"})
        assert manifest.path == path.resolve()

    def test_relative_paths_resolved_against_manifest(self, tmp_path: Path) -> None:
        project = tmp_path / "app"
        path = write_manifest(project, {
            "sources": ["../registry"],
            "dependencies": [
                {"name": "fizz", "path": "../fizz"},
                {"name": "foo", "vcs": "../repos/foo", "branch": "omg", "submodules": True},
            ],
        })
        manifest = Manifest.load(path)
        assert manifest.sources[0].uri == str((tmp_path / "registry").resolve())
        assert manifest.get("fizz").source == SourceIdentity.path(str((tmp_path / "fizz").resolve()))
        foo = manifest.get("foo").source
        assert foo.uri == str((tmp_path / "repos" / "foo").resolve())
        assert foo.branch == "omg" and foo.submodules
        assert manifest.pinned_sources == [manifest.get("fizz").source, foo]

    def test_remote_uris_untouched(self, tmp_path: Path) -> None:
        manifest = Manifest.from_dict({
            "dependencies": [{"name": "foo", "vcs": "https://git.example.com/foo.git"}],
        }, root=tmp_path)
        assert manifest.get("foo").source.uri == "https://git.example.com/foo.git"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError, match="不存在"):
            Manifest.load(tmp_path / "bundle.yml")

    def test_bad_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bundle.yml"
        path.write_text("dependencies: [rack\n")
        with pytest.raises(ManifestError, match="格式错误"):
            Manifest.load(path)


class TestRequirementMerging:
    def test_duplicate_with_different_sources(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError, match="不同来源"):
            Manifest.from_dict({"dependencies": [
                {"name": "rack", "path": "vendor/rack"},
                "rack",
            ]}, root=tmp_path)

    def test_duplicate_with_contradicting_constraints(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError, match="矛盾"):
            Manifest.from_dict({"dependencies": ["rack 0.9.1", "rack 1.0.0"]}, root=tmp_path)

    def test_duplicate_merges_groups(self, tmp_path: Path) -> None:
        manifest = Manifest.from_dict({"dependencies": [
            {"name": "rack", "groups": ["test"]},
            {"name": "rack", "groups": ["development"]},
        ]}, root=tmp_path)
        assert len(manifest.requirements) == 1
        assert manifest.get("rack").groups == frozenset({"test", "development"})

    def test_invalid_source_fields(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError, match="依赖声明无效"):
            Manifest.from_dict({"dependencies": [
                {"name": "foo", "vcs": "/repos/foo", "branch": "a", "tag": "b"},
            ]}, root=tmp_path)


class TestGroupSelectors:
    def test_expand(self, tmp_path: Path) -> None:
        manifest = Manifest.from_dict({
            "dependencies": ["rack"],
            "group_selectors": {"ci": ["test", "lint"]},
        }, root=tmp_path)
        assert manifest.expand_groups(["ci", "emo"]) == frozenset({"test", "lint", "emo"})
