"""yaml_io 读写测试"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from bundlekit.utils.yaml_io import dump_yaml, load_yaml, save_yaml


class TestLoadYaml:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_yaml(tmp_path / "none.yml") == {}

    def test_empty_file(self, tmp_path: Path) -> None:
        p = tmp_path / "empty.yml"
        p.write_text("")
        assert load_yaml(p) == {}

    def test_non_dict(self, tmp_path: Path) -> None:
        p = tmp_path / "list.yml"
        p.write_text("- a\n- b\n")
        assert load_yaml(p) == {}

    def test_malformed(self, tmp_path: Path) -> None:
        p = tmp_path / "bad.yml"
        p.write_text("a: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml(p)


class TestSaveYaml:
    def test_creates_parents_and_round_trips(self, tmp_path: Path) -> None:
        p = tmp_path / "a" / "b" / "record.yml"
        save_yaml(p, {"name": "rack", "executables": ["rackup"]})
        assert load_yaml(p) == {"name": "rack", "executables": ["rackup"]}
        assert not list(p.parent.glob("*.tmp"))

    def test_dump_keeps_key_order(self) -> None:
        assert dump_yaml({"b": 1, "a": 2}) == "b: 1\na: 2\n"

    def test_unicode(self) -> None:
        assert "中文" in dump_yaml({"note": "中文"})
