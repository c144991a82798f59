"""共享 fixture"""

from __future__ import annotations

from pathlib import Path

import pytest

from bundlekit.core.config import Config


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("BUNDLEKIT_MANIFEST", "BUNDLEKIT_LOCKFILE", "BUNDLEKIT_WITHOUT", "BUNDLEKIT_LOAD_PATH",
                "BUNDLEKIT_CACHE_DIR", "BUNDLEKIT_CONFIG"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        cache_dir=str(tmp_path / "cache"),
        platform="linux",
        max_workers=4,
        lock_timeout=30.0,
        fetch_retries=0,
    )
