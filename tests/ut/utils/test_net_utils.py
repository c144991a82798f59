"""URL scheme 校验 / 本地读取测试"""

from pathlib import Path

import pytest

from bundlekit.core.exceptions import SourceUnavailable, ValidationError
from bundlekit.utils.net import local_path, read_url, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://example.com/index.yml")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://example.com/index.yml")

    def test_file_ok(self) -> None:
        validate_url_scheme("file:///srv/registry/index.yml")

    def test_ftp_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("ftp://evil.com/payload")

    def test_empty_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("/local/path")

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="registry index"):
            validate_url_scheme("gopher://x", context="registry index")


class TestReadUrl:
    def test_local_path(self) -> None:
        assert local_path("file:///srv/my%20registry") == Path("/srv/my registry")
        assert local_path("/srv/registry") == Path("/srv/registry")
        assert local_path("https://example.com") is None

    def test_reads_file_url(self, tmp_path: Path) -> None:
        target = tmp_path / "index.yml"
        target.write_bytes(b"packages: {}\n")
        assert read_url(target.as_uri()) == b"packages: {}\n"

    def test_missing_file_unavailable(self, tmp_path: Path) -> None:
        with pytest.raises(SourceUnavailable):
            read_url((tmp_path / "missing.yml").as_uri())
