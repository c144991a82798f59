"""网络工具 — URL 安全校验与读取"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from pathlib import Path
from urllib.parse import unquote, urlparse

from bundlekit.core.exceptions import SourceUnavailable, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https", "file"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https/file

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https/file: {url}"
        )


def local_path(url: str) -> Path | None:
    """file:// URL 或本地路径对应的文件系统路径，远程 URL 返回 None"""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme == "":
        return Path(url)
    return None


def read_url(url: str, *, timeout: int = 60) -> bytes:
    """读取 URL 内容（本地文件直接读）

    Raises:
        SourceUnavailable: 网络错误或文件不存在
    """
    path = local_path(url)
    if path is not None:
        try:
            return path.read_bytes()
        except OSError as e:
            raise SourceUnavailable(url, str(e)) from e

    validate_url_scheme(url, context="read_url")
    logger.info("  下载: %s", url)
    try:
        with urllib.request.urlopen(url, timeout=timeout) as resp:  # nosec B310
            return resp.read()
    except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
        raise SourceUnavailable(url, str(e)) from e
