"""VCS 本地缓存

每个仓库 URI 一份 bare mirror，存放在 <root>/repos/<name>-<hash>，
所有项目共享。同一 URI 的 clone / fetch 由 <root>/locks/<name>-<hash>.lock
串行化（线程 + 进程间互斥，不可重入）。

工作树快照 checkout 到调用方指定的独立目录，可以并行进行。
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from pathlib import Path
from urllib.parse import urlparse

from bundlekit.core.exceptions import RepositoryMissing, SourceUnavailable
from bundlekit.utils.locking import file_lock
from bundlekit.utils.net import local_path
from bundlekit.utils.shell import CommandExecutor, GitError, LocalExecutor, run_git

logger = logging.getLogger(__name__)


class VcsCache:
    """按 URI 去重的 git mirror 缓存"""

    def __init__(
        self,
        root: str | Path,
        *,
        executor: CommandExecutor | None = None,
        lock_timeout: float = 600.0,
    ) -> None:
        self.root = Path(root)
        self.executor = executor or LocalExecutor()
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # 路径
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_uri(uri: str) -> str:
        path = local_path(uri)
        if path is not None and not uri.startswith("file://"):
            return str(path.resolve())
        return uri.rstrip("/")

    def entry_name(self, uri: str) -> str:
        normalized = self.normalize_uri(uri)
        parts = [p for p in urlparse(normalized).path.split("/") if p and p != ".git"]
        base = parts[-1] if parts else "repo"
        base = base[:-4] if base.endswith(".git") else base
        digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:12]  # noqa: S324
        return f"{base}-{digest}"

    def entry_path(self, uri: str) -> Path:
        return self.root / "repos" / self.entry_name(uri)

    def _lock(self, uri: str):
        return file_lock(
            self.root / "locks" / f"{self.entry_name(uri)}.lock",
            timeout=self.lock_timeout,
        )

    # ------------------------------------------------------------------
    # clone / fetch（需持有 URI 锁）
    # ------------------------------------------------------------------

    def ensure_cloned(self, uri: str) -> Path:
        """保证缓存中存在该 URI 的 mirror，返回其路径"""
        with self._lock(uri):
            path, _ = self._ensure_cloned_locked(uri)
            return path

    def fetch_ref(self, uri: str, ref: str) -> str:
        """从远端拉取全部分支和 tag，返回 ref 当前指向的 revision"""
        with self._lock(uri):
            path, fresh = self._ensure_cloned_locked(uri)
            if not fresh:
                self._check_remote(uri)
                logger.info("Fetching %s", uri)
                try:
                    self._git(["fetch", "--quiet", "--prune", "--tags", "--force", "origin"], path)
                except GitError as e:
                    raise SourceUnavailable(uri, str(e)) from e
            return self._rev_parse(uri, path, ref)

    def resolve_ref(self, uri: str, ref: str) -> str:
        """只在本地 mirror 中解析 ref，不访问远端"""
        with self._lock(uri):
            path, _ = self._ensure_cloned_locked(uri)
            return self._rev_parse(uri, path, ref)

    def has_revision(self, uri: str, revision: str) -> bool:
        path = self.entry_path(uri)
        if not path.exists():
            return False
        self._check_entry(path)
        try:
            self._git(["cat-file", "-e", f"{revision}^{{commit}}"], path)
        except GitError:
            return False
        return True

    def _ensure_cloned_locked(self, uri: str) -> tuple[Path, bool]:
        path = self.entry_path(uri)
        self._check_entry(path)
        if path.exists():
            return path, False

        self._check_remote(uri)
        path.parent.mkdir(parents=True, exist_ok=True)
        staging = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        logger.info("Fetching %s", uri)
        try:
            self._git(["clone", "--quiet", "--mirror", uri, str(staging)], path.parent)
        except GitError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise SourceUnavailable(uri, str(e)) from e
        os.replace(staging, path)
        logger.info("  已缓存: %s -> %s", uri, path)
        return path, True

    def _rev_parse(self, uri: str, path: Path, ref: str) -> str:
        try:
            return self._git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], path)
        except GitError as e:
            raise SourceUnavailable(uri, f"找不到引用 {ref}") from e

    @staticmethod
    def _check_entry(path: Path) -> None:
        """缓存目录存在但控制数据丢失时报 RepositoryMissing"""
        if path.exists() and not ((path / "HEAD").is_file() and (path / "objects").is_dir()):
            raise RepositoryMissing(str(path))

    @staticmethod
    def _check_remote(uri: str) -> None:
        """本地远端（file:// 或路径）已被删除时报 RepositoryMissing"""
        path = local_path(uri)
        if path is not None and not path.exists():
            raise RepositoryMissing(str(path))

    # ------------------------------------------------------------------
    # 工作树
    # ------------------------------------------------------------------

    def checkout(self, uri: str, revision: str, submodules: bool, dest: Path) -> Path:
        """把 revision 的工作树检出到 dest（已是该 revision 则直接复用）"""
        if self._checked_out_at(dest, revision):
            return dest

        path = self.ensure_cloned(uri)
        if not self.has_revision(uri, revision):
            raise SourceUnavailable(uri, f"缓存中没有 revision {revision}")

        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = dest.with_name(f".{dest.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            self._git(["clone", "--quiet", "--no-checkout", str(path), str(staging)], dest.parent)
            self._git(["checkout", "--quiet", "--detach", revision], staging)
            if submodules:
                # 子模块的相对 URL 以原始远端为基准
                self._git(["remote", "set-url", "origin", uri], staging)
                self._git(
                    ["submodule", "update", "--init", "--recursive", "--quiet"],
                    staging, config={"protocol.file.allow": "always"},
                )
        except GitError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise SourceUnavailable(uri, str(e)) from e

        if self._checked_out_at(dest, revision):
            # 其他进程已完成同一检出
            shutil.rmtree(staging, ignore_errors=True)
            return dest
        if dest.exists():
            shutil.rmtree(dest)
        os.replace(staging, dest)
        logger.info("  已检出: %s@%s -> %s", uri, revision[:12], dest)
        return dest

    def _checked_out_at(self, dest: Path, revision: str) -> bool:
        if not (dest / ".git").exists():
            return False
        try:
            return self._git(["rev-parse", "HEAD"], dest) == revision
        except GitError:
            return False

    def _git(
        self, args: list[str], cwd: Path, *, config: dict[str, str] | None = None,
    ) -> str:
        return run_git(self.executor, args, cwd=str(cwd), config=config)
