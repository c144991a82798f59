"""跨线程 + 跨进程的互斥锁

同一进程内用 threading.Lock 互斥，进程之间用 fcntl.flock 锁住旁路 .lock 文件。
锁不可重入：同一线程重复获取同一把锁会一直等到超时。
"""

from __future__ import annotations

import fcntl
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from bundlekit.core.exceptions import SourceUnavailable

logger = logging.getLogger(__name__)

_THREAD_MUTEXES: dict[str, threading.Lock] = {}
_MUTEX_GUARD = threading.Lock()


class LockTimeoutError(SourceUnavailable):
    """在超时时间内没有拿到锁；视为来源暂时不可用，可重试"""

    code = "LOCK_TIMEOUT"

    def __init__(self, lock_path: Path, timeout: float) -> None:
        super().__init__(str(lock_path), f"等待锁超时 ({timeout}s)")
        self.lock_path = lock_path
        self.timeout = timeout


def _thread_mutex(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _MUTEX_GUARD:
        return _THREAD_MUTEXES.setdefault(key, threading.Lock())


@contextmanager
def file_lock(
    lock_path: Path,
    *,
    timeout: float = 600.0,
    poll_interval: float = 0.05,
) -> Iterator[None]:
    """独占 lock_path，阻塞直到获取成功或超时

    Raises:
        LockTimeoutError: 超时仍未获取
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    mutex = _thread_mutex(lock_path)
    if not mutex.acquire(timeout=timeout):
        raise LockTimeoutError(lock_path, timeout)

    start = time.monotonic()
    try:
        with open(lock_path, "a+") as fh:
            while True:
                try:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except OSError:
                    if time.monotonic() - start >= timeout:
                        raise LockTimeoutError(lock_path, timeout) from None
                    time.sleep(poll_interval)
            logger.debug("已获取锁: %s", lock_path)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    finally:
        mutex.release()
