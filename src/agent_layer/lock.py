"""Cross-process advisory locks for cache fills."""

from __future__ import annotations

import contextlib
import errno
import os
import time
from pathlib import Path
from typing import IO, Callable, Protocol, TypeVar

from agent_layer.errors import LockError, LockTimeoutError

LOCK_WAIT_TIMEOUT = 30.0
LOCK_POLL_INTERVAL = 0.1

T = TypeVar("T")


class LockPrimitive(Protocol):
    def try_lock(self, handle: IO[bytes]) -> bool:
        """Take an exclusive lock without blocking; ``False`` if another owner holds it."""
        ...

    def unlock(self, handle: IO[bytes]) -> None:
        ...


class FcntlPrimitive:
    def try_lock(self, handle: IO[bytes]) -> bool:
        import fcntl

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if exc.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                return False
            raise
        return True

    def unlock(self, handle: IO[bytes]) -> None:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class MsvcrtPrimitive:
    def try_lock(self, handle: IO[bytes]) -> bool:
        import msvcrt

        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError as exc:
            if exc.errno in (errno.EACCES, errno.EDEADLK):
                return False
            raise
        return True

    def unlock(self, handle: IO[bytes]) -> None:
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


def default_primitive() -> LockPrimitive:
    if os.name == "nt":
        return MsvcrtPrimitive()
    return FcntlPrimitive()


class FileLock:
    """A held lock; release it exactly once, or use it as a context manager."""

    def __init__(self, path: Path, handle: IO[bytes], primitive: LockPrimitive) -> None:
        self.path = path
        self._handle: IO[bytes] | None = handle
        self._primitive = primitive

    @property
    def held(self) -> bool:
        return self._handle is not None

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            # Closing the descriptor drops the lock even if unlock fails.
            with contextlib.suppress(OSError):
                self._primitive.unlock(handle)
        finally:
            handle.close()

    def __enter__(self) -> FileLock:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def acquire_file_lock(
    path: str | Path,
    *,
    timeout: float = LOCK_WAIT_TIMEOUT,
    poll_interval: float = LOCK_POLL_INTERVAL,
    primitive: LockPrimitive | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> FileLock:
    """Open or create ``path`` and poll for an exclusive lock on it.

    The file is never truncated. Contention is retried every
    ``poll_interval`` seconds until ``timeout`` elapses, then
    ``LockTimeoutError`` is raised. Any other locking failure raises
    ``LockError`` immediately.
    """
    lock_path = Path(path)
    lock_primitive = primitive if primitive is not None else default_primitive()
    try:
        handle = lock_path.open("a+b")
    except OSError as exc:
        raise LockError(f"open lock {lock_path}: {exc}") from exc

    deadline = clock() + timeout
    while True:
        try:
            acquired = lock_primitive.try_lock(handle)
        except OSError as exc:
            handle.close()
            raise LockError(f"lock {lock_path}: {exc}") from exc
        if acquired:
            return FileLock(lock_path, handle, lock_primitive)
        if clock() >= deadline:
            handle.close()
            raise LockTimeoutError(f"timed out waiting for lock {lock_path} after {timeout:g}s")
        sleep(poll_interval)


def with_file_lock(path: str | Path, fn: Callable[[], T], **kwargs) -> T:
    with acquire_file_lock(path, **kwargs):
        return fn()
