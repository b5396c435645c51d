"""Advisory file locks serialising record-store mutations.

Every mutating command takes the global lock first and then one lock per
record it touches, in sorted order, so two invocations against the same
record can never interleave their read-modify-write cycles.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .errors import CollaboratorError, LockTimeoutError

GLOBAL_LOCK_NAME = "webappctl.lock"
_POLL_INTERVAL = 0.05


@dataclass(slots=True)
class LockHandle:
    """An acquired lock and how long acquisition took."""

    path: Path
    wait_ms: int


@dataclass(slots=True)
class LockBundle:
    """A set of locks acquired together."""

    handles: tuple[LockHandle, ...]

    @property
    def wait_ms(self) -> int:
        """Total time spent waiting for every lock in the bundle."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Hand out global and per-record locks under a lock directory."""

    def __init__(self, lock_dir: Path, default_timeout: float = 30.0) -> None:
        """Initialise with the lock directory and default timeout in seconds."""
        self.lock_dir = Path(lock_dir).expanduser()
        self.default_timeout = default_timeout

    def global_path(self) -> Path:
        """Return the path of the global lock file."""
        return self.lock_dir / GLOBAL_LOCK_NAME

    def record_path(self, kind: str, identifier: str) -> Path:
        """Return the lock file path for one record."""
        safe = str(identifier).replace("/", "-")
        return self.lock_dir / f"{kind}s" / f"{safe}.lock"

    @contextmanager
    def global_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the global lock."""
        with self._acquire(self.global_path(), timeout) as handle:
            yield handle

    @contextmanager
    def record_lock(
        self,
        kind: str,
        identifier: str,
        *,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Hold the lock for a single record."""
        with self._acquire(self.record_path(kind, identifier), timeout) as handle:
            yield handle

    @contextmanager
    def mutate_records(
        self,
        kind: str,
        identifiers: Iterable[str],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Acquire the global lock followed by per-record locks."""
        with ExitStack() as stack:
            handles = [stack.enter_context(self.global_lock(timeout=timeout))]
            for identifier in sorted({str(item) for item in identifiers}):
                handles.append(
                    stack.enter_context(self.record_lock(kind, identifier, timeout=timeout))
                )
            yield LockBundle(handles=tuple(handles))

    # ------------------------------------------------------------------
    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self.default_timeout if timeout is None else timeout
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        except OSError as exc:
            raise CollaboratorError(
                f"Failed to open lock file {path}: {exc}",
                operation="lock.acquire",
                target=str(path),
            ) from exc
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}.",
                            operation="lock.acquire",
                            target=str(path),
                        ) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            _write_metadata(fd, path)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _write_metadata(fd: int, path: Path) -> None:
    payload = json.dumps(
        {
            "pid": os.getpid(),
            "path": str(path),
            "acquired_at": datetime.now(UTC).isoformat(),
        }
    )
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, payload.encode("utf-8"))


__all__ = ["LockBundle", "LockHandle", "LockManager", "LockTimeoutError"]
