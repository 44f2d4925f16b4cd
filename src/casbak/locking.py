"""
Exclusive, non-blocking advisory file locks.

One lock guards an archive's local working directory (caches), another
guards a removable-media mount point. They are separate instances of
``FileLock`` and are never combined or made blocking.
"""
from __future__ import annotations

import fcntl
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Optional, Type

from .runtime import LockHeldError

__all__ = ["FileLock"]

logger = logging.getLogger(__name__)


class FileLock:
    """
    ``flock(LOCK_EX | LOCK_NB)`` on a lock file.

    Acquisition fails immediately with ``error_cls`` if any other open file
    description holds the lock. The kernel drops the lock if the process dies,
    so a crash never leaves a stale lock; the lock file itself stays behind.
    """

    def __init__(self, path: Path, *, description: str = "lock",
                 error_cls: Type[LockHeldError] = LockHeldError) -> None:
        self.path = Path(path)
        self.description = description
        self._error_cls = error_cls
        self._fh: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # a+ so a concurrent holder's info is not truncated before we own the lock
        fh = open(self.path, "a+")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (BlockingIOError, OSError):
            fh.close()
            raise self._error_cls(
                f"{self.description} is held by another run ({self.path})"
            ) from None

        fh.seek(0)
        fh.truncate()
        fh.write(f"pid {os.getpid()} since {datetime.now(timezone.utc).isoformat()}\n")
        fh.flush()
        self._fh = fh
        logger.debug(f"Acquired {self.description} ({self.path})")

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
        logger.debug(f"Released {self.description} ({self.path})")

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
