"""Cross-process guard for the renewal sweep.

The in-process running flag on ``SchedulerManager`` is enough for a single
worker. When several workers share a host, point ``SWEEP_LOCK_FILE`` at a
shared path so only one of them sweeps at a time.
"""
from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class SweepLock(Protocol):
    def try_acquire(self) -> bool: ...

    def release(self) -> None: ...


class FileSweepLock:
    """Exclusive lock file; a lock older than ``stale_after`` seconds is broken."""

    def __init__(self, path: Path, stale_after: float = 6 * 3600) -> None:
        self.path = path
        self.stale_after = stale_after
        self._held = False

    def try_acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if not self._break_if_stale():
                    return False
                continue
            with os.fdopen(fd, "w") as f:
                f.write(f"{os.getpid()} {time.time():.0f}\n")
            self._held = True
            return True
        return False

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def _break_if_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        if age < self.stale_after:
            return False
        logger.warning("Breaking stale sweep lock %s (age %.0fs)", self.path, age)
        self.path.unlink(missing_ok=True)
        return True
