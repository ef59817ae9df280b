"""
Per-domain lease held for one worker execution.

Two layers:
  - an in-process threading.Lock per domain (worker pool threads)
  - an fcntl advisory lock on <lock-root>/<sha256(domain)>.lock (other processes)

Both are released on every exit path of the `with` block.
"""
from __future__ import annotations

import contextlib
import fcntl
import hashlib
import logging
import threading
import time
from pathlib import Path
from typing import Dict, Iterator

from worker.errors import LeaseSetupFailed

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class DomainLeases:
    def __init__(self, lock_root: str, timeout: float = 0) -> None:
        self.lock_root = Path(lock_root)
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _thread_lock(self, domain: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(domain, threading.Lock())

    def lock_path(self, domain: str) -> Path:
        """Lock file for *domain*, named by digest so any domain string fits one path component."""
        return self.lock_root / f"{hashlib.sha256(domain.encode()).hexdigest()}.lock"

    @contextlib.contextmanager
    def hold(self, domain: str) -> Iterator[bool]:
        """
        Yield True when the lease was acquired, False when another execution
        owns *domain* and did not release it within the timeout.

        Raises LeaseSetupFailed when the lock file cannot be opened.
        """
        thread_lock = self._thread_lock(domain)
        if self.timeout > 0:
            acquired = thread_lock.acquire(timeout=self.timeout)
        else:
            acquired = thread_lock.acquire(blocking=False)
        if not acquired:
            logger.info("Lease for %s is held by another execution", domain)
            yield False
            return

        try:
            path = self.lock_path(domain)
            try:
                self.lock_root.mkdir(parents=True, exist_ok=True)
                lock_file = open(path, "a+")
            except OSError as exc:
                logger.error("Cannot open lease file %s for %s: %s", path, domain, exc)
                raise LeaseSetupFailed(str(path), str(exc)) from exc

            with lock_file:
                if not self._flock(lock_file):
                    logger.info("Lease file for %s is locked by another process", domain)
                    yield False
                    return
                try:
                    yield True
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            thread_lock.release()

    def _flock(self, lock_file) -> bool:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return True
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    return False
                time.sleep(_POLL_INTERVAL)
