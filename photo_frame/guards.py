"""
Process-wide, non-blocking guards for the long-running operations.
"""
import threading
from contextlib import contextmanager
from typing import Iterator

from .exceptions import ConcurrentOperationError


class OperationGuard:
    """
    A single-permit lock with try-acquire semantics: a second caller fails
    fast with ConcurrentOperationError instead of waiting.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise ConcurrentOperationError(self.name)
        try:
            yield
        finally:
            self._lock.release()


SCAN_GUARD = OperationGuard("scan")
FETCH_GUARD = OperationGuard("fetch")
