"""Identifier allocation for the IPC bridge.

Two kinds of identifiers exist:
- Request ids, chosen by the client and unique per in-flight call on one
  connection (sequential positive integers).
- Client ids, chosen by the server once per session and never reused within
  the process (``client-<millis>-<counter>``).
"""

from __future__ import annotations

import itertools
import threading
import time
from typing import Final


class IdAllocator:
    """Thread-safe allocator for sequential request ids."""

    def __init__(self, start: int = 1) -> None:
        self._next: int = start
        self._lock: Final = threading.Lock()

    def allocate(self) -> int:
        """Allocate the next request id."""
        with self._lock:
            request_id = self._next
            self._next += 1
            return request_id


class ClientIdGenerator:
    """Generates session identifiers that are never handed out twice."""

    def __init__(self, prefix: str = "client") -> None:
        self.prefix = prefix
        self._counter = itertools.count(1)
        self._lock: Final = threading.Lock()

    def generate(self) -> str:
        """Generate a fresh client id."""
        with self._lock:
            seq = next(self._counter)
        return f"{self.prefix}-{int(time.time() * 1000)}-{seq}"
