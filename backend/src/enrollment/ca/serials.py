"""Serial number allocation."""

import threading
from typing import Protocol


class SerialAllocator(Protocol):
    """Hands out serials that are never handed out again."""

    def next_serial(self) -> int: ...


class InMemorySerialAllocator:
    """Process-local monotonically increasing counter."""

    def __init__(self, start: int = 1) -> None:
        if start < 1:
            raise ValueError("Serial numbers must be positive")
        self._next = start
        self._lock = threading.Lock()

    def next_serial(self) -> int:
        with self._lock:
            serial = self._next
            self._next += 1
            return serial

    @property
    def last_allocated(self) -> int:
        with self._lock:
            return self._next - 1
