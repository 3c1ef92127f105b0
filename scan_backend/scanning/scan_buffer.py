# scan_backend/scanning/scan_buffer.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Union

import threading

BufferLike = Union["ScanBuffer", Sequence["ScannedEntry"], Sequence[str]]


class DuplicateBarcodeError(ValueError):
    """Raised when a code is already present in the active buffer."""

    def __init__(self, value: str):
        super().__init__(f"Barcode '{value}' has already been scanned.")
        self.value = value


@dataclass(frozen=True)
class ScannedEntry:
    value: str
    timestamp: str  # HH:MM, display only


def _display_time(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%H:%M")


def _values(buffer: BufferLike) -> Iterable[str]:
    if isinstance(buffer, ScanBuffer):
        return buffer.values()
    return [b.value if isinstance(b, ScannedEntry) else b for b in buffer]


def is_duplicate(buffer: BufferLike, candidate: str) -> bool:
    """Exact, case-sensitive match against every code currently in ``buffer``."""
    return any(value == candidate for value in _values(buffer))


class ScanBuffer:
    """
    The in-progress list of codes for one delivery note.

    Check and append happen under one lock so two detections arriving back
    to back can never both pass the duplicate check.
    """

    def __init__(self, values: Optional[Iterable[str]] = None):
        self._lock = threading.Lock()
        self._entries: List[ScannedEntry] = []
        for value in values or []:
            self.add(value)

    def add(self, value: str, timestamp: Optional[str] = None) -> ScannedEntry:
        with self._lock:
            if is_duplicate(self._entries, value):
                raise DuplicateBarcodeError(value)
            entry = ScannedEntry(value=value, timestamp=timestamp or _display_time())
            self._entries.append(entry)
            return entry

    def remove(self, index: int) -> ScannedEntry:
        with self._lock:
            return self._entries.pop(index)

    def clear(self) -> None:
        with self._lock:
            self._entries = []

    def values(self) -> List[str]:
        with self._lock:
            return [e.value for e in self._entries]

    def entries(self) -> List[ScannedEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, value: object) -> bool:
        return value in self.values()
