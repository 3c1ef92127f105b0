# scan_backend/storage.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Any, Iterable, List, Optional

import threading

from scan_backend.lifecycle import EmailStatus, transition
from scan_backend.scanning import DuplicateBarcodeError, is_duplicate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScanSession:
    id: int
    delivery_note_number: str
    barcodes: List[str] = field(default_factory=list)
    email_sent: EmailStatus = EmailStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)

    def copy(self) -> "ScanSession":
        return replace(self, barcodes=list(self.barcodes))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deliveryNoteNumber": self.delivery_note_number,
            "barcodes": list(self.barcodes),
            "emailSent": self.email_sent.value,
            "createdAt": self.created_at.isoformat(),
        }


class ScanSessionStore:
    """
    Volatile scan session registry.

    Built once at startup and handed to request handlers through
    ``app.state.store``. Ids start at 1 and are never reused, even after a
    delete. Every method returns copies; the stored instances are only
    changed through ``update``.
    """

    def __init__(self) -> None:
        self._sessions: Dict[int, ScanSession] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create(
        self, delivery_note_number: str, barcodes: Optional[Iterable[str]] = None
    ) -> ScanSession:
        with self._lock:
            session = ScanSession(
                id=self._next_id,
                delivery_note_number=delivery_note_number,
                barcodes=list(barcodes or []),
            )
            self._sessions[session.id] = session
            self._next_id += 1
            return session.copy()

    def get(self, session_id: int) -> Optional[ScanSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.copy() if session else None

    def update(
        self,
        session_id: int,
        barcodes: Optional[Iterable[str]] = None,
        email_sent: Optional[EmailStatus] = None,
    ) -> Optional[ScanSession]:
        """
        Merge the supplied fields into the session; omitted fields stay as
        they are. Raises InvalidStatusTransition for a backwards status move.
        """
        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is None:
                return None

            status = existing.email_sent
            if email_sent is not None:
                status = transition(existing.email_sent, email_sent)

            updated = replace(
                existing,
                barcodes=list(barcodes) if barcodes is not None else list(existing.barcodes),
                email_sent=status,
            )
            self._sessions[session_id] = updated
            return updated.copy()

    def append_barcode(self, session_id: int, value: str) -> Optional[ScanSession]:
        """
        Add one code to a stored session. The duplicate check and the append
        share the store lock. Raises DuplicateBarcodeError.
        """
        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is None:
                return None
            if is_duplicate(existing.barcodes, value):
                raise DuplicateBarcodeError(value)
            updated = replace(existing, barcodes=existing.barcodes + [value])
            self._sessions[session_id] = updated
            return updated.copy()

    def delete(self, session_id: int) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list(self) -> List[ScanSession]:
        with self._lock:
            return [self._sessions[k].copy() for k in sorted(self._sessions)]

    def __len__(self) -> int:
        return len(self._sessions)
