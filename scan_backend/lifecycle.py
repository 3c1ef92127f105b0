# scan_backend/lifecycle.py

"""
Email-send status of a scan session.

    pending ──► sent
       │         ▲
       ▼         │
    failed ──────┘   (failed ──► failed on a repeated failure)

Nothing moves back to pending. A retry is the caller invoking
send_session_report again; there is no background queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import json
import logging

from scan_backend.qr_parser import summarize_codes

if TYPE_CHECKING:  # pragma: no cover
    from scan_backend.storage import ScanSession, ScanSessionStore

logger = logging.getLogger("scanreport")


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    EmailStatus.PENDING: {EmailStatus.PENDING, EmailStatus.SENT, EmailStatus.FAILED},
    EmailStatus.FAILED: {EmailStatus.SENT, EmailStatus.FAILED},
    EmailStatus.SENT: {EmailStatus.SENT},
}


class InvalidStatusTransition(ValueError):
    def __init__(self, current: EmailStatus, target: EmailStatus):
        super().__init__(
            f"Email status cannot change from '{current.value}' to '{target.value}'."
        )
        self.current = current
        self.target = target


class ReportAlreadySentError(ValueError):
    def __init__(self):
        super().__init__("The report for this session has already been sent.")


class EmptySessionError(ValueError):
    def __init__(self):
        super().__init__("Scan at least one barcode before sending the report.")


def can_transition(current: EmailStatus, target: EmailStatus) -> bool:
    return EmailStatus(target) in ALLOWED_TRANSITIONS[EmailStatus(current)]


def transition(current: EmailStatus, target: EmailStatus) -> EmailStatus:
    current, target = EmailStatus(current), EmailStatus(target)
    if not can_transition(current, target):
        raise InvalidStatusTransition(current, target)
    return target


@dataclass
class SendResult:
    session: "ScanSession"
    delivered: bool
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return not self.delivered


# deliver(session, summary) raises on any transport failure.
Deliver = Callable[["ScanSession", Dict[str, Any]], Any]


def send_session_report(
    store: "ScanSessionStore",
    session_id: int,
    deliver: Deliver,
) -> Optional[SendResult]:
    """
    Run one send attempt for ``session_id``.

    Returns None when the session does not exist. On success the status
    becomes sent, on any exception from ``deliver`` (timeouts included) it
    becomes failed. The barcode list is never modified here.
    """
    session = store.get(session_id)
    if session is None:
        return None
    if session.email_sent == EmailStatus.SENT:
        raise ReportAlreadySentError()
    if not session.barcodes:
        raise EmptySessionError()

    summary = summarize_codes(session.barcodes)
    try:
        deliver(session, summary)
    except Exception as exc:
        updated = store.update(session_id, email_sent=EmailStatus.FAILED)
        logger.warning(
            json.dumps(
                {
                    "event": "email_failed",
                    "session_id": session_id,
                    "previous_status": session.email_sent.value,
                    "error": str(exc),
                }
            )
        )
        return SendResult(session=updated or session, delivered=False, error=str(exc))

    updated = store.update(session_id, email_sent=EmailStatus.SENT)
    logger.info(
        json.dumps(
            {
                "event": "email_sent",
                "session_id": session_id,
                "previous_status": session.email_sent.value,
                "barcodes": len(session.barcodes),
                "total_weight": summary["totalWeight"],
            }
        )
    )
    return SendResult(session=updated or session, delivered=True)
