# scan_backend/reports/email_service.py

from __future__ import annotations

from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Dict, Any, Optional

import os
import re
import smtplib
import ssl

from scan_backend.reports.report_builder import (
    build_csv,
    build_html,
    build_subject,
    build_text,
    csv_filename,
)


class EmailConfigError(RuntimeError):
    """SMTP settings are missing or invalid."""


class EmailDeliveryError(RuntimeError):
    """The SMTP server refused or dropped the message."""


@dataclass(frozen=True)
class EmailSettings:
    host: str
    port: int
    user: str
    password: str
    from_email: str
    from_name: str
    recipient: str
    secure: bool = False  # implicit TLS; otherwise STARTTLS
    timeout: float = 15.0

    @property
    def masked_user(self) -> str:
        return re.sub(r"(.{3}).+(@.+)", r"\1***\2", self.user)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_email_settings() -> EmailSettings:
    """Read SMTP settings from the environment. Raises EmailConfigError."""
    host = os.getenv("SMTP_HOST", "")
    user = os.getenv("SMTP_USER", "")
    recipient = os.getenv("RECIPIENT_EMAIL", "")
    from_email = os.getenv("FROM_EMAIL") or user

    missing = [
        name
        for name, value in (
            ("SMTP_HOST", host),
            ("RECIPIENT_EMAIL", recipient),
            ("FROM_EMAIL or SMTP_USER", from_email),
        )
        if not value
    ]
    if missing:
        raise EmailConfigError(f"Email is not configured: {', '.join(missing)} not set.")

    try:
        port = int(os.getenv("SMTP_PORT", "587"))
        timeout = float(os.getenv("SMTP_TIMEOUT", "15"))
    except ValueError as exc:
        raise EmailConfigError(f"Invalid SMTP setting: {exc}") from exc

    return EmailSettings(
        host=host,
        port=port,
        user=user,
        password=os.getenv("SMTP_PASS", ""),
        from_email=from_email,
        from_name=os.getenv("FROM_NAME", "BarcodeBuddy"),
        recipient=recipient,
        secure=_env_flag("SMTP_SECURE"),
        timeout=timeout,
    )


def build_message(session, summary: Dict[str, Any], settings: EmailSettings) -> EmailMessage:
    html = build_html(
        session.delivery_note_number,
        session.created_at,
        session.barcodes,
        summary,
    )

    msg = EmailMessage()
    msg["Subject"] = build_subject(session.delivery_note_number)
    msg["From"] = formataddr((settings.from_name, settings.from_email))
    msg["To"] = settings.recipient
    msg["Message-ID"] = make_msgid()
    msg["X-Mailer"] = settings.from_name
    msg.set_content(build_text(html))
    msg.add_alternative(html, subtype="html")
    msg.add_attachment(
        build_csv(session.barcodes).encode("utf-8"),
        maintype="text",
        subtype="csv",
        filename=csv_filename(session.delivery_note_number),
    )
    return msg


class SmtpMailer:
    """Thin smtplib wrapper; one connection per call."""

    def __init__(self, settings: Optional[EmailSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> EmailSettings:
        if self._settings is None:
            self._settings = load_email_settings()
        return self._settings

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        context = ssl.create_default_context()
        if s.secure:
            client: smtplib.SMTP = smtplib.SMTP_SSL(s.host, s.port, timeout=s.timeout, context=context)
        else:
            client = smtplib.SMTP(s.host, s.port, timeout=s.timeout)
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls(context=context)
                client.ehlo()
        if s.user and s.password:
            client.login(s.user, s.password)
        return client

    def send(self, message: EmailMessage) -> str:
        try:
            with self._connect() as client:
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc
        return message["Message-ID"]

    def verify(self) -> Dict[str, Any]:
        s = self.settings
        try:
            with self._connect() as client:
                client.noop()
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP check failed: {exc}") from exc
        return {"host": s.host, "port": s.port, "user": s.masked_user}


def send_scan_session_report(session, summary: Dict[str, Any], mailer: Optional[SmtpMailer] = None) -> str:
    """Render the report for ``session`` and hand it to the SMTP transport."""
    mailer = mailer or SmtpMailer()
    message = build_message(session, summary, mailer.settings)
    return mailer.send(message)
