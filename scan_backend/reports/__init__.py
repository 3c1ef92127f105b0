# scan_backend/reports/__init__.py

"""
Scan session report: HTML body + CSV attachment, delivered over SMTP to
the fixed RECIPIENT_EMAIL.
"""

from .email_service import (
    EmailConfigError,
    EmailDeliveryError,
    EmailSettings,
    SmtpMailer,
    load_email_settings,
    send_scan_session_report,
)
