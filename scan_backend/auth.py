# scan_backend/auth.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import os
import secrets
import threading

import bcrypt
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

# Core secret for signing session tokens, must be provided via env
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY or len(SECRET_KEY) < 32:
    raise RuntimeError("FATAL: SECRET_KEY NOT SET or too short (32+ chars required).")

# Single shared login for the scanning page, no defaults
APP_USERNAME = os.getenv("APP_USERNAME")
if not APP_USERNAME:
    raise RuntimeError("FATAL: APP_USERNAME NOT SET.")

_password_hash = os.getenv("APP_PASSWORD_HASH")
if not _password_hash:
    _plain = os.getenv("APP_PASSWORD")
    if not _plain:
        raise RuntimeError("FATAL: APP_PASSWORD_HASH or APP_PASSWORD must be set.")
    _password_hash = bcrypt.hashpw(_plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
APP_PASSWORD_HASH = _password_hash.encode("utf-8")

AUTH_SESSION_MAX_AGE = int(os.getenv("AUTH_SESSION_MAX_AGE", str(60 * 60 * 24)))  # 24 hours

_session_serializer = URLSafeTimedSerializer(SECRET_KEY, salt="scanreport-session-v1")


def verify_credentials(username: str, password: str) -> bool:
    user_ok = secrets.compare_digest(username.encode("utf-8"), APP_USERNAME.encode("utf-8"))
    # Always run the hash check so timing does not reveal the username.
    password_ok = bcrypt.checkpw(password.encode("utf-8"), APP_PASSWORD_HASH)
    return user_ok and password_ok


class AuthSessionRegistry:
    """Live login sessions, volatile like the scan session store."""

    def __init__(self, max_age: int = AUTH_SESSION_MAX_AGE):
        self.max_age = max_age
        self._sessions: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def create(self) -> tuple[str, datetime]:
        """Return a signed session token and its expiry."""
        sid = secrets.token_hex(16)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.max_age)
        with self._lock:
            self._sessions[sid] = expires_at
        return _session_serializer.dumps({"sid": sid}), expires_at

    def _sid(self, token: str) -> Optional[str]:
        try:
            data = _session_serializer.loads(token, max_age=self.max_age)
        except (BadSignature, SignatureExpired):
            return None
        return data.get("sid") if isinstance(data, dict) else None

    def verify(self, token: str) -> bool:
        sid = self._sid(token)
        if not sid:
            return False
        with self._lock:
            expires_at = self._sessions.get(sid)
            if expires_at is None:
                return False
            if expires_at < datetime.now(timezone.utc):
                del self._sessions[sid]
                return False
        return True

    def revoke(self, token: str) -> None:
        sid = self._sid(token)
        if sid:
            with self._lock:
                self._sessions.pop(sid, None)
