# main.py

from __future__ import annotations

from typing import Optional

import os
import time
import json
import secrets

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
import redis
import logging

from scan_backend.auth import AuthSessionRegistry, verify_credentials
from scan_backend.lifecycle import (
    EmailStatus,
    EmptySessionError,
    InvalidStatusTransition,
    ReportAlreadySentError,
    send_session_report,
)
from scan_backend.models import (
    AddBarcodeRequest,
    CreateScanSessionRequest,
    LoginRequest,
    ParseRequest,
    UpdateScanSessionRequest,
)
from scan_backend.qr_parser import build_structured_code, parse_qr_code, summarize_codes
from scan_backend.reports import (
    EmailConfigError,
    EmailDeliveryError,
    SmtpMailer,
    send_scan_session_report,
)
from scan_backend.scanning import DuplicateBarcodeError
from scan_backend.storage import ScanSessionStore

REDIS_URL = os.getenv("REDIS_URL")
SENTRY_DSN = os.getenv("SENTRY_DSN", "")
ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
]

LOGIN_MAX_FAILURES = 5
LOGIN_LOCK_SECONDS = 900

# Init Sentry if configured
if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, traces_sample_rate=0.2)

logger = logging.getLogger("scanreport")
logging.basicConfig(level=logging.INFO, format="%(message)s")

app = FastAPI(title="Scan Report API")

if ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Process-lifetime state, replaced wholesale in tests.
app.state.store = ScanSessionStore()
app.state.auth_sessions = AuthSessionRegistry()
app.state.mailer = SmtpMailer()
app.state.deliver = lambda session, summary: send_scan_session_report(
    session, summary, app.state.mailer
)


def _log(event: str, level: int = logging.INFO, **fields) -> None:
    logger.log(level, json.dumps({"event": event, **fields}, default=str))


# ---------------------------------------------------------
# Error handlers
# ---------------------------------------------------------
@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    _log("error", logging.ERROR, path=str(request.url), error=str(exc))
    return JSONResponse({"error": "Internal server error."}, status_code=500)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse({"error": "Invalid request.", "detail": detail}, status_code=422)


@app.exception_handler(DuplicateBarcodeError)
async def duplicate_handler(request: Request, exc: DuplicateBarcodeError):
    _log("duplicate_rejected", path=request.url.path, barcode=exc.value)
    return JSONResponse(
        {"error": "Duplicate barcode.", "message": str(exc), "barcode": exc.value},
        status_code=409,
    )


@app.exception_handler(InvalidStatusTransition)
async def transition_handler(request: Request, exc: InvalidStatusTransition):
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(ReportAlreadySentError)
async def already_sent_handler(request: Request, exc: ReportAlreadySentError):
    return JSONResponse({"error": str(exc), "emailSent": EmailStatus.SENT.value}, status_code=409)


@app.exception_handler(EmptySessionError)
async def empty_session_handler(request: Request, exc: EmptySessionError):
    return JSONResponse({"error": str(exc)}, status_code=400)


# Request id + security headers + access log
@app.middleware("http")
async def security_headers(request: Request, call_next):
    request_id = secrets.token_hex(8)
    request.state.request_id = request_id
    start_time = time.time()
    response = await call_next(request)
    duration = round((time.time() - start_time) * 1000, 2)
    _log(
        "request",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        status=response.status_code,
        duration_ms=duration,
        ip=_get_client_ip(request),
    )
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cache-Control"] = "no-store"
    return response


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def _get_client_ip(request: Request) -> str:
    xfwd = request.headers.get("x-forwarded-for")
    if xfwd:
        return xfwd.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def _require_auth(request: Request) -> Optional[JSONResponse]:
    token = _bearer_token(request)
    if not token or not request.app.state.auth_sessions.verify(token):
        return JSONResponse({"error": "Authentication required."}, status_code=401)
    return None


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "Scan session not found"}, status_code=404)


def _redis_client() -> Optional[redis.Redis]:
    if not REDIS_URL:
        return None
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _login_fail_key(username: str, ip: str) -> str:
    return f"login:fail:{username.lower()}:{ip}"


def _check_bruteforce(username: str, ip: str) -> Optional[JSONResponse]:
    r = _redis_client()
    if r is None:
        return None
    key = _login_fail_key(username, ip)
    try:
        fail_count = r.get(key)
    except redis.RedisError as exc:
        return JSONResponse({"error": f"Auth backend unavailable: {exc}"}, status_code=503)
    fail_count = int(fail_count) if fail_count else 0
    if fail_count >= LOGIN_MAX_FAILURES:
        ttl = r.ttl(key)
        return JSONResponse(
            {"error": "Login temporarily locked due to failed attempts.", "retry_after": max(ttl, 0)},
            status_code=423,
        )
    return None


def _record_login_failure(username: str, ip: str) -> None:
    _log("login_failed", logging.WARNING, username=username, ip=ip)
    r = _redis_client()
    if r is None:
        return
    key = _login_fail_key(username, ip)
    count = r.incr(key)
    if count == 1:
        r.expire(key, LOGIN_LOCK_SECONDS)


def _clear_login_failures(username: str, ip: str) -> None:
    r = _redis_client()
    if r is not None:
        r.delete(_login_fail_key(username, ip))


# ---------------------------------------------------------
# Auth
# ---------------------------------------------------------
@app.post("/api/auth/login")
def login(body: LoginRequest, request: Request):
    username = body.username.strip()
    ip = _get_client_ip(request)
    locked = _check_bruteforce(username, ip)
    if locked:
        return locked

    if not verify_credentials(username, body.password):
        _record_login_failure(username, ip)
        return JSONResponse({"error": "Invalid username or password."}, status_code=401)

    _clear_login_failures(username, ip)
    token, expires_at = request.app.state.auth_sessions.create()
    return {"sessionId": token, "expiresAt": expires_at.isoformat()}


@app.get("/api/auth/status")
def auth_status(request: Request):
    denied = _require_auth(request)
    if denied:
        return JSONResponse({"authenticated": False}, status_code=401)
    return {"authenticated": True}


@app.post("/api/auth/logout")
def logout(request: Request):
    token = _bearer_token(request)
    if token:
        request.app.state.auth_sessions.revoke(token)
    return {"success": True}


# ---------------------------------------------------------
# Scan sessions
# ---------------------------------------------------------
@app.post("/api/scan-sessions")
def create_scan_session(body: CreateScanSessionRequest, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    session = request.app.state.store.create(body.deliveryNoteNumber, body.barcodes)
    _log(
        "scan_session_created",
        session_id=session.id,
        delivery_note=session.delivery_note_number,
        barcodes=len(session.barcodes),
    )
    return session.to_dict()


@app.get("/api/scan-sessions")
def list_scan_sessions(request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    return {"items": [s.to_dict() for s in request.app.state.store.list()]}


@app.get("/api/scan-sessions/{session_id}")
def get_scan_session(session_id: int, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    session = request.app.state.store.get(session_id)
    if not session:
        return _not_found()
    return session.to_dict()


@app.patch("/api/scan-sessions/{session_id}")
def update_scan_session(session_id: int, body: UpdateScanSessionRequest, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    session = request.app.state.store.update(
        session_id,
        barcodes=body.barcodes,
        email_sent=EmailStatus(body.emailSent) if body.emailSent else None,
    )
    if not session:
        return _not_found()
    return session.to_dict()


@app.delete("/api/scan-sessions/{session_id}")
def delete_scan_session(session_id: int, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    if not request.app.state.store.delete(session_id):
        return _not_found()
    return {"success": True}


@app.post("/api/scan-sessions/{session_id}/barcodes")
def add_barcode(session_id: int, body: AddBarcodeRequest, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied

    if body.barcode is not None:
        value = body.barcode.strip()
        if not value:
            return JSONResponse({"error": "Barcode is empty."}, status_code=400)
    else:
        try:
            value = build_structured_code(
                body.orderNumber, body.articleNumber, body.batchNumber, body.weight
            )
        except ValueError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)

    session = request.app.state.store.append_barcode(session_id, value)
    if not session:
        return _not_found()
    _log("barcode_added", session_id=session_id, structured=parse_qr_code(value) is not None)
    return session.to_dict()


@app.get("/api/scan-sessions/{session_id}/summary")
def scan_session_summary(session_id: int, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    session = request.app.state.store.get(session_id)
    if not session:
        return _not_found()
    return {
        "id": session.id,
        "deliveryNoteNumber": session.delivery_note_number,
        "emailSent": session.email_sent.value,
        **summarize_codes(session.barcodes),
    }


@app.post("/api/scan-sessions/{session_id}/send-email")
def send_email(session_id: int, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied

    result = send_session_report(request.app.state.store, session_id, request.app.state.deliver)
    if result is None:
        return _not_found()
    if not result.delivered:
        return JSONResponse(
            {
                "error": "Could not send the email. Check the connection and try again.",
                "emailSent": result.session.email_sent.value,
                "retryable": result.retryable,
            },
            status_code=502,
        )
    return {"message": "Email sent successfully", "emailSent": result.session.email_sent.value}


# ---------------------------------------------------------
# Utilities
# ---------------------------------------------------------
@app.post("/api/qr/parse")
def parse_code(body: ParseRequest, request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    parsed = parse_qr_code(body.code)
    return {"structured": parsed is not None, "parsed": parsed.to_dict() if parsed else None}


@app.post("/api/test-smtp")
def test_smtp(request: Request):
    denied = _require_auth(request)
    if denied:
        return denied
    try:
        config = request.app.state.mailer.verify()
    except (EmailConfigError, EmailDeliveryError) as exc:
        return JSONResponse(
            {"success": False, "message": f"SMTP test failed: {exc}"}, status_code=500
        )
    return {"success": True, "message": "SMTP connection succeeded", "config": config}


@app.get("/api/health")
def health(request: Request):
    return {"status": "ok", "sessions": len(request.app.state.store)}
