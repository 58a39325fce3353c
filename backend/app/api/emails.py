import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session as OrmSession

from backend.app.config import Settings, get_settings
from backend.app.db.session import get_db
from backend.app.security.session import resolve_session
from backend.app.services.gmail_service import ProviderErrorKind, classify_error
from backend.app.services.inbox import scan_inbox

router = APIRouter()
logger = logging.getLogger(__name__)

# kind -> (code, http status, user-facing message, extra fields)
_ERROR_RESPONSES = {
    ProviderErrorKind.UNAUTHORIZED: (
        "TOKEN_EXPIRED",
        401,
        "Gmail access token expired. Please sign out and sign in again.",
        {"details": "Your authentication token is no longer valid."},
    ),
    ProviderErrorKind.FORBIDDEN: (
        "PERMISSION_DENIED",
        403,
        "Gmail API access denied. Make sure you granted permission to read your emails.",
        {
            "details": "The access token doesn't have Gmail permission. "
            "Please sign out and sign in again, then allow Gmail access.",
            "suggestion": "Check that you clicked 'Allow' for Gmail permissions during login.",
            "troubleshooting": "1. Visit https://myaccount.google.com/permissions 2. Find MailGuardian "
            "3. Click Remove Access 4. Sign in again",
        },
    ),
    ProviderErrorKind.RATE_LIMITED: (
        "RATE_LIMITED",
        429,
        "Gmail API rate limit exceeded. Please try again in a few minutes.",
        {},
    ),
    ProviderErrorKind.BAD_REQUEST: ("BAD_REQUEST", 400, "Invalid request to Gmail API.", {}),
    ProviderErrorKind.SERVER_ERROR: (
        "SERVER_ERROR",
        503,
        "Gmail API server error. Please try again in a few minutes.",
        {},
    ),
    ProviderErrorKind.UNKNOWN: ("UNKNOWN_ERROR", 500, "Failed to fetch emails from Gmail API", {}),
}

# Codes whose envelope carries the raw upstream error text
_RAW_DETAIL_CODES = {"BAD_REQUEST", "UNKNOWN_ERROR"}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_max_results(raw: Optional[str], settings: Settings) -> int:
    """Missing, malformed or non-positive values fall back to the default; large ones are capped."""
    cap = settings.emails_max_results_cap
    try:
        value = int((raw or "").strip())
    except ValueError:
        return min(settings.emails_default_max_results, cap)
    if value < 1:
        return min(settings.emails_default_max_results, cap)
    return min(value, cap)


@router.get("/emails")
async def get_emails(
    request: Request,
    maxResults: Optional[str] = None,
    db: OrmSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        session = resolve_session(request, db)
        if session is None:
            logger.warning("Email fetch rejected: no session")
            return JSONResponse({"error": "Not authenticated", "timestamp": _timestamp()}, status_code=401)
        if not session.has_access_token:
            logger.warning("Email fetch rejected: no access token for %s", session.user_email)
            return JSONResponse(
                {"error": "No access token available. Please sign in again.", "timestamp": _timestamp()},
                status_code=401,
            )

        logger.info(
            "Gmail session for %s: access token present, refresh token %s, expires at %s",
            session.user_email,
            "present" if session.refresh_token else "absent",
            session.expires_at.isoformat() if session.expires_at else "not set",
        )
        max_results = parse_max_results(maxResults, settings)
        logger.info("Fetching %d emails for %s", max_results, session.user_email)

        scan = await scan_inbox(session.access_token, max_results)
        if not scan.listed:
            logger.info("No emails found in inbox for %s", session.user_email)
            return {
                "emails": [],
                "message": "No emails found in your inbox.",
                "totalFetched": 0,
                "timestamp": _timestamp(),
            }

        emails = scan.emails
        return {"emails": emails, "totalFetched": len(emails), "timestamp": _timestamp()}
    except Exception as exc:
        return _map_gmail_error(exc)


def _map_gmail_error(exc: Exception) -> JSONResponse:
    kind = classify_error(exc)
    code, status, message, extra = _ERROR_RESPONSES[kind]
    if kind is ProviderErrorKind.UNKNOWN:
        logger.exception("Unclassified error while fetching emails: %s", exc)
    else:
        logger.error("Gmail listing failed (%s): %s", code, exc)
    body = {"error": message, "code": code, **extra}
    if code in _RAW_DETAIL_CODES:
        body["details"] = str(exc) or type(exc).__name__
    body["timestamp"] = _timestamp()
    return JSONResponse(body, status_code=status)
