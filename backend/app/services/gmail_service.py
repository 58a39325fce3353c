import base64
import html
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from backend.app.config import get_settings

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
# Matches a standalone 5xx status code, not any stray "5"
_SERVER_STATUS_PATTERN = re.compile(r"(?<!\d)5\d\d(?!\d)")
# Inline images and other binary parts never contribute body text
_BODY_MIME_PREFIXES = ("text/", "multipart/")

logger = logging.getLogger(__name__)


class ProviderErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    BAD_REQUEST = "bad_request"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"

    @classmethod
    def from_status(cls, status_code: int) -> "ProviderErrorKind":
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 403:
            return cls.FORBIDDEN
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code == 400:
            return cls.BAD_REQUEST
        if status_code >= 500:
            return cls.SERVER_ERROR
        return cls.UNKNOWN

    @classmethod
    def from_message(cls, message: str) -> "ProviderErrorKind":
        """Best-effort classification of untyped errors; first match wins."""
        text = message or ""
        for marker, kind in (
            ("401", cls.UNAUTHORIZED),
            ("403", cls.FORBIDDEN),
            ("429", cls.RATE_LIMITED),
            ("400", cls.BAD_REQUEST),
        ):
            if marker in text:
                return kind
        if _SERVER_STATUS_PATTERN.search(text):
            return cls.SERVER_ERROR
        return cls.UNKNOWN


class GmailApiError(RuntimeError):
    """Raised when a Gmail API call fails or cannot be made."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def kind(self) -> ProviderErrorKind:
        if self.status_code is None:
            return ProviderErrorKind.from_message(str(self))
        return ProviderErrorKind.from_status(self.status_code)


def classify_error(exc: BaseException) -> ProviderErrorKind:
    if isinstance(exc, GmailApiError):
        return exc.kind
    return ProviderErrorKind.from_message(str(exc))


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _check_response(resp, context: str) -> None:
    if resp.status_code >= 400:
        raise GmailApiError(
            f"Gmail API {context} failed with status {resp.status_code}: {(resp.text or '')[:300]}",
            status_code=resp.status_code,
        )


async def _get_json(url: str, access_token: str, params: Dict[str, Any], context: str) -> Dict:
    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=settings.gmail_timeout_seconds) as client:
            resp = await client.get(url, params=params, headers=_auth_headers(access_token))
    except httpx.RequestError as exc:
        raise GmailApiError(f"Gmail API {context} request error: {exc}") from exc
    _check_response(resp, context)
    return resp.json() or {}


async def get_user_info(access_token: str) -> Dict:
    return await _get_json(USERINFO_URL, access_token, {}, "userinfo")


async def list_messages(access_token: str, max_results: int) -> Dict:
    """List the most recent inbox message references, newest first."""
    base_url = get_settings().gmail_api_base_url.rstrip("/")
    data = await _get_json(
        f"{base_url}/users/me/messages",
        access_token,
        {"maxResults": max_results, "labelIds": "INBOX"},
        "list messages",
    )
    logger.debug("Gmail listed %d message references", len(data.get("messages") or []))
    return data


async def get_message_detail(access_token: str, message_id: str) -> Dict:
    base_url = get_settings().gmail_api_base_url.rstrip("/")
    data = await _get_json(
        f"{base_url}/users/me/messages/{message_id}",
        access_token,
        {"format": "full"},
        f"get message {message_id}",
    )
    payload = data.get("payload", {}) or {}
    headers = payload.get("headers", []) or []
    body = extract_body(payload)
    attachments: List[Dict[str, Any]] = []
    _collect_attachments(payload, attachments)
    return {
        "id": data.get("id", message_id),
        "threadId": data.get("threadId"),
        "labelIds": data.get("labelIds", []) or [],
        "snippet": html.unescape(data.get("snippet", "") or ""),
        "subject": _extract_header(headers, "Subject"),
        "from": _extract_header(headers, "From"),
        "to": _extract_header(headers, "To"),
        "replyTo": _extract_header(headers, "Reply-To"),
        "date": _extract_header(headers, "Date"),
        "body": clean_html(body) if body else "",
        "attachments": attachments,
        "authResults": parse_authentication_results(headers),
    }


def _extract_header(headers: List[Dict[str, str]], name: str) -> str:
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def parse_authentication_results(headers: List[Dict[str, str]]) -> Dict[str, str]:
    """Pull SPF/DKIM/DMARC verdicts out of the Authentication-Results header."""
    auth_header = _extract_header(headers, "Authentication-Results").lower()
    results = {}
    for mechanism in ("spf", "dkim", "dmarc"):
        match = re.search(rf"\b{mechanism}=(\w+)", auth_header)
        results[mechanism] = match.group(1) if match else "none"
    return results


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode()).decode(errors="ignore")


def extract_body(payload: Dict) -> str:
    if not payload:
        return ""
    mime_type = payload.get("mimeType", "")
    if payload.get("filename") or (mime_type and not mime_type.startswith(_BODY_MIME_PREFIXES)):
        return ""
    data = payload.get("body", {}).get("data")
    if data:
        return _decode(data)
    texts = []
    htmls = []
    for part in payload.get("parts", []) or []:
        part_mime = part.get("mimeType", "")
        nested = extract_body(part)
        if not nested:
            continue
        if "html" in part_mime:
            htmls.append(nested)
        else:
            texts.append(nested)
    if texts:
        return "\n".join(texts)
    if htmls:
        return "\n".join(htmls)
    return ""


def _collect_attachments(part: Dict[str, Any], attachments: List[Dict[str, Any]]) -> None:
    filename = part.get("filename")
    if filename:
        attachments.append(
            {
                "filename": filename,
                "mimeType": part.get("mimeType", ""),
                "size": (part.get("body") or {}).get("size", 0),
            }
        )
    for child in part.get("parts", []) or []:
        _collect_attachments(child, attachments)


def clean_html(raw: str) -> str:
    no_script = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", raw, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<a\s[^>]*href=[\"']([^\"']+)[\"'][^>]*>", r" \1 ", no_script, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


__all__ = [
    "GmailApiError",
    "ProviderErrorKind",
    "classify_error",
    "get_user_info",
    "list_messages",
    "get_message_detail",
    "parse_authentication_results",
    "clean_html",
    "extract_body",
]
