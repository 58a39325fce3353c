from __future__ import annotations

import ipaddress
import re
from email.utils import parseaddr
from typing import Any, Dict, List
from urllib.parse import urlparse

from backend.app.services.scoring import score_message

URL_PATTERN = re.compile(r"https?://[^\s<>\"')]+", re.IGNORECASE)
MAX_LINKS = 20

SHORTENER_HOSTS = {"bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd", "buff.ly", "rebrand.ly", "cutt.ly"}
SUSPICIOUS_TLDS = (".xyz", ".top", ".icu", ".vip", ".click", ".link", ".pw", ".live", ".shop", ".work", ".quest")
EXECUTABLE_EXTENSIONS = (".exe", ".js", ".vbs", ".bat", ".cmd", ".scr", ".ps1", ".jar", ".msi", ".hta")
ARCHIVE_EXTENSIONS = (".zip", ".rar", ".7z", ".iso", ".img")
MACRO_EXTENSIONS = (".docm", ".xlsm", ".pptm", ".dotm")


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def extract_links(body: str) -> List[Dict[str, Any]]:
    links: List[Dict[str, Any]] = []
    seen = set()
    for url in URL_PATTERN.findall(body or ""):
        url = url.rstrip(".,;:")
        if url in seen:
            continue
        seen.add(url)
        host = (urlparse(url).hostname or "").lower()
        if not host:
            continue
        links.append(
            {
                "url": url,
                "host": host,
                "is_ip": _is_ip(host),
                "is_shortened": host in SHORTENER_HOSTS,
                "suspicious_host": host.endswith(SUSPICIOUS_TLDS) or host.count("-") >= 2,
            }
        )
        if len(links) >= MAX_LINKS:
            break
    return links


def classify_attachment(attachment: Dict[str, Any]) -> Dict[str, Any]:
    fname = (attachment.get("filename") or "").lower()
    return {
        "filename": attachment.get("filename", ""),
        "mimeType": attachment.get("mimeType", ""),
        "size": attachment.get("size", 0),
        "is_executable": fname.endswith(EXECUTABLE_EXTENSIONS),
        "is_archive": fname.endswith(ARCHIVE_EXTENSIONS),
        "is_macro_enabled": fname.endswith(MACRO_EXTENSIONS),
    }


def _domain(address: str) -> str:
    _, addr = parseaddr(address or "")
    return addr.rpartition("@")[2].lower()


def analyze_email(message: Dict[str, Any]) -> Dict[str, Any]:
    """Score a fetched Gmail message and shape it for the dashboard."""
    sender = message.get("from") or ""
    display_name, _ = parseaddr(sender)
    reply_to = message.get("replyTo") or ""
    sender_domain = _domain(sender)
    reply_domain = _domain(reply_to)

    links = extract_links(message.get("body") or "")
    attachments = [classify_attachment(att) for att in message.get("attachments") or []]
    auth = message.get("authResults") or {}

    result = score_message(
        {
            "body": " ".join(filter(None, [message.get("subject"), message.get("body")])),
            "auth": auth,
            "links": links,
            "attachments": attachments,
            "sender_display_name": display_name,
            "reply_to_mismatch": bool(reply_domain and sender_domain and reply_domain != sender_domain),
        }
    )
    risk = result["risk_score"]

    return {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "subject": message.get("subject") or "(no subject)",
        "from": sender,
        "date": message.get("date"),
        "snippet": message.get("snippet", ""),
        "isUnread": "UNREAD" in (message.get("labelIds") or []),
        "trustScore": int(round((1 - risk) * 100)),
        "riskScore": risk,
        "classification": result["classification"],
        "severity": result["severity"],
        "signals": result["signals"],
        "recommendedAction": result["recommended_action"],
        "explanation": result["explanation"],
        "links": [link["url"] for link in links],
        "attachments": [
            {"filename": att["filename"], "mimeType": att["mimeType"], "size": att["size"]} for att in attachments
        ],
        "authentication": {key: auth.get(key, "none") for key in ("spf", "dkim", "dmarc")},
    }
