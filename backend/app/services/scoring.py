from __future__ import annotations

import re
from typing import Any, Dict, List

WEAK_KEYWORDS = {"urgent", "immediately", "suspend", "update", "confirm", "action required", "final notice"}
CRED_REQUEST = re.compile(r"(password|otp|one-time code|verify your|login|log in|sign in|credential)", re.IGNORECASE)
PAYMENT_REQUEST = re.compile(r"(wire|transfer|invoice|payment|bank account|gift card|bitcoin)", re.IGNORECASE)
EXEC_IMPERSONATION = re.compile(r"\b(ceo|cfo|cto|vp|president|chairman)\b", re.IGNORECASE)

RECOMMENDED_ACTIONS = {
    "BENIGN": "ALLOW",
    "SUSPICIOUS": "ALLOW_WITH_WARNING",
    "NORMAL_PHISHING": "QUARANTINE",
    "ADVANCED_PHISHING": "BLOCK",
    "INSUFFICIENT_DATA": "ALLOW_WITH_WARNING",
}


def severity_for(score: float) -> str:
    if score >= 0.85:
        return "CRITICAL"
    if score >= 0.6:
        return "HIGH"
    if score >= 0.3:
        return "MEDIUM"
    return "LOW"


def _is_failing(verdict: str) -> bool:
    return verdict in ("fail", "softfail", "permerror", "none", "")


def score_message(evidence: Dict[str, Any]) -> Dict[str, Any]:
    """Multi-signal scorer; no single keyword can push a message into the high-risk band.

    ``evidence`` carries ``body``, ``auth`` (spf/dkim/dmarc verdicts), ``links``,
    ``attachments``, ``sender_display_name`` and ``reply_to_mismatch``.
    """
    body = evidence.get("body") or ""
    auth = evidence.get("auth") or {}
    links = evidence.get("links") or []
    attachments = evidence.get("attachments") or []

    evidence_missing: List[str] = []
    if not body.strip():
        evidence_missing.append("body")
    if not auth or all((v or "none") == "none" for v in auth.values()):
        evidence_missing.append("auth_results")
    if not links and not attachments:
        evidence_missing.append("links_attachments")

    if set(evidence_missing) >= {"body", "auth_results", "links_attachments"}:
        return {
            "classification": "INSUFFICIENT_DATA",
            "risk_score": 0.3,
            "severity": "MEDIUM",
            "signals": ["Missing body content", "Missing authentication results", "No links or attachments"],
            "evidence_missing": evidence_missing,
            "explanation": "Not enough information (body, authentication, links/attachments absent) to decide.",
            "recommended_action": RECOMMENDED_ACTIONS["INSUFFICIENT_DATA"],
        }

    risk = 0.0
    signals: List[str] = []

    spf = (auth.get("spf") or "none").lower()
    dkim = (auth.get("dkim") or "none").lower()
    dmarc = (auth.get("dmarc") or "none").lower()
    auth_fail = False
    if "auth_results" not in evidence_missing:
        if _is_failing(spf) and _is_failing(dkim):
            risk += 0.25
            auth_fail = True
            signals.append("SPF and DKIM failed or absent")
        if dmarc == "fail":
            risk += 0.2
            auth_fail = True
            signals.append("DMARC failed")

    suspicious_link = False
    for link in links:
        host = link.get("host") or ""
        if link.get("is_ip"):
            suspicious_link = True
            risk += 0.2
            signals.append("Link points to a raw IP address")
        if link.get("is_shortened"):
            suspicious_link = True
            risk += 0.1
            signals.append(f"Shortened link via {host}")
        if link.get("suspicious_host"):
            suspicious_link = True
            risk += 0.15
            signals.append(f"Suspicious link domain {host}")

    risky_attachment = False
    for att in attachments:
        fname = (att.get("filename") or "").lower()
        if att.get("is_executable") or att.get("is_archive"):
            risky_attachment = True
            risk += 0.25
            signals.append(f"Risky attachment: {fname or 'archive'}")
        if att.get("is_macro_enabled"):
            risky_attachment = True
            risk += 0.2
            signals.append(f"Macro-enabled attachment: {fname}")

    cred_req = bool(CRED_REQUEST.search(body))
    pay_req = bool(PAYMENT_REQUEST.search(body))
    exec_imp = bool(EXEC_IMPERSONATION.search(body + " " + (evidence.get("sender_display_name") or "")))

    if cred_req:
        risk += 0.25
        signals.append("Credential/OTP request detected")
    if pay_req:
        risk += 0.25
        signals.append("Payment/bank change request detected")
    if exec_imp:
        risk += 0.2
        signals.append("Executive/role impersonation cues")

    body_l = body.lower()
    if any(kw in body_l for kw in WEAK_KEYWORDS):
        risk += 0.05
        signals.append("Urgency language present")

    if evidence.get("reply_to_mismatch"):
        risk += 0.1
        signals.append("Reply-To domain differs from sender")

    strong_signals = sum(
        1 for flag in (auth_fail, suspicious_link, risky_attachment, cred_req, pay_req, exec_imp) if flag
    )
    if strong_signals < 2:
        risk = min(risk, 0.89)
    risk = min(1.0, risk)

    if strong_signals:
        if exec_imp and pay_req:
            classification = "ADVANCED_PHISHING"
            risk = max(risk, 0.85 if strong_signals >= 2 else 0.75)
        else:
            classification = "NORMAL_PHISHING" if risk >= 0.7 or strong_signals >= 2 else "SUSPICIOUS"
    else:
        classification = "BENIGN" if risk <= 0.25 else "SUSPICIOUS"

    if classification == "BENIGN" and "body" in evidence_missing:
        classification = "INSUFFICIENT_DATA"
        risk = max(risk, 0.3)

    explanation_parts = []
    if signals:
        explanation_parts.append("Signals: " + "; ".join(signals[:4]))
    if evidence_missing:
        explanation_parts.append("Missing evidence: " + ", ".join(evidence_missing))

    return {
        "classification": classification,
        "risk_score": round(risk, 3),
        "severity": severity_for(risk),
        "signals": signals[:7],
        "evidence_missing": evidence_missing,
        "explanation": " ".join(explanation_parts) or "No notable signals.",
        "recommended_action": RECOMMENDED_ACTIONS[classification],
    }
