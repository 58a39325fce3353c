import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from backend.app.services.analyzer import analyze_email
from backend.app.services.gmail_service import get_message_detail, list_messages

logger = logging.getLogger(__name__)


@dataclass
class MessageOutcome:
    message_id: str
    position: int
    email: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.email is not None


@dataclass
class InboxScan:
    listed: int = 0
    outcomes: List[MessageOutcome] = field(default_factory=list)

    @property
    def emails(self) -> List[Dict[str, Any]]:
        return [outcome.email for outcome in self.outcomes if outcome.ok]

    @property
    def failures(self) -> List[MessageOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


async def _process_message(access_token: str, message_id: str, position: int, total: int) -> MessageOutcome:
    logger.debug("Processing email %d/%d (id=%s)", position + 1, total, message_id)
    try:
        detail = await get_message_detail(access_token, message_id)
        analyzed = analyze_email(detail)
    except Exception as exc:
        logger.warning("Dropping email %s after processing error: %s", message_id, exc)
        return MessageOutcome(message_id=message_id, position=position, error=str(exc) or type(exc).__name__)
    logger.debug(
        "Analyzed email %s: trust score %s%%", message_id, analyzed.get("trustScore")
    )
    return MessageOutcome(message_id=message_id, position=position, email=analyzed)


async def scan_inbox(access_token: str, max_results: int) -> InboxScan:
    """List recent inbox messages, then fetch and analyze each one concurrently.

    Listing failures propagate to the caller. A failure while fetching or
    analyzing one message only marks that message's outcome as failed.
    """
    listing = await list_messages(access_token, max_results)
    refs = [ref for ref in listing.get("messages") or [] if ref.get("id")]
    if not refs:
        return InboxScan()

    logger.info("Found %d messages, analyzing", len(refs))
    outcomes = await asyncio.gather(
        *(_process_message(access_token, ref["id"], index, len(refs)) for index, ref in enumerate(refs))
    )
    scan = InboxScan(listed=len(refs), outcomes=list(outcomes))
    if scan.failures:
        logger.warning(
            "Dropped %d of %d emails: %s",
            len(scan.failures),
            scan.listed,
            ", ".join(outcome.message_id for outcome in scan.failures),
        )
    logger.info("Analyzed %d of %d emails", len(scan.emails), scan.listed)
    return scan
