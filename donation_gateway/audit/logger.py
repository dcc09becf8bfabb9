"""
Immutable audit trail for payment operations.

Every inbound callback and state change gets an append-only audit log
entry with:
  - Donation ID (which donation it relates to, if correlated)
  - Action (what happened)
  - Details (gateway, channel, codes, verification outcome)
  - Timestamp (UTC)

These records are never modified or deleted. Callback details are stored
without signatures or key material.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.models.donation import AuditLog

logger = logging.getLogger("donation_gateway.audit")


async def log_event(
    session: AsyncSession,
    action: str,
    donation_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session.
        action: What happened (e.g. "callback_received", "marked_paid").
        donation_id: The donation this event relates to.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    payload = json.dumps(details, default=str, ensure_ascii=False) if details else None
    entry = AuditLog(
        donation_id=donation_id,
        action=action,
        details=payload,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | donation=%s action=%s | %s",
        donation_id or "-",
        action,
        payload[:200] if payload else "",
    )
    return entry


def append_note(existing_notes: Optional[str], message: str) -> str:
    """
    Append a timestamped note to a donation's notes field.

    Administrative overrides (manual payment, cancellation) leave a
    running log on the record itself for staff visibility.
    """
    prefix = f"[{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}] "
    new_note = prefix + message
    if not existing_notes:
        return new_note
    return f"{existing_notes}\n{new_note}"
