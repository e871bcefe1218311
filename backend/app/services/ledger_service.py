# Overview: Service-layer operations for the edition ledger; append-only audit events.

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, or_

from ..extensions import db
from ..models import EditionEvent, LineItem
from ..time_utils import utcnow
"""
Edition Ledger Invariants (authoritative)

- Append-only audit log: no updates, no deletes, from any code path.
- Events are written inside the same DB transaction as the change they record.
- Exactly one event per transition of status, edition_number or owner.
- Owner/status fields are a snapshot at event time, not a join.
"""

EVENT_ASSIGNMENT = "assignment"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_OWNERSHIP_TRANSFER = "ownership_transfer"
EVENT_MANUAL_OVERRIDE = "manual_override"

EVENT_TYPES = {
    EVENT_ASSIGNMENT,
    EVENT_STATUS_CHANGED,
    EVENT_OWNERSHIP_TRANSFER,
    EVENT_MANUAL_OVERRIDE,
}

ACTOR_SYSTEM = "system"

MAX_PAGE_SIZE = 500


def append_edition_event(
    *,
    line_item: LineItem,
    event_type: str,
    event_data: Optional[dict[str, Any]] = None,
    actor: str = ACTOR_SYSTEM,
    edition_number: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
) -> EditionEvent:
    """
    Append one audit event for `line_item`.

    - No domain logic here; callers decide when a transition happened.
    - edition_number defaults to the line item's current number.
    - Flushes (assigns id) without committing.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown edition event type: {event_type}")

    ev = EditionEvent(
        line_item_id=line_item.line_item_id,
        product_id=line_item.product_id,
        edition_number=edition_number if edition_number is not None else line_item.edition_number,
        event_type=event_type,
        event_data=event_data or {},
        owner_name=line_item.owner_name,
        owner_email=line_item.owner_email,
        owner_id=line_item.owner_id,
        status=line_item.status,
        actor=actor or ACTOR_SYSTEM,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def get_edition_history(line_item_id: str) -> list[EditionEvent]:
    """Every event for a line item, oldest first."""
    return (
        db.session.query(EditionEvent)
        .filter(EditionEvent.line_item_id == str(line_item_id))
        .order_by(EditionEvent.created_at.asc(), EditionEvent.id.asc())
        .all()
    )


def get_ownership_history(line_item_id: str) -> list[EditionEvent]:
    return (
        db.session.query(EditionEvent)
        .filter(
            EditionEvent.line_item_id == str(line_item_id),
            EditionEvent.event_type == EVENT_OWNERSHIP_TRANSFER,
        )
        .order_by(EditionEvent.created_at.asc(), EditionEvent.id.asc())
        .all()
    )


def list_events(
    *,
    line_item_id: Optional[str] = None,
    product_id: Optional[str] = None,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cursor: Optional[tuple[datetime, int]] = None,
    limit: int = 100,
) -> list[EditionEvent]:
    """
    Read-only audit query, newest first.

    cursor is (created_at, id) of the last row of the previous page; the page
    continues strictly after it.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    q = db.session.query(EditionEvent)
    if line_item_id is not None:
        q = q.filter(EditionEvent.line_item_id == str(line_item_id))
    if product_id is not None:
        q = q.filter(EditionEvent.product_id == str(product_id))
    if event_type is not None:
        q = q.filter(EditionEvent.event_type == event_type)
    if start is not None:
        q = q.filter(EditionEvent.created_at >= start)
    if end is not None:
        q = q.filter(EditionEvent.created_at <= end)

    if cursor is not None:
        cursor_dt, cursor_id = cursor
        q = q.filter(
            or_(
                EditionEvent.created_at < cursor_dt,
                and_(EditionEvent.created_at == cursor_dt, EditionEvent.id < cursor_id),
            )
        )

    return (
        q.order_by(EditionEvent.created_at.desc(), EditionEvent.id.desc())
        .limit(limit)
        .all()
    )
