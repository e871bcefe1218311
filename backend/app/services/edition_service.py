# Overview: Service-layer operations for edition numbering; assignment, resequencing and queries.

"""
Edition Assigner

WHY: Collectors see "#N of T" on certificates and dashboards. Numbers must be
unique per product, contiguous (1..N over active items) and stable: an item
only gets a different number when the active set in front of it changes.

DESIGN PRINCIPLES:
- Always recompute the full ordering from scratch (never increment ad hoc),
  so a partially failed run self-heals on the next one
- Stable ordering: created_at, then line_item_id (numeric ids compared numerically)
- Run under the per-product lock (concurrency.product_lock) and commit while
  the lock is held
- Emit an `assignment` event only when a number actually changes; re-running
  on an unchanged active set writes nothing
- Inactive items lose their number (edition_number = NULL) with an event

Certificates (URL + token) are issued the first time an item is numbered and
are never regenerated.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app, has_app_context

from ..extensions import db
from ..models import LineItem
from ..time_utils import utcnow
from . import ledger_service
from .concurrency import product_lock, run_with_retry
from .errors import LineItemNotFound
from .status_classifier import STATUS_ACTIVE

logger = logging.getLogger(__name__)


@dataclass
class ReassignResult:
    product_id: str
    assigned_count: int = 0
    renumbered: list[str] = field(default_factory=list)
    cleared: list[str] = field(default_factory=list)
    events_written: int = 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "assigned_count": self.assigned_count,
            "renumbered": self.renumbered,
            "cleared": self.cleared,
            "events_written": self.events_written,
        }


# =============================================================================
# ORDERING
# =============================================================================

def _id_key(line_item_id: str) -> tuple:
    # "9" must sort before "10"; non-numeric ids sort after numeric ones
    if line_item_id.isdigit():
        return (0, int(line_item_id), "")
    return (1, 0, line_item_id)


def edition_sort_key(item: LineItem) -> tuple:
    created = item.created_at or datetime.max
    return (created, _id_key(item.line_item_id))


def certificate_url_for(line_item_id: str) -> str:
    base = ""
    if has_app_context():
        base = (current_app.config.get("CERTIFICATE_BASE_URL") or "").rstrip("/")
    return f"{base}/certificate/{line_item_id}"


def _issue_certificate(item: LineItem) -> None:
    if item.certificate_token:
        return
    item.certificate_url = item.certificate_url or certificate_url_for(item.line_item_id)
    item.certificate_token = secrets.token_urlsafe(24)
    item.certificate_generated_at = utcnow()


# =============================================================================
# REASSIGNMENT
# =============================================================================

def _recompute(product_id: str, actor: str) -> ReassignResult:
    """Recompute numbering for one product. Caller holds the product lock."""
    items = db.session.query(LineItem).filter(LineItem.product_id == product_id).all()
    active = sorted((i for i in items if i.status == STATUS_ACTIVE), key=edition_sort_key)
    inactive = [i for i in items if i.status != STATUS_ACTIVE]
    total = len(active)

    result = ReassignResult(product_id=product_id, assigned_count=total)
    now = utcnow()

    for position, item in enumerate(active, start=1):
        before = item.edition_number
        if before != position:
            item.edition_number = position
            item.updated_at = now
            ledger_service.append_edition_event(
                line_item=item,
                event_type=ledger_service.EVENT_ASSIGNMENT,
                event_data={
                    "before": before,
                    "after": position,
                    "edition_total": total,
                    "reason": "initial_assignment" if before is None else "resequenced",
                },
                actor=actor,
                edition_number=position,
                occurred_at=now,
            )
            result.renumbered.append(item.line_item_id)
            result.events_written += 1
        if item.edition_total != total:
            item.edition_total = total
        _issue_certificate(item)

    for item in sorted(inactive, key=edition_sort_key):
        if item.edition_number is None:
            if item.edition_total is not None:
                item.edition_total = None
            continue
        before = item.edition_number
        item.edition_number = None
        item.edition_total = None
        item.updated_at = now
        ledger_service.append_edition_event(
            line_item=item,
            event_type=ledger_service.EVENT_ASSIGNMENT,
            event_data={
                "before": before,
                "after": None,
                "edition_total": total,
                "reason": "inactive",
                "status_reasons": item.status_reasons or [],
            },
            actor=actor,
            edition_number=before,
            occurred_at=now,
        )
        result.cleared.append(item.line_item_id)
        result.events_written += 1

    db.session.flush()
    return result


def reassign_products(
    product_ids: Iterable[str],
    *,
    actor: str = ledger_service.ACTOR_SYSTEM,
    lock_timeout: Optional[float] = None,
) -> dict[str, ReassignResult]:
    """
    Reassign several products inside the current transaction and commit it.

    Locks are taken in sorted product order (no lock-order deadlocks between
    concurrent syncs) and held until the commit finishes. Any pending writes
    in the session (e.g. line item upserts) commit atomically with the numbering.

    On failure the transaction is rolled back, leaving the previous numbering intact.
    """
    ordered = sorted({str(pid) for pid in product_ids if pid})
    results: dict[str, ReassignResult] = {}
    with ExitStack() as stack:
        try:
            for pid in ordered:
                stack.enter_context(product_lock(pid, timeout=lock_timeout))
            for pid in ordered:
                results[pid] = _recompute(pid, actor)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    for result in results.values():
        if result.events_written:
            logger.info(
                "Reassigned editions for product %s: %d active, %d renumbered, %d cleared",
                result.product_id, result.assigned_count, len(result.renumbered), len(result.cleared),
            )
    return results


def reassign_editions(product_id: str, *, actor: str = ledger_service.ACTOR_SYSTEM) -> ReassignResult:
    """
    Recompute and persist edition numbers for one product (own transaction).

    Returns:
        ReassignResult with assigned_count = number of active items
    """
    product_id = str(product_id)
    return run_with_retry(lambda: reassign_products([product_id], actor=actor)[product_id])


def reassign_all(*, actor: str = ledger_service.ACTOR_SYSTEM) -> list[ReassignResult]:
    """Reassign every product that has line items, one transaction per product."""
    product_ids = [row[0] for row in db.session.query(LineItem.product_id).distinct().all()]
    return [reassign_editions(pid, actor=actor) for pid in sorted(product_ids)]


# =============================================================================
# QUERIES
# =============================================================================

def get_line_item(line_item_id: str) -> LineItem:
    item = db.session.get(LineItem, str(line_item_id))
    if item is None:
        raise LineItemNotFound(f"Line item {line_item_id} not found")
    return item


def verify_edition(line_item_id: str, order_id: Optional[str] = None) -> dict:
    """
    Current state of an edition: owner, status, number, certificate.

    Raises:
        LineItemNotFound: Unknown id, or the item belongs to another order
    """
    item = get_line_item(line_item_id)
    if order_id is not None and item.order_id != str(order_id):
        raise LineItemNotFound(f"Line item {line_item_id} not found on order {order_id}")
    payload = item.to_dict()
    payload["verified"] = item.status == STATUS_ACTIVE and item.edition_number is not None
    return payload


def get_product_editions(product_id: str, *, include_history: bool = False) -> dict:
    """Numbered active editions of a product, ascending."""
    items = (
        db.session.query(LineItem)
        .filter(
            LineItem.product_id == str(product_id),
            LineItem.status == STATUS_ACTIVE,
            LineItem.edition_number.isnot(None),
        )
        .order_by(LineItem.edition_number.asc(), LineItem.line_item_id.asc())
        .all()
    )
    editions = []
    for item in items:
        entry = item.to_dict()
        if include_history:
            entry["history"] = [ev.to_dict() for ev in ledger_service.get_edition_history(item.line_item_id)]
        editions.append(entry)
    return {
        "product_id": str(product_id),
        "total_editions": len(editions),
        "editions": editions,
    }
