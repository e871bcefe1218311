# Overview: Read-side collector view; what a collector currently owns.

"""
Collector View Filter

Answers "which editions does this collector own right now?" from persisted
state, without trusting a possibly stale `status` column:

- Orders are matched by email (case-insensitive) or platform customer id
- Orders that are cancelled/voided/refunded/restocked at order level are excluded
- Each line item is re-classified against the stored order payload when it
  still contains the item (an audited override still wins)
- Items transferred to the collector are included; items transferred away
  are excluded
- Duplicates (the same line item surfaced twice) collapse to one entry

Ordering: most recent order first, edition_number ascending within an order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import and_, func, not_, or_

from ..extensions import db
from ..models import LineItem, Order
from .identity_service import normalize_email
from .status_classifier import (
    STATUS_ACTIVE,
    StatusClassifier,
    default_classifier,
    find_line_item_payload,
    is_order_cancelled,
)

EXCLUDED_FULFILLMENT_STATUSES = ("canceled", "cancelled", "restocked")
EXCLUDED_FINANCIAL_STATUSES = ("voided", "refunded")


@dataclass(frozen=True)
class CollectorIdentity:
    email: Optional[str] = None
    customer_id: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "CollectorIdentity":
        """Email if it looks like one, otherwise a platform customer id."""
        value = (value or "").strip()
        if "@" in value:
            return cls(email=normalize_email(value))
        return cls(customer_id=value or None)

    def owns(self, item: LineItem) -> bool:
        if self.email and item.owner_email and item.owner_email.lower() == self.email:
            return True
        return bool(self.customer_id and item.owner_id == self.customer_id)


def _order_visible():
    return and_(
        or_(Order.fulfillment_status.is_(None), not_(Order.fulfillment_status.in_(EXCLUDED_FULFILLMENT_STATUSES))),
        or_(Order.financial_status.is_(None), not_(Order.financial_status.in_(EXCLUDED_FINANCIAL_STATUSES))),
        Order.cancelled_at.is_(None),
    )


def _candidate_items(collector: CollectorIdentity) -> list[LineItem]:
    order_match = []
    owner_match = []
    if collector.email:
        order_match.append(func.lower(Order.customer_email) == collector.email)
        owner_match.append(func.lower(LineItem.owner_email) == collector.email)
    if collector.customer_id:
        order_match.append(Order.customer_id == collector.customer_id)
        owner_match.append(LineItem.owner_id == collector.customer_id)
    if not order_match:
        return []

    by_order = (
        db.session.query(LineItem)
        .join(Order, LineItem.order_id == Order.id)
        .filter(or_(*order_match), _order_visible())
        .all()
    )
    transferred_in = (
        db.session.query(LineItem)
        .join(Order, LineItem.order_id == Order.id)
        .filter(LineItem.ownership_locked.is_(True), or_(*owner_match), _order_visible())
        .all()
    )
    return by_order + transferred_in


def current_status(item: LineItem, classifier: StatusClassifier = default_classifier) -> str:
    """Status re-derived from the stored order payload when possible."""
    order = item.order
    payload = order.raw_payload if order is not None else None
    li_payload = find_line_item_payload(payload, item.line_item_id)
    if li_payload is None:
        return item.status
    return classifier.effective_status(classifier.classify(payload, li_payload), item.override_status)


def _display_key(item: LineItem) -> tuple:
    processed = item.order.processed_at if item.order is not None else None
    # Newest order first; items of unknown date last
    order_key = (0, -processed.timestamp()) if isinstance(processed, datetime) else (1, 0.0)
    edition = item.edition_number if item.edition_number is not None else float("inf")
    return (order_key, item.order_id, edition, item.line_item_id)


def filter_active_editions(
    items: Iterable[LineItem],
    collector: CollectorIdentity,
    classifier: StatusClassifier = default_classifier,
) -> tuple[LineItem, ...]:
    """Dedupe by line_item_id and keep only items the collector currently owns."""
    unique = {item.line_item_id: item for item in items}

    def keep(item: LineItem) -> bool:
        if item.ownership_locked and not collector.owns(item):
            return False
        if item.order is not None and is_order_cancelled({
            "financial_status": item.order.financial_status,
            "fulfillment_status": item.order.fulfillment_status,
            "cancelled_at": item.order.cancelled_at,
        }):
            return False
        return current_status(item, classifier) == STATUS_ACTIVE

    return tuple(sorted((item for item in unique.values() if keep(item)), key=_display_key))


def editions_for(
    collector_id: str,
    *,
    classifier: StatusClassifier = default_classifier,
) -> Sequence[LineItem]:
    """
    Canonical list of editions a collector owns.

    Args:
        collector_id: Email address or platform customer id
    """
    collector = CollectorIdentity.parse(collector_id)
    return filter_active_editions(_candidate_items(collector), collector, classifier)
