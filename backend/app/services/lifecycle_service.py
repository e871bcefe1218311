# Overview: Service-layer operations for audited manual corrections; overrides and ownership transfer.

"""
Line Item Lifecycle Corrections

WHY: Operators occasionally know better than the upstream feeds (a refund
processed outside the platform, a chargeback, an item lost in transit, a
collector reselling an edition). Those corrections must not be hand-edits to
`status` or `owner_*`: each one is recorded as an override on the row plus an
audit event, and numbering is recomputed through the normal assigner.

RULES:
1. An override survives later syncs (the upsert applies it on top of the
   classifier verdict) until explicitly cleared
2. Clearing an override re-derives status from the stored order payload
3. Ownership transfers lock the owner fields against order-sync PII
4. Every correction writes exactly one manual_override / ownership_transfer event
"""

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import LineItem
from ..time_utils import utcnow
from . import edition_service, ledger_service
from .errors import LedgerError
from .identity_service import normalize_email
from .status_classifier import (
    STATUS_INACTIVE,
    StatusClassifier,
    default_classifier,
    find_line_item_payload,
)


INACTIVE_REASONS = {"refunded", "restocked", "removed", "manual"}


class LifecycleError(LedgerError):
    """Raised when a correction request is invalid."""
    pass


def mark_line_item_inactive(
    line_item_id: str,
    reason: str,
    *,
    notes: Optional[str] = None,
    actor: str = "admin",
) -> dict:
    """
    Force a line item inactive with an audit trail, then resequence its product.

    Raises:
        LifecycleError: Unknown reason
        LineItemNotFound: Unknown line item
    """
    if reason not in INACTIVE_REASONS:
        raise LifecycleError(
            f"Invalid reason '{reason}'. Must be one of: {', '.join(sorted(INACTIVE_REASONS))}"
        )

    item = edition_service.get_line_item(line_item_id)
    before_status = item.status
    before_edition = item.edition_number

    item.override_status = STATUS_INACTIVE
    item.override_reason = reason
    item.status = STATUS_INACTIVE
    item.updated_at = utcnow()

    ledger_service.append_edition_event(
        line_item=item,
        event_type=ledger_service.EVENT_MANUAL_OVERRIDE,
        event_data={
            "reason": reason,
            "notes": notes,
            "before_status": before_status,
            "after_status": STATUS_INACTIVE,
            "changed_by": actor,
        },
        actor=actor,
        edition_number=before_edition,
    )

    result = edition_service.reassign_products([item.product_id], actor=actor)[item.product_id]
    return {
        "line_item_id": item.line_item_id,
        "before_status": before_status,
        "after_status": item.status,
        "reason": reason,
        "notes": notes,
        "reassigned": result.to_dict(),
    }


def clear_override(
    line_item_id: str,
    *,
    actor: str = "admin",
    classifier: StatusClassifier = default_classifier,
) -> dict:
    """
    Remove a manual override and return the item to its classified status.

    Raises:
        LifecycleError: No override recorded, or the stored order payload no
            longer contains the item (status cannot be re-derived)
        LineItemNotFound: Unknown line item
    """
    item = edition_service.get_line_item(line_item_id)
    if item.override_status is None:
        raise LifecycleError(f"Line item {line_item_id} has no override to clear")

    order_payload = item.order.raw_payload if item.order is not None else None
    li_payload = find_line_item_payload(order_payload, item.line_item_id)
    if li_payload is None:
        raise LifecycleError(f"Stored order payload for line item {line_item_id} is unavailable")

    classification = classifier.classify(order_payload, li_payload)
    before_status = item.status
    previous_reason = item.override_reason

    item.override_status = None
    item.override_reason = None
    item.status = classification.status
    item.status_reasons = classification.reasons()
    item.updated_at = utcnow()

    ledger_service.append_edition_event(
        line_item=item,
        event_type=ledger_service.EVENT_MANUAL_OVERRIDE,
        event_data={
            "reason": "override_cleared",
            "previous_override_reason": previous_reason,
            "before_status": before_status,
            "after_status": item.status,
            "changed_by": actor,
        },
        actor=actor,
    )

    result = edition_service.reassign_products([item.product_id], actor=actor)[item.product_id]
    return {
        "line_item_id": item.line_item_id,
        "before_status": before_status,
        "after_status": item.status,
        "reassigned": result.to_dict(),
    }


def transfer_ownership(
    line_item_id: str,
    *,
    new_owner_email: Optional[str],
    new_owner_name: Optional[str] = None,
    new_owner_id: Optional[str] = None,
    notes: Optional[str] = None,
    actor: str = "admin",
) -> LineItem:
    """
    Move an edition to a new owner.

    Raises:
        LifecycleError: No new owner given
        LineItemNotFound: Unknown line item
    """
    email = normalize_email(new_owner_email)
    if not email and not new_owner_id:
        raise LifecycleError("new_owner_email or new_owner_id is required")

    item = edition_service.get_line_item(line_item_id)
    from_owner = item.owner_dict()

    item.owner_email = email
    item.owner_name = new_owner_name
    item.owner_id = str(new_owner_id) if new_owner_id is not None else None
    item.owner_phone = None
    item.ownership_locked = True
    item.updated_at = utcnow()

    ledger_service.append_edition_event(
        line_item=item,
        event_type=ledger_service.EVENT_OWNERSHIP_TRANSFER,
        event_data={
            "from": from_owner,
            "to": item.owner_dict(),
            "notes": notes,
        },
        actor=actor,
    )
    db.session.commit()
    return item
