# Overview: Service-layer operations for line items; normalization and idempotent upsert.

"""
Line Item Upsert

WHY: Order sync re-delivers the same orders many times (webhooks, cron
backfills, manual re-syncs). Writing a line item must therefore be idempotent
and order-of-arrival independent: the same (order, line item, identity) always
produces the same stored row, and an unchanged row is not touched at all.

RESPONSIBILITIES:
- Normalize the platform line item into column values (ids as strings)
- Compute status through the status classifier (never inline)
- Attach resolved owner identity (unless ownership was transferred)
- Write exactly one row keyed by line_item_id

NOT RESPONSIBLE FOR:
- Edition numbers / totals / certificates (edition_service)
- Audit events (callers compare `previous_status` and append them)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from ..extensions import db
from ..models import LineItem, Order
from ..time_utils import parse_iso_datetime, utcnow
from .errors import MalformedInputError
from .identity_service import ResolvedIdentity
from .status_classifier import STATUS_INACTIVE, StatusClassifier, StatusResult, default_classifier, id_str


@dataclass(frozen=True)
class UpsertResult:
    line_item: LineItem
    created: bool
    changed: bool
    previous_status: Optional[str]
    classification: StatusResult

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not None and self.previous_status != self.line_item.status

    @property
    def needs_status_event(self) -> bool:
        """A stored status flip, or a first sighting that is already inactive."""
        return self.status_changed or (self.created and self.line_item.status == STATUS_INACTIVE)


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _price(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def payload_datetime(payload: Mapping[str, Any], key: str) -> Optional[datetime]:
    """
    Parse a timestamp field of a platform payload.

    Raises:
        MalformedInputError: The value is present but not ISO-8601
    """
    value = payload.get(key)
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(f"Invalid {key} timestamp: {value!r}") from exc


def normalize_line_item(
    order: Mapping[str, Any],
    line_item: Mapping[str, Any],
    classification: StatusResult,
) -> dict[str, Any]:
    """
    Column values for one line item (everything the upsert owns).

    Raises:
        MalformedInputError: Missing line item id or product id
    """
    if not isinstance(line_item, Mapping):
        raise MalformedInputError("Line item is not an object")

    line_item_id = id_str(line_item.get("id"))
    if line_item_id is None:
        raise MalformedInputError("Line item is missing id")

    product_id = id_str(line_item.get("product_id"))
    if product_id is None:
        raise MalformedInputError(f"Line item {line_item_id} has no product_id", line_item_id=line_item_id)

    quantity = _int_or_none(line_item.get("quantity"))

    return {
        "order_id": id_str(order.get("id")),
        "product_id": product_id,
        "variant_id": id_str(line_item.get("variant_id")),
        "sku": line_item.get("sku") or None,
        "title": line_item.get("title") or line_item.get("name"),
        "vendor_name": line_item.get("vendor") or None,
        "quantity": quantity if quantity is not None else 1,
        "price": _price(line_item.get("price")),
        "fulfillable_quantity": _int_or_none(line_item.get("fulfillable_quantity")),
        "fulfillment_status": line_item.get("fulfillment_status"),
        "refunded_quantity": _int_or_none(line_item.get("refunded_quantity")) or 0,
        "restocked": classification.is_restocked,
        "refund_status": "refunded" if classification.is_refunded else "none",
        "removed": classification.is_removed_by_property or classification.is_removed_by_qty,
        "status_reasons": classification.reasons(),
        "created_at": payload_datetime(order, "created_at"),
    }


def owner_values(identity: ResolvedIdentity) -> dict[str, Any]:
    return {
        "owner_email": identity.email,
        "owner_name": identity.name,
        "owner_phone": identity.phone,
        "owner_id": identity.customer_id,
    }


def upsert_line_item(
    order_row: Order,
    order: Mapping[str, Any],
    line_item: Mapping[str, Any],
    identity: ResolvedIdentity,
    *,
    classifier: StatusClassifier = default_classifier,
) -> UpsertResult:
    """
    Idempotently persist one line item.

    Args:
        order_row: Persisted Order the item belongs to
        order: Raw order payload (refunds included)
        line_item: Raw line item payload
        identity: Resolved owner identity for the order
        classifier: Status classifier (injected; defaults to the shared one)

    Returns:
        UpsertResult; `changed` is False when the stored row already matched

    Raises:
        MalformedInputError: Payload lacks required fields
    """
    if not isinstance(line_item, Mapping):
        raise MalformedInputError("Line item is not an object")

    classification = classifier.classify(order, line_item)
    values = normalize_line_item(order, line_item, classification)
    line_item_id = id_str(line_item.get("id"))

    row = db.session.get(LineItem, line_item_id)
    created = row is None
    previous_status = None if created else row.status

    if created:
        row = LineItem(line_item_id=line_item_id)
        row.order = order_row
        db.session.add(row)
    elif row.order_id != order_row.id:
        raise MalformedInputError(
            f"Line item {line_item_id} already belongs to order {row.order_id}",
            line_item_id=line_item_id,
        )

    values["status"] = classifier.effective_status(classification, row.override_status)
    if not row.ownership_locked:
        values.update(owner_values(identity))
    if not created and values["created_at"] is None:
        # Keep the original ordering key if a later payload omits created_at
        values.pop("created_at")

    changed = created
    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed = True

    if changed:
        row.updated_at = utcnow()
        db.session.flush()

    return UpsertResult(
        line_item=row,
        created=created,
        changed=changed,
        previous_status=previous_status,
        classification=classification,
    )
