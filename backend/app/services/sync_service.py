# Overview: Service-layer orchestration of order sync; PII recovery, upsert, status events, reassignment.

"""
Order Sync

FLOW (one order, one transaction):
1. Validate the payload (id, name, line_items, timestamps)
2. Resolve buyer identity (identity_service; never raises on warehouse failure)
3. Upsert the Order row (raw payload retained for replay/debug)
4. Upsert each line item (line_item_service); malformed items are skipped and
   logged, siblings still process
5. Append a `status_changed` event for each stored item whose status flipped,
   and for a first sighting that is already inactive (before_status null)
6. Reassign every affected product (edition_service) and commit

A failure in steps 3-6 rolls the whole order back and is returned as a
per-order error. `sync_orders` isolates orders from each other.

Re-running a sync for an unchanged order writes nothing: the upsert is
idempotent and reassignment only emits events on real number changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order
from ..time_utils import utcnow
from . import edition_service, ledger_service
from .concurrency import run_with_retry
from .errors import LedgerError, MalformedInputError
from .identity_service import ResolvedIdentity, resolve_identity
from .line_item_service import payload_datetime, upsert_line_item
from .status_classifier import StatusClassifier, default_classifier, id_str
from .warehouse_client import WarehouseClient

logger = logging.getLogger(__name__)

ACTOR_SYNC = "sync"
ORDER_TIMESTAMP_FIELDS = ("created_at", "processed_at", "cancelled_at")


@dataclass
class SyncResult:
    order_id: Optional[str]
    order_name: Optional[str]
    success: bool = True
    error: Optional[str] = None
    identity_source: Optional[str] = None
    line_items: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    reassigned: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "order_name": self.order_name,
            "error": self.error,
            "identity_source": self.identity_source,
            "line_items_synced": len(self.line_items),
            "line_items": self.line_items,
            "skipped": self.skipped,
            "reassigned": self.reassigned,
            "warnings": self.warnings,
        }


# =============================================================================
# VALIDATION
# =============================================================================

def validate_order_payload(order: Any) -> None:
    """
    Raises:
        MalformedInputError: The order cannot be processed at all
    """
    if not isinstance(order, Mapping):
        raise MalformedInputError("Order payload must be an object")
    if id_str(order.get("id")) is None:
        raise MalformedInputError("Order payload is missing id")
    if not order.get("name"):
        raise MalformedInputError(f"Order {order.get('id')} is missing name")
    if not isinstance(order.get("line_items"), list):
        raise MalformedInputError(f"Order {order.get('name')} has no line_items list")
    for key in ORDER_TIMESTAMP_FIELDS:
        payload_datetime(order, key)


def _is_archived(order: Mapping[str, Any]) -> bool:
    tags = str(order.get("tags") or "").lower()
    return "archived" in tags or bool(order.get("closed_at")) or bool(order.get("cancel_reason"))


def upsert_order(order: Mapping[str, Any], identity: ResolvedIdentity) -> Order:
    """Write the Order row from the payload plus resolved identity."""
    order_id = id_str(order.get("id"))
    row = db.session.get(Order, order_id)
    if row is None:
        row = Order(id=order_id)
        db.session.add(row)

    name = str(order.get("name"))
    row.name = name
    row.order_number = id_str(order.get("order_number")) or name.lstrip("#")
    row.created_at = payload_datetime(order, "created_at")
    row.processed_at = payload_datetime(order, "processed_at") or row.created_at
    row.cancelled_at = payload_datetime(order, "cancelled_at")
    row.financial_status = order.get("financial_status")
    row.fulfillment_status = order.get("fulfillment_status")
    row.archived = _is_archived(order)
    row.customer_id = identity.customer_id
    row.customer_email = identity.email
    row.customer_name = identity.name
    row.customer_phone = identity.phone
    row.shipping_address = identity.address
    row.identity_source = identity.source
    row.raw_payload = dict(order)
    row.synced_at = utcnow()
    db.session.flush()
    return row


# =============================================================================
# SYNC
# =============================================================================

def _sync_once(
    order: Mapping[str, Any],
    *,
    skip_editions: bool,
    force_warehouse: bool,
    actor: str,
    classifier: StatusClassifier,
    warehouse_client: Optional[WarehouseClient],
) -> SyncResult:
    order_id = id_str(order.get("id"))
    result = SyncResult(order_id=order_id, order_name=order.get("name"))

    identity = resolve_identity(order, client=warehouse_client, force_warehouse=force_warehouse)
    result.identity_source = identity.source
    result.warnings.extend(identity.warnings)

    order_row = upsert_order(order, identity)

    product_ids: set[str] = set()
    for li in order.get("line_items") or []:
        try:
            upserted = upsert_line_item(order_row, order, li, identity, classifier=classifier)
        except MalformedInputError as exc:
            logger.warning("Skipping line item on order %s: %s", order.get("name"), exc)
            result.skipped.append({"line_item_id": exc.line_item_id, "reason": str(exc)})
            continue

        item = upserted.line_item
        product_ids.add(item.product_id)
        if upserted.needs_status_event:
            ledger_service.append_edition_event(
                line_item=item,
                event_type=ledger_service.EVENT_STATUS_CHANGED,
                event_data={
                    "before_status": upserted.previous_status,
                    "after_status": item.status,
                    "reasons": upserted.classification.reasons(),
                    "order_financial_status": order.get("financial_status"),
                    "order_fulfillment_status": order.get("fulfillment_status"),
                },
                actor=actor,
            )
        result.line_items.append({
            "line_item_id": item.line_item_id,
            "product_id": item.product_id,
            "status": item.status,
            "restocked": item.restocked,
            "refund_status": item.refund_status,
            "changed": upserted.changed,
        })

    if skip_editions or not product_ids:
        db.session.commit()
    else:
        reassigned = edition_service.reassign_products(product_ids, actor=actor)
        result.reassigned = {pid: r.assigned_count for pid, r in reassigned.items()}

    return result


def sync_order(
    order: Mapping[str, Any],
    *,
    skip_editions: bool = False,
    force_warehouse: bool = False,
    actor: str = ACTOR_SYNC,
    classifier: StatusClassifier = default_classifier,
    warehouse_client: Optional[WarehouseClient] = None,
) -> SyncResult:
    """
    Sync one commerce platform order into the ledger.

    Never raises for a bad or failing order: the error is returned in the
    result and the order's prior state is left untouched.
    """
    try:
        validate_order_payload(order)
    except MalformedInputError as exc:
        logger.warning("Rejected order payload: %s", exc)
        name = order.get("name") if isinstance(order, Mapping) else None
        oid = id_str(order.get("id")) if isinstance(order, Mapping) else None
        return SyncResult(order_id=oid, order_name=name, success=False, error=str(exc))

    try:
        return run_with_retry(lambda: _sync_once(
            order,
            skip_editions=skip_editions,
            force_warehouse=force_warehouse,
            actor=actor,
            classifier=classifier,
            warehouse_client=warehouse_client,
        ))
    except (LedgerError, SQLAlchemyError) as exc:
        db.session.rollback()
        logger.exception("Sync failed for order %s", order.get("name"))
        return SyncResult(
            order_id=id_str(order.get("id")),
            order_name=order.get("name"),
            success=False,
            error=str(exc),
        )


def sync_orders(orders: Iterable[Mapping[str, Any]], **kwargs) -> list[SyncResult]:
    """Sync a batch; one order's failure never blocks the others."""
    return [sync_order(order, **kwargs) for order in orders]
