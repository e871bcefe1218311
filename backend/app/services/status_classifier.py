# Overview: Single source of truth for line item active/inactive status.

"""
Line Item Status Classifier

WHY: Several write paths (order sync, manual corrections, CLI replays, the
collector view recheck, the integrity validator) all need the same answer to
"does this purchased unit currently count as an edition?". Divergent copies of
this logic are how refunded items end up holding edition numbers, so every
caller goes through `classify()` (or an injected `StatusClassifier`).

PRECEDENCE (any true condition forces inactive):
1. Refunded      - id in the order's refund set, refund_status == refunded,
                   or refunded_quantity > 0
2. Restocked     - restock flag/type on the item or its refund entry, or
                   fulfillment_status == restocked
3. Removed       - property bag entry "removed" with a truthy value
4. Removed (qty) - fulfillable_quantity == 0 and not fulfilled
5. Cancelled     - order voided, cancelled_at set, or order fulfillment canceled

Otherwise active only if the order is paid-ish or the item is fulfilled.

POLICY: A refund entry counts by presence, not quantity. A zero-quantity refund
record still hides the item. This is a deliberate bias toward hiding disputed
items; do not "fix" it without changing the tests that pin it down.

The module is pure: no I/O, no database, no clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
VALID_STATUSES = {STATUS_ACTIVE, STATUS_INACTIVE}

PAID_FINANCIAL_STATUSES = frozenset({"paid", "authorized", "pending", "partially_paid"})
CANCELLED_FULFILLMENT_STATUSES = frozenset({"canceled", "cancelled"})

# Shopify reports "no_restock" on refunds that explicitly did NOT restock
_NON_RESTOCK_TYPES = frozenset({"", "no_restock"})
_TRUTHY_STRINGS = frozenset({"true", "1", "yes", "y"})


@dataclass(frozen=True)
class StatusResult:
    status: str
    is_refunded: bool
    is_restocked: bool
    is_removed_by_property: bool
    is_removed_by_qty: bool
    is_cancelled: bool
    is_fulfilled: bool
    is_paid: bool

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def reasons(self) -> list[str]:
        """Flags that forced (or failed to earn) the verdict, in precedence order."""
        flags = [
            ("refunded", self.is_refunded),
            ("restocked", self.is_restocked),
            ("removed_by_property", self.is_removed_by_property),
            ("removed_by_qty", self.is_removed_by_qty),
            ("cancelled", self.is_cancelled),
        ]
        reasons = [name for name, on in flags if on]
        if not reasons and self.status == STATUS_INACTIVE:
            reasons.append("unpaid_unfulfilled")
        return reasons

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "is_refunded": self.is_refunded,
            "is_restocked": self.is_restocked,
            "is_removed_by_property": self.is_removed_by_property,
            "is_removed_by_qty": self.is_removed_by_qty,
            "is_cancelled": self.is_cancelled,
            "is_fulfilled": self.is_fulfilled,
            "is_paid": self.is_paid,
            "reasons": self.reasons(),
        }


# =============================================================================
# HELPERS
# =============================================================================

def id_str(value: Any) -> str | None:
    """Platform ids are compared as strings (large ids lose precision as floats)."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _is_zero(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return float(value) == 0
    except (TypeError, ValueError):
        return False


def _positive(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return bool(value)


def _restock_type_set(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in _NON_RESTOCK_TYPES
    return True


def refund_entries(order: Mapping[str, Any]) -> tuple[Mapping[str, Any], ...]:
    """All refund_line_items across every refund on the order; non-object entries are ignored."""
    refunds = order.get("refunds") or []
    if not isinstance(refunds, list):
        return ()
    entries = []
    for refund in refunds:
        if not isinstance(refund, Mapping):
            continue
        items = refund.get("refund_line_items") or []
        if isinstance(items, list):
            entries.extend(entry for entry in items if isinstance(entry, Mapping))
    return tuple(entries)


def refunded_line_item_ids(order: Mapping[str, Any]) -> frozenset[str]:
    """Line item ids with any refund record, regardless of refunded quantity."""
    return frozenset(
        lid for lid in (id_str(entry.get("line_item_id")) for entry in refund_entries(order))
        if lid is not None
    )


def find_refund_entry(order: Mapping[str, Any], line_item_id: Any) -> Mapping[str, Any] | None:
    target = id_str(line_item_id)
    for entry in refund_entries(order):
        if id_str(entry.get("line_item_id")) == target:
            return entry
    return None


def is_removed_by_property(line_item: Mapping[str, Any]) -> bool:
    properties = line_item.get("properties") or []
    if isinstance(properties, Mapping):
        return _truthy(properties.get("removed"))
    if not isinstance(properties, list):
        return False
    for prop in properties:
        if not isinstance(prop, Mapping):
            continue
        key = prop.get("name", prop.get("key"))
        if key == "removed" and _truthy(prop.get("value")):
            return True
    return False


def is_order_cancelled(order: Mapping[str, Any]) -> bool:
    cancelled_at = order.get("cancelled_at")
    return (
        order.get("financial_status") == "voided"
        or (cancelled_at is not None and cancelled_at != "")
        or order.get("fulfillment_status") in CANCELLED_FULFILLMENT_STATUSES
    )


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify(order: Mapping[str, Any], line_item: Mapping[str, Any]) -> StatusResult:
    """
    Classify one line item of one order. Pure and deterministic.

    Args:
        order: Commerce platform order payload (refunds included)
        line_item: One entry of the order's line_items

    Returns:
        StatusResult with the verdict and every reason flag
    """
    line_item_id = id_str(line_item.get("id"))
    refund_entry = find_refund_entry(order, line_item_id)
    fulfillment_status = line_item.get("fulfillment_status")

    is_refunded = (
        line_item_id in refunded_line_item_ids(order)
        or line_item.get("refund_status") == "refunded"
        or _positive(line_item.get("refunded_quantity"))
    )
    is_restocked = (
        line_item.get("restocked") is True
        or _restock_type_set(line_item.get("restock_type"))
        or fulfillment_status == "restocked"
        or (refund_entry is not None and _restock_type_set(refund_entry.get("restock_type")))
    )
    removed_by_property = is_removed_by_property(line_item)
    removed_by_qty = _is_zero(line_item.get("fulfillable_quantity")) and fulfillment_status != "fulfilled"
    is_cancelled = is_order_cancelled(order)
    is_fulfilled = fulfillment_status == "fulfilled"
    is_paid = order.get("financial_status") in PAID_FINANCIAL_STATUSES

    inactive = is_refunded or is_restocked or removed_by_property or removed_by_qty or is_cancelled
    if inactive:
        status = STATUS_INACTIVE
    else:
        status = STATUS_ACTIVE if (is_paid or is_fulfilled) else STATUS_INACTIVE

    return StatusResult(
        status=status,
        is_refunded=is_refunded,
        is_restocked=is_restocked,
        is_removed_by_property=removed_by_property,
        is_removed_by_qty=removed_by_qty,
        is_cancelled=is_cancelled,
        is_fulfilled=is_fulfilled,
        is_paid=is_paid,
    )


def find_line_item_payload(order: Mapping[str, Any] | None, line_item_id: Any) -> Mapping[str, Any] | None:
    """Locate a line item inside a raw order payload by string id."""
    if not order:
        return None
    target = id_str(line_item_id)
    for li in order.get("line_items") or []:
        if isinstance(li, Mapping) and id_str(li.get("id")) == target:
            return li
    return None


class StatusClassifier:
    """
    Injectable wrapper around `classify`.

    Services accept a `classifier` argument so tests (or replays) can observe
    calls; the default instance simply delegates to the module function.
    """

    def classify(self, order: Mapping[str, Any], line_item: Mapping[str, Any]) -> StatusResult:
        return classify(order, line_item)

    def effective_status(self, result: StatusResult, override_status: str | None) -> str:
        """Classifier verdict unless an audited override is recorded."""
        if override_status in VALID_STATUSES:
            return override_status
        return result.status


default_classifier = StatusClassifier()
