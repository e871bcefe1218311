# Overview: Read-only integrity audit over persisted line items and edition numbers.

"""
Integrity Validator

Scans stored state for invariant violations and returns a report. It never
writes: silently "fixing" ownership data is unacceptable in a collectibles
ledger, so every issue is surfaced for manual remediation.

CHECKS:
- refunded_but_active   (critical) active item with refund_status = refunded
- status_mismatch       (critical) active item that is restocked, or whose
                                   order is refunded/voided/cancelled
- classifier_divergence (critical) stored status differs from re-classifying
                                   the stored order payload (no override)
- duplicate_edition     (critical) same edition_number on 2+ active items of a product
- edition_gap           (warning)  active numbers of a product are not exactly 1..N
- inactive_numbered     (warning)  inactive item still holding an edition number
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..models import LineItem
from .collector_service import CollectorIdentity
from .errors import IntegrityViolation
from .status_classifier import (
    STATUS_ACTIVE,
    StatusClassifier,
    default_classifier,
    find_line_item_payload,
)

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"

ISSUE_REFUNDED_BUT_ACTIVE = "refunded_but_active"
ISSUE_STATUS_MISMATCH = "status_mismatch"
ISSUE_CLASSIFIER_DIVERGENCE = "classifier_divergence"
ISSUE_DUPLICATE_EDITION = "duplicate_edition"
ISSUE_EDITION_GAP = "edition_gap"
ISSUE_INACTIVE_NUMBERED = "inactive_numbered"

_BAD_ORDER_FINANCIAL = ("refunded", "voided")


@dataclass(frozen=True)
class IntegrityIssue:
    type: str
    severity: str
    description: str
    line_item_id: Optional[str] = None
    product_id: Optional[str] = None
    edition_number: Optional[int] = None
    line_item_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        payload = {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "line_item_id": self.line_item_id,
            "product_id": self.product_id,
            "edition_number": self.edition_number,
        }
        if self.line_item_ids:
            payload["line_item_ids"] = list(self.line_item_ids)
        return payload


def _scoped_items(product_id: Optional[str], collector_id: Optional[str]) -> list[LineItem]:
    q = db.session.query(LineItem)
    if product_id is not None:
        q = q.filter(LineItem.product_id == str(product_id))
    if collector_id:
        collector = CollectorIdentity.parse(collector_id)
        if collector.email:
            q = q.filter(func.lower(LineItem.owner_email) == collector.email)
        else:
            q = q.filter(LineItem.owner_id == collector.customer_id)
    return q.order_by(LineItem.product_id, LineItem.line_item_id).all()


def _item_issues(item: LineItem, classifier: StatusClassifier) -> list[IntegrityIssue]:
    if item.status != STATUS_ACTIVE:
        if item.edition_number is not None:
            return [IntegrityIssue(
                type=ISSUE_INACTIVE_NUMBERED,
                severity=SEVERITY_WARNING,
                description=f"Line item {item.line_item_id} is inactive but still holds edition #{item.edition_number}",
                line_item_id=item.line_item_id,
                product_id=item.product_id,
                edition_number=item.edition_number,
            )]
        return []

    issues = []

    def add(issue_type: str, description: str) -> None:
        issues.append(IntegrityIssue(
            type=issue_type,
            severity=SEVERITY_CRITICAL,
            description=description,
            line_item_id=item.line_item_id,
            product_id=item.product_id,
            edition_number=item.edition_number,
        ))

    if item.refund_status == "refunded":
        add(ISSUE_REFUNDED_BUT_ACTIVE,
            f"Line item {item.line_item_id} is marked active but has refund_status='refunded'")
    if item.restocked:
        add(ISSUE_STATUS_MISMATCH,
            f"Line item {item.line_item_id} is marked active but restocked=true")

    order = item.order
    if order is not None:
        if order.financial_status in _BAD_ORDER_FINANCIAL:
            add(ISSUE_STATUS_MISMATCH,
                f"Line item {item.line_item_id} is active but order is {order.financial_status}")
        elif order.cancelled_at is not None:
            add(ISSUE_STATUS_MISMATCH,
                f"Line item {item.line_item_id} is active but order was cancelled")

    if not issues and item.override_status is None and order is not None:
        li_payload = find_line_item_payload(order.raw_payload, item.line_item_id)
        if li_payload is not None:
            expected = classifier.classify(order.raw_payload, li_payload)
            if expected.status != item.status:
                add(ISSUE_CLASSIFIER_DIVERGENCE,
                    f"Line item {item.line_item_id} is stored as {item.status} but classifies as "
                    f"{expected.status} ({', '.join(expected.reasons())})")
    return issues


def _numbering_issues(product_id: str, items: list[LineItem]) -> list[IntegrityIssue]:
    numbered = [i for i in items if i.status == STATUS_ACTIVE and i.edition_number is not None]
    active_count = sum(1 for i in items if i.status == STATUS_ACTIVE)

    by_number: dict[int, list[str]] = defaultdict(list)
    for item in numbered:
        by_number[item.edition_number].append(item.line_item_id)

    issues = []
    for number in sorted(by_number):
        ids = by_number[number]
        if len(ids) > 1:
            issues.append(IntegrityIssue(
                type=ISSUE_DUPLICATE_EDITION,
                severity=SEVERITY_CRITICAL,
                description=f"Edition #{number} assigned to {len(ids)} line items: {', '.join(ids)}",
                product_id=product_id,
                edition_number=number,
                line_item_ids=tuple(ids),
            ))

    expected = set(range(1, active_count + 1))
    if not issues and set(by_number) != expected:
        missing = sorted(expected - set(by_number))
        extra = sorted(set(by_number) - expected)
        issues.append(IntegrityIssue(
            type=ISSUE_EDITION_GAP,
            severity=SEVERITY_WARNING,
            description=(
                f"Product {product_id} has {active_count} active items but numbering is not 1..{active_count}"
                f" (missing {missing}, unexpected {extra})"
            ),
            product_id=product_id,
        ))
    return issues


def validate(
    product_id: Optional[str] = None,
    collector_id: Optional[str] = None,
    *,
    classifier: StatusClassifier = default_classifier,
) -> list[IntegrityIssue]:
    """
    Audit stored state. Read-only.

    Args:
        product_id: Limit to one product
        collector_id: Limit to items owned by an email / customer id
    """
    items = _scoped_items(product_id, collector_id)
    issues: list[IntegrityIssue] = []
    for item in items:
        issues.extend(_item_issues(item, classifier))

    if collector_id:
        # Numbering is a per-product property; judge it over the full product, not the owner's slice
        product_ids = sorted({i.product_id for i in items})
        grouped = {pid: _scoped_items(pid, None) for pid in product_ids}
    else:
        grouped = defaultdict(list)
        for item in items:
            grouped[item.product_id].append(item)

    for pid in sorted(grouped):
        issues.extend(_numbering_issues(pid, grouped[pid]))
    return issues


def check_duplicates(product_id: str) -> dict:
    """Duplicate edition numbers among a product's active items."""
    items = (
        db.session.query(LineItem)
        .filter(
            LineItem.product_id == str(product_id),
            LineItem.status == STATUS_ACTIVE,
            LineItem.edition_number.isnot(None),
        )
        .all()
    )
    by_number: dict[int, list[dict]] = defaultdict(list)
    for item in items:
        by_number[item.edition_number].append({
            "line_item_id": item.line_item_id,
            "order_id": item.order_id,
            "edition_number": item.edition_number,
        })
    duplicates = sorted(number for number, rows in by_number.items() if len(rows) > 1)
    return {
        "product_id": str(product_id),
        "total_editions": len(items),
        "unique_editions": len(by_number),
        "has_duplicates": bool(duplicates),
        "duplicate_edition_numbers": duplicates,
        "duplicate_items": [row for number in duplicates for row in by_number[number]],
    }


def assert_integrity(product_id: Optional[str] = None, collector_id: Optional[str] = None) -> None:
    """
    Raises:
        IntegrityViolation: The validation report is non-empty
    """
    issues = validate(product_id, collector_id)
    if issues:
        raise IntegrityViolation(issues)
