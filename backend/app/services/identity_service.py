# Overview: Buyer identity (PII) recovery with warehouse fallback.

"""
PII Recovery

WHY: Orders arrive from the commerce platform with buyer identity missing
(guest checkouts, gift orders, privacy-redacted payloads). The warehouse
provider still knows who the parcel ships to, so we fall back to it.

TIERS (first non-empty value per field wins):
1. order        - order.email, customer{email, first/last name, phone}
2. address      - shipping_address, then billing_address
3. warehouse_cache - WarehouseRecord matched by order name or id
4. warehouse_api   - live lookup over +/- N days around processed_at,
                     matched by order name or id, cached back on success

`source` names the deepest tier that contributed a value ("unresolved" if
nothing did). Warehouse failures never raise from here: they are logged and
recovery degrades to tiers 1-3.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import WarehouseRecord
from ..time_utils import date_window, parse_iso_datetime, utcnow
from .errors import ExternalServiceError
from .status_classifier import id_str
from .warehouse_client import WarehouseClient

logger = logging.getLogger(__name__)

SOURCE_ORDER = "order"
SOURCE_ADDRESS = "address"
SOURCE_WAREHOUSE_CACHE = "warehouse_cache"
SOURCE_WAREHOUSE_API = "warehouse_api"
SOURCE_UNRESOLVED = "unresolved"

_SOURCE_RANK = {
    SOURCE_UNRESOLVED: 0,
    SOURCE_ORDER: 1,
    SOURCE_ADDRESS: 2,
    SOURCE_WAREHOUSE_CACHE: 3,
    SOURCE_WAREHOUSE_API: 4,
}

DEFAULT_WINDOW_DAYS = 3


@dataclass(frozen=True)
class ResolvedIdentity:
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[dict] = None
    customer_id: Optional[str] = None
    source: str = SOURCE_UNRESOLVED
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_complete(self) -> bool:
        return bool(self.email and self.name)

    def merge(self, source: str, **values: Any) -> "ResolvedIdentity":
        """Fill only the fields still missing; record `source` if it contributed."""
        updates = {
            key: value for key, value in values.items()
            if value and not getattr(self, key)
        }
        if not updates:
            return self
        new_source = source if _SOURCE_RANK[source] > _SOURCE_RANK[self.source] else self.source
        return replace(self, source=new_source, **updates)

    def with_warning(self, message: str) -> "ResolvedIdentity":
        return replace(self, warnings=self.warnings + (message,))

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "customer_id": self.customer_id,
            "source": self.source,
            "warnings": list(self.warnings),
        }


# =============================================================================
# FIELD EXTRACTION
# =============================================================================

def normalize_email(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    email = value.strip().lower()
    return email or None


def _full_name(first: Any, last: Any) -> Optional[str]:
    name = f"{first or ''} {last or ''}".strip()
    return name or None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _name_from(source: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not source:
        return None
    return _full_name(source.get("first_name"), source.get("last_name")) or (source.get("name") or None)


def _address_from(source: Optional[Mapping[str, Any]]) -> Optional[dict]:
    if not source or not source.get("address1"):
        return None
    return {
        "address1": source.get("address1"),
        "address2": source.get("address2"),
        "city": source.get("city"),
        "province": source.get("province"),
        "country": source.get("country"),
        "zip": source.get("zip"),
    }


def _warehouse_address(record: Mapping[str, Any]) -> Optional[dict]:
    if not record.get("ship_address1"):
        return None
    return {
        "address1": record.get("ship_address1"),
        "address2": record.get("ship_address2"),
        "city": record.get("ship_city"),
        "province": record.get("ship_state"),
        "country": record.get("ship_country"),
        "zip": record.get("ship_zip"),
    }


def _warehouse_name(record: Mapping[str, Any]) -> Optional[str]:
    return _full_name(record.get("first_name"), record.get("last_name")) or (record.get("ship_name") or None)


def order_references(order: Mapping[str, Any]) -> tuple[str, ...]:
    """Identifiers the warehouse may know this order by."""
    refs = []
    for value in (order.get("name"), order.get("id")):
        ref = id_str(value)
        if ref and ref not in refs:
            refs.append(ref)
    return tuple(refs)


def matches_order(record: Mapping[str, Any], order: Mapping[str, Any]) -> bool:
    refs = set(order_references(order))
    order_id = id_str(order.get("id"))
    return (
        id_str(record.get("order_id")) in refs
        or (order_id is not None and id_str(record.get("shopify_order_id")) == order_id)
        or (order_id is not None and id_str(record.get("platform_order_id")) == order_id)
    )


# =============================================================================
# TIERS
# =============================================================================

def _from_order(order: Mapping[str, Any]) -> ResolvedIdentity:
    customer = _mapping(order.get("customer"))
    identity = ResolvedIdentity(customer_id=id_str(customer.get("id")))
    return identity.merge(
        SOURCE_ORDER,
        email=normalize_email(order.get("email")) or normalize_email(customer.get("email")),
        name=_name_from(customer),
        phone=customer.get("phone") or order.get("phone"),
    )


def _from_addresses(identity: ResolvedIdentity, order: Mapping[str, Any]) -> ResolvedIdentity:
    for key in ("shipping_address", "billing_address"):
        source = _mapping(order.get(key))
        identity = identity.merge(
            SOURCE_ADDRESS,
            name=_name_from(source),
            phone=source.get("phone"),
            address=_address_from(source),
        )
    return identity


def _from_cache(identity: ResolvedIdentity, order: Mapping[str, Any]) -> ResolvedIdentity:
    refs = order_references(order)
    if not refs:
        return identity
    order_id = id_str(order.get("id"))
    conditions = [WarehouseRecord.order_id.in_(refs)]
    if order_id:
        conditions.append(WarehouseRecord.platform_order_id == order_id)
    record = (
        db.session.query(WarehouseRecord)
        .filter(or_(*conditions))
        .order_by(WarehouseRecord.refreshed_at.desc())
        .first()
    )
    if record is None:
        return identity
    return identity.merge(
        SOURCE_WAREHOUSE_CACHE,
        email=normalize_email(record.ship_email),
        name=record.ship_name,
        phone=record.ship_phone,
        address=record.ship_address,
    )


def _lookup_live(client: WarehouseClient, order: Mapping[str, Any], window_days: int) -> Optional[dict]:
    try:
        anchor = parse_iso_datetime(order.get("processed_at") or order.get("created_at"))
    except (TypeError, ValueError):
        anchor = None
    if anchor is None:
        for ref in order_references(order):
            record = client.find_order(ref)
            if record is not None:
                return record
        return None

    start, end = date_window(anchor, window_days)
    for record in client.get_orders_info(start, end):
        if matches_order(record, order):
            return record
    return None


def cache_warehouse_record(record: Mapping[str, Any], order: Mapping[str, Any]) -> Optional[WarehouseRecord]:
    """
    Upsert the matched warehouse record for future lookups.

    Runs in a savepoint: a failed cache write must not poison the sync transaction.
    """
    key = id_str(record.get("sys_order_id")) or id_str(record.get("order_id"))
    if key is None:
        return None
    try:
        with db.session.begin_nested():
            row = db.session.get(WarehouseRecord, key)
            if row is None:
                row = WarehouseRecord(id=key)
                db.session.add(row)
            row.order_id = id_str(record.get("order_id"))
            row.platform_order_id = id_str(order.get("id"))
            row.ship_email = normalize_email(record.get("ship_email"))
            row.ship_name = _warehouse_name(record)
            row.ship_phone = record.get("ship_phone")
            row.ship_address = _warehouse_address(record)
            row.raw_payload = dict(record)
            row.refreshed_at = utcnow()
        return row
    except SQLAlchemyError:
        logger.warning("Could not cache warehouse record %s", key, exc_info=True)
        return None


def _default_client() -> Optional[WarehouseClient]:
    if not has_app_context():
        return None
    return WarehouseClient.from_config(current_app.config)


def _window_days() -> int:
    if has_app_context():
        return int(current_app.config.get("WAREHOUSE_LOOKUP_WINDOW_DAYS", DEFAULT_WINDOW_DAYS))
    return DEFAULT_WINDOW_DAYS


# =============================================================================
# PUBLIC API
# =============================================================================

def resolve_identity(
    order: Mapping[str, Any],
    *,
    client: Optional[WarehouseClient] = None,
    force_warehouse: bool = False,
    use_warehouse: bool = True,
) -> ResolvedIdentity:
    """
    Resolve buyer email/name/phone/address for an order.

    Args:
        order: Commerce platform order payload
        client: Warehouse client; defaults to one built from app config
            (None when no API key is configured)
        force_warehouse: Query the live warehouse even if tiers 1-3 resolved
            everything (skips the cache so the snapshot is refreshed)
        use_warehouse: False restricts recovery to tiers 1-2

    Never raises on warehouse failure.
    """
    identity = _from_addresses(_from_order(order), order)
    if not use_warehouse:
        return identity
    if identity.is_complete and not force_warehouse:
        return identity

    if not force_warehouse:
        identity = _from_cache(identity, order)
        if identity.is_complete:
            return identity

    owns_client = client is None
    if owns_client:
        client = _default_client()
    if client is None:
        return identity

    name = order.get("name") or order.get("id")
    try:
        record = _lookup_live(client, order, _window_days())
    except ExternalServiceError as exc:
        logger.warning("Warehouse PII lookup failed for order %s: %s", name, exc)
        identity = identity.with_warning(f"warehouse lookup failed: {exc}")
        return _from_cache(identity, order) if force_warehouse else identity
    finally:
        if owns_client:
            client.close()

    if record is None:
        return _from_cache(identity, order) if force_warehouse else identity

    cache_warehouse_record(record, order)
    logger.info("Recovered PII from warehouse for order %s", name)
    return identity.merge(
        SOURCE_WAREHOUSE_API,
        email=normalize_email(record.get("ship_email")),
        name=_warehouse_name(record),
        phone=record.get("ship_phone"),
        address=_warehouse_address(record),
    )
