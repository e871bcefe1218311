from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class WarehouseRecord(db.Model):
    """
    Cached warehouse provider snapshot of an order's shipping identity.

    Used only as a PII fallback; never consulted for status or edition truth.
    """
    __tablename__ = "warehouse_records"

    # Warehouse system order id when present, otherwise the warehouse's order reference
    id = db.Column(db.String(128), primary_key=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)  # e.g. "#1001" as the warehouse knows it
    platform_order_id = db.Column(db.String(64), nullable=True, index=True)

    ship_email = db.Column(db.String(255), nullable=True)
    ship_name = db.Column(db.String(255), nullable=True)
    ship_phone = db.Column(db.String(64), nullable=True)
    ship_address = db.Column(db.JSON, nullable=True)

    raw_payload = db.Column(db.JSON, nullable=True)
    refreshed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WarehouseRecord id={self.id!r} order_id={self.order_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "platform_order_id": self.platform_order_id,
            "ship_email": self.ship_email,
            "ship_name": self.ship_name,
            "ship_phone": self.ship_phone,
            "ship_address": self.ship_address,
            "refreshed_at": to_utc_z(self.refreshed_at),
        }
