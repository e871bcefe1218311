from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Order(db.Model):
    """
    Commerce platform order, as last reported upstream.

    WHY: The raw payload is retained so line item status can be re-derived
    (collector view, integrity checks, override clearing) without trusting
    the stored `status` column blindly. Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_email", "customer_email"),
        db.Index("ix_orders_processed_at", "processed_at"),
    )

    # Platform ids are compared as strings; never coerce to int
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(64), nullable=False, index=True)
    order_number = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    financial_status = db.Column(db.String(32), nullable=True, index=True)
    fulfillment_status = db.Column(db.String(32), nullable=True, index=True)
    archived = db.Column(db.Boolean, nullable=False, default=False)

    # Resolved buyer identity (see identity_service)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)
    identity_source = db.Column(db.String(32), nullable=True)

    raw_payload = db.Column(db.JSON, nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    line_items = db.relationship(
        "LineItem",
        back_populates="order",
        lazy=True,
        order_by="LineItem.line_item_id",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id!r} name={self.name!r} financial_status={self.financial_status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "order_number": self.order_number,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "financial_status": self.financial_status,
            "fulfillment_status": self.fulfillment_status,
            "archived": self.archived,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "identity_source": self.identity_source,
            "synced_at": to_utc_z(self.synced_at),
        }


class LineItem(db.Model):
    """
    One purchased unit line within an order; the unit that may carry an edition number.

    `status` is always the classifier's verdict for (order, line item) unless an
    audited override is recorded in `override_status`. `edition_number` and
    `edition_total` are written only by the edition assigner.
    """
    __tablename__ = "line_items"
    __table_args__ = (
        # Deliberately not unique: duplicates must stay observable to the integrity validator
        db.Index("ix_line_items_product_edition", "product_id", "edition_number"),
        db.Index("ix_line_items_product_status", "product_id", "status"),
    )

    line_item_id = db.Column(db.String(64), primary_key=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.String(64), nullable=False, index=True)
    variant_id = db.Column(db.String(64), nullable=True)
    sku = db.Column(db.String(128), nullable=True)
    title = db.Column(db.String(255), nullable=True)
    vendor_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Numeric(12, 2), nullable=True)

    fulfillable_quantity = db.Column(db.Integer, nullable=True)
    fulfillment_status = db.Column(db.String(32), nullable=True)
    refunded_quantity = db.Column(db.Integer, nullable=False, default=0)
    restocked = db.Column(db.Boolean, nullable=False, default=False)
    refund_status = db.Column(db.String(16), nullable=False, default="none")
    removed = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(16), nullable=False, default="inactive", index=True)
    status_reasons = db.Column(db.JSON, nullable=True)

    # Audited manual override (see lifecycle_service)
    override_status = db.Column(db.String(16), nullable=True)
    override_reason = db.Column(db.String(32), nullable=True)

    edition_number = db.Column(db.Integer, nullable=True)
    edition_total = db.Column(db.Integer, nullable=True)

    owner_email = db.Column(db.String(255), nullable=True, index=True)
    owner_name = db.Column(db.String(255), nullable=True)
    owner_phone = db.Column(db.String(64), nullable=True)
    owner_id = db.Column(db.String(64), nullable=True, index=True)
    # Set by an ownership transfer; order sync no longer overwrites the owner
    ownership_locked = db.Column(db.Boolean, nullable=False, default=False)

    certificate_url = db.Column(db.String(512), nullable=True)
    certificate_token = db.Column(db.String(64), nullable=True, unique=True)
    certificate_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Business time (order creation); the assigner's primary ordering key
    created_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", back_populates="line_items")

    def __repr__(self) -> str:
        return (
            f"<LineItem id={self.line_item_id!r} product_id={self.product_id!r} "
            f"status={self.status!r} edition={self.edition_number}>"
        )

    def owner_dict(self) -> dict:
        return {
            "name": self.owner_name,
            "email": self.owner_email,
            "id": self.owner_id,
        }

    def to_dict(self) -> dict:
        return {
            "line_item_id": self.line_item_id,
            "order_id": self.order_id,
            "order_name": self.order.name if self.order is not None else None,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "sku": self.sku,
            "title": self.title,
            "vendor_name": self.vendor_name,
            "quantity": self.quantity,
            "price": str(self.price) if self.price is not None else None,
            "fulfillment_status": self.fulfillment_status,
            "status": self.status,
            "status_reasons": self.status_reasons or [],
            "override_status": self.override_status,
            "override_reason": self.override_reason,
            "refund_status": self.refund_status,
            "restocked": self.restocked,
            "edition_number": self.edition_number,
            "edition_total": self.edition_total,
            "owner": self.owner_dict(),
            "ownership_locked": self.ownership_locked,
            "certificate_url": self.certificate_url,
            "certificate_generated_at": to_utc_z(self.certificate_generated_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
