from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class EditionEvent(db.Model):
    """
    Append-only audit record for every status, numbering or ownership change.

    Rows are inserted by ledger_service only; nothing updates or deletes them.
    """
    __tablename__ = "edition_events"
    __table_args__ = (
        db.Index("ix_edition_events_line_item_created", "line_item_id", "created_at"),
        db.Index("ix_edition_events_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    line_item_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    edition_number = db.Column(db.Integer, nullable=True)

    event_type = db.Column(db.String(32), nullable=False, index=True)  # assignment, status_changed, ownership_transfer, manual_override
    event_data = db.Column(db.JSON, nullable=True)

    # Snapshot at event time (do not join back to line_items for history)
    owner_name = db.Column(db.String(255), nullable=True)
    owner_email = db.Column(db.String(255), nullable=True)
    owner_id = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=True)

    actor = db.Column(db.String(64), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_item_id": self.line_item_id,
            "product_id": self.product_id,
            "edition_number": self.edition_number,
            "event_type": self.event_type,
            "event_data": self.event_data or {},
            "owner": {
                "name": self.owner_name,
                "email": self.owner_email,
                "id": self.owner_id,
            },
            "status": self.status,
            "actor": self.actor,
            "created_at": to_utc_z(self.created_at),
        }


class ProductEditionLock(db.Model):
    """
    Per-product lock row.

    WHY: Reassignment reads the whole active set and rewrites every number.
    Holding SELECT ... FOR UPDATE on this row serializes reassignments of the
    same product across processes (SQLite ignores it; see concurrency.py).
    """
    __tablename__ = "product_edition_locks"

    product_id = db.Column(db.String(64), primary_key=True)
    lock_version = db.Column(db.Integer, nullable=False, default=0)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ProductEditionLock product_id={self.product_id!r} version={self.lock_version}>"
