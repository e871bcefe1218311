"""Edition ledger: orders, line items, audit events, product locks, warehouse cache

Revision ID: e001_edition_ledger
Revises:
Create Date: 2026-10-17 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "e001_edition_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Orders (raw payload retained for status re-derivation)
    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("financial_status", sa.String(length=32), nullable=True),
        sa.Column("fulfillment_status", sa.String(length=32), nullable=True),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=64), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("identity_source", sa.String(length=32), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_name", "orders", ["name"], unique=False)
    op.create_index("ix_orders_financial_status", "orders", ["financial_status"], unique=False)
    op.create_index("ix_orders_fulfillment_status", "orders", ["fulfillment_status"], unique=False)
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"], unique=False)
    op.create_index("ix_orders_customer_email", "orders", ["customer_email"], unique=False)
    op.create_index("ix_orders_processed_at", "orders", ["processed_at"], unique=False)

    # Line items (edition numbers live here)
    op.create_table(
        "line_items",
        sa.Column("line_item_id", sa.String(length=64), primary_key=True),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("variant_id", sa.String(length=64), nullable=True),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("vendor_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("fulfillable_quantity", sa.Integer(), nullable=True),
        sa.Column("fulfillment_status", sa.String(length=32), nullable=True),
        sa.Column("refunded_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("restocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refund_status", sa.String(length=16), nullable=False, server_default="none"),
        sa.Column("removed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="inactive"),
        sa.Column("status_reasons", sa.JSON(), nullable=True),
        sa.Column("override_status", sa.String(length=16), nullable=True),
        sa.Column("override_reason", sa.String(length=32), nullable=True),
        sa.Column("edition_number", sa.Integer(), nullable=True),
        sa.Column("edition_total", sa.Integer(), nullable=True),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        sa.Column("owner_name", sa.String(length=255), nullable=True),
        sa.Column("owner_phone", sa.String(length=64), nullable=True),
        sa.Column("owner_id", sa.String(length=64), nullable=True),
        sa.Column("ownership_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("certificate_url", sa.String(length=512), nullable=True),
        sa.Column("certificate_token", sa.String(length=64), nullable=True),
        sa.Column("certificate_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name="fk_line_items_order"),
        sa.UniqueConstraint("certificate_token", name="uq_line_items_certificate_token"),
    )
    op.create_index("ix_line_items_order_id", "line_items", ["order_id"], unique=False)
    op.create_index("ix_line_items_product_id", "line_items", ["product_id"], unique=False)
    op.create_index("ix_line_items_status", "line_items", ["status"], unique=False)
    op.create_index("ix_line_items_owner_email", "line_items", ["owner_email"], unique=False)
    op.create_index("ix_line_items_owner_id", "line_items", ["owner_id"], unique=False)
    # Not unique: duplicate numbers must remain visible to the integrity validator
    op.create_index("ix_line_items_product_edition", "line_items", ["product_id", "edition_number"], unique=False)
    op.create_index("ix_line_items_product_status", "line_items", ["product_id", "status"], unique=False)

    # Append-only audit trail
    op.create_table(
        "edition_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("line_item_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("edition_number", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=True),
        sa.Column("owner_name", sa.String(length=255), nullable=True),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        sa.Column("owner_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("actor", sa.String(length=64), nullable=False, server_default="system"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_edition_events_line_item_id", "edition_events", ["line_item_id"], unique=False)
    op.create_index("ix_edition_events_product_id", "edition_events", ["product_id"], unique=False)
    op.create_index("ix_edition_events_event_type", "edition_events", ["event_type"], unique=False)
    op.create_index("ix_edition_events_created_at", "edition_events", ["created_at"], unique=False)
    op.create_index(
        "ix_edition_events_line_item_created", "edition_events", ["line_item_id", "created_at"], unique=False
    )
    op.create_index(
        "ix_edition_events_product_created", "edition_events", ["product_id", "created_at"], unique=False
    )

    # Per-product reassignment lock rows
    op.create_table(
        "product_edition_locks",
        sa.Column("product_id", sa.String(length=64), primary_key=True),
        sa.Column("lock_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Warehouse PII cache
    op.create_table(
        "warehouse_records",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("platform_order_id", sa.String(length=64), nullable=True),
        sa.Column("ship_email", sa.String(length=255), nullable=True),
        sa.Column("ship_name", sa.String(length=255), nullable=True),
        sa.Column("ship_phone", sa.String(length=64), nullable=True),
        sa.Column("ship_address", sa.JSON(), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_warehouse_records_order_id", "warehouse_records", ["order_id"], unique=False)
    op.create_index(
        "ix_warehouse_records_platform_order_id", "warehouse_records", ["platform_order_id"], unique=False
    )


def downgrade():
    op.drop_index("ix_warehouse_records_platform_order_id", table_name="warehouse_records")
    op.drop_index("ix_warehouse_records_order_id", table_name="warehouse_records")
    op.drop_table("warehouse_records")

    op.drop_table("product_edition_locks")

    op.drop_index("ix_edition_events_product_created", table_name="edition_events")
    op.drop_index("ix_edition_events_line_item_created", table_name="edition_events")
    op.drop_index("ix_edition_events_created_at", table_name="edition_events")
    op.drop_index("ix_edition_events_event_type", table_name="edition_events")
    op.drop_index("ix_edition_events_product_id", table_name="edition_events")
    op.drop_index("ix_edition_events_line_item_id", table_name="edition_events")
    op.drop_table("edition_events")

    op.drop_index("ix_line_items_product_status", table_name="line_items")
    op.drop_index("ix_line_items_product_edition", table_name="line_items")
    op.drop_index("ix_line_items_owner_id", table_name="line_items")
    op.drop_index("ix_line_items_owner_email", table_name="line_items")
    op.drop_index("ix_line_items_status", table_name="line_items")
    op.drop_index("ix_line_items_product_id", table_name="line_items")
    op.drop_index("ix_line_items_order_id", table_name="line_items")
    op.drop_table("line_items")

    op.drop_index("ix_orders_processed_at", table_name="orders")
    op.drop_index("ix_orders_customer_email", table_name="orders")
    op.drop_index("ix_orders_customer_id", table_name="orders")
    op.drop_index("ix_orders_fulfillment_status", table_name="orders")
    op.drop_index("ix_orders_financial_status", table_name="orders")
    op.drop_index("ix_orders_name", table_name="orders")
    op.drop_table("orders")
