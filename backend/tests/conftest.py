"""
Pytest fixtures for edition ledger backend tests.

Provides test database setup, a test client, order payload factories and a
warehouse client backed by httpx.MockTransport.
"""

import json

import httpx
import pytest

from app import create_app
from app.extensions import db
from app.services.warehouse_client import WarehouseClient


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WAREHOUSE_API_KEY': '',
        'CERTIFICATE_BASE_URL': 'https://certs.test',
        'PRODUCT_LOCK_TIMEOUT_SECONDS': 1.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# PAYLOAD FACTORIES
# =============================================================================

def make_line_item(line_item_id, product_id="P1", **overrides):
    """Commerce platform line item that classifies as active on a paid order."""
    li = {
        "id": line_item_id,
        "product_id": product_id,
        "variant_id": f"V-{product_id}",
        "sku": f"SKU-{product_id}",
        "title": f"Limited print {product_id}",
        "vendor": "Studio",
        "quantity": 1,
        "price": "120.00",
        "fulfillable_quantity": 1,
        "fulfillment_status": None,
        "properties": [],
    }
    li.update(overrides)
    return li


def make_order(order_id, line_items, *, created_at="2024-03-01T10:00:00Z", **overrides):
    """Paid order with buyer identity on the payload."""
    order = {
        "id": order_id,
        "name": f"#{order_id}",
        "order_number": order_id,
        "email": f"buyer{order_id}@example.com",
        "created_at": created_at,
        "processed_at": created_at,
        "cancelled_at": None,
        "financial_status": "paid",
        "fulfillment_status": None,
        "customer": {
            "id": f"C{order_id}",
            "email": f"buyer{order_id}@example.com",
            "first_name": "Buyer",
            "last_name": str(order_id),
            "phone": None,
        },
        "shipping_address": {
            "first_name": "Buyer",
            "last_name": str(order_id),
            "address1": "1 Gallery Row",
            "city": "Porto",
            "country": "Portugal",
            "zip": "4000",
        },
        "line_items": line_items,
        "refunds": [],
    }
    order.update(overrides)
    return order


def refund(*line_item_ids, quantity=1, restock_type="no_restock"):
    return {
        "id": f"R-{'-'.join(str(i) for i in line_item_ids)}",
        "refund_line_items": [
            {"line_item_id": lid, "quantity": quantity, "restock_type": restock_type}
            for lid in line_item_ids
        ],
    }


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def line_item_factory():
    return make_line_item


# =============================================================================
# WAREHOUSE
# =============================================================================

def warehouse_envelope(records, page=1, total_page=1):
    return {"code": 0, "msg": "success", "data": {"list": records, "page": page, "total_page": total_page}}


def build_warehouse_client(handler, **kwargs):
    """WarehouseClient whose HTTP traffic goes to `handler(request) -> httpx.Response`."""
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("backoff_seconds", 0.0)
    kwargs.setdefault("sleep", lambda _s: None)
    return WarehouseClient(
        "https://warehouse.test",
        "test-key",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.fixture
def warehouse_client_factory():
    clients = []

    def factory(handler, **kwargs):
        wc = build_warehouse_client(handler, **kwargs)
        clients.append(wc)
        return wc

    yield factory
    for wc in clients:
        wc.close()


def json_response(payload, status_code=200):
    return httpx.Response(status_code, content=json.dumps(payload), headers={"Content-Type": "application/json"})
