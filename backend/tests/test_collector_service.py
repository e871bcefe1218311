"""Collector view: what a collector owns right now."""

from app.extensions import db
from app.models import LineItem, Order
from app.services import collector_service, lifecycle_service, sync_service
from app.services.collector_service import CollectorIdentity, filter_active_editions
from app.services.status_classifier import STATUS_ACTIVE

from conftest import make_line_item, make_order, refund


def _ids(items):
    return [item.line_item_id for item in items]


def test_collector_identity_parse():
    assert CollectorIdentity.parse(" Buyer@Example.com ") == CollectorIdentity(email="buyer@example.com")
    assert CollectorIdentity.parse("C100") == CollectorIdentity(customer_id="C100")


def test_lists_active_editions_newest_order_first(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1"), make_line_item("2", "P2")],
                                      created_at="2024-03-01T10:00:00Z", email="fan@example.com"))
    sync_service.sync_order(make_order("200", [make_line_item("3")],
                                      created_at="2024-04-01T10:00:00Z", email="fan@example.com"))

    editions = collector_service.editions_for("FAN@example.com")

    assert _ids(editions) == ["3", "1", "2"]


def test_lookup_by_customer_id(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    assert _ids(collector_service.editions_for("C100")) == ["1"]


def test_excludes_refunded_and_cancelled(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1"), make_line_item("2")],
                                      refunds=[refund("2", quantity=0)]))
    sync_service.sync_order(make_order("200", [make_line_item("3")], email="buyer100@example.com",
                                      cancelled_at="2024-03-05T00:00:00Z"))

    assert _ids(collector_service.editions_for("buyer100@example.com")) == ["1"]


def test_stale_status_is_rechecked_against_payload(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    order = db_session.get(Order, "100")
    payload = dict(order.raw_payload)
    payload["refunds"] = [refund("1")]
    order.raw_payload = payload
    db_session.commit()

    assert db_session.get(LineItem, "1").status == STATUS_ACTIVE
    assert collector_service.editions_for("buyer100@example.com") == ()


def test_transfers_move_editions_between_collectors(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1"), make_line_item("2")]))
    lifecycle_service.transfer_ownership("2", new_owner_email="second@example.com")

    assert _ids(collector_service.editions_for("buyer100@example.com")) == ["1"]
    assert _ids(collector_service.editions_for("second@example.com")) == ["2"]


def test_filter_dedupes_repeated_items(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    item = db.session.get(LineItem, "1")
    collector = CollectorIdentity.parse("buyer100@example.com")

    assert _ids(filter_active_editions([item, item, item], collector)) == ["1"]


def test_unknown_collector_has_nothing(db_session):
    assert collector_service.editions_for("nobody@example.com") == ()
    assert collector_service.editions_for("") == ()
