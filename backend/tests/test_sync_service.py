"""Order sync: idempotent upsert, malformed input and status change auditing."""

import pytest
from sqlalchemy.exc import OperationalError

from app.models import EditionEvent, LineItem, Order
from app.services import concurrency, ledger_service, sync_service
from app.services.status_classifier import STATUS_ACTIVE, STATUS_INACTIVE, StatusClassifier

from conftest import make_line_item, make_order, refund


@pytest.mark.smoke
def test_sync_persists_order_and_line_items(db_session):
    order = make_order("100", [make_line_item("1"), make_line_item("2", "P2")])
    result = sync_service.sync_order(order)

    assert result.success
    assert result.identity_source is not None
    row = db_session.get(Order, "100")
    assert row.name == "#100"
    assert row.customer_email == "buyer100@example.com"
    assert row.raw_payload["id"] == "100"

    item = db_session.get(LineItem, "1")
    assert item.status == STATUS_ACTIVE
    assert item.owner_email == "buyer100@example.com"
    assert str(item.price) == "120.00"
    assert item.edition_number == 1


def test_resync_of_unchanged_order_writes_nothing(db_session):
    order = make_order("100", [make_line_item("1"), make_line_item("2")])
    sync_service.sync_order(order)
    events_before = db_session.query(EditionEvent).count()
    updated_before = db_session.get(LineItem, "1").updated_at

    result = sync_service.sync_order(order)

    assert result.success
    assert all(not li["changed"] for li in result.line_items)
    assert db_session.query(EditionEvent).count() == events_before
    assert db_session.get(LineItem, "1").updated_at == updated_before


def test_malformed_line_item_is_skipped_and_siblings_process(db_session):
    order = make_order("100", [make_line_item("1"), {"id": "2", "title": "no product"}])
    result = sync_service.sync_order(order)

    assert result.success
    assert [li["line_item_id"] for li in result.line_items] == ["1"]
    assert result.skipped[0]["line_item_id"] == "2"
    assert db_session.get(LineItem, "2") is None


@pytest.mark.parametrize("payload", [
    {"name": "#1", "line_items": []},
    {"id": "1", "line_items": []},
    {"id": "1", "name": "#1"},
    "not an order",
])
def test_unprocessable_order_is_rejected_without_raising(db_session, payload):
    result = sync_service.sync_order(payload)
    assert not result.success
    assert result.error
    assert db_session.query(Order).count() == 0


def test_status_flip_appends_status_changed_event(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    refunded = make_order("100", [make_line_item("1")], refunds=[refund("1")])

    sync_service.sync_order(refunded)

    events = (
        db_session.query(EditionEvent)
        .filter_by(line_item_id="1", event_type=ledger_service.EVENT_STATUS_CHANGED)
        .all()
    )
    assert len(events) == 1
    assert events[0].event_data["before_status"] == STATUS_ACTIVE
    assert events[0].event_data["after_status"] == STATUS_INACTIVE
    assert events[0].event_data["reasons"] == ["refunded"]
    assert events[0].actor == sync_service.ACTOR_SYNC
    assert db_session.get(LineItem, "1").refund_status == "refunded"


def test_first_active_sighting_does_not_emit_status_changed(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    types = {ev.event_type for ev in db_session.query(EditionEvent).all()}
    assert ledger_service.EVENT_STATUS_CHANGED not in types


def test_first_inactive_sighting_explains_its_status(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1", fulfillable_quantity=0)]))

    events = ledger_service.get_edition_history("1")
    assert [ev.event_type for ev in events] == [ledger_service.EVENT_STATUS_CHANGED]
    assert events[0].event_data["before_status"] is None
    assert events[0].event_data["after_status"] == STATUS_INACTIVE
    assert events[0].event_data["reasons"] == ["removed_by_qty"]

    sync_service.sync_order(make_order("100", [make_line_item("1", fulfillable_quantity=0)]))
    assert len(ledger_service.get_edition_history("1")) == 1


def test_sync_uses_injected_classifier(db_session):
    calls = []

    class RecordingClassifier(StatusClassifier):
        def classify(self, order, line_item):
            calls.append(line_item["id"])
            return super().classify(order, line_item)

    sync_service.sync_order(make_order("100", [make_line_item("1"), make_line_item("2")]),
                            classifier=RecordingClassifier())
    assert calls == ["1", "2"]


def test_line_item_cannot_move_between_orders(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    result = sync_service.sync_order(make_order("200", [make_line_item("1")]))

    assert result.success
    assert result.skipped and result.skipped[0]["line_item_id"] == "1"
    assert db_session.get(LineItem, "1").order_id == "100"


def test_skip_editions_leaves_numbers_unassigned(db_session):
    result = sync_service.sync_order(make_order("100", [make_line_item("1")]), skip_editions=True)
    assert result.success
    assert result.reassigned == {}
    assert db_session.get(LineItem, "1").edition_number is None


def test_batch_isolates_failures(db_session):
    results = sync_service.sync_orders([
        make_order("100", [make_line_item("1")]),
        {"id": "bad"},
        make_order("200", [make_line_item("2")]),
    ])
    assert [r.success for r in results] == [True, False, True]
    assert db_session.get(LineItem, "2").edition_number == 2


def test_archived_orders_are_flagged(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")], tags="vip, archived"))
    assert db_session.get(Order, "100").archived is True


def test_non_object_line_item_is_skipped(db_session):
    result = sync_service.sync_order(make_order("100", [None, "1", make_line_item("2")]))

    assert result.success
    assert [li["line_item_id"] for li in result.line_items] == ["2"]
    assert len(result.skipped) == 2
    assert db_session.get(LineItem, "2").edition_number == 1


def test_non_object_refund_entries_are_ignored(db_session):
    refunds = ["R-1", {"refund_line_items": [None, 7]}, refund("1")]
    result = sync_service.sync_order(make_order("100", [make_line_item("1"), make_line_item("2")], refunds=refunds))

    assert result.success
    assert db_session.get(LineItem, "1").status == STATUS_INACTIVE
    assert db_session.get(LineItem, "2").edition_number == 1


@pytest.mark.parametrize("overrides", [
    {"created_at": "03/01/2024"},
    {"processed_at": "yesterday"},
    {"cancelled_at": "2024-13-45T99:00:00Z"},
])
def test_unparseable_timestamp_rejects_only_that_order(db_session, overrides):
    bad = make_order("200", [make_line_item("2")])
    bad.update(overrides)

    results = sync_service.sync_orders([bad, make_order("300", [make_line_item("3")])])

    assert not results[0].success
    assert "timestamp" in results[0].error
    assert results[1].success
    assert db_session.get(Order, "200") is None
    assert db_session.get(LineItem, "3").edition_number == 1


def test_failed_sync_leaves_prior_state_untouched(db_session, monkeypatch):
    order = make_order("100", [make_line_item("1"), make_line_item("2")])
    sync_service.sync_order(order)
    events_before = db_session.query(EditionEvent).count()

    def locked(*args, **kwargs):
        raise OperationalError("INSERT INTO edition_events", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger_service, "append_edition_event", locked)
    monkeypatch.setattr(concurrency.time, "sleep", lambda _s: None)
    result = sync_service.sync_order(make_order("100", order["line_items"], refunds=[refund("1")]))

    assert not result.success
    assert "contention" in result.error
    db_session.expire_all()
    assert db_session.get(LineItem, "1").status == STATUS_ACTIVE
    assert db_session.get(LineItem, "1").refund_status == "none"
    assert [db_session.get(LineItem, lid).edition_number for lid in ("1", "2")] == [1, 2]
    assert db_session.get(Order, "100").raw_payload["refunds"] == []
    assert db_session.query(EditionEvent).count() == events_before
