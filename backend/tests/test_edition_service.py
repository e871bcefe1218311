"""Edition assigner: contiguous numbering, stability, idempotence and locking."""

import pytest
from sqlalchemy.exc import OperationalError

from app.extensions import db
from app.models import EditionEvent, LineItem
from app.services import concurrency, edition_service, ledger_service, sync_service
from app.services.concurrency import _local_lock, with_product_lock
from app.services.errors import ConcurrencyConflict, LineItemNotFound
from app.services.status_classifier import STATUS_INACTIVE

from conftest import make_line_item, make_order, refund


def _seed(count, product_id="P1"):
    """One single-item order per day, line item ids 1..count."""
    for n in range(1, count + 1):
        order = make_order(str(100 + n), [make_line_item(str(n), product_id)],
                           created_at=f"2024-03-{n:02d}T10:00:00Z")
        result = sync_service.sync_order(order)
        assert result.success, result.error


def _numbers(product_id="P1"):
    rows = db.session.query(LineItem).filter_by(product_id=product_id).order_by(LineItem.line_item_id).all()
    return {row.line_item_id: row.edition_number for row in rows}


def _assignment_events():
    return db.session.query(EditionEvent).filter_by(event_type=ledger_service.EVENT_ASSIGNMENT).count()


@pytest.mark.smoke
def test_sync_numbers_active_items_contiguously(db_session):
    _seed(4)
    assert _numbers() == {"1": 1, "2": 2, "3": 3, "4": 4}
    totals = {row.edition_total for row in db_session.query(LineItem).all()}
    assert totals == {4}


def test_reassign_is_idempotent(db_session):
    _seed(3)
    before = db_session.query(EditionEvent).count()

    result = edition_service.reassign_editions("P1")

    assert result.assigned_count == 3
    assert result.events_written == 0
    assert result.renumbered == []
    assert db_session.query(EditionEvent).count() == before


@pytest.mark.scenario
def test_reassign_compacts_gap_and_logs_only_changed_items(db_session):
    _seed(4)
    item = db_session.get(LineItem, "2")
    # Simulate an item that went inactive earlier with its number already released
    item.status = STATUS_INACTIVE
    item.override_status = STATUS_INACTIVE
    item.edition_number = None
    db_session.commit()
    before = _assignment_events()

    result = edition_service.reassign_editions("P1")

    assert _numbers() == {"1": 1, "2": None, "3": 2, "4": 3}
    assert sorted(result.renumbered) == ["3", "4"]
    assert result.events_written == 2
    assert _assignment_events() == before + 2

    events = ledger_service.get_edition_history("3")
    assert events[-1].event_data == {"before": 3, "after": 2, "edition_total": 3, "reason": "resequenced"}


def test_refund_on_resync_clears_number_and_resequences(db_session):
    _seed(3)
    order = make_order("102", [make_line_item("2")], created_at="2024-03-02T10:00:00Z",
                       refunds=[refund("2", quantity=0)])

    result = sync_service.sync_order(order)

    assert result.success
    assert _numbers() == {"1": 1, "2": None, "3": 2}
    history = [ev.event_type for ev in ledger_service.get_edition_history("2")]
    assert history == [
        ledger_service.EVENT_ASSIGNMENT,
        ledger_service.EVENT_STATUS_CHANGED,
        ledger_service.EVENT_ASSIGNMENT,
    ]
    cleared = ledger_service.get_edition_history("2")[-1]
    assert cleared.event_data["after"] is None
    assert cleared.event_data["reason"] == "inactive"
    assert cleared.edition_number == 2


def test_ordering_uses_created_at_then_numeric_id(db_session):
    items = [make_line_item(lid) for lid in ("10", "9", "100")]
    assert sync_service.sync_order(make_order("200", items)).success
    assert _numbers() == {"9": 1, "10": 2, "100": 3}


def test_earlier_purchase_synced_late_takes_lower_number(db_session):
    _seed(2)
    late = make_order("150", [make_line_item("50")], created_at="2024-02-01T10:00:00Z")
    assert sync_service.sync_order(late).success
    assert _numbers() == {"1": 2, "2": 3, "50": 1}


def test_certificate_issued_once(db_session):
    _seed(2)
    first = db_session.get(LineItem, "2")
    token, url = first.certificate_token, first.certificate_url
    assert token
    assert url == "https://certs.test/certificate/2"

    db_session.get(LineItem, "1").override_status = STATUS_INACTIVE
    db_session.get(LineItem, "1").status = STATUS_INACTIVE
    db_session.commit()
    edition_service.reassign_editions("P1")

    again = db_session.get(LineItem, "2")
    assert again.edition_number == 1
    assert again.certificate_token == token


def test_products_are_numbered_independently(db_session):
    order = make_order("300", [make_line_item("1", "A"), make_line_item("2", "B"), make_line_item("3", "A")])
    result = sync_service.sync_order(order)
    assert result.reassigned == {"A": 2, "B": 1}
    assert _numbers("A") == {"1": 1, "3": 2}
    assert _numbers("B") == {"2": 1}


def test_reassign_all_covers_every_product(db_session):
    order = make_order("300", [make_line_item("1", "A"), make_line_item("2", "B")])
    assert sync_service.sync_order(order, skip_editions=True).success
    assert _numbers("A") == {"1": None}

    results = edition_service.reassign_all()

    assert [r.product_id for r in results] == ["A", "B"]
    assert _numbers("A") == {"1": 1}
    assert _numbers("B") == {"2": 1}


def test_busy_product_lock_raises_conflict(db_session):
    _seed(1)
    lock = _local_lock("P1")
    lock.acquire()
    try:
        with pytest.raises(ConcurrencyConflict):
            edition_service.reassign_products(["P1"], lock_timeout=0.01)
    finally:
        lock.release()

    assert edition_service.reassign_editions("P1").assigned_count == 1


def test_with_product_lock_bumps_lock_version(db_session):
    from app.models import ProductEditionLock

    with_product_lock("P9", lambda: None)
    db_session.commit()
    with_product_lock("P9", lambda: None)
    db_session.commit()

    assert db_session.get(ProductEditionLock, "P9").lock_version == 2


def test_verify_edition(db_session):
    _seed(1)
    payload = edition_service.verify_edition("1", order_id="101")
    assert payload["verified"] is True
    assert payload["edition_number"] == 1
    assert payload["owner"]["email"] == "buyer101@example.com"

    with pytest.raises(LineItemNotFound):
        edition_service.verify_edition("1", order_id="999")
    with pytest.raises(LineItemNotFound):
        edition_service.verify_edition("404")


def test_get_product_editions_with_history(db_session):
    _seed(2)
    data = edition_service.get_product_editions("P1", include_history=True)
    assert data["total_editions"] == 2
    assert [e["edition_number"] for e in data["editions"]] == [1, 2]
    assert data["editions"][0]["history"][0]["event_type"] == ledger_service.EVENT_ASSIGNMENT


def test_failed_reassignment_keeps_previous_numbering(db_session, monkeypatch):
    _seed(3)
    item = db_session.get(LineItem, "1")
    item.status = STATUS_INACTIVE
    item.override_status = STATUS_INACTIVE
    db_session.commit()
    events_before = db_session.query(EditionEvent).count()

    def locked(*args, **kwargs):
        raise OperationalError("INSERT INTO edition_events", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger_service, "append_edition_event", locked)
    monkeypatch.setattr(concurrency.time, "sleep", lambda _s: None)
    with pytest.raises(ConcurrencyConflict):
        edition_service.reassign_editions("P1")

    db_session.expire_all()
    assert _numbers() == {"1": 1, "2": 2, "3": 3}
    assert db_session.query(EditionEvent).count() == events_before
    assert not _local_lock("P1").locked()
