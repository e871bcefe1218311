"""Append-only audit trail and its read queries."""

from datetime import datetime

import pytest

from app.models import EditionEvent, LineItem
from app.services import ledger_service, sync_service

from conftest import make_line_item, make_order


def test_every_event_snapshots_owner_and_status(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    ev = ledger_service.get_edition_history("1")[0]

    assert ev.event_type == ledger_service.EVENT_ASSIGNMENT
    assert ev.owner_email == "buyer100@example.com"
    assert ev.status == "active"
    assert ev.edition_number == 1
    assert ev.actor == "sync"


def test_unknown_event_type_is_rejected(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1")]))
    with pytest.raises(ValueError):
        ledger_service.append_edition_event(
            line_item=db_session.get(LineItem, "1"), event_type="renamed"
        )


def test_list_events_pages_newest_first(db_session):
    sync_service.sync_order(make_order("100", [make_line_item(str(n)) for n in range(1, 6)]))
    item = db_session.get(LineItem, "1")
    for n in range(3):
        ledger_service.append_edition_event(
            line_item=item,
            event_type=ledger_service.EVENT_MANUAL_OVERRIDE,
            event_data={"n": n},
            occurred_at=datetime(2030, 1, 1, 12, 0, n),
        )
    db_session.commit()

    first = ledger_service.list_events(limit=2)
    assert [ev.event_data.get("n") for ev in first] == [2, 1]

    last = first[-1]
    rest = ledger_service.list_events(limit=100, cursor=(last.created_at, last.id))
    assert rest[0].event_data.get("n") == 0
    assert len(first) + len(rest) == db_session.query(EditionEvent).count()


def test_list_events_filters(db_session):
    sync_service.sync_order(make_order("100", [make_line_item("1"), make_line_item("2", "P2")]))

    assert {ev.product_id for ev in ledger_service.list_events(product_id="P2")} == {"P2"}
    assert {ev.line_item_id for ev in ledger_service.list_events(line_item_id="1")} == {"1"}
    assert ledger_service.list_events(event_type=ledger_service.EVENT_OWNERSHIP_TRANSFER) == []
    assert ledger_service.list_events(start=datetime(2100, 1, 1)) == []
