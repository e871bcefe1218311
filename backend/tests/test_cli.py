"""Flask CLI command groups."""

import json

from app.models import LineItem

from conftest import make_line_item, make_order


def _sync_file(app, tmp_path, payload):
    path = tmp_path / "orders.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return app.test_cli_runner().invoke(args=["orders", "sync", str(path)])


def test_orders_sync_command(app, db_session, tmp_path):
    result = _sync_file(app, tmp_path, [
        make_order("100", [make_line_item("1")]),
        make_order("200", [make_line_item("2")]),
    ])
    assert result.exit_code == 0, result.output
    assert "2 synced, 0 failed" in result.output
    assert db_session.get(LineItem, "2").edition_number == 2


def test_orders_sync_command_reports_failures(app, db_session, tmp_path):
    result = _sync_file(app, tmp_path, {"orders": [{"id": "bad"}]})
    assert result.exit_code == 1
    assert "0 synced, 1 failed" in result.output


def test_reassign_and_validate_commands(app, db_session, tmp_path):
    _sync_file(app, tmp_path, make_order("100", [make_line_item("1"), make_line_item("2")]))
    runner = app.test_cli_runner()

    result = runner.invoke(args=["editions", "reassign", "P1"])
    assert result.exit_code == 0
    assert "2 active, 0 renumbered" in result.output

    result = runner.invoke(args=["editions", "validate", "--strict"])
    assert result.exit_code == 0
    assert "No integrity issues" in result.output

    db_session.get(LineItem, "2").edition_number = 1
    db_session.commit()
    result = runner.invoke(args=["editions", "validate", "--product-id", "P1", "--strict"])
    assert result.exit_code != 0
    assert "duplicate_edition" in result.output

    result = runner.invoke(args=["editions", "reassign-all"])
    assert result.exit_code == 0
    assert "Reassigned 1 products, 1 changed" in result.output


def test_ledger_history_command(app, db_session, tmp_path):
    _sync_file(app, tmp_path, make_order("100", [make_line_item("1")]))
    result = app.test_cli_runner().invoke(args=["ledger", "history", "1"])
    assert result.exit_code == 0
    assert "assignment" in result.output
    assert "initial_assignment" in result.output

    result = app.test_cli_runner().invoke(args=["ledger", "history", "404"])
    assert "No events" in result.output
