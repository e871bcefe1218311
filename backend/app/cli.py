# Overview: Flask CLI command groups for sync, reassignment, validation and audit inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to app (PowerShell: $env:FLASK_APP="app"); Flask finds create_app().
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables (development; use `flask db upgrade` in production).
#
# Orders:
# - python -m flask orders sync orders.json [--skip-editions] [--force-warehouse]
#   Sync one order object or a list of orders from a JSON file.
#
# Editions:
# - python -m flask editions reassign 8123456789
#   Recompute edition numbers for one product.
# - python -m flask editions reassign-all
#   Recompute edition numbers for every product (one transaction per product).
# - python -m flask editions validate [--product-id 8123456789] [--collector-id a@b.com] [--strict]
#   Print the integrity report; --strict exits non-zero when issues exist.
#
# Ledger:
# - python -m flask ledger history 13570246813579
#   Print every audit event for a line item, oldest first.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import edition_service, integrity_service, ledger_service, sync_service
from .services.errors import IntegrityViolation


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('orders')
def orders_group():
    """Order sync commands."""


@orders_group.command('sync')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--skip-editions', is_flag=True, help='Upsert line items without reassigning editions')
@click.option('--force-warehouse', is_flag=True, help='Always query the warehouse for PII')
@click.option('--actor', default='cli', show_default=True)
@with_appcontext
def sync_orders_command(path, skip_editions, force_warehouse, actor):
    """Sync orders from a JSON file (one order object or a list)."""
    with open(path, encoding="utf-8") as fh:
        payload = json.load(fh)
    orders = payload if isinstance(payload, list) else payload.get("orders", [payload])

    results = sync_service.sync_orders(
        orders, skip_editions=skip_editions, force_warehouse=force_warehouse, actor=actor
    )
    failed = 0
    for result in results:
        if result.success:
            click.echo(
                f"PASS {result.order_name}: {len(result.line_items)} line items, "
                f"{len(result.skipped)} skipped, identity={result.identity_source}"
            )
        else:
            failed += 1
            click.echo(f"FAIL {result.order_name or result.order_id}: {result.error}", err=True)

    click.echo(f"\n{len(results) - failed} synced, {failed} failed")
    if failed:
        raise SystemExit(1)


@click.group('editions')
def editions_group():
    """Edition numbering commands."""


@editions_group.command('reassign')
@click.argument('product_id')
@click.option('--actor', default='cli', show_default=True)
@with_appcontext
def reassign_command(product_id, actor):
    """Recompute edition numbers for one product."""
    result = edition_service.reassign_editions(product_id, actor=actor)
    click.echo(
        f"PASS Product {product_id}: {result.assigned_count} active, "
        f"{len(result.renumbered)} renumbered, {len(result.cleared)} cleared"
    )


@editions_group.command('reassign-all')
@click.option('--actor', default='cli', show_default=True)
@with_appcontext
def reassign_all_command(actor):
    """Recompute edition numbers for every product."""
    results = edition_service.reassign_all(actor=actor)
    changed = [r for r in results if r.events_written]
    for result in changed:
        click.echo(f"  {result.product_id}: {result.events_written} change(s)")
    click.echo(f"PASS Reassigned {len(results)} products, {len(changed)} changed")


@editions_group.command('validate')
@click.option('--product-id', default=None)
@click.option('--collector-id', default=None, help='Email address or customer id')
@click.option('--strict', is_flag=True, help='Exit non-zero when any issue is found')
@with_appcontext
def validate_command(product_id, collector_id, strict):
    """Print the integrity report (read-only)."""
    issues = integrity_service.validate(product_id=product_id, collector_id=collector_id)
    if not issues:
        click.echo("PASS No integrity issues found")
        return

    for issue in issues:
        click.echo(f"[{issue.severity.upper()}] {issue.type}: {issue.description}")
    click.echo(f"\n{len(issues)} issue(s) found")
    if strict:
        raise click.ClickException(str(IntegrityViolation(issues)))


@click.group('ledger')
def ledger_group():
    """Audit trail inspection commands."""


@ledger_group.command('history')
@click.argument('line_item_id')
@with_appcontext
def history_command(line_item_id):
    """Print every audit event for a line item, oldest first."""
    events = ledger_service.get_edition_history(line_item_id)
    if not events:
        click.echo(f"No events for line item {line_item_id}")
        return
    for ev in events:
        data = ev.to_dict()
        click.echo(
            f"{data['created_at']}  {ev.event_type:<18} #{ev.edition_number}  "
            f"actor={ev.actor}  {json.dumps(data['event_data'], sort_keys=True)}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(editions_group)
    app.cli.add_command(ledger_group)
