# Overview: Flask CLI command groups for schema bootstrap, ledger checks, and inventory reporting.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema bootstrap:
# - python -m flask db-admin init
#   Create all tables (idempotent). Use `flask db upgrade` for migrated databases.
# - python -m flask db-admin reset --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger maintenance:
# - python -m flask ledger recompute [--order-id 12]
#   Recompute order totals from the ledger and list orders whose cached totals drifted.
#
# Inventory inspection:
# - python -m flask inventory availability 1 2 3
#   Print on hand / reserved / available for stock items.
# - python -m flask inventory history 1 [--limit 20]
#   Print the event history of a stock item.
#
# Reports:
# - python -m flask reports valuation [--category Laptops] [--sub-type Refurbished] [--status IN_STOCK]
#   Print the valuation summary as JSON.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Order
from .services.audit_service import get_stock_item_history
from .services.availability_service import compute_bulk_availability
from .services.errors import CoreError
from .services.invoice_ledger_service import recompute_order
from .services.valuation_service import get_valuation_summary


@click.group('db-admin')
def db_admin_group():
    """Schema bootstrap commands."""


@db_admin_group.command('init')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@db_admin_group.command('reset')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset complete.")


@click.group('ledger')
def ledger_group():
    """Invoice ledger maintenance."""


@ledger_group.command('recompute')
@click.option('--order-id', type=int, help='Recompute a single order')
@with_appcontext
def recompute_cmd(order_id):
    """
    Recompute net paid, balance due and status from the ledger.

    The recomputation is idempotent, so on a healthy database every order
    reports unchanged. Anything listed as changed had drifted.
    """
    if order_id is not None:
        order_ids = [order_id]
    else:
        order_ids = [row.id for row in db.session.query(Order.id).order_by(Order.id).all()]

    changed = []
    for oid in order_ids:
        try:
            order, was_changed = recompute_order(oid)
        except CoreError as exc:
            raise click.ClickException(exc.message)
        if was_changed:
            changed.append(order)
            click.echo(
                f"FIXED {order.order_number or order.id}: net_paid={order.net_paid_cents} "
                f"balance_due={order.balance_due_cents} status={order.status}"
            )

    click.echo(f"PASS {len(order_ids)} order(s) checked, {len(changed)} changed.")


@click.group('inventory')
def inventory_group():
    """Stock availability inspection."""


@inventory_group.command('availability')
@click.argument('item_ids', nargs=-1, type=int, required=True)
@with_appcontext
def availability_cmd(item_ids):
    """Print on hand, reserved and available for each item."""
    result = compute_bulk_availability(item_ids)
    for item_id in item_ids:
        info = result.get(item_id)
        if info is None:
            click.echo(f"{item_id}: not found")
            continue
        click.echo(
            f"{item_id}: on_hand={info['on_hand']} reserved={info['reserved']} available={info['available']}"
        )


@inventory_group.command('history')
@click.argument('item_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True, help='Number of events')
@with_appcontext
def history_cmd(item_id, limit):
    """Print the most recent events for a stock item."""
    for event in get_stock_item_history(item_id, limit=limit):
        data = event.to_dict()
        click.echo(f"{data['occurred_at']} {data['event_type']} order={data['order_id']} return={data['return_id']}")


@click.group('reports')
def reports_group():
    """Read-only reports."""


@reports_group.command('valuation')
@click.option('--category', help='Category (comma separated for several)')
@click.option('--sub-type', 'sub_type', help='Sub-type (comma separated for several)')
@click.option('--status', help='Display status (comma separated for several)')
@with_appcontext
def valuation_cmd(category, sub_type, status):
    """Print the valuation summary as JSON."""
    filters = {"category": category, "sub_type": sub_type, "status": status}
    try:
        summary = get_valuation_summary(filters)
    except CoreError as exc:
        raise click.ClickException(exc.message)
    click.echo(json.dumps(summary, indent=2, sort_keys=True))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(db_admin_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(reports_group)
