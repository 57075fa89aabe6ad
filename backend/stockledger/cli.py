# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Warehouse directory:
# - python -m flask warehouses list [--org-id 1] [--all]
#   List warehouses with their location counts.
# - python -m flask warehouses create --org-id 1 --code MAIN --name "Main Warehouse" [--location-code A-01]
#   Create a warehouse, optionally with a first storage location.
#
# Ledger inspection:
# - python -m flask ledger verify [--product-id 42]
#   Replay the move log and compare with StockItem totals. Exit code 1 on drift.
# - python -m flask ledger snapshot 42
#   Print current stock for one product.
#
# Alerts:
# - python -m flask alerts refresh [--product-id 42]
#   Re-evaluate stock against thresholds and reconcile open alerts.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import Location
from .services import alert_service, inventory_service, location_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock move log!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('warehouses')
def warehouses_group():
    """Warehouse and location directory commands."""


@warehouses_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive warehouses too')
@with_appcontext
def list_warehouses_cli(org_id, show_all):
    """
    List warehouses.

    Example:
        flask warehouses list
        flask warehouses list --org-id 1 --all
    """
    warehouses = location_service.list_warehouses(org_id, include_inactive=show_all)
    if not warehouses:
        click.echo("No warehouses found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Org':<5} {'Code':<12} {'Name':<28} {'Default':<8} {'Active':<7} {'Locs'}")
    click.echo("=" * 80)
    for w in warehouses:
        loc_count = db.session.query(Location).filter_by(warehouse_id=w.id).count()
        click.echo(
            f"{w.id:<5} {w.org_id:<5} {w.code:<12} {w.name[:28]:<28} "
            f"{'yes' if w.is_default else '':<8} {'yes' if w.is_active else 'no':<7} {loc_count}"
        )
    click.echo("=" * 80 + "\n")


@warehouses_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--code', required=True, help='Warehouse code (unique within org)')
@click.option('--name', required=True, help='Warehouse name')
@click.option('--default', 'is_default', is_flag=True, help='Make this the default warehouse')
@click.option('--location-code', help='Also create a storage location with this code')
@with_appcontext
def create_warehouse_cli(org_id, code, name, is_default, location_code):
    """Create a warehouse (and optionally its first location)."""
    try:
        warehouse = location_service.create_warehouse(
            org_id=org_id, code=code, name=name, is_default=is_default
        )
        click.echo(f"PASS Created warehouse {warehouse.code} (ID: {warehouse.id})")

        if location_code:
            location = location_service.create_location(warehouse_id=warehouse.id, code=location_code)
            click.echo(f"PASS Created location {location.code} (ID: {location.id})")
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, help='Only verify this product')
@with_appcontext
def verify_ledger_cli(product_id):
    """
    Replay the move log and compare it with current StockItem quantities.

    Exits with status 1 when any key has drifted.
    """
    drift = inventory_service.verify_ledger(product_id)
    if not drift:
        click.echo("PASS Ledger consistent: every StockItem matches its move history.")
        return

    click.echo(f"FAIL {len(drift)} stock item(s) drifted from the move log:")
    for row in drift:
        click.echo(
            f"  product={row['product_id']} location={row['location_id']} "
            f"lot={row['lot_number'] or '-'} stored={row['qty']} replayed={row['replayed_qty']} "
            f"reserved={row['reserved_qty']}: {'; '.join(row['problems'])}"
        )
    raise SystemExit(1)


@ledger_group.command('snapshot')
@click.argument('product_id', type=int)
@click.option('--location-id', type=int, help='Only this location')
@with_appcontext
def snapshot_cli(product_id, location_id):
    """Print current stock for one product."""
    items = inventory_service.get_stock_snapshot(product_id, location_id)
    if not items:
        click.echo(f"No stock recorded for product {product_id}.")
        return

    click.echo(f"{'Location':<10} {'Lot':<16} {'Qty':>8} {'Reserved':>9} {'Available':>10} {'Cost':>10}")
    for item in items:
        cost = item.cost_per_unit_cents if item.cost_per_unit_cents is not None else "-"
        click.echo(
            f"{item.location_id:<10} {item.lot_number or '-':<16} {item.qty:>8} "
            f"{item.reserved_qty:>9} {item.available_qty:>10} {cost:>10}"
        )


@click.group('alerts')
def alerts_group():
    """Stock alert commands."""


@alerts_group.command('refresh')
@click.option('--product-id', type=int, help='Only refresh this product')
@with_appcontext
def refresh_alerts_cli(product_id):
    """Re-evaluate stock against thresholds; open new alerts and resolve cleared ones."""
    result = alert_service.refresh_alerts(product_id)
    click.echo(
        f"PASS Alerts refreshed: {len(result['created'])} created, {len(result['resolved'])} resolved"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(warehouses_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(alerts_group)
