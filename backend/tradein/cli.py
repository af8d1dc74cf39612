# Overview: Flask CLI command groups for bootstrap, ledger inspection and repair.

# backend/tradein/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to tradein (PowerShell: $env:FLASK_APP="tradein").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables (if missing) and the order counter at its starting value.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Order counter:
# - python -m flask sequence show
#   Print the last issued order number.
# - python -m flask sequence init
#   Create the counter row if it does not exist (idempotent).
#
# Custody ledger:
# - python -m flask ledger check
#   List items whose snapshot disagrees with their movements or that have pending movements.
# - python -m flask ledger repair --item-id 12
# - python -m flask ledger repair --all
#   Complete or roll back pending movements and realign snapshots.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import inventory_service
from .services.sequence_service import ensure_sequence, peek_sequence


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables and the order counter. Safe to re-run."""
    click.echo("START Initializing trade-in custody store...")
    db.create_all()
    click.echo("PASS Tables ready")
    current = ensure_sequence()
    click.echo(f"PASS Order counter ready (last issued: {current})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the order counter!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('sequence')
def sequence_group():
    """Order counter inspection."""


@sequence_group.command('show')
@click.option('--name', default=None, help='Counter name (defaults to ORDER_SEQUENCE_NAME)')
@with_appcontext
def show_sequence(name):
    click.echo(f"Last issued: {peek_sequence(name)}")


@sequence_group.command('init')
@click.option('--name', default=None, help='Counter name (defaults to ORDER_SEQUENCE_NAME)')
@with_appcontext
def init_sequence(name):
    current = ensure_sequence(name)
    click.echo(f"PASS Counter ready (last issued: {current})")


@click.group('ledger')
def ledger_group():
    """Custody ledger consistency commands."""


@ledger_group.command('check')
@with_appcontext
def ledger_check():
    """Exit code 1 when any item needs repair."""
    report = inventory_service.find_inconsistencies()
    if not report:
        click.echo("PASS Ledger consistent")
        return

    for entry in report:
        click.echo(f"FAIL Item {entry['inventoryId']} ({entry['orderId']}):")
        for problem in entry["problems"]:
            click.echo(f"   - {problem}")
    click.echo(f"\n{len(report)} item(s) need repair. Run: python -m flask ledger repair --all")
    raise SystemExit(1)


@ledger_group.command('repair')
@click.option('--item-id', type=int, default=None, help='Repair a single inventory item')
@click.option('--all', 'repair_all', is_flag=True, help='Repair every inconsistent item')
@with_appcontext
def ledger_repair(item_id, repair_all):
    if item_id is None and not repair_all:
        raise click.UsageError("Pass --item-id ID or --all")

    if item_id is not None:
        item_ids = [item_id]
    else:
        item_ids = [entry["inventoryId"] for entry in inventory_service.find_inconsistencies()]

    if not item_ids:
        click.echo("PASS Nothing to repair")
        return

    failures = 0
    for iid in item_ids:
        try:
            actions = inventory_service.repair(iid)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            failures += 1
            click.echo(f"FAIL Item {iid}: {e}")
            continue
        if actions:
            click.echo(f"PASS Item {iid}:")
            for action in actions:
                click.echo(f"   - {action}")
        else:
            click.echo(f"PASS Item {iid}: already consistent")

    if failures:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sequence_group)
    app.cli.add_command(ledger_group)
