# Overview: Flask CLI command groups for bootstrap, calendar inspection, and reconciliation.

# backend/settlement/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Operating calendar:
# - python -m flask calendar working-date 2025-03-14T06:00:00Z
#   Working date an event at that instant belongs to.
# - python -m flask calendar window 2025-03-17
#   Order listing window of a working date.
# - python -m flask calendar holidays 2025
#   Holidays known for a year (warns when the lunar table is missing).
#
# Reconciliation:
# - python -m flask statements process-returns 1 2 3
# - python -m flask statements process-deductions 4 5
#   Process statements one by one; failures are listed, never fatal.
#
# Ledger checks:
# - python -m flask inventory sync-check
#   Exit code 1 when any stock record disagrees with its movements.
# - python -m flask mileage recompute 5
#   Rebuild a user's cached balance from completed entries.

import click
from datetime import date, timedelta
from flask.cli import with_appcontext

from .errors import CalendarGap, SettlementError
from .extensions import db
from .services import inventory_service, mileage_service, reconciliation_service
from .services.business_day_service import business_day_window, get_calendar, working_date
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("OK Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("CREATE  Creating all tables...")
    db.create_all()
    click.echo("OK Database reset complete")


@click.group('calendar')
def calendar_group():
    """Business-day calendar inspection."""


@calendar_group.command('working-date')
@click.argument('timestamp')
@with_appcontext
def working_date_cmd(timestamp):
    """Working date of an ISO-8601 instant (naive = UTC)."""
    try:
        at = parse_iso_datetime(timestamp)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="TIMESTAMP")
    if at is None:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="TIMESTAMP")
    click.echo(working_date(at).isoformat())


@calendar_group.command('window')
@click.argument('day')
@with_appcontext
def window_cmd(day):
    """Listing window [start, end] of a working date (YYYY-MM-DD)."""
    try:
        target = date.fromisoformat(day)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="DAY")
    window = business_day_window(target)
    click.echo(f"working date: {window.working_date.isoformat()}")
    click.echo(f"start:        {window.start.isoformat()}")
    click.echo(f"end:          {window.end.isoformat()}")


@calendar_group.command('holidays')
@click.argument('year', type=int)
@with_appcontext
def holidays_cmd(year):
    """List every holiday of a year."""
    calendar = get_calendar()
    try:
        calendar.lunar_holidays(year)
    except CalendarGap as e:
        click.echo(f"WARN {e.message}; only fixed-date holidays are known")

    day = date(year, 1, 1)
    while day.year == year:
        if calendar.is_holiday(day):
            click.echo(f"{day.isoformat()}  {day.strftime('%a')}")
        day += timedelta(days=1)


@click.group('statements')
def statements_group():
    """Bulk statement processing."""


def _echo_batch(batch):
    click.echo(
        f"processed={batch.processed_count} failed={batch.failed_count} "
        f"mileage_moved={batch.total_mileage_moved}"
    )
    for error in batch.errors:
        click.echo(f"  FAIL statement {error['statement_id']}: {error['message']}")


@statements_group.command('process-returns')
@click.argument('statement_ids', nargs=-1, type=int, required=True)
@with_appcontext
def process_returns_cmd(statement_ids):
    """Process return statements by id, in order."""
    _echo_batch(reconciliation_service.process_return_batch(statement_ids))


@statements_group.command('process-deductions')
@click.argument('statement_ids', nargs=-1, type=int, required=True)
@with_appcontext
def process_deductions_cmd(statement_ids):
    """Process deduction statements by id, in order."""
    _echo_batch(reconciliation_service.process_deduction_batch(statement_ids))


@click.group('inventory')
def inventory_group():
    """Stock ledger checks."""


@inventory_group.command('sync-check')
@with_appcontext
def sync_check_cmd():
    """Compare every stock record with its movement ledger."""
    mismatches = inventory_service.sync_check()
    if not mismatches:
        click.echo("OK All stock records match their movements")
        return
    for row in mismatches:
        click.echo(
            f"MISMATCH product {row['product_id']} ({row['color']}/{row['size']}): "
            f"on hand {row['quantity_on_hand']}, ledger sum {row['ledger_sum']}, "
            f"last movement {row['last_resulting_quantity']}"
        )
    raise SystemExit(1)


@click.group('mileage')
def mileage_group():
    """Mileage ledger maintenance."""


@mileage_group.command('recompute')
@click.argument('user_id', type=int)
@with_appcontext
def recompute_cmd(user_id):
    """Rebuild a user's cached balance from completed entries."""
    try:
        balance = mileage_service.recompute_balance(user_id)
    except SettlementError as e:
        raise click.ClickException(e.message)
    click.echo(f"user {user_id}: balance {balance}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(calendar_group)
    app.cli.add_command(statements_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(mileage_group)
