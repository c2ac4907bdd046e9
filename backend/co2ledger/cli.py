# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/co2ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Tank bootstrap/repair:
# - python -m flask tank init --capacity 5000 [--level 0] [--threshold 20]
#   Configure the singleton CO2 tank.
# - python -m flask tank recompute [--initial-level 0] [--apply]
#   Rebuild the level from non-reversed movements; --apply overwrites the stored level.
#
# Cylinder inspection:
# - python -m flask cylinders due [--days 30]
#   List active cylinders whose hydrostatic test is due within N days.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import reporting_service, tank_service


@click.group('tank')
def tank_group():
    """CO2 tank bootstrap and repair commands."""


@tank_group.command('init')
@click.option('--capacity', type=float, required=True, help='Tank capacity in kg')
@click.option('--level', type=float, default=0.0, show_default=True, help='Current level in kg')
@click.option('--threshold', type=float, default=20.0, show_default=True, help='Low-level warning (% of capacity)')
@click.option('--name', default='Main tank', show_default=True, help='Tank name')
@with_appcontext
def init_tank(capacity, level, threshold, name):
    """
    Configure the CO2 tank.

    Example:
        flask tank init --capacity 5000 --level 1200
    """
    try:
        tank = tank_service.create_tank(
            capacity=capacity,
            current_level=level,
            minimum_threshold=threshold,
            name=name,
        )
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Tank configured: {tank.name} (id={tank.id})")
    click.echo(f"   Capacity: {tank.capacity} kg")
    click.echo(f"   Level: {tank.current_level} kg")


@tank_group.command('recompute')
@click.option('--initial-level', type=float, default=0.0, show_default=True,
              help='Level before the first recorded movement (kg)')
@click.option('--apply', 'apply_fix', is_flag=True, help='Overwrite the stored level with the computed one')
@with_appcontext
def recompute_tank(initial_level, apply_fix):
    """Sum non-reversed movements and report drift against the stored level."""
    try:
        result = tank_service.recompute_level(initial_level=initial_level, apply=apply_fix)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"Movements:  {result['movement_count']}")
    click.echo(f"Stored:     {result['materialized_level']:.3f} kg")
    click.echo(f"Computed:   {result['computed_level']:.3f} kg")
    click.echo(f"Drift:      {result['drift']:.3f} kg")
    if result["applied"]:
        click.echo("PASS Stored level replaced with computed level")
    elif result["drift"]:
        click.echo("WARN Drift detected; rerun with --apply to fix")
    else:
        click.echo("PASS No drift")


@click.group('cylinders')
def cylinders_group():
    """Cylinder inspection commands."""


@cylinders_group.command('due')
@click.option('--days', type=int, default=None, help='Window in days (default: TEST_DUE_WARNING_DAYS)')
@with_appcontext
def cylinders_due(days):
    """
    List cylinders due for hydrostatic testing.

    Example:
        flask cylinders due --days 60
    """
    try:
        report = reporting_service.test_due_alerts(days)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if not report["cylinders"]:
        click.echo(f"No cylinders due within {report['within_days']} days")
        return

    click.echo(f"\n{'Serial':<20} {'Capacity':<9} {'Location':<16} {'Due':<11} {'Days':>5}")
    click.echo("-" * 65)
    for item in report["cylinders"]:
        flag = " OVERDUE" if item["overdue"] else ""
        click.echo(
            f"{item['serial_number']:<20} {item['capacity']:<9} {item['current_location']:<16} "
            f"{item['next_test_due']:<11} {item['days_remaining']:>5}{flag}"
        )
    click.echo(f"\nTotal: {report['count']} ({report['overdue_count']} overdue)")


@click.group('system')
def system_group():
    """System maintenance commands."""


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

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask tank init' to configure the tank.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tank_group)
    app.cli.add_command(cylinders_group)
    app.cli.add_command(system_group)
