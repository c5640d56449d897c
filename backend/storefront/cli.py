# Overview: Flask CLI command groups for bootstrap, settlement maintenance and shop settings.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables (if missing) and default settings rows.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Reservations:
# - python -m flask reservations sweep [--dry-run]
#   Delete expired reservations and cancel their open payments.
#
# Loyalty:
# - python -m flask loyalty show
# - python -m flask loyalty set-percentage 2.5
#
# Installments:
# - python -m flask installments configure --enabled --minimum 100.00
# - python -m flask installments add-option --bank "Kapital Bank" --period 6 --interest 5
# - python -m flask installments list

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ValidationError
from .services import installment_service, reservation_service, settings_service
from .validation import format_cents, parse_amount_to_cents


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables and default settings (idempotent)."""
    click.echo("START Initializing storefront...")
    db.create_all()
    created = settings_service.ensure_default_settings()
    config = installment_service.get_configuration()
    click.echo(f"PASS Default settings created: {created}")
    click.echo(
        f"PASS Installments {'enabled' if config.is_enabled else 'disabled'}, "
        f"minimum {format_cents(config.minimum_amount_cents)}"
    )


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('reservations')
def reservations_group():
    """Pending purchase maintenance."""


@reservations_group.command('sweep')
@click.option('--dry-run', is_flag=True, help='Report what would expire without changing anything')
@with_appcontext
def sweep_reservations(dry_run):
    """
    Expire reservations past their TTL.

    Open payments on them become CANCELLED. A gateway success that arrives
    later is logged as an error and must be refunded by hand.
    """
    result = reservation_service.sweep_expired(dry_run=dry_run)
    prefix = "DRY RUN " if dry_run else ""
    click.echo(
        f"{prefix}Expired {len(result.reservation_ids)} reservation(s), "
        f"cancelled {len(result.cancelled_payment_ids)} payment(s)."
    )
    for reservation_id in result.reservation_ids:
        click.echo(f"  - {reservation_id}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty bonus settings."""


@loyalty_group.command('show')
@with_appcontext
def show_loyalty():
    click.echo(f"Bonus percentage: {settings_service.get_bonus_percentage()}%")


@loyalty_group.command('set-percentage')
@click.argument('percentage')
@with_appcontext
def set_loyalty_percentage(percentage):
    """Set the bonus percentage credited on paid orders (0-100)."""
    try:
        pct = settings_service.set_bonus_percentage(percentage)
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint='percentage')
    click.echo(f"PASS Bonus percentage set to {pct}%")


@click.group('installments')
def installments_group():
    """Installment plan configuration."""


@installments_group.command('configure')
@click.option('--enabled/--disabled', default=None, help='Turn installments on or off')
@click.option('--minimum', default=None, help='Global minimum order amount (e.g. 100.00)')
@with_appcontext
def configure_installments(enabled, minimum):
    config = installment_service.get_configuration()
    is_enabled = config.is_enabled if enabled is None else enabled
    try:
        minimum_cents = (
            config.minimum_amount_cents if minimum is None else parse_amount_to_cents(minimum, field='minimum')
        )
        config = installment_service.update_configuration(is_enabled, minimum_cents)
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint='minimum')
    click.echo(
        f"PASS Installments {'enabled' if config.is_enabled else 'disabled'}, "
        f"minimum {format_cents(config.minimum_amount_cents)}"
    )


@installments_group.command('add-option')
@click.option('--bank', 'bank_name', required=True)
@click.option('--period', type=int, required=True, help='Number of monthly payments')
@click.option('--interest', default='0', show_default=True, help='Interest percentage')
@click.option('--minimum', default=None, help='Option-specific minimum amount')
@click.option('--display-order', type=int, default=0, show_default=True)
@click.option('--inactive', is_flag=True, help='Create the option disabled')
@with_appcontext
def add_installment_option(bank_name, period, interest, minimum, display_order, inactive):
    try:
        minimum_cents = parse_amount_to_cents(minimum, field='minimum') if minimum else None
        option = installment_service.create_option(
            bank_name,
            period,
            interest,
            is_active=not inactive,
            minimum_amount_cents=minimum_cents,
            display_order=display_order,
        )
    except ValidationError as e:
        raise click.UsageError(e.message)
    click.echo(f"PASS Created option {option.id}: {option.bank_name} x{option.installment_period} @ {option.interest_percentage}%")


@installments_group.command('list')
@with_appcontext
def list_installment_options():
    options = installment_service.list_all_options()
    if not options:
        click.echo("No installment options.")
        return
    for o in options:
        state = "active" if o.is_active else "inactive"
        minimum = format_cents(o.minimum_amount_cents) if o.minimum_amount_cents is not None else "-"
        click.echo(
            f"{o.id:>4}  {o.bank_name:<24} {o.installment_period:>3} mo  "
            f"{o.interest_percentage:>6}%  min {minimum:<10} {state}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reservations_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(installments_group)
