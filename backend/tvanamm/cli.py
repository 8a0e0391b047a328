# Overview: Flask CLI command groups for bootstrap and maintenance.

# backend/tvanamm/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (development; use `flask db upgrade` elsewhere).
#
# Accounts:
# - python -m flask users create --email owner@tvanamm.local --name "Owner" --role owner --password "Password123!"
#   Create a portal account (franchise accounts get a TVANAMM id).
#
# Catalog:
# - python -m flask catalog add-product --sku TEA-250 --name "Masala Tea 250g" --price 100.00 --gst-rate 18
#
# Loyalty:
# - python -m flask loyalty adjust --user-id 5 --points 200 --description "Opening balance"
# - python -m flask loyalty reconcile [--user-id 5]
# - python -m flask loyalty seed-gifts
#   Insert the launch gifts (FREE_DELIVERY, TEA_CUPS_30) if they are missing.
#
# Orders:
# - python -m flask orders cancel-stale [--hours 72]
#   Timeout-cancel open unpaid orders older than the cutoff.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import LoyaltyAccount
from .money import rate_to_bps, to_paise
from .permissions import Role
from .services import loyalty_service, order_service
from .services.auth_service import create_user
from .services.catalog_service import create_product
from .validation import DomainError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('users')
def users_group():
    """Portal account commands."""


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--name', 'full_name', prompt=True)
@click.option('--role', type=click.Choice([r.value for r in Role]), default=Role.CUSTOMER.value)
@click.option('--phone', default=None)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_user_command(email, full_name, role, phone, password):
    """Create a portal account."""
    try:
        user = create_user(email=email, password=password, full_name=full_name, role=role, phone=phone)
    except DomainError as e:
        raise click.ClickException(str(e))
    suffix = f", TVANAMM id {user.tvanamm_id}" if user.tvanamm_id else ""
    click.echo(f"PASS Created {user.role} {user.email} (ID: {user.id}{suffix})")


@click.group('catalog')
def catalog_group():
    """Catalog commands."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', required=True, help='GST-exclusive price in rupees, e.g. 100.00')
@click.option('--gst-rate', default=None, help='GST percent; omit for the 18% default')
@click.option('--description', default=None)
@with_appcontext
def add_product_command(sku, name, price, gst_rate, description):
    try:
        product = create_product(
            sku=sku,
            name=name,
            price_paise=to_paise(price, field="price"),
            gst_rate_bps=rate_to_bps(gst_rate) if gst_rate is not None else None,
            description=description,
        )
    except DomainError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product {product.sku} (ID: {product.id})")


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger commands."""


@loyalty_group.command('adjust')
@click.option('--user-id', type=int, required=True)
@click.option('--points', type=int, required=True, help='Positive to credit, negative to debit')
@click.option('--description', required=True)
@with_appcontext
def adjust_command(user_id, points, description):
    try:
        loyalty_service.adjust_points(user_id, points, description)
    except DomainError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Balance for user {user_id}: {loyalty_service.current_balance(user_id)}")


@loyalty_group.command('reconcile')
@click.option('--user-id', type=int, default=None, help='Check one account (default: all)')
@with_appcontext
def reconcile_command(user_id):
    """Compare cached balances against the transaction ledger."""
    if user_id is not None:
        user_ids = [user_id]
    else:
        user_ids = [row.user_id for row in db.session.query(LoyaltyAccount.user_id).order_by(LoyaltyAccount.user_id)]

    mismatches = 0
    for uid in user_ids:
        result = loyalty_service.reconcile_account(uid)
        if result["balanced"]:
            click.echo(f"PASS user {uid}: {result['current_balance']} points")
        else:
            mismatches += 1
            click.echo(
                f"FAIL user {uid}: cached {result['current_balance']}, "
                f"ledger {result['ledger_balance']}, "
                f"earned-redeemed {result['points_earned'] - result['points_redeemed']}"
            )

    if mismatches:
        raise click.ClickException(f"{mismatches} account(s) out of balance")


@loyalty_group.command('seed-gifts')
@with_appcontext
def seed_gifts_command():
    """Insert missing launch gifts; existing gifts are not changed."""
    created = loyalty_service.seed_default_gifts()
    for gift in created:
        click.echo(f"PASS Created gift {gift.code} ({gift.points_required} points)")
    click.echo(f"DONE {len(created)} gift(s) created")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('cancel-stale')
@click.option('--hours', type=float, default=None, help='Age cutoff (default: STALE_ORDER_HOURS)')
@with_appcontext
def cancel_stale_command(hours):
    cancelled = order_service.cancel_stale_orders(hours)
    for number in cancelled:
        click.echo(f"CANCELLED {number}")
    click.echo(f"DONE {len(cancelled)} stale order(s) cancelled")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(orders_group)
