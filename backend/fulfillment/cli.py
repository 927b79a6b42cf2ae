# Overview: Flask CLI command groups for bootstrap, catalog seeding, and order maintenance.

# backend/fulfillment/cli.py
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
# Catalog:
# - python -m flask catalog add-product --sku TEA-01 --name "Masala Tea" --price-cents 2500 --stock 40
#   Create a product with opening stock.
# - python -m flask catalog restock --product-id 1 --quantity 10
#   Add stock to an existing product.
#
# Orders:
# - python -m flask orders expire-pending [--older-than-minutes 30]
#   Cancel unsettled electronic orders past the timeout and release their stock.
#   Schedule this (cron/systemd timer) at an interval shorter than the timeout.
# - python -m flask orders sign-callback --order-id order_X --payment-id pay_Y
#   DEV only: print the signature a genuine confirmation would carry.

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .errors import OrderError
from .models import Product
from .services import inventory_service
from .services.signature_service import compute_signature
from .validation import enforce_price_cents


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Product seeding and stock commands."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--stock', type=int, default=0, show_default=True)
@with_appcontext
def add_product(sku, name, price_cents, stock):
    """Create a product with opening stock."""
    try:
        enforce_price_cents(price_cents)
        if stock < 0:
            raise click.BadParameter("stock must be >= 0", param_hint="--stock")
        product = Product(sku=sku.strip().upper(), name=name.strip(), price_cents=price_cents, stock=stock)
        db.session.add(product)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"SKU {sku} already exists")
    except OrderError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created product {product.sku} (ID: {product.id}, stock: {product.stock})")


@catalog_group.command('restock')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def restock(product_id, quantity):
    """Add stock to a product."""
    try:
        product = inventory_service.restock(product_id, quantity)
    except OrderError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Product {product.sku} stock is now {product.stock}")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('expire-pending')
@click.option('--older-than-minutes', type=int, default=None,
              help='Defaults to PENDING_ORDER_TIMEOUT_MINUTES')
@with_appcontext
def expire_pending(older_than_minutes):
    """
    Cancel pending orders whose payment never arrived.

    Releases their reserved stock, plus any reservation left HELD without
    an order.
    """
    manager = current_app.extensions["order_manager"]
    older_than = timedelta(minutes=older_than_minutes) if older_than_minutes is not None else None
    result = manager.expire_pending_orders(older_than=older_than)

    for invoice_id in result["cancelled_orders"]:
        click.echo(f"CANCELLED {invoice_id}")
    click.echo(
        f"PASS Cancelled {len(result['cancelled_orders'])} orders, "
        f"released {result['released_reservations']} orphaned reservations."
    )


@orders_group.command('sign-callback')
@click.option('--order-id', 'external_order_id', required=True, help='Gateway order id')
@click.option('--payment-id', 'external_payment_id', required=True, help='Gateway payment id')
@with_appcontext
def sign_callback(external_order_id, external_payment_id):
    """DEV only: print a valid confirmation signature."""
    secret = current_app.config.get("PAYMENT_GATEWAY_KEY_SECRET")
    if not secret:
        raise click.ClickException("PAYMENT_GATEWAY_KEY_SECRET is not configured")
    click.echo(compute_signature(external_order_id, external_payment_id, secret))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(orders_group)
