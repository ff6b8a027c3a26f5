# Overview: Flask CLI command groups for bootstrap, tenant setup, and maintenance.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--username admin --email admin@fulfillment.local]
#   Idempotent bootstrap: creates tables and the platform admin account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenants and warehouses:
# - python -m flask merchants create --name "Acme Stores" --code ACME
# - python -m flask merchants list
# - python -m flask warehouses create --name "Lagos Main" --code LOS-1 --city Lagos --state Lagos
# - python -m flask warehouses list
#
# Catalogue:
# - python -m flask products create --merchant-id 1 --sku SKU-1 --name "Blue Mug" --price-cents 250000
#
# Users:
# - python -m flask users create --username ada --email ada@acme.test --password "Password123!" --role MERCHANT_ADMIN --merchant-id 1
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked sessions older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Merchant, Product, User, Warehouse
from .models.auth import ROLES, ROLE_PLATFORM_ADMIN
from .services import session_service
from .services.auth_service import create_user
from .validation import DomainError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--username', default='admin', help='Platform admin username')
@click.option('--email', default='admin@fulfillment.local', help='Platform admin email')
@click.option('--password', default='Password123!', help='Platform admin password')
@with_appcontext
def init_system(username, email, password):
    """
    Create the schema (if missing) and the platform admin account.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing fulfillment system...")
    db.create_all()

    admin = db.session.query(User).filter_by(role=ROLE_PLATFORM_ADMIN).first()
    if admin:
        click.echo(f"PASS Using existing platform admin: {admin.username} (ID: {admin.id})")
        return

    try:
        admin = create_user(username, email, password, ROLE_PLATFORM_ADMIN)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created platform admin: {admin.username} (ID: {admin.id})")


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


@click.group('merchants')
def merchants_group():
    """Merchant (tenant) management."""


@merchants_group.command('create')
@click.option('--name', required=True)
@click.option('--code', required=True, help='Short unique code, e.g. ACME')
@click.option('--email', default=None)
@click.option('--phone', default=None)
@with_appcontext
def create_merchant(name, code, email, phone):
    code = code.strip().upper()
    if db.session.query(Merchant).filter_by(code=code).first():
        raise click.ClickException(f"Merchant code '{code}' already exists")

    merchant = Merchant(name=name.strip(), code=code, email=email, phone=phone, is_active=True)
    db.session.add(merchant)
    db.session.commit()
    click.echo(f"PASS Created merchant: {merchant.name} (ID: {merchant.id}, Code: {merchant.code})")


@merchants_group.command('list')
@with_appcontext
def list_merchants():
    merchants = db.session.query(Merchant).order_by(Merchant.id).all()
    if not merchants:
        click.echo("No merchants found.")
        return
    for m in merchants:
        status = "active" if m.is_active else "inactive"
        click.echo(f"{m.id:>4}  {m.code:<12} {m.name} ({status})")


@click.group('warehouses')
def warehouses_group():
    """Warehouse management (platform-level)."""


@warehouses_group.command('create')
@click.option('--name', required=True)
@click.option('--code', required=True)
@click.option('--city', required=True)
@click.option('--state', required=True)
@click.option('--address', default=None)
@with_appcontext
def create_warehouse(name, code, city, state, address):
    code = code.strip().upper()
    if db.session.query(Warehouse).filter_by(code=code).first():
        raise click.ClickException(f"Warehouse code '{code}' already exists")

    warehouse = Warehouse(name=name.strip(), code=code, city=city, state=state, address=address, is_active=True)
    db.session.add(warehouse)
    db.session.commit()
    click.echo(f"PASS Created warehouse: {warehouse.name} (ID: {warehouse.id}, Code: {warehouse.code})")


@warehouses_group.command('list')
@with_appcontext
def list_warehouses():
    warehouses = db.session.query(Warehouse).order_by(Warehouse.id).all()
    if not warehouses:
        click.echo("No warehouses found.")
        return
    for w in warehouses:
        status = "active" if w.is_active else "inactive"
        click.echo(f"{w.id:>4}  {w.code:<12} {w.name}, {w.city} ({status})")


@click.group('products')
def products_group():
    """Merchant catalogue bootstrap."""


@products_group.command('create')
@click.option('--merchant-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=click.IntRange(min=0), required=True)
@with_appcontext
def create_product(merchant_id, sku, name, price_cents):
    if db.session.query(Merchant).get(merchant_id) is None:
        raise click.ClickException(f"Merchant {merchant_id} not found")
    if db.session.query(Product).filter_by(merchant_id=merchant_id, sku=sku).first():
        raise click.ClickException(f"SKU '{sku}' already exists for merchant {merchant_id}")

    product = Product(merchant_id=merchant_id, sku=sku, name=name, unit_price_cents=price_cents, is_active=True)
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.sku} (ID: {product.id})")


@click.group('users')
def users_group():
    """User account management."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), prompt=True)
@click.option('--merchant-id', type=int, default=None)
@with_appcontext
def create_user_cli(username, email, password, role, merchant_id):
    try:
        user = create_user(username, email, password, role, merchant_id)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, Role: {user.role}, Merchant: {user.merchant_id})")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=click.IntRange(min=1), default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"PASS Deleted {deleted} sessions older than {retention_days} days")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(merchants_group)
    app.cli.add_command(warehouses_group)
    app.cli.add_command(products_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
