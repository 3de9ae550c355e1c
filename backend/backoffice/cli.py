# backend/backoffice/cli.py
# Commands Legend (run from the backend directory, FLASK_APP=wsgi.py):
#
# System bootstrap:
# - flask system init [--company "Name"] [--company-code CODE]
#   Idempotent bootstrap: default company, store and one user per role.
# - flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables.
#
# Users:
# - flask users create --username u --email e --role employee --company-id 1 --store-id 1
# - flask users list [--company-id 1]
#
# Stores:
# - flask stores create --company-id 1 --name "Downtown" [--code DT] [--allow-negative-stock]
# - flask stores list [--company-id 1]
# - flask stores refresh-stats STORE_ID
#
# Sales maintenance:
# - flask sales reconcile-stock SALE_ID
#   Replay stock movements a sale should have produced (safe to repeat).

import click
from flask.cli import with_appcontext

from .errors import BackofficeError
from .extensions import db
from .models import Company, Store, User
from .models.auth import ROLES
from .models.tenancy import STORE_STATUSES
from .services.auth_service import create_user
from .services.stock_service import reconcile_sale_stock
from .services.store_service import create_store, refresh_store_stats

DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='Default Company', help='Company name')
@click.option('--company-code', default='DEFAULT', help='Company code')
@with_appcontext
def init_system(company_name, company_code):
    """
    Create the tables, a default company and store, and one user per role.

    All default users share the password "Password123!".
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing back office...")
    db.create_all()

    company = db.session.query(Company).filter_by(code=company_code).first()
    if company is None:
        company = Company(name=company_name, code=company_code, is_active=True)
        db.session.add(company)
        db.session.commit()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    store = db.session.query(Store).filter_by(company_id=company.id).order_by(Store.id).first()
    if store is None:
        store = create_store(company.id, "Main Store", "MAIN")
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    click.echo("\nUSERS Creating default users...")
    for role in ROLES:
        username = role.replace("_", "")
        if db.session.query(User.id).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                username=username,
                email=f"{username}@backoffice.local",
                password=DEFAULT_PASSWORD,
                role=role,
                company_id=company.id,
                store_id=store.id,
            )
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except BackofficeError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    click.echo(f"\nDONE Company {company.id}, store {store.id}. Default password: {DEFAULT_PASSWORD}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DANGER: Drop all tables and recreate schema."""
    if not yes:
        click.confirm("This will DELETE ALL DATA. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES), prompt=True, help='Role')
@click.option('--company-id', type=int, help='Company ID (not for super_admin)')
@click.option('--store-id', type=int, help='Store ID (store roles only)')
@with_appcontext
def create_user_cli(username, email, password, role, company_id, store_id):
    """
    Create a user.

    Password must be 8+ chars with upper case, lower case, a digit and a
    special character.
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            company_id=company_id,
            store_id=store_id,
        )
    except BackofficeError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}' (ID: {user.id})")


@users_group.command('list')
@click.option('--company-id', type=int, help='Filter by company ID')
@with_appcontext
def list_users(company_id):
    query = db.session.query(User).order_by(User.id)
    if company_id:
        query = query.filter_by(company_id=company_id)
    users = query.all()

    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Company':<8} {'Store':<6} {'Username':<20} {'Role':<18} {'Active'}")
    for user in users:
        click.echo(
            f"{user.id:<5} {user.company_id or '-':<8} {user.store_id or '-':<6} "
            f"{user.username:<20} {user.role:<18} {'Yes' if user.is_active else 'No'}"
        )


# =============================================================================
# STORE COMMANDS
# =============================================================================

@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Short code (unique per company)')
@click.option('--status', type=click.Choice(STORE_STATUSES), default='active')
@click.option('--allow-negative-stock', is_flag=True, help='Let sales take stock below zero')
@with_appcontext
def create_store_cli(company_id, name, code, status, allow_negative_stock):
    try:
        store = create_store(company_id, name, code, status=status, allow_negative_stock=allow_negative_stock)
    except BackofficeError as e:
        click.echo(f"FAIL Failed to create store: {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, status: {store.status})")


@stores_group.command('list')
@click.option('--company-id', type=int, help='Filter by company ID')
@with_appcontext
def list_stores(company_id):
    query = db.session.query(Store).order_by(Store.id)
    if company_id:
        query = query.filter_by(company_id=company_id)
    for store in query.all():
        click.echo(
            f"{store.id:<5} {store.company_id:<5} {store.name:<30} {store.status:<12} "
            f"sales={store.total_sales} revenue={store.total_revenue_cents}"
        )


@stores_group.command('refresh-stats')
@click.argument('store_id', type=int)
@with_appcontext
def refresh_stats_cli(store_id):
    """Recompute a store's cached sale statistics."""
    try:
        store = refresh_store_stats(store_id)
    except BackofficeError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Store {store.id}: {store.total_sales} sales, revenue {store.total_revenue_cents}")


# =============================================================================
# SALES MAINTENANCE
# =============================================================================

@click.group('sales')
def sales_group():
    """Sale maintenance commands."""


@sales_group.command('reconcile-stock')
@click.argument('sale_id', type=int)
@with_appcontext
def reconcile_stock_cli(sale_id):
    """Replay missing stock movements of a sale. Safe to run repeatedly."""
    try:
        result = reconcile_sale_stock(sale_id)
    except BackofficeError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(
        f"PASS Sale {result['sale_id']}: {result['decrements_applied']} decrement(s), "
        f"{result['restores_applied']} restore(s) replayed"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(sales_group)
