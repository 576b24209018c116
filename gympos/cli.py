# Overview: Flask CLI command groups for bootstrap, staff tokens, demo catalog and transaction maintenance.

# gympos/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create missing tables (no data is touched).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Staff accounts:
# - python -m flask staff create --first-name Ana --last-name Cruz --role cashier
#   Create a staff profile and print its API token (shown once).
# - python -m flask staff issue-token S001
#   Replace the API token of an existing staff profile.
# - python -m flask staff revoke-token S001
#   Remove the API token so the profile can no longer call the API.
#
# Catalog:
# - python -m flask catalog seed-demo
#   Insert demo inventory items and membership plans (skips existing names).
#
# Transactions:
# - python -m flask transactions list --limit 20
#   Show recent sales.
# - python -m flask transactions void 42 --actor S001
#   Void a sale on behalf of a staff profile.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import InventoryItem, MembershipPlan, Profile
from .permissions import STAFF_ROLES
from .services import staff_service, transaction_service
from .services.staff_service import StaffError
from .services.void_service import VoidError, void_transaction
from .time_utils import today, to_utc_z


DEMO_ITEMS = [
    # name, category, price_cents, stock
    ("Protein Bar", "Snacks", 250, 100),
    ("Bottled Water", "Drinks", 100, 200),
    ("Shaker Bottle", "Merchandise", 899, 40),
    ("Gym T-Shirt", "Merchandise", 1999, 25),
    ("Gym Towel", "Merchandise", 1299, 30),
]

DEMO_PLANS = [
    # name, duration_days, price_cents, giveaway item name
    ("Monthly", 30, 5000, None),
    ("Quarterly", 90, 13500, "Shaker Bottle"),
    ("Annual", 365, 48000, "Gym T-Shirt"),
]


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for demo data.")


@click.group('staff')
def staff_group():
    """Staff accounts and API tokens."""


@staff_group.command('create')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--role', type=click.Choice(sorted(STAFF_ROLES)), prompt=True, help='Role')
@click.option('--member-code', default=None, help='Member code (defaults to S<id>)')
@with_appcontext
def create_staff_cli(first_name, last_name, role, member_code):
    """Create a staff profile and print its API token."""
    try:
        profile, token = staff_service.create_staff(first_name, last_name, role, member_code=member_code)
    except StaffError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created {profile.role} {profile.display_name} ({profile.member_code})")
    click.echo(f"API token (store it now, it is not shown again): {token}")


@staff_group.command('issue-token')
@click.argument('member_code')
@with_appcontext
def issue_token_cli(member_code):
    """Replace the API token of a staff profile."""
    profile = db.session.query(Profile).filter_by(member_code=member_code).first()
    if not profile:
        click.echo(f"FAIL Profile {member_code} not found")
        return

    try:
        token = staff_service.issue_token(profile)
    except StaffError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"API token for {profile.member_code}: {token}")


@staff_group.command('revoke-token')
@click.argument('member_code')
@with_appcontext
def revoke_token_cli(member_code):
    """Remove the API token of a profile so it can no longer call the API."""
    profile = db.session.query(Profile).filter_by(member_code=member_code).first()
    if not profile:
        click.echo(f"FAIL Profile {member_code} not found")
        return

    staff_service.revoke_token(profile)
    click.echo(f"PASS Revoked API token for {profile.member_code}")


@click.group('catalog')
def catalog_group():
    """Catalog seeding."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo items and plans. Existing names are left alone."""
    created_items = 0
    items_by_name = {item.name: item for item in db.session.query(InventoryItem).all()}
    for name, category, price_cents, stock in DEMO_ITEMS:
        if name in items_by_name:
            continue
        item = InventoryItem(
            name=name,
            category=category,
            price_cents=price_cents,
            stock=stock,
            last_restock=today(),
        )
        db.session.add(item)
        items_by_name[name] = item
        created_items += 1
    db.session.flush()

    created_plans = 0
    existing_plans = {plan.name for plan in db.session.query(MembershipPlan).all()}
    for name, duration_days, price_cents, giveaway_name in DEMO_PLANS:
        if name in existing_plans:
            continue
        giveaway = items_by_name.get(giveaway_name) if giveaway_name else None
        db.session.add(MembershipPlan(
            name=name,
            duration_days=duration_days,
            price_cents=price_cents,
            description=f"{duration_days}-day access",
            giveaway_item_id=giveaway.id if giveaway else None,
        ))
        created_plans += 1

    db.session.commit()
    click.echo(f"PASS Seeded {created_items} items and {created_plans} plans.")


@click.group('transactions')
def transactions_group():
    """Sales history and voids."""


@transactions_group.command('list')
@click.option('--limit', type=int, default=20, show_default=True, help='Number of transactions')
@with_appcontext
def list_transactions_cli(limit):
    """Show recent transactions, newest first."""
    transactions = transaction_service.list_transactions(limit=limit)
    if not transactions:
        click.echo("No transactions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Created':<22} {'Type':<16} {'Member':<12} {'Total':>10}  {'Payment':<10} Items")
    click.echo("="*100)
    for tx in transactions:
        total = f"{tx.total_cents / 100:.2f}"
        click.echo(
            f"{tx.id:<6} {to_utc_z(tx.created_at):<22} {tx.sale_type:<16} {tx.member_ref:<12} "
            f"{total:>10}  {tx.payment_method:<10} {tx.item_description}"
        )
    click.echo("="*100 + "\n")


@transactions_group.command('void')
@click.argument('transaction_id', type=int)
@click.option('--actor', 'actor_code', required=True, help='Member code of the staff profile voiding the sale')
@with_appcontext
def void_transaction_cli(transaction_id, actor_code):
    """Void a sale and restore its stock."""
    actor = db.session.query(Profile).filter_by(member_code=actor_code).first()
    if not actor:
        click.echo(f"FAIL Profile {actor_code} not found")
        return

    try:
        result = void_transaction(transaction_id, actor)
    except VoidError as e:
        click.echo(f"FAIL {e} ({e.code})")
        return

    click.echo(f"PASS Voided transaction {result.transaction_id}")
    for item_id, quantity in result.restored:
        click.echo(f"  restored {quantity} x item {item_id}")
    if result.requires_manual_membership_reversal:
        click.echo("WARN Membership extensions were not reversed; adjust the member's dates manually.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(transactions_group)
