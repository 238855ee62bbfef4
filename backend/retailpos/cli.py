# Overview: Flask CLI command groups for bootstrap, demo data and offline queue draining.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to retailpos (PowerShell: $env:FLASK_APP="retailpos").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--business-name "My Store"] [--invoice-prefix INV]
#   Idempotent: creates tables in both stores and the settings row.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Demo catalog, a customer and a couple of offers.
#
# Offline queue:
# - python -m flask queue list
#   Show pending entries in replay order.
# - python -m flask queue drain
#   Replay the queue now; stops at the first failing entry.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Offer, Product
from .services import offline_queue, products_service, settings_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--business-name', default=None, help='Business name shown on receipts')
@click.option('--invoice-prefix', default=None, help='Invoice number prefix (no "-")')
@with_appcontext
def init_system(business_name, invoice_prefix):
    """Create tables (main database and offline queue) and the settings row."""
    click.echo("START Initializing RetailPOS...")

    db.create_all()
    click.echo("PASS Tables ready")

    settings = settings_service.get_settings()
    db.session.commit()

    patch = {}
    if business_name:
        patch["business_name"] = business_name
    if invoice_prefix:
        patch["invoice_prefix"] = invoice_prefix
    if patch:
        settings = settings_service.update_settings(patch)

    click.echo(
        f"PASS Settings: {settings.business_name} "
        f"(next invoice {settings_service.format_invoice_number(settings.invoice_prefix, settings.next_invoice_sequence)})"
    )


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the offline queue!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


DEMO_PRODUCTS = [
    # sku, name, category, unit_price, tax_rate_pct, stock
    ("TEE-RED-M", "Red T-Shirt (M)", "Apparel", "499.00", "12", 40),
    ("TEE-BLU-L", "Blue T-Shirt (L)", "Apparel", "549.00", "12", 25),
    ("JEANS-32", "Denim Jeans 32", "Apparel", "1299.00", "12", 15),
    ("SOCK-3PK", "Socks 3-pack", "Accessories", "199.00", "5", 60),
    ("CAP-BLK", "Black Cap", "Accessories", "349.00", "18", 20),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Seed a demo catalog, customer and offers. Existing SKUs are skipped."""
    created = 0
    for sku, name, category, price, tax, stock in DEMO_PRODUCTS:
        if products_service.find_by_sku(sku) is not None:
            continue
        products_service.create_product({
            "sku": sku,
            "name": name,
            "category": category,
            "unit_price": price,
            "tax_rate_pct": tax,
            "stock": stock,
            "reorder_level": 5,
        }, user_id="seed")
        created += 1
    click.echo(f"PASS Products: {created} created")

    if db.session.query(Customer).filter_by(phone="9000000001").first() is None:
        db.session.add(Customer(name="Demo Customer", phone="9000000001", loyalty_points=0, total_spend=0))
        db.session.commit()
        click.echo("PASS Customer: Demo Customer (9000000001)")

    if db.session.query(Offer).count() == 0:
        socks = products_service.find_by_sku("SOCK-3PK")
        db.session.add_all([
            Offer(name="Apparel 10% off", rule_type="percentage", discount_value=10,
                  category_names=["Apparel"], priority=100, is_active=True),
            Offer(name="Socks buy 2 get 1", rule_type="bogoSameItem", buy_qty=2, get_qty=1,
                  product_ids=[socks.id], priority=50, is_active=True),
            Offer(name="Birthday month 50 off", rule_type="flat", discount_value=50,
                  dob_month_only=True, priority=100, is_active=True),
        ])
        db.session.commit()
        click.echo("PASS Offers: 3 created")


@click.group('queue')
def queue_group():
    """Offline operation queue commands."""


@queue_group.command('list')
@with_appcontext
def list_queue():
    """List pending offline operations in replay order."""
    ops = offline_queue.list_ops()
    if not ops:
        click.echo("Offline queue is empty.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<38} {'Type':<10} {'Created':<22} {'Attempts':<9} {'Last error'}")
    click.echo("="*100)
    for op in ops:
        data = op.to_dict()
        click.echo(f"{op.id:<38} {op.type:<10} {data['created_at'] or '':<22} {op.attempts:<9} {op.last_error or ''}")
    click.echo("="*100 + "\n")


@queue_group.command('drain')
@with_appcontext
def drain_queue():
    """Replay the offline queue in order."""
    result = offline_queue.process_queue()
    if result["skipped"]:
        click.echo("WARN A drain is already running.")
        return
    click.echo(f"PASS Applied {result['processed']} operation(s), {result['remaining']} remaining")
    if result["failed_op_id"]:
        op = offline_queue.get_op(result["failed_op_id"])
        click.echo(f"FAIL Stopped at {op.id} ({op.type}): {op.last_error}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(queue_group)
