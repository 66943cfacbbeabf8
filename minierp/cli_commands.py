"""
Flask CLI commands for database and stock maintenance.

Commands:
- flask init-db: Create all tables
- flask seed-demo: Load sample suppliers, products and transactions
- flask check-db: Wait for the database like the WSGI entry point does
- flask audit-stock [--fix]: Compare stored stock with transaction history
"""
from datetime import date, timedelta

import click
from flask import current_app

from minierp import database
from minierp.exceptions import MiniErpError
from minierp.models import Supplier
from minierp.services import product_service, stock_ledger, supplier_service

DEMO_SUPPLIERS = [
    {'name': 'TechSource Ltd', 'contact': 'Maria Lopez', 'email': 'sales@techsource.example', 'phone': '+1-555-0101'},
    {'name': 'Office Depot Supply', 'contact': 'James Carter', 'email': 'orders@officedepot.example', 'phone': '+1-555-0102'},
    {'name': 'HomeGoods Wholesale', 'contact': 'Aisha Khan', 'email': 'b2b@homegoods.example', 'phone': '+1-555-0103'},
]

# (name, category, price, supplier index, opening stock)
DEMO_PRODUCTS = [
    ('Wireless Mouse', 'Electronics', '24.99', 0, 120),
    ('USB-C Hub', 'Electronics', '39.90', 0, 45),
    ('Mechanical Keyboard', 'Electronics', '89.00', 0, 8),
    ('A4 Paper (500 sheets)', 'Office Supplies', '6.50', 1, 300),
    ('Gel Pens (12 pack)', 'Office Supplies', '9.75', 1, 5),
    ('Desk Lamp', 'Home', '32.00', 2, 25),
    ('Coffee Mug', 'Home', '7.20', 2, 0),
]

# (product index, type, quantity, days ago)
DEMO_TRANSACTIONS = [
    (0, 'sale', 30, 75),
    (0, 'sale', 25, 40),
    (1, 'sale', 12, 35),
    (2, 'purchase', 10, 60),
    (2, 'sale', 15, 20),
    (3, 'sale', 80, 50),
    (4, 'sale', 3, 10),
    (5, 'sale', 6, 5),
    (6, 'purchase', 40, 30),
    (6, 'sale', 38, 2),
]


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        database.create_tables()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('check-db')
    def check_db_command():
        """Retry the database connection with the configured policy."""
        retries = current_app.config.get('DB_CONNECT_RETRIES', 3)
        delay = current_app.config.get('DB_CONNECT_RETRY_DELAY', 2)
        if not database.wait_for_database(retries=retries, delay=delay):
            click.echo(click.style(f'Database unreachable after {retries} attempts.', fg='red'))
            raise SystemExit(1)
        click.echo(click.style('Database connection OK.', fg='green'))

    @app.cli.command('seed-demo')
    def seed_demo_command():
        """Load demo data; stock is built through the ledger."""
        session = database.get_session()
        if session.query(Supplier).first() is not None:
            click.echo(click.style('Database already has data, nothing seeded.', fg='yellow'))
            return

        try:
            suppliers = [supplier_service.create_supplier(session, data) for data in DEMO_SUPPLIERS]

            products = []
            for name, category, price, supplier_index, opening_stock in DEMO_PRODUCTS:
                products.append(product_service.create_product(session, {
                    'name': name,
                    'category': category,
                    'price': price,
                    'supplier_id': suppliers[supplier_index].id,
                    'stock': opening_stock,
                    'date': date.today() - timedelta(days=90),
                }))

            for product_index, type_, quantity, days_ago in DEMO_TRANSACTIONS:
                stock_ledger.create_transaction(
                    session,
                    product_id=products[product_index].id,
                    quantity=quantity,
                    type=type_,
                    date=date.today() - timedelta(days=days_ago),
                )
        except MiniErpError as e:
            click.echo(click.style(f'Seeding failed: {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(
            f'Seeded {len(suppliers)} suppliers, {len(products)} products '
            f'and {len(DEMO_TRANSACTIONS)} transactions.',
            fg='green'
        ))

    @app.cli.command('audit-stock')
    @click.option('--fix', is_flag=True, help='Rewrite drifted stock from the transaction history')
    def audit_stock_command(fix):
        """Report products whose stored stock differs from their history."""
        session = database.get_session()
        drift = stock_ledger.audit_stock(session)

        if not drift:
            click.echo(click.style('Stock matches the transaction history.', fg='green'))
            return

        for item in drift:
            click.echo(
                f"{item['name']} ({item['product_id']}): stored {item['stored_stock']}, "
                f"history {item['ledger_stock']} (difference {item['difference']:+d})"
            )

        if not fix:
            click.echo(click.style(f'{len(drift)} product(s) drifted. Run with --fix to repair.', fg='yellow'))
            raise SystemExit(1)

        repaired = stock_ledger.rebuild_stock(session, [item['product_id'] for item in drift])
        click.echo(click.style(f'Repaired {repaired} of {len(drift)} product(s).', fg='green'))
