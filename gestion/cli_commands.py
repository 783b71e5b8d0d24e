"""
Flask CLI commands for database setup and cost maintenance.

Commands:
- flask init-db: Create all tables
- flask seed-demo: Load a demo supplier, products and an import purchase
- flask reconcile-costs: Recompute product costs from completed purchases
- flask recalculate-cost: Recompute the cost of a single product
"""

import click
from datetime import date
from gestion.database import get_session, create_all, drop_all
from gestion.exceptions import GestionError
from gestion.models import Supplier, Product, Purchase, PurchaseStatus
from gestion.services.product_cost_service import recalculate_product_cost, COST_POLICIES
from gestion.services.purchase_service import create_purchase, reconcile_product_costs
from gestion.utils.formatters import money_ar_2


def _print_cost_line(sku, name, old_cost, new_cost):
    changed = old_cost is None or round(old_cost, 2) != new_cost
    color = 'yellow' if changed else None
    click.echo(click.style(
        f'   {sku or "-"} {name}: {money_ar_2(old_cost)} -> {money_ar_2(new_cost)}', fg=color
    ))


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables first')
    def init_db_command(drop):
        """Create database tables."""
        if drop:
            drop_all()
            click.echo(click.style('🗑️  Tablas eliminadas', fg='yellow'))
        create_all()
        click.echo(click.style('✅ Base de datos inicializada', fg='green'))

    @app.cli.command('seed-demo')
    def seed_demo():
        """Load a demo supplier, two products and a pending import purchase."""
        session = get_session()

        if session.query(Supplier).filter_by(name='Proveedor Demo').first():
            click.echo(click.style('ℹ️  Los datos demo ya existen', fg='blue'))
            return

        try:
            supplier = Supplier(name='Proveedor Demo', country='China', email='ventas@proveedor.demo')
            product_a = Product(sku='DEMO-001', name='Auriculares Bluetooth')
            product_b = Product(sku='DEMO-002', name='Parlante Portátil')
            session.add_all([supplier, product_a, product_b])
            session.commit()
        except Exception as e:
            session.rollback()
            click.echo(click.style(f'❌ Error al crear datos demo: {str(e)}', fg='red'))
            return

        try:
            result = create_purchase({
                'supplier_id': supplier.id,
                'type': 'IMPORT',
                'currency': 'USD',
                'exchange_rate': '1000',
                'exchange_type': 'oficial',
                'freight_cost': {'amount': '0.5', 'currency': 'USD'},
                'customs_cost': {'amount': '375', 'currency': 'ARS'},
                'tax_cost': '0',
                'order_date': date.today().isoformat(),
                'items': [
                    {'product_id': product_a.id, 'quantity': 5, 'unit_price_foreign': '1'},
                    {'product_id': product_b.id, 'quantity': 3, 'unit_price_foreign': '2'},
                ]
            }, session)
        except GestionError as e:
            click.echo(click.style(f'❌ Error al crear la compra demo: {e.message}', fg='red'))
            raise click.exceptions.Exit(1)

        click.echo(click.style(f'\n✅ Datos demo creados', fg='green', bold=True))
        click.echo(f'   Proveedor: {supplier.name}')
        click.echo(f'   Productos: {product_a.sku}, {product_b.sku}')
        click.echo(f'   Compra: {result["purchase_number"]} (PENDING)')

    @app.cli.command('reconcile-costs')
    @click.option('--purchase-id', type=int, default=None, help='Only this purchase (default: all completed)')
    def reconcile_costs(purchase_id):
        """Recompute product costs from completed purchases."""
        session = get_session()

        if purchase_id is not None:
            purchase_ids = [purchase_id]
        else:
            purchase_ids = [
                row.id for row in session.query(Purchase.id).filter(
                    Purchase.status == PurchaseStatus.COMPLETED
                ).order_by(Purchase.completed_at, Purchase.id).all()
            ]

        if not purchase_ids:
            click.echo(click.style('ℹ️  No hay compras completadas', fg='blue'))
            return

        failed = 0
        for pid in purchase_ids:
            try:
                report = reconcile_product_costs(pid, session)
            except GestionError as e:
                failed += 1
                click.echo(click.style(f'❌ Compra #{pid}: {e.message}', fg='red'))
                continue

            click.echo(click.style(f'🔧 {report["purchase_number"]} ({report["policy"]})', bold=True))
            for product in report['products']:
                _print_cost_line(product['sku'], product['name'], product['old_cost'], product['new_cost'])

        total = len(purchase_ids) - failed
        click.echo(click.style(f'\n✅ {total} compra(s) conciliada(s)', fg='green'))
        if failed:
            raise click.exceptions.Exit(1)

    @app.cli.command('recalculate-cost')
    @click.argument('product_id', type=int)
    @click.option('--policy', type=click.Choice(COST_POLICIES), default=None,
                  help='Override COST_POLICY for this run')
    def recalculate_cost(product_id, policy):
        """Recompute one product's cost from its completed purchases."""
        session = get_session()
        try:
            result = recalculate_product_cost(session, product_id, policy=policy)
            product = session.get(Product, product_id)
            session.commit()
        except GestionError as e:
            session.rollback()
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise click.exceptions.Exit(1)

        click.echo(click.style(f'✅ Costo recalculado', fg='green'))
        _print_cost_line(product.sku, product.name, result['old_cost'], result['new_cost'])
