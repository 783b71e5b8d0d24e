"""
Integration tests for the Flask CLI commands.
"""

from decimal import Decimal
from gestion.exceptions import ValidationError
from gestion.models import Purchase, Product, Supplier
from gestion.services.purchase_completion_service import complete_purchase


class TestCliCommands:
    """Tests for init-db, seed-demo and cost maintenance commands."""

    def test_init_db(self, app):
        result = app.test_cli_runner().invoke(args=['init-db'])

        assert result.exit_code == 0
        assert 'Base de datos inicializada' in result.output

    def test_seed_demo_is_idempotent(self, app, session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['seed-demo'])
        second = runner.invoke(args=['seed-demo'])

        assert first.exit_code == 0
        assert 'PC-000001' in first.output
        assert 'ya existen' in second.output
        assert session.query(Supplier).count() == 1
        purchase = session.query(Purchase).one()
        assert purchase.total_costs == Decimal('875.00')
        assert [i.final_unit_cost for i in purchase.items] == [Decimal('1079.55'), Decimal('2159.09')]

    def test_reconcile_costs_without_completed_purchases(self, app):
        result = app.test_cli_runner().invoke(args=['reconcile-costs'])

        assert result.exit_code == 0
        assert 'No hay compras completadas' in result.output

    def test_reconcile_costs_reports_products(self, app, session):
        runner = app.test_cli_runner()
        runner.invoke(args=['seed-demo'])
        complete_purchase(session.query(Purchase).one().id, session)

        result = runner.invoke(args=['reconcile-costs'])

        assert result.exit_code == 0
        assert '$ 1.079,55' in result.output
        assert '$ 2.159,09' in result.output
        assert '1 compra(s) conciliada(s)' in result.output

    def test_reconcile_costs_unknown_purchase(self, app):
        result = app.test_cli_runner().invoke(args=['reconcile-costs', '--purchase-id', '9999'])

        assert result.exit_code == 1
        assert 'no encontrada' in result.output

    def test_recalculate_cost(self, app, session):
        runner = app.test_cli_runner()
        runner.invoke(args=['seed-demo'])
        complete_purchase(session.query(Purchase).one().id, session)
        product = session.query(Product).filter_by(sku='DEMO-001').one()
        product.cost = Decimal('1.00')
        product_id = product.id
        session.commit()

        result = runner.invoke(args=['recalculate-cost', str(product_id), '--policy', 'WEIGHTED_AVERAGE'])

        assert result.exit_code == 0
        assert '$ 1,00 -> $ 1.079,55' in result.output
        assert session.get(Product, product_id).cost == Decimal('1079.55')

    def test_recalculate_cost_missing_product(self, app):
        result = app.test_cli_runner().invoke(args=['recalculate-cost', '9999'])

        assert result.exit_code == 1
        assert 'no encontrado' in result.output

    def test_seed_demo_reports_purchase_error(self, app, monkeypatch):
        def fail(data, session):
            raise ValidationError('Se requiere tipo de cambio', field='exchange_rate')

        monkeypatch.setattr('gestion.cli_commands.create_purchase', fail)

        result = app.test_cli_runner().invoke(args=['seed-demo'])

        assert result.exit_code == 1
        assert 'Error al crear la compra demo: Se requiere tipo de cambio' in result.output
