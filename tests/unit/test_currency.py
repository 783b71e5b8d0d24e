"""
Unit tests for currency conversion helpers.
"""

from decimal import Decimal
from gestion.services.currency import Money, to_local, convert_to_local, needs_exchange_rate, is_local


class TestToLocal:
    """Tests for foreign to local conversion."""

    def test_multiplies_by_rate(self):
        assert to_local(Decimal('2.5'), Decimal('1000')) == Decimal('2500')

    def test_missing_rate_is_zero(self):
        assert to_local(Decimal('10'), None) == 0

    def test_zero_rate_is_zero(self):
        assert to_local(Decimal('10'), Decimal('0')) == 0


class TestConvertToLocal:
    """Tests for Money conversion."""

    def test_local_money_unchanged(self):
        assert convert_to_local(Money(Decimal('375'), 'ARS'), Decimal('1000'), 'ARS') == Decimal('375')

    def test_local_money_ignores_missing_rate(self):
        assert convert_to_local(Money(Decimal('375'), 'ARS'), None, 'ARS') == Decimal('375')

    def test_foreign_money_converted(self):
        assert convert_to_local(Money(Decimal('0.5'), 'USD'), Decimal('1000'), 'ARS') == Decimal('500')

    def test_currency_code_case_insensitive(self):
        assert is_local('ars', 'ARS')
        assert not is_local('USD', 'ARS')


class TestNeedsExchangeRate:
    """Tests for detecting foreign-denominated inputs."""

    def test_only_local(self):
        assert not needs_exchange_rate([Money(Decimal('10'), 'ARS')], 'ARS')

    def test_foreign_amount(self):
        assert needs_exchange_rate([Money(Decimal('10'), 'ARS'), Money(Decimal('1'), 'USD')], 'ARS')

    def test_zero_foreign_amount_ignored(self):
        assert not needs_exchange_rate([Money(Decimal('0'), 'USD')], 'ARS')
