"""
Unit tests for the product cost policy.
"""

import pytest
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from gestion.exceptions import ValidationError
from gestion.services.product_cost_service import (
    CostContribution, derive_cost, POLICY_LAST, POLICY_WEIGHTED_AVERAGE
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _c(completed_at, purchase_id, quantity, cost, item_id=None):
    return CostContribution(completed_at, purchase_id, item_id or purchase_id * 10, quantity, Decimal(cost))


class TestDeriveCost:
    """Tests for deriving product cost from contributions."""

    def test_no_contributions(self):
        assert derive_cost([], POLICY_LAST) == Decimal('0.00')
        assert derive_cost([], POLICY_WEIGHTED_AVERAGE) == Decimal('0.00')

    def test_last_uses_latest_completion(self):
        contributions = [
            _c(T0 + timedelta(days=2), 1, 5, '1100'),
            _c(T0, 2, 10, '900'),
        ]
        assert derive_cost(contributions, POLICY_LAST) == Decimal('1100.00')

    def test_last_ties_break_by_purchase_id(self):
        contributions = [_c(T0, 3, 1, '10'), _c(T0, 2, 1, '20')]
        assert derive_cost(contributions, POLICY_LAST) == Decimal('10.00')

    def test_last_mixes_naive_and_aware_timestamps(self):
        contributions = [
            _c(datetime(2024, 3, 1, 13, 0), 1, 1, '50'),  # naive UTC
            _c(T0, 2, 1, '60'),
        ]
        assert derive_cost(contributions, POLICY_LAST) == Decimal('50.00')

    def test_weighted_average(self):
        contributions = [_c(T0, 1, 5, '1000'), _c(T0, 2, 15, '1200')]
        assert derive_cost(contributions, POLICY_WEIGHTED_AVERAGE) == Decimal('1150.00')

    def test_result_rounded_half_up(self):
        assert derive_cost([_c(T0, 1, 5, '1079.545')], POLICY_LAST) == Decimal('1079.55')

    def test_unknown_policy(self):
        with pytest.raises(ValidationError):
            derive_cost([_c(T0, 1, 1, '1')], 'FIFO')
