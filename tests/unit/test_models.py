"""
Unit tests for SQLAlchemy models and application exceptions.
"""

import pytest
from gestion.exceptions import StateError, ValidationError, ReferenceNotFoundError, ConcurrencyError
from gestion.models import Purchase, PurchaseStatus


class TestPurchaseModel:
    """Tests for Purchase status helpers."""

    @pytest.mark.parametrize('status,editable,deletable', [
        (PurchaseStatus.PENDING, True, True),
        (PurchaseStatus.ORDERED, True, True),
        (PurchaseStatus.SHIPPED, True, True),
        (PurchaseStatus.IN_TRANSIT, False, False),
        (PurchaseStatus.RECEIVED, False, False),
        (PurchaseStatus.COMPLETED, False, True),
    ])
    def test_status_flags(self, status, editable, deletable):
        purchase = Purchase(status=status)

        assert purchase.is_editable is editable
        assert purchase.is_deletable is deletable


class TestExceptions:
    """Tests for error payloads returned by the API."""

    def test_validation_error_carries_field(self):
        error = ValidationError('Cantidad inválida', field='items[0].quantity')

        assert error.status_code == 400
        assert error.to_dict() == {
            'field': 'items[0].quantity',
            'message': 'Cantidad inválida',
            'status': 'error',
            'error_type': 'ValidationError',
        }

    def test_state_error_lists_statuses(self):
        error = StateError('No editable', current_status=PurchaseStatus.RECEIVED,
                           allowed_statuses=[PurchaseStatus.PENDING, PurchaseStatus.ORDERED])

        data = error.to_dict()
        assert error.status_code == 409
        assert data['current_status'] == 'RECEIVED'
        assert data['allowed_statuses'] == ['PENDING', 'ORDERED']

    def test_reference_error(self):
        error = ReferenceNotFoundError('Producto no encontrado', entity='product', entity_id=7)

        assert error.status_code == 422
        assert error.to_dict()['entity_id'] == 7

    def test_concurrency_error_default_message(self):
        error = ConcurrencyError()

        assert error.status_code == 503
        assert 'intente nuevamente' in error.message
