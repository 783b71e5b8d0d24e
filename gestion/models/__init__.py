"""Models package - exports all SQLAlchemy models."""
from gestion.models.supplier import Supplier
from gestion.models.product import Product
from gestion.models.purchase import (
    Purchase, PurchaseType, PurchaseStatus, EDITABLE_STATUSES, PROTECTED_STATUSES
)
from gestion.models.purchase_item import PurchaseItem
from gestion.models.stock_movement import StockMovement, StockMovementType

__all__ = [
    'Supplier', 'Product',
    'Purchase', 'PurchaseType', 'PurchaseStatus', 'EDITABLE_STATUSES', 'PROTECTED_STATUSES',
    'PurchaseItem',
    'StockMovement', 'StockMovementType',
]
