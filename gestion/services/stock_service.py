"""Atomic stock updates and the stock movement ledger."""
from gestion.exceptions import ReferenceNotFoundError
from gestion.models import Product, StockMovement, StockMovementType

REASON_PURCHASE_COMPLETED = 'Purchase completed'
REASON_PURCHASE_REVERSAL = 'Purchase deletion reversal'


def purchase_reference(purchase_number: str, reversed_: bool = False) -> str:
    reference = f'Purchase {purchase_number}'
    return f'{reference} (reversed)' if reversed_ else reference


def adjust_stock(session, product_id: int, delta: int) -> None:
    """
    Add delta to the product's stock with a single UPDATE (stock = stock + delta).

    The increment happens in SQL, so concurrent purchases touching the same
    product do not lose updates.

    Raises:
        ReferenceNotFoundError: if the product row does not exist
    """
    updated = session.query(Product).filter(
        Product.id == product_id
    ).update(
        {Product.stock: Product.stock + delta},
        synchronize_session=False
    )
    if updated == 0:
        raise ReferenceNotFoundError(
            f'Producto con ID {product_id} no encontrado',
            entity='product', entity_id=product_id
        )


def record_movement(session, product_id: int, movement_type: StockMovementType, quantity: int,
                    reason: str, reference: str = None) -> StockMovement:
    """Append a row to the stock movement ledger (not committed)."""
    movement = StockMovement(
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        reference=reference
    )
    session.add(movement)
    return movement
