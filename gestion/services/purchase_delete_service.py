"""Service for deleting purchases with stock reversal."""
import logging
from sqlalchemy.exc import OperationalError
from gestion.database import apply_statement_timeout
from gestion.exceptions import GestionError, NotFoundError, StateError, ConcurrencyError
from gestion.models import Purchase, PurchaseStatus, Product, StockMovementType, PROTECTED_STATUSES
from gestion.services.product_cost_service import recalculate_product_cost
from gestion.services.stock_service import (
    adjust_stock, record_movement, purchase_reference, REASON_PURCHASE_REVERSAL
)
from gestion.blueprints.metrics import purchases_reversed_total, purchase_conflicts_total

logger = logging.getLogger(__name__)


def delete_purchase_with_reversal(purchase_id: int, session) -> dict:
    """
    Delete a purchase, reversing its inventory effects if it was completed.

    Steps:
    1. Lock the purchase and validate it can be deleted
    2. COMPLETED only: subtract each item's quantity from stock, append
       an OUT movement per item and recompute product cost from the
       product's other completed purchases
    3. Delete the purchase (items cascade)
    4. Commit transaction

    Stock may go negative when the goods were already sold; that is
    logged as a warning, not rejected.

    Args:
        purchase_id: Purchase ID to delete
        session: SQLAlchemy session

    Returns:
        dict with success message and reversal details

    Raises:
        NotFoundError: purchase does not exist
        StateError: purchase is RECEIVED or IN_TRANSIT
        ReferenceNotFoundError: an item's product no longer exists
        ConcurrencyError: timeout or lock conflict (transaction rolled back)
    """
    try:
        apply_statement_timeout(session)

        # Step 1: Get purchase and validate status
        purchase = session.query(Purchase).filter(
            Purchase.id == purchase_id
        ).with_for_update().first()

        if not purchase:
            raise NotFoundError(f'Compra #{purchase_id} no encontrada')

        if purchase.status in PROTECTED_STATUSES:
            raise StateError(
                f'No se puede eliminar la compra {purchase.purchase_number} '
                f'en estado {purchase.status.value}',
                current_status=purchase.status,
                allowed_statuses=[s for s in PurchaseStatus if s not in PROTECTED_STATUSES]
            )

        purchase_number = purchase.purchase_number
        was_completed = purchase.status == PurchaseStatus.COMPLETED
        reversed_products = []

        # Step 2: Reverse stock and cost
        if was_completed:
            items = list(purchase.items)
            reference = purchase_reference(purchase_number, reversed_=True)

            for item in items:
                adjust_stock(session, item.product_id, -item.quantity)
                record_movement(
                    session, item.product_id, StockMovementType.OUT, item.quantity,
                    REASON_PURCHASE_REVERSAL, reference
                )

            for product_id in dict.fromkeys(item.product_id for item in items):
                result = recalculate_product_cost(session, product_id, exclude_purchase_id=purchase_id)
                product = session.get(Product, product_id)
                if product.stock < 0:
                    logger.warning(
                        f"Product {product_id} ({product.sku}) stock is negative ({product.stock}) "
                        f"after reversing purchase {purchase_number}"
                    )
                result['stock'] = product.stock
                reversed_products.append(result)

        # Step 3: Delete purchase and items
        session.delete(purchase)

        # Step 4: Commit transaction
        session.commit()
        if was_completed:
            purchases_reversed_total.inc()

        logger.info(
            f"Purchase {purchase_number} deleted"
            + (f", {len(reversed_products)} products reversed" if was_completed else "")
        )
        return {
            'success': True,
            'message': (
                f'Compra {purchase_number} eliminada y stock revertido correctamente'
                if was_completed else f'Compra {purchase_number} eliminada correctamente'
            ),
            'purchase_id': purchase_id,
            'purchase_number': purchase_number,
            'reversed': was_completed,
            'reversed_products': reversed_products
        }

    except GestionError:
        session.rollback()
        raise

    except OperationalError as e:
        session.rollback()
        purchase_conflicts_total.labels(operation='delete').inc()
        logger.warning(f"Purchase {purchase_id} deletion aborted: {e.orig}")
        raise ConcurrencyError(f'No se pudo eliminar la compra #{purchase_id}: conflicto o tiempo de espera agotado')

    except Exception:
        session.rollback()
        raise
