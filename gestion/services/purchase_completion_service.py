"""Service for completing purchases: stock intake and landed cost update."""
import logging
from datetime import datetime, timezone
from sqlalchemy.exc import OperationalError
from gestion.database import apply_statement_timeout
from gestion.exceptions import GestionError, NotFoundError, StateError, ConcurrencyError
from gestion.models import Purchase, PurchaseStatus, Product, StockMovementType
from gestion.services.cost_distribution import apply_purchase_costs
from gestion.services.product_cost_service import recalculate_product_cost
from gestion.services.stock_service import (
    adjust_stock, record_movement, purchase_reference, REASON_PURCHASE_COMPLETED
)
from gestion.blueprints.metrics import purchases_completed_total, purchase_conflicts_total

logger = logging.getLogger(__name__)


def complete_purchase(purchase_id: int, session) -> dict:
    """
    Mark a purchase COMPLETED and apply it to inventory.

    Steps (single transaction):
    1. Lock the purchase row and validate its status
    2. Recompute distributed costs over the stored items
    3. Add each item's quantity to product stock (SQL-side increment)
    4. Set status COMPLETED and completed_at
    5. Recompute product cost and copy wholesale/retail prices from the items
    6. Append one IN stock movement per item
    7. Commit

    Args:
        purchase_id: Purchase ID to complete
        session: SQLAlchemy session

    Returns:
        dict with purchase id/number and the per-product updates

    Raises:
        NotFoundError: purchase does not exist
        StateError: purchase already completed
        ReferenceNotFoundError: an item's product no longer exists
        ConcurrencyError: timeout or lock conflict (transaction rolled back)
    """
    try:
        apply_statement_timeout(session)

        # Step 1: Lock purchase
        purchase = session.query(Purchase).filter(
            Purchase.id == purchase_id
        ).with_for_update().first()

        if not purchase:
            raise NotFoundError(f'Compra #{purchase_id} no encontrada')

        if purchase.status == PurchaseStatus.COMPLETED:
            raise StateError(
                f'La compra {purchase.purchase_number} ya está completada',
                current_status=purchase.status,
                allowed_statuses=[s for s in PurchaseStatus if s != PurchaseStatus.COMPLETED]
            )

        # Step 2: Distributed costs from the stored header and items
        apply_purchase_costs(purchase)
        items = list(purchase.items)

        # Step 3: Stock intake
        for item in items:
            adjust_stock(session, item.product_id, item.quantity)

        # Step 4: Status
        purchase.status = PurchaseStatus.COMPLETED
        purchase.completed_at = datetime.now(timezone.utc)
        session.flush()

        # Step 5: Product cost and sale prices
        updated_products = []
        for product_id in dict.fromkeys(item.product_id for item in items):
            result = recalculate_product_cost(session, product_id)
            product = session.get(Product, product_id)
            for item in items:
                if item.product_id != product_id:
                    continue
                if item.wholesale_price is not None:
                    product.wholesale_price = item.wholesale_price
                if item.retail_price is not None:
                    product.retail_price = item.retail_price
            result['stock'] = product.stock
            updated_products.append(result)

        # Step 6: Ledger
        reference = purchase_reference(purchase.purchase_number)
        for item in items:
            record_movement(
                session, item.product_id, StockMovementType.IN, item.quantity,
                REASON_PURCHASE_COMPLETED, reference
            )

        purchase_number = purchase.purchase_number

        # Step 7: Commit
        session.commit()
        purchases_completed_total.inc()

        logger.info(
            f"Purchase {purchase_number} completed: {len(items)} items, "
            f"{len(updated_products)} products updated"
        )
        return {
            'success': True,
            'message': f'Compra {purchase_number} completada y stock actualizado',
            'purchase_id': purchase_id,
            'purchase_number': purchase_number,
            'updated_products': updated_products
        }

    except GestionError:
        session.rollback()
        raise

    except OperationalError as e:
        session.rollback()
        purchase_conflicts_total.labels(operation='complete').inc()
        logger.warning(f"Purchase {purchase_id} completion aborted: {e.orig}")
        raise ConcurrencyError(f'No se pudo completar la compra #{purchase_id}: conflicto o tiempo de espera agotado')

    except Exception:
        session.rollback()
        raise
