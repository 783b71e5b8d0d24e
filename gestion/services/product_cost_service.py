"""
Product cost policy.

A product's cost is derived from the items of its COMPLETED purchases (its
"contributions"); Product.cost only caches the derived value. Contributions
are rebuilt by re-running the cost distribution engine over each completed
purchase, so the result never depends on stale stored item figures.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple, List, Optional
from flask import current_app, has_app_context
from gestion.exceptions import ValidationError, ReferenceNotFoundError
from gestion.models import Product, Purchase, PurchaseItem, PurchaseStatus
from gestion.services.cost_distribution import calculate_purchase_costs, round_money

logger = logging.getLogger(__name__)

POLICY_LAST = 'LAST'
POLICY_WEIGHTED_AVERAGE = 'WEIGHTED_AVERAGE'
COST_POLICIES = (POLICY_LAST, POLICY_WEIGHTED_AVERAGE)


class CostContribution(NamedTuple):
    """One item of a completed purchase, as seen by the cost policy."""
    completed_at: Optional[datetime]
    purchase_id: int
    item_id: int
    quantity: int
    final_unit_cost: Decimal


def get_cost_policy() -> str:
    if has_app_context():
        return current_app.config.get('COST_POLICY', POLICY_LAST)
    return POLICY_LAST


def _contribution_order(contribution: CostContribution):
    # Naive timestamps are UTC; purchases without completed_at sort first
    completed_at = contribution.completed_at
    if completed_at is not None and completed_at.tzinfo is not None:
        completed_at = completed_at.astimezone(timezone.utc).replace(tzinfo=None)
    return (completed_at or datetime.min, contribution.purchase_id, contribution.item_id)


def derive_cost(contributions: List[CostContribution], policy: str = POLICY_LAST) -> Decimal:
    """
    Derive a product's cost from its completed-purchase contributions.

    LAST returns the final unit cost of the most recently completed
    contribution; WEIGHTED_AVERAGE the quantity-weighted mean. With no
    contributions the cost is 0.00.
    """
    if policy not in COST_POLICIES:
        raise ValidationError(f'Política de costo desconocida: {policy}', field='COST_POLICY')

    if not contributions:
        return Decimal('0.00')

    if policy == POLICY_LAST:
        latest = max(contributions, key=_contribution_order)
        return round_money(latest.final_unit_cost)

    total_qty = sum(Decimal(c.quantity) for c in contributions)
    if total_qty == 0:
        return Decimal('0.00')
    weighted = sum(Decimal(c.quantity) * Decimal(c.final_unit_cost) for c in contributions)
    return round_money(weighted / total_qty)


def collect_contributions(session, product_id: int, exclude_purchase_id: int = None) -> List[CostContribution]:
    """Gather contributions of every completed purchase that includes the product."""
    query = session.query(Purchase).join(
        PurchaseItem, PurchaseItem.purchase_id == Purchase.id
    ).filter(
        PurchaseItem.product_id == product_id,
        Purchase.status == PurchaseStatus.COMPLETED
    )
    if exclude_purchase_id is not None:
        query = query.filter(Purchase.id != exclude_purchase_id)

    contributions = []
    for purchase in query.distinct().all():
        breakdowns = calculate_purchase_costs(purchase)
        for item, breakdown in zip(purchase.items, breakdowns):
            if item.product_id != product_id:
                continue
            contributions.append(CostContribution(
                completed_at=purchase.completed_at,
                purchase_id=purchase.id,
                item_id=item.id,
                quantity=item.quantity,
                final_unit_cost=breakdown.final_unit_cost,
            ))
    return contributions


def recalculate_product_cost(session, product_id: int, exclude_purchase_id: int = None,
                             policy: str = None) -> dict:
    """
    Lock the product row and store its cost derived from completed purchases.

    Does not commit; the caller owns the transaction. Pending changes are
    flushed first so they are visible to the contribution query.

    Returns:
        dict with product_id, old_cost and new_cost

    Raises:
        ReferenceNotFoundError: if the product no longer exists
    """
    policy = policy or get_cost_policy()
    session.flush()

    product = session.query(Product).filter(
        Product.id == product_id
    ).with_for_update().populate_existing().first()

    if not product:
        raise ReferenceNotFoundError(
            f'Producto con ID {product_id} no encontrado',
            entity='product', entity_id=product_id
        )

    old_cost = product.cost
    contributions = collect_contributions(session, product_id, exclude_purchase_id)
    new_cost = derive_cost(contributions, policy)
    product.cost = new_cost

    logger.debug(
        f"Product {product_id} cost {old_cost} -> {new_cost} "
        f"({policy}, {len(contributions)} contributions)"
    )
    return {'product_id': product_id, 'old_cost': old_cost, 'new_cost': new_cost}
