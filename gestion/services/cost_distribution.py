"""
Cost distribution engine.

Apportions a purchase's overhead (freight, customs, tax, insurance, other)
across its items in proportion to each item's share of the local-currency
subtotal, and derives the landed (final) unit cost of every item.

All arithmetic runs on Decimal at full precision. Values are rounded to cents
(ROUND_HALF_UP) only by round_money(), which callers apply when persisting or
serializing. Rounding remainders are not redistributed, so the rounded
distributed costs may differ from the overhead by a few cents.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, List, Dict, Iterable
from gestion.exceptions import ValidationError
from gestion.services.currency import Money, convert_to_local, get_local_currency

CENT = Decimal('0.01')
ZERO = Decimal('0')

# (category key, amount attribute, currency attribute) on the Purchase model
OVERHEAD_CATEGORIES = (
    ('freight', 'freight_cost', 'freight_currency'),
    ('customs', 'customs_cost', 'customs_currency'),
    ('tax', 'tax_cost', 'tax_currency'),
    ('insurance', 'insurance_cost', 'insurance_currency'),
    ('other', 'other_costs', 'other_currency'),
)


class CostLine(NamedTuple):
    """Engine input: one purchase item."""
    quantity: int
    unit_price_local: Decimal


class CostBreakdown(NamedTuple):
    """Engine output for one item, at full precision."""
    distributed_cost: Decimal
    final_unit_cost: Decimal
    total_cost: Decimal

    def rounded(self) -> 'CostBreakdown':
        return CostBreakdown(
            round_money(self.distributed_cost),
            round_money(self.final_unit_cost),
            round_money(self.total_cost),
        )


def round_money(value) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


def subtotal_local(lines: Iterable[CostLine]) -> Decimal:
    return sum((Decimal(l.quantity) * Decimal(l.unit_price_local) for l in lines), ZERO)


def distribute_costs(lines: List[CostLine], total_overhead) -> List[CostBreakdown]:
    """
    Distribute total_overhead across lines proportionally to quantity * price.

    Returns one CostBreakdown per line, in input order. With no lines or a zero
    subtotal nothing is distributed and each final cost equals the unit price.

    Raises:
        ValidationError: if any quantity is not positive
    """
    lines = list(lines)
    for index, line in enumerate(lines):
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError(
                f'Item {index + 1}: la cantidad debe ser mayor a 0',
                field=f'items[{index}].quantity'
            )

    overhead = Decimal(total_overhead or 0)
    subtotal = subtotal_local(lines)

    breakdown = []
    for line in lines:
        quantity = Decimal(line.quantity)
        unit_price = Decimal(line.unit_price_local)

        if subtotal == 0:
            distributed = ZERO
        else:
            share = (quantity * unit_price) / subtotal
            distributed = share * overhead

        final_unit_cost = unit_price + distributed / quantity
        breakdown.append(CostBreakdown(
            distributed_cost=distributed,
            final_unit_cost=final_unit_cost,
            total_cost=final_unit_cost * quantity,
        ))

    return breakdown


def overhead_money(purchase) -> Dict[str, Money]:
    """Read the five tagged overhead costs from a Purchase."""
    return {
        key: Money(Decimal(getattr(purchase, amount_attr) or 0), getattr(purchase, currency_attr))
        for key, amount_attr, currency_attr in OVERHEAD_CATEGORIES
    }


def total_overhead_local(costs: Dict[str, Money], exchange_rate, local_currency: str = None) -> Decimal:
    """Sum overhead categories after converting each one to local currency."""
    local_currency = local_currency or get_local_currency()
    return sum(
        (convert_to_local(money, exchange_rate, local_currency) for money in costs.values()),
        ZERO
    )


def calculate_purchase_costs(purchase, local_currency: str = None) -> List[CostBreakdown]:
    """Run the engine over a persisted purchase; results follow purchase.items order."""
    overhead = total_overhead_local(overhead_money(purchase), purchase.exchange_rate, local_currency)
    lines = [CostLine(item.quantity, Decimal(item.unit_price_local)) for item in purchase.items]
    return distribute_costs(lines, overhead)


def apply_purchase_costs(purchase, local_currency: str = None) -> None:
    """
    Recompute header aggregates and per-item figures of a purchase in place.

    Keeps the invariant total = subtotal_local + total_costs.
    """
    items = list(purchase.items)
    overhead = total_overhead_local(overhead_money(purchase), purchase.exchange_rate, local_currency)
    lines = [CostLine(item.quantity, Decimal(item.unit_price_local)) for item in items]
    subtotal = subtotal_local(lines)

    for item, breakdown in zip(items, distribute_costs(lines, overhead)):
        rounded = breakdown.rounded()
        item.distributed_cost = rounded.distributed_cost
        item.final_unit_cost = rounded.final_unit_cost
        item.total_cost = rounded.total_cost

    foreign_prices = [item for item in items if item.unit_price_foreign is not None]
    if foreign_prices:
        purchase.subtotal_foreign = round_money(sum(
            (Decimal(item.quantity) * Decimal(item.unit_price_foreign) for item in foreign_prices),
            ZERO
        ))
    else:
        purchase.subtotal_foreign = None

    purchase.subtotal_local = round_money(subtotal)
    purchase.total_costs = round_money(overhead)
    purchase.total = purchase.subtotal_local + purchase.total_costs
