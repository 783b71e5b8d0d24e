"""Currency conversion helpers for purchase costs."""
from decimal import Decimal
from typing import NamedTuple, Iterable, Optional
from flask import current_app, has_app_context

DEFAULT_LOCAL_CURRENCY = 'ARS'


class Money(NamedTuple):
    """A monetary amount tagged with the currency it was entered in."""
    amount: Decimal
    currency: str


def get_local_currency() -> str:
    """Local (accounting) currency from config, ARS outside an app context."""
    if has_app_context():
        return current_app.config.get('LOCAL_CURRENCY', DEFAULT_LOCAL_CURRENCY)
    return DEFAULT_LOCAL_CURRENCY


def is_local(currency: Optional[str], local_currency: str) -> bool:
    return not currency or currency.upper() == local_currency.upper()


def to_local(amount_foreign, exchange_rate) -> Decimal:
    """
    Convert a foreign-currency amount to local currency.

    A missing or zero exchange rate converts to 0 instead of failing; the
    payload parser rejects that combination before it reaches this point.
    """
    if not exchange_rate or not amount_foreign:
        return Decimal('0')
    return Decimal(amount_foreign) * Decimal(exchange_rate)


def convert_to_local(money: Money, exchange_rate, local_currency: str = None) -> Decimal:
    """Return money's amount in local currency, converting only foreign amounts."""
    local_currency = local_currency or get_local_currency()
    amount = Decimal(money.amount or 0)
    if is_local(money.currency, local_currency):
        return amount
    return to_local(amount, exchange_rate)


def needs_exchange_rate(moneys: Iterable[Money], local_currency: str = None) -> bool:
    """True when any non-zero amount is denominated in a foreign currency."""
    local_currency = local_currency or get_local_currency()
    return any(
        m.amount and not is_local(m.currency, local_currency)
        for m in moneys
    )
