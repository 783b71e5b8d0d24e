"""
Purchase payload parsing.

Turns request JSON into typed values before any persistence happens:
overhead costs become tagged Money values and edit items become explicit
ItemCreate / ItemUpdate / ItemDelete operations. Both snake_case keys and the
camelCase keys of the older frontend (unitPricePesos, freightCost, ...) are
accepted.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, Optional, List, Union, Dict
from gestion.exceptions import ValidationError
from gestion.models import PurchaseType
from gestion.services.currency import Money, is_local, needs_exchange_rate, to_local
from gestion.utils.number_format import to_decimal, to_quantity, to_date

_MISSING = object()

# category -> accepted payload keys
OVERHEAD_KEYS = {
    'freight': ('freight_cost', 'freightCost'),
    'customs': ('customs_cost', 'customsCost'),
    'tax': ('tax_cost', 'taxCost'),
    'insurance': ('insurance_cost', 'insuranceCost'),
    'other': ('other_costs', 'otherCosts'),
}

# Taxes (IVA) are always paid in local currency unless tagged otherwise
LOCAL_BY_DEFAULT = ('tax',)

# Scale of the stored exchange rate and foreign unit prices
RATE_SCALE = Decimal('0.0001')


class ItemCreate(NamedTuple):
    product_id: int
    quantity: int
    unit_price_local: Decimal
    unit_price_foreign: Optional[Decimal] = None
    wholesale_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None


class ItemUpdate(NamedTuple):
    """Update of an existing item; None fields keep their stored value."""
    id: int
    product_id: Optional[int] = None
    quantity: Optional[int] = None
    unit_price_local: Optional[Decimal] = None
    unit_price_foreign: Optional[Decimal] = None
    wholesale_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None


class ItemDelete(NamedTuple):
    id: int


ItemOperation = Union[ItemCreate, ItemUpdate, ItemDelete]


def _get(data: dict, *keys, default=_MISSING):
    for key in keys:
        if key in data:
            return data[key]
    return default


def _decimal_field(value, field, allow_none=True):
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'El campo {field} es requerido', field=field)
    try:
        return to_decimal(value)
    except ValueError as e:
        raise ValidationError(f'{field}: {e}', field=field)


def _rate_field(value, field):
    number = _decimal_field(value, field)
    if number is None:
        return None
    return number.quantize(RATE_SCALE, rounding=ROUND_HALF_UP)


def _id_field(value, field):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} inválido: {value!r}', field=field)
    if number <= 0:
        raise ValidationError(f'{field} inválido: {value!r}', field=field)
    return number


def parse_overhead(value, category: str, purchase_currency: str, local_currency: str, field: str) -> Money:
    """
    Parse one overhead cost into Money.

    Accepts a number/string (currency defaults per category) or an explicit
    {"amount": ..., "currency": ...} object.
    """
    if isinstance(value, dict):
        amount = _decimal_field(value.get('amount'), field) or Decimal('0')
        currency = (value.get('currency') or '').strip().upper()
        if not currency:
            raise ValidationError(f'{field}: falta la moneda', field=field)
        return Money(amount, currency)

    amount = _decimal_field(value, field) or Decimal('0')
    if category in LOCAL_BY_DEFAULT:
        return Money(amount, local_currency)
    return Money(amount, purchase_currency or local_currency)


def parse_purchase_header(data: dict, local_currency: str, current=None) -> dict:
    """
    Parse header fields of a create (current=None) or edit payload.

    For edits only the keys present in the payload are returned, so the caller
    can merge them onto the stored purchase.
    """
    if not isinstance(data, dict):
        raise ValidationError('El cuerpo de la solicitud debe ser un objeto JSON')

    creating = current is None
    header = {}

    supplier_id = _get(data, 'supplier_id', 'supplierId')
    if supplier_id is not _MISSING and supplier_id is not None:
        header['supplier_id'] = _id_field(supplier_id, 'supplier_id')
    elif creating:
        raise ValidationError('El proveedor es requerido', field='supplier_id')

    purchase_type = _get(data, 'type')
    if purchase_type is not _MISSING and purchase_type is not None:
        try:
            header['type'] = PurchaseType(str(purchase_type).upper())
        except ValueError:
            raise ValidationError(f'Tipo de compra inválido: {purchase_type}', field='type')
    elif creating:
        header['type'] = PurchaseType.LOCAL

    currency = _get(data, 'currency')
    if currency is not _MISSING and currency:
        currency = str(currency).strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError(f'Moneda inválida: {currency}', field='currency')
        header['currency'] = currency
    elif creating:
        header['currency'] = local_currency

    exchange_rate = _get(data, 'exchange_rate', 'exchangeRate')
    if exchange_rate is not _MISSING:
        rate = _rate_field(exchange_rate, 'exchange_rate')
        header['exchange_rate'] = rate if rate else None
    elif creating:
        header['exchange_rate'] = None

    exchange_type = _get(data, 'exchange_type', 'exchangeType')
    if exchange_type is not _MISSING:
        header['exchange_type'] = exchange_type or None

    purchase_currency = header.get('currency') or (current.currency if current is not None else local_currency)
    costs = {}
    for category, keys in OVERHEAD_KEYS.items():
        value = _get(data, *keys)
        if value is not _MISSING:
            costs[category] = parse_overhead(value, category, purchase_currency, local_currency, keys[0])
        elif creating:
            costs[category] = Money(Decimal('0'), local_currency if category in LOCAL_BY_DEFAULT
                                    else purchase_currency)
    header['costs'] = costs

    order_date = _get(data, 'order_date', 'orderDate')
    if order_date is not _MISSING and order_date:
        try:
            header['order_date'] = to_date(order_date)
        except ValueError as e:
            raise ValidationError(str(e), field='order_date')
    elif creating:
        raise ValidationError('La fecha de pedido es requerida', field='order_date')

    expected_date = _get(data, 'expected_date', 'expectedDate')
    if expected_date is not _MISSING:
        try:
            header['expected_date'] = to_date(expected_date) if expected_date else None
        except ValueError as e:
            raise ValidationError(str(e), field='expected_date')

    notes = _get(data, 'notes')
    if notes is not _MISSING:
        header['notes'] = notes

    return header


def _parse_item_fields(item: dict, index: int, exchange_rate, partial: bool) -> dict:
    prefix = f'items[{index}]'
    fields = {}

    product_id = _get(item, 'product_id', 'productId')
    if product_id is not _MISSING and product_id is not None:
        fields['product_id'] = _id_field(product_id, f'{prefix}.product_id')
    elif not partial:
        raise ValidationError(f'Item {index + 1}: el producto es requerido', field=f'{prefix}.product_id')

    quantity = _get(item, 'quantity', 'qty')
    if quantity is not _MISSING and quantity is not None:
        try:
            fields['quantity'] = to_quantity(quantity)
        except ValueError as e:
            raise ValidationError(f'Item {index + 1}: {e}', field=f'{prefix}.quantity')
    elif not partial:
        raise ValidationError(f'Item {index + 1}: la cantidad es requerida', field=f'{prefix}.quantity')

    unit_price_foreign = _get(item, 'unit_price_foreign', 'unitPriceForeign', default=None)
    fields['unit_price_foreign'] = _rate_field(unit_price_foreign, f'{prefix}.unit_price_foreign')

    unit_price_local = _get(item, 'unit_price_local', 'unitPricePesos', 'unit_price', default=None)
    unit_price_local = _decimal_field(unit_price_local, f'{prefix}.unit_price_local')
    if unit_price_local is None and fields['unit_price_foreign'] is not None:
        if not exchange_rate:
            raise ValidationError(
                f'Item {index + 1}: se requiere tipo de cambio para convertir el precio en moneda extranjera',
                field='exchange_rate'
            )
        unit_price_local = to_local(fields['unit_price_foreign'], exchange_rate)
    if unit_price_local is None and not partial:
        raise ValidationError(
            f'Item {index + 1}: el precio unitario en pesos es requerido',
            field=f'{prefix}.unit_price_local'
        )
    fields['unit_price_local'] = unit_price_local

    fields['wholesale_price'] = _decimal_field(
        _get(item, 'wholesale_price', 'wholesalePrice', default=None), f'{prefix}.wholesale_price')
    fields['retail_price'] = _decimal_field(
        _get(item, 'retail_price', 'retailPrice', default=None), f'{prefix}.retail_price')
    return fields


def parse_create_items(items, exchange_rate) -> List[ItemCreate]:
    """Parse the item list of a new purchase (at least one item)."""
    if not isinstance(items, list) or not items:
        raise ValidationError('Debe incluir al menos un producto en la compra', field='items')

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f'Item {index + 1}: formato inválido', field=f'items[{index}]')
        parsed.append(ItemCreate(**_parse_item_fields(item, index, exchange_rate, partial=False)))
    return parsed


def parse_edit_items(items, exchange_rate) -> List[ItemOperation]:
    """
    Parse the item list of an edit into explicit operations.

    `_action` wins when present; otherwise an item with `id` is an update and
    one without is a create.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError('Debe incluir al menos un producto en la compra', field='items')

    operations = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f'Item {index + 1}: formato inválido', field=f'items[{index}]')

        action = (item.get('_action') or item.get('action') or '').lower()
        item_id = item.get('id')
        if not action:
            action = 'update' if item_id else 'create'

        if action == 'create':
            operations.append(ItemCreate(**_parse_item_fields(item, index, exchange_rate, partial=False)))
        elif action in ('update', 'delete'):
            if not item_id:
                raise ValidationError(
                    f'Item {index + 1}: se requiere id para la acción "{action}"',
                    field=f'items[{index}].id'
                )
            item_id = _id_field(item_id, f'items[{index}].id')
            if action == 'delete':
                operations.append(ItemDelete(item_id))
            else:
                operations.append(ItemUpdate(id=item_id, **_parse_item_fields(item, index, exchange_rate, partial=True)))
        else:
            raise ValidationError(f'Item {index + 1}: acción desconocida "{action}"', field=f'items[{index}]._action')
    return operations


def check_exchange_rate(costs: Dict[str, Money], exchange_rate, local_currency: str) -> None:
    """
    Reject foreign-denominated costs without a usable exchange rate.

    Raises:
        ValidationError: on field exchange_rate
    """
    if exchange_rate is not None and exchange_rate < 0:
        raise ValidationError('El tipo de cambio no puede ser negativo', field='exchange_rate')
    if exchange_rate:
        return
    if needs_exchange_rate(costs.values(), local_currency):
        foreign = sorted(k for k, m in costs.items() if m.amount and not is_local(m.currency, local_currency))
        raise ValidationError(
            f'Se requiere tipo de cambio: hay costos en moneda extranjera ({", ".join(foreign)})',
            field='exchange_rate'
        )
