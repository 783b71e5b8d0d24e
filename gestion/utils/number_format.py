"""Parsing of numbers and dates received in purchase payloads."""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

# 1.234,56 / 1234,5 (a comma is required, "1.250" is a plain decimal)
AR_NUMBER_PATTERN = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+),\d+$")


def parse_ar_number(value: str) -> Decimal:
    """
    Parse a number string in Argentine format (e.g., 1.234,56) to Decimal.

    Strings without a decimal comma are parsed as plain numbers, so
    "1234.56" and "1.250" keep the dot as decimal separator and dot-grouped
    integers such as "1.234.567" are rejected.

    Raises:
        ValueError: if the value is invalid or empty.
    """
    if value is None:
        raise ValueError('Formato inválido. Usá 1.234,56 o 1.234')

    cleaned = value.strip()
    if not cleaned:
        raise ValueError('Formato inválido. Usá 1.234,56 o 1.234')

    if AR_NUMBER_PATTERN.match(cleaned):
        normalized = cleaned.replace('.', '').replace(',', '.')
    else:
        normalized = cleaned

    try:
        return Decimal(normalized)
    except (InvalidOperation, ValueError):
        raise ValueError('Formato inválido. Usá 1.234,56 o 1.234')


def to_decimal(value, allow_negative: bool = False) -> Decimal:
    """
    Coerce a JSON value (number or string) to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValueError: for empty, non-numeric, non-finite or (unless allowed) negative values.
    """
    if value is None or isinstance(value, bool):
        raise ValueError('Valor numérico requerido')

    if isinstance(value, str):
        result = parse_ar_number(value)
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f'Valor numérico inválido: {value!r}')

    if not result.is_finite():
        raise ValueError(f'Valor numérico inválido: {value!r}')
    if result < 0 and not allow_negative:
        raise ValueError('El valor no puede ser negativo')
    return result


def to_quantity(value) -> int:
    """Coerce a quantity to a positive integer."""
    number = to_decimal(value, allow_negative=True)
    if number != number.to_integral_value():
        raise ValueError('La cantidad debe ser un número entero')
    quantity = int(number)
    if quantity <= 0:
        raise ValueError('La cantidad debe ser mayor a 0')
    return quantity


def to_date(value) -> date:
    """Parse an ISO date (YYYY-MM-DD, a full ISO datetime is truncated)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError('Fecha requerida')
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValueError(f'Fecha inválida: {value}. Usá AAAA-MM-DD')
