"""
Utilidades de formateo en estilo argentino.
Usadas por los comandos de consola para reportar montos.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


def money_ar_2(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formatea un monto monetario en estilo argentino con exactamente 2 decimales.

    Examples:
        money_ar_2(1079.545) -> "$ 1.079,55"
        money_ar_2(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    num = abs(num)

    integer_part, decimal_part = f"{num:.2f}".split(".")
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    integer_formatted = '.'.join(groups)[::-1]

    return f"{sign}$ {integer_formatted},{decimal_part}"
