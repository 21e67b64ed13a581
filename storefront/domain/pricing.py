"""Cart pricing rule.

Amounts are ``Decimal`` throughout; rounding happens once, half-up to cents,
where a total is computed.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

FREE_SHIPPING_THRESHOLD = Decimal("50.00")
SHIPPING_FEE = Decimal("9.99")
CENTS = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Round half-up to cents. Floats go through ``str`` to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_cents(value: Number) -> int:
    return int(to_money(value) * 100)


def line_total(unit_price: Number, quantity: int) -> Decimal:
    return to_money(Decimal(str(unit_price)) * quantity)


def shipping_for(subtotal: Decimal) -> Decimal:
    return Decimal("0.00") if subtotal >= FREE_SHIPPING_THRESHOLD else SHIPPING_FEE


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    shipping: Decimal
    total: Decimal


def compute_totals(lines: Iterable[Tuple[Number, int]]) -> Totals:
    """Totals for ``(unit_price, quantity)`` pairs.

    An empty cart has no shipping charge.
    """
    lines = list(lines)
    if not lines:
        zero = Decimal("0.00")
        return Totals(zero, zero, zero)
    raw = sum((Decimal(str(price)) * qty for price, qty in lines), Decimal("0"))
    subtotal = to_money(raw)
    shipping = shipping_for(subtotal)
    return Totals(subtotal=subtotal, shipping=shipping, total=to_money(subtotal + shipping))
