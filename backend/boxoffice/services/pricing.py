"""
Money arithmetic for orders.

All amounts are Decimal quantized to cents with half-up rounding; the
order total is computed here once and stored.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_money(amount) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    fee: Decimal
    total: Decimal


def subtotal_of(lines: Iterable[tuple[int, Decimal]]) -> Decimal:
    """Sum of quantity * unit_price over (quantity, unit_price) pairs."""
    return quantize_money(sum((Decimal(price) * qty for qty, price in lines), ZERO))


def compute_totals(subtotal: Decimal, discount: Decimal, fee_percent: Decimal) -> OrderTotals:
    """
    total = subtotal - discount + fee, where the service fee is a percentage
    of the post-discount subtotal.
    """
    subtotal = quantize_money(subtotal)
    discount = min(quantize_money(discount), subtotal)
    discounted = subtotal - discount
    fee = quantize_money(discounted * Decimal(fee_percent) / Decimal(100))
    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        fee=fee,
        total=quantize_money(discounted + fee),
    )
