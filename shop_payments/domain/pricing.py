"""
Invoice pricing and platform fee rules.

All arithmetic is done in ``Decimal`` and rounded half-up to whole cents so
that ``x.5`` always rounds away from zero for positive amounts.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

from shop_payments.core.models import Invoice, LineItem


Number = Union[int, float, str, Decimal]

_HUNDRED = Decimal(100)


def _decimal(value: Number) -> Decimal:
    # str() keeps float inputs like 0.1 from dragging binary noise along
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to an integer, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def subtotal(items: Iterable[LineItem]) -> Decimal:
    """Sum of qty x price over all line items."""
    return sum((_decimal(item.qty) * _decimal(item.price) for item in items), Decimal(0))


def invoice_amount_cents(
    items: Iterable[LineItem],
    tax_rate: Number = 0,
    discount_rate: Number = 0,
) -> int:
    """
    Compute the amount to charge for an invoice.

    Args:
        items: Invoice line items.
        tax_rate: Tax percent applied to the subtotal.
        discount_rate: Discount percent applied to the subtotal.

    Returns:
        Amount in cents: round_half_up(100 * (subtotal + tax - discount)).
    """
    base = subtotal(items)
    tax = base * _decimal(tax_rate) / _HUNDRED
    discount = base * _decimal(discount_rate) / _HUNDRED
    return round_half_up((base + tax - discount) * _HUNDRED)


def amount_for_invoice(invoice: Invoice) -> int:
    """Amount in cents for an invoice; the stored total is never used."""
    return invoice_amount_cents(invoice.items, invoice.tax_rate, invoice.discount)


def platform_fee_cents(amount_cents: int, rate: Number, flat_cents: int) -> int:
    """
    Platform application fee for a charge.

    >>> platform_fee_cents(11000, "0.05", 5)
    555
    """
    return round_half_up(Decimal(amount_cents) * _decimal(rate)) + flat_cents
