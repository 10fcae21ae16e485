from __future__ import annotations

from typing import Callable, Iterable, Optional

from bookkeeper.domain.errors import InvalidArgumentError
from bookkeeper.domain.models import DiscountType, PaymentMethod, Sale, SaleLine

ItemCostLookup = Callable[[int], Optional[float]]


def compute_discount(subtotal: float, discount_type: DiscountType | str, value: float) -> float:
    """
    none -> 0, percentage -> subtotal*value/100, amount -> value.
    The result is always clamped to [0, subtotal].
    """
    if subtotal < 0:
        raise InvalidArgumentError("Subtotal must be >= 0.")
    try:
        kind = DiscountType(discount_type or DiscountType.NONE)
    except ValueError as e:
        raise InvalidArgumentError(f"Unknown discount type: {discount_type}") from e

    value = float(value or 0.0)
    if kind is DiscountType.PERCENTAGE:
        discount = subtotal * value / 100.0
    elif kind is DiscountType.AMOUNT:
        discount = value
    else:
        discount = 0.0
    return min(max(discount, 0.0), float(subtotal))


def compute_subtotal(lines: Iterable[SaleLine]) -> float:
    return sum(line.line_total for line in lines)


def compute_sale_profit(sale: Sale, item_cost: ItemCostLookup) -> float:
    """
    Per line: (line subtotal - share of the sale discount) - cost * qty.

    The discount is spread over lines by revenue share, so for a sale whose
    items all resolve the result equals total - sum(cost * qty). Lines whose
    item cannot be found contribute nothing.
    """
    subtotal = float(sale.subtotal)
    profit = 0.0
    for line in sale.items:
        cost = item_cost(line.item_id)
        if cost is None:
            continue
        line_subtotal = line.line_total
        share = sale.discount * (line_subtotal / subtotal) if subtotal > 0 else 0.0
        profit += (line_subtotal - share) - float(cost) * line.quantity
    return profit


def payable_total(sale: Sale) -> float:
    return max(sale.total - sale.credit_applied, 0.0)


def sale_paid_portion(sale: Sale) -> float:
    """Money received at the moment of sale."""
    if sale.payment_method in (PaymentMethod.CASH, PaymentMethod.BANK):
        return payable_total(sale)
    if sale.payment_method is PaymentMethod.SPLIT:
        return float(sale.amount_paid or 0.0)
    return 0.0


def sale_due_portion(sale: Sale) -> float:
    if sale.payment_method is PaymentMethod.DUE:
        return payable_total(sale)
    if sale.payment_method is PaymentMethod.SPLIT:
        return max(payable_total(sale) - float(sale.amount_paid or 0.0), 0.0)
    return 0.0


def sale_due_delta(sale: Sale) -> float:
    """Change the sale makes to the customer's due balance."""
    return sale_due_portion(sale) + float(sale.credit_applied or 0.0)
