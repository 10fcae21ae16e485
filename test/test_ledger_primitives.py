from datetime import datetime

import pytest

from bookkeeper.domain.errors import InvalidArgumentError
from bookkeeper.domain.ledger import (
    compute_discount,
    compute_sale_profit,
    sale_due_delta,
    sale_due_portion,
    sale_paid_portion,
)
from bookkeeper.domain.models import DiscountType, PaymentMethod, Sale, SaleLine


def _sale(lines, discount=0.0, method=PaymentMethod.CASH, amount_paid=0.0, credit=0.0):
    subtotal = sum(line.line_total for line in lines)
    return Sale(
        id=1,
        sale_id="SALE-0001",
        date=datetime(2024, 1, 5, 10, 0, 0),
        customer_id=1,
        items=tuple(lines),
        subtotal=subtotal,
        discount_type=DiscountType.AMOUNT if discount else DiscountType.NONE,
        discount_value=discount,
        discount=discount,
        total=subtotal - discount,
        payment_method=method,
        amount_paid=amount_paid,
        credit_applied=credit,
    )


def test_discount_by_type():
    assert compute_discount(200.0, DiscountType.NONE, 50) == 0.0
    assert compute_discount(200.0, "percentage", 10) == 20.0
    assert compute_discount(200.0, DiscountType.AMOUNT, 35) == 35.0


def test_discount_is_clamped_to_subtotal():
    for subtotal in (0.0, 1.0, 19.99, 250.0):
        for kind, value in (("none", 5), ("percentage", 150), ("percentage", -10), ("amount", 1000), ("amount", -3)):
            d = compute_discount(subtotal, kind, value)
            assert 0.0 <= d <= subtotal


def test_discount_rejects_bad_input():
    with pytest.raises(InvalidArgumentError):
        compute_discount(-1.0, DiscountType.AMOUNT, 1)
    with pytest.raises(InvalidArgumentError, match="Unknown discount type"):
        compute_discount(10.0, "coupon", 1)


def test_profit_spreads_discount_over_lines():
    costs = {1: 5.0, 2: 12.0}
    sale = _sale([SaleLine(1, 2, 10.0), SaleLine(2, 1, 30.0)], discount=15.0)

    profit = compute_sale_profit(sale, costs.get)

    assert sale.total == 35.0
    assert profit == pytest.approx(sale.total - (5.0 * 2 + 12.0 * 1))


def test_profit_skips_lines_without_cost():
    sale = _sale([SaleLine(1, 2, 10.0), SaleLine(99, 1, 30.0)])
    assert compute_sale_profit(sale, {1: 4.0}.get) == pytest.approx(12.0)


def test_paid_and_due_portions():
    lines = [SaleLine(1, 2, 10.0)]
    assert sale_paid_portion(_sale(lines, method=PaymentMethod.BANK)) == 20.0
    assert sale_due_portion(_sale(lines, method=PaymentMethod.BANK)) == 0.0

    split = _sale(lines, method=PaymentMethod.SPLIT, amount_paid=12.0)
    assert sale_paid_portion(split) == 12.0
    assert sale_due_portion(split) == 8.0
    assert sale_due_delta(split) == 8.0

    due_with_credit = _sale(lines, method=PaymentMethod.DUE, credit=5.0)
    assert sale_due_portion(due_with_credit) == 15.0
    # credit consumed from a negative balance moves the balance back up
    assert sale_due_delta(due_with_credit) == 20.0
