from pathlib import Path

import pytest

from bookkeeper.domain.errors import InsufficientStockError, InvalidArgumentError, NotFoundError
from bookkeeper.domain.models import (
    PaymentMethod,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
)
from conftest import make_container


def _setup(tmp_path: Path, opening_balance: float = 0.0):
    app, clock = make_container(tmp_path)
    item_id = app.inventory.add_item("Ledger Book", "Books", production_price=5.0, selling_price=10.0, stock=3)
    customer_id = app.inventory.add_customer("Acme", opening_balance=opening_balance)
    return app, clock, item_id, customer_id


def test_cash_sale_decrements_stock_and_books_profit(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    sale = app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 2}], PaymentMethod.CASH)

    assert sale.sale_id == "SALE-0001"
    assert sale.total == 20.0
    assert app.inventory.get_item(item_id).stock == 1
    assert app.inventory.get_customer(customer_id).due_balance == 0.0
    assert app.repo.list_transactions() == []

    report = app.reporting.monthly_report(sale.date.year, sale.date.month)
    assert report.monthly_activity.profit_from_paid_sales == pytest.approx(10.0)


def test_split_sale_creates_pending_and_paid_receivables(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    sale = app.sales.add_sale(
        customer_id,
        [{"item_id": item_id, "quantity": 2}],
        PaymentMethod.SPLIT,
        amount_paid=12.0,
        split_payment_method=PaymentMethod.BANK,
    )

    assert app.inventory.get_customer(customer_id).due_balance == pytest.approx(8.0)
    entries = app.repo.list_transactions(TransactionType.RECEIVABLE, customer_id=customer_id)
    by_purpose = {t.purpose: t for t in entries}
    assert len(entries) == 2
    assert by_purpose[TransactionPurpose.SALE_DUE].amount == pytest.approx(8.0)
    assert by_purpose[TransactionPurpose.SALE_DUE].status is TransactionStatus.PENDING
    assert by_purpose[TransactionPurpose.SPLIT_PAYMENT].amount == pytest.approx(12.0)
    assert by_purpose[TransactionPurpose.SPLIT_PAYMENT].status is TransactionStatus.PAID
    assert by_purpose[TransactionPurpose.SPLIT_PAYMENT].payment_method is PaymentMethod.BANK
    assert all(t.sale_id == sale.id for t in entries)


def test_oversell_fails_and_changes_nothing(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    with pytest.raises(InsufficientStockError) as exc_info:
        app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 5}], PaymentMethod.DUE)

    assert exc_info.value.available == 3
    assert exc_info.value.requested == 5
    assert app.inventory.get_item(item_id).stock == 3
    assert app.inventory.get_customer(customer_id).due_balance == 0.0
    assert app.sales.list_sales() == []


def test_repeated_lines_are_aggregated_before_stock_check(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    with pytest.raises(InsufficientStockError):
        app.sales.add_sale(
            customer_id,
            [{"item_id": item_id, "quantity": 2}, {"item_id": item_id, "quantity": 2}],
            PaymentMethod.CASH,
        )
    assert app.inventory.get_item(item_id).stock == 3


def test_missing_customer_or_item(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    with pytest.raises(NotFoundError):
        app.sales.add_sale(999, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH)
    with pytest.raises(NotFoundError):
        app.sales.add_sale(customer_id, [{"item_id": 999, "quantity": 1}], PaymentMethod.CASH)


def test_sale_validation(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    with pytest.raises(InvalidArgumentError, match="Cart is empty"):
        app.sales.add_sale(customer_id, [], PaymentMethod.CASH)
    with pytest.raises(InvalidArgumentError, match="Quantity"):
        app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 0}], PaymentMethod.CASH)
    with pytest.raises(InvalidArgumentError, match="Split amount paid"):
        app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.SPLIT, amount_paid=50)
    with pytest.raises(InvalidArgumentError):
        app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.PAID_BY_CREDIT)


@pytest.mark.parametrize("amount_paid", [0.0, 10.0, None])
def test_split_sale_needs_a_partial_payment(tmp_path: Path, amount_paid):
    app, _, item_id, customer_id = _setup(tmp_path)

    with pytest.raises(InvalidArgumentError, match="Split amount paid"):
        app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.SPLIT, amount_paid=amount_paid)

    assert app.inventory.get_item(item_id).stock == 3
    assert app.sales.list_sales() == []


def test_discount_is_applied_to_total(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    sale = app.sales.add_sale(
        customer_id,
        [{"item_id": item_id, "quantity": 3}],
        PaymentMethod.DUE,
        discount_type="percentage",
        discount_value=10,
    )

    assert sale.subtotal == 30.0
    assert sale.discount == pytest.approx(3.0)
    assert sale.total == pytest.approx(27.0)
    assert app.inventory.get_customer(customer_id).due_balance == pytest.approx(27.0)


def test_credit_covering_whole_sale_is_paid_by_credit(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path, opening_balance=-25.0)

    sale = app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 2}], PaymentMethod.CASH, credit_applied=20.0)

    assert sale.payment_method is PaymentMethod.PAID_BY_CREDIT
    assert app.inventory.get_customer(customer_id).due_balance == pytest.approx(-5.0)
    assert app.repo.list_transactions() == []

    with pytest.raises(InvalidArgumentError, match="Credit applied"):
        app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH, credit_applied=11.0)


def test_delete_sale_restores_stock_and_balance(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path, opening_balance=4.0)

    sale = app.sales.add_sale(
        customer_id, [{"item_id": item_id, "quantity": 2}], PaymentMethod.SPLIT, amount_paid=5.0
    )
    assert app.inventory.get_customer(customer_id).due_balance == pytest.approx(19.0)

    app.sales.delete_sale(sale.id)

    assert app.inventory.get_item(item_id).stock == 3
    assert app.inventory.get_customer(customer_id).due_balance == pytest.approx(4.0)
    assert app.repo.list_transactions() == []
    with pytest.raises(NotFoundError):
        app.sales.get_sale(sale.id)
    with pytest.raises(NotFoundError):
        app.sales.delete_sale(sale.id)


def test_sale_numbers_keep_increasing_after_delete(tmp_path: Path):
    app, _, item_id, customer_id = _setup(tmp_path)

    first = app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH)
    app.sales.delete_sale(first.id)
    second = app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH)

    assert second.sale_id == "SALE-0002"


def test_sales_pages_newest_first(tmp_path: Path):
    app, clock, item_id, customer_id = _setup(tmp_path)
    app.purchases.add_purchase("Paper Co", [{"item_name": "Ledger Book", "category": "Books", "quantity": 10, "cost": 5.0}], "Cash")

    codes = []
    for _ in range(5):
        clock.advance(minutes=1)
        codes.append(app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH).sale_id)

    page, more = app.sales.list_sales_page(limit=2)
    assert [s.sale_id for s in page] == codes[::-1][:2]
    assert more is True

    page, more = app.sales.list_sales_page(limit=2, after_id=page[-1].id)
    assert [s.sale_id for s in page] == codes[::-1][2:4]
    assert more is True

    page, more = app.sales.list_sales_page(limit=2, after_id=page[-1].id)
    assert [s.sale_id for s in page] == codes[:1]
    assert more is False
