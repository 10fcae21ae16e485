from datetime import date, datetime
from pathlib import Path

import pytest

from bookkeeper.domain.models import OFFICE_ASSET_CATEGORY, CapitalMethod, DonationKind, PaymentMethod
from bookkeeper.services.overview_service import LedgerHistory, build_account_overview
from conftest import FixedClock, make_container


def test_empty_history_is_all_zero():
    overview = build_account_overview(LedgerHistory())
    assert overview.total_assets == 0.0
    assert overview.equity == 0.0


def test_cash_and_bank_fold(tmp_path: Path):
    app, clock = make_container(tmp_path, FixedClock(datetime(2024, 5, 2, 9, 0, 0)))
    item_id = app.inventory.add_item("Mug", "Kitchen", 4.0, 10.0, 10)
    customer_id = app.inventory.add_customer("Hooli")

    app.cashbook.add_capital(1000.0, CapitalMethod.CASH, is_initial=True)
    app.cashbook.add_capital(300.0, CapitalMethod.ASSET)
    app.cashbook.add_donation("Friend", 50.0, PaymentMethod.BANK)
    app.cashbook.add_donation("Owner", 70.0, PaymentMethod.CASH, kind=DonationKind.INTERNAL_TRANSFER)
    app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 2}], PaymentMethod.CASH)
    app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 3}], PaymentMethod.SPLIT, amount_paid=12.0, split_payment_method="Bank")
    app.receivables.add_payment(customer_id, 8.0, PaymentMethod.BANK)
    app.cashbook.add_expense("Rent", 6.0, PaymentMethod.CASH)
    app.cashbook.record_transfer(PaymentMethod.CASH, PaymentMethod.BANK, 100.0)

    o = app.overview.get_account_overview()

    assert o.cash == pytest.approx(1000 + 20 - 6 - 100)
    assert o.bank == pytest.approx(50 + 12 + 8 + 100)
    assert o.other_assets == pytest.approx(300.0)
    assert o.stock_value == pytest.approx(5 * 4.0)
    assert o.receivables == pytest.approx(18 - 8)
    assert o.total_assets == pytest.approx(o.cash + o.bank + o.receivables + o.stock_value + o.office_assets_value)
    assert o.equity == pytest.approx(o.total_assets - o.payables)


def test_cutoff_reverses_later_stock_moves(tmp_path: Path):
    app, clock = make_container(tmp_path, FixedClock(datetime(2024, 5, 1, 10, 0, 0)))
    item_id = app.inventory.add_item("Mug", "Kitchen", 4.0, 10.0, 10)
    customer_id = app.inventory.add_customer("Hooli")
    app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH)

    clock.set(datetime(2024, 5, 3, 10, 0, 0))
    app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 4}], PaymentMethod.DUE)
    app.purchases.add_purchase("Clay Co", [{"item_name": "Mug", "category": "Kitchen", "quantity": 6, "cost": 4.0}], "Cash")
    app.returns.add_sales_return(customer_id, [{"item_id": item_id, "quantity": 1}])

    assert app.inventory.get_item(item_id).stock == 12
    before = app.overview.get_account_overview(date(2024, 5, 1))
    assert before.stock_value == pytest.approx(9 * 4.0)
    assert before.cash == pytest.approx(10.0)
    assert before.receivables == 0.0

    now = app.overview.get_account_overview()
    assert now.stock_value == pytest.approx(12 * 4.0)
    assert now.receivables == pytest.approx(40.0 - 10.0)
    assert now.cash == pytest.approx(10.0 - 24.0)


def test_closing_stock_per_item(tmp_path: Path):
    app, clock = make_container(tmp_path, FixedClock(datetime(2024, 5, 1, 10, 0, 0)))
    mug = app.inventory.add_item("Mug", "Kitchen", 4.0, 10.0, 10)
    bowl = app.inventory.add_item("Bowl", "Kitchen", 3.0, 8.0, 2)
    gone = app.inventory.add_item("Vase", "Home", 9.0, 20.0, 1)
    app.inventory.delete_item(gone)
    customer_id = app.inventory.add_customer("Hooli")

    clock.set(datetime(2024, 5, 3, 10, 0, 0))
    app.sales.add_sale(customer_id, [{"item_id": mug, "quantity": 3}, {"item_id": bowl, "quantity": 2}], PaymentMethod.CASH)

    def quantities(as_of=None):
        return {item.title: qty for item, qty in app.overview.closing_stock(as_of)}

    assert quantities(date(2024, 5, 2)) == {"Mug": 10, "Bowl": 2}
    assert quantities() == {"Mug": 7, "Bowl": 0}
    assert app.overview.get_account_overview(date(2024, 5, 2)).stock_value == pytest.approx(10 * 4.0 + 2 * 3.0)


def test_cutoff_is_end_of_day_inclusive(tmp_path: Path):
    app, clock = make_container(tmp_path, FixedClock(datetime(2024, 5, 1, 23, 59, 59)))
    app.cashbook.add_expense("Late bill", 5.0, PaymentMethod.BANK)

    assert app.overview.get_account_overview(date(2024, 5, 1)).bank == pytest.approx(-5.0)
    assert app.overview.get_account_overview(datetime(2024, 4, 30, 18, 0)).bank == 0.0


def test_payables_office_assets_and_initial_capital(tmp_path: Path):
    app, clock = make_container(tmp_path, FixedClock(datetime(2024, 6, 1, 9, 0, 0)))
    app.purchases.add_purchase(
        "Furniture Inc",
        [{"item_name": "Desk", "category": OFFICE_ASSET_CATEGORY, "quantity": 2, "cost": 75.0}],
        PaymentMethod.DUE,
        due_date=datetime(2024, 6, 30),
    )
    app.cashbook.add_capital(500.0, "Bank", is_initial=True, date=datetime(2024, 6, 20))

    mid_month = app.overview.get_account_overview(date(2024, 6, 10))
    assert mid_month.office_assets_value == pytest.approx(150.0)
    assert mid_month.payables == 0.0
    assert mid_month.bank == pytest.approx(500.0)
    assert app.inventory.list_items() == []

    later = app.overview.get_account_overview(date(2024, 7, 1))
    assert later.payables == pytest.approx(150.0)
    assert later.equity == pytest.approx(later.total_assets - 150.0)
