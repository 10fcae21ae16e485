from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Sequence

from bookkeeper.domain.errors import NotFoundError
from bookkeeper.domain.ledger import sale_due_delta, sale_paid_portion
from bookkeeper.domain.models import (
    OFFICE_ASSET_CATEGORY,
    CapitalContribution,
    CapitalMethod,
    Customer,
    Donation,
    DonationKind,
    Expense,
    Item,
    PaymentMethod,
    Purchase,
    RefundMethod,
    Sale,
    SalesReturn,
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
    Transfer,
)
from bookkeeper.repositories.sqlite_repo import SqliteRepository


@dataclass(frozen=True)
class LedgerHistory:
    """Everything the overview folds over, fetched in one pass."""

    items: Sequence[Item] = ()
    customers: Sequence[Customer] = ()
    sales: Sequence[Sale] = ()
    purchases: Sequence[Purchase] = ()
    expenses: Sequence[Expense] = ()
    donations: Sequence[Donation] = ()
    transfers: Sequence[Transfer] = ()
    capital: Sequence[CapitalContribution] = ()
    returns: Sequence[SalesReturn] = ()
    transactions: Sequence[Transaction] = ()


@dataclass(frozen=True)
class AccountOverview:
    cash: float
    bank: float
    stock_value: float
    office_assets_value: float
    receivables: float
    payables: float
    total_assets: float
    equity: float
    other_assets: float = 0.0
    as_of: Optional[date] = None


@dataclass
class _Balances:
    cash: float = 0.0
    bank: float = 0.0
    other: float = 0.0

    def add(self, method: Optional[PaymentMethod | CapitalMethod], amount: float) -> None:
        value = getattr(method, "value", method)
        if value == "Bank":
            self.bank += amount
        elif value == "Asset":
            self.other += amount
        else:
            self.cash += amount


def _cutoff_end(as_of: Optional[date | datetime]) -> Optional[datetime]:
    """First instant after the as-of day."""
    if as_of is None:
        return None
    day = as_of.date() if isinstance(as_of, datetime) else as_of
    return datetime.combine(day + timedelta(days=1), time.min)


class _Window:
    def __init__(self, as_of: Optional[date | datetime]):
        self.end = _cutoff_end(as_of)

    def __contains__(self, when: Optional[datetime]) -> bool:
        if self.end is None:
            return True
        return when is not None and when < self.end

    def after(self, when: Optional[datetime]) -> bool:
        return self.end is not None and when is not None and when >= self.end


def _customer_payments(transactions: Sequence[Transaction]) -> list[Transaction]:
    return [
        t
        for t in transactions
        if t.type is TransactionType.RECEIVABLE
        and t.status is TransactionStatus.PAID
        and t.purpose is TransactionPurpose.CUSTOMER_PAYMENT
    ]


def compute_receivables(
    history: LedgerHistory,
    as_of: Optional[date | datetime] = None,
    customer_id: Optional[int] = None,
) -> float:
    """
    Opening balances + sale due/credit deltas - customer payments
    - account-credit returns, each filtered to the cutoff.
    """
    window = _Window(as_of)

    def mine(cid: Optional[int]) -> bool:
        return customer_id is None or cid == customer_id

    total = sum(c.opening_balance for c in history.customers if mine(c.id))
    total += sum(sale_due_delta(s) for s in history.sales if mine(s.customer_id) and s.date in window)
    total -= sum(t.amount for t in _customer_payments(history.transactions) if mine(t.customer_id) and t.effective_date in window)
    total -= sum(
        r.total_return_value
        for r in history.returns
        if mine(r.customer_id) and r.refund_method is RefundMethod.ACCOUNT_CREDIT and r.date in window
    )
    return total


def closing_stock(history: LedgerHistory, as_of: Optional[date | datetime] = None) -> list[tuple[Item, int]]:
    """
    Quantity of every active item held at the end of ``as_of``.

    Only current stock is stored, so movements after the cutoff are undone:
    later sales are added back, later purchases and returns taken out.
    """
    window = _Window(as_of)
    moved_after: dict[int, int] = defaultdict(int)
    for sale in history.sales:
        if window.after(sale.date):
            for line in sale.items:
                moved_after[line.item_id] += line.quantity
    for purchase in history.purchases:
        if window.after(purchase.date):
            for line in purchase.items:
                if line.item_id is not None and line.category != OFFICE_ASSET_CATEGORY:
                    moved_after[line.item_id] -= line.quantity
    for sales_return in history.returns:
        if window.after(sales_return.date):
            for line in sales_return.items:
                moved_after[line.item_id] -= line.quantity

    return [
        (item, max(item.stock + moved_after.get(item.id, 0), 0))
        for item in history.items
        if item.active
    ]


def _closing_stock_value(history: LedgerHistory, as_of: Optional[date | datetime]) -> float:
    return sum((item.production_price * qty for item, qty in closing_stock(history, as_of)), 0.0)


def build_account_overview(history: LedgerHistory, as_of: Optional[date | datetime] = None) -> AccountOverview:
    """
    Balance-sheet style snapshot at the end of ``as_of`` (inclusive), or of
    everything recorded when ``as_of`` is None.
    """
    window = _Window(as_of)
    money = _Balances()

    for contribution in history.capital:
        if contribution.is_initial or contribution.date in window:
            money.add(contribution.method, contribution.amount)

    for donation in history.donations:
        if donation.kind is DonationKind.DONATION and donation.date in window:
            money.add(donation.payment_method, donation.amount)

    for sale in history.sales:
        if sale.date not in window:
            continue
        paid = sale_paid_portion(sale)
        if paid:
            method = sale.split_payment_method if sale.payment_method is PaymentMethod.SPLIT else sale.payment_method
            money.add(method, paid)

    for payment in _customer_payments(history.transactions):
        if payment.effective_date in window:
            money.add(payment.payment_method, payment.amount)

    for expense in history.expenses:
        if expense.date in window:
            money.add(expense.payment_method, -expense.amount)

    for transfer in history.transfers:
        if transfer.date in window:
            money.add(transfer.from_account, -transfer.amount)
            money.add(transfer.to_account, transfer.amount)

    office_assets = sum(
        line.line_total
        for purchase in history.purchases
        if purchase.date in window
        for line in purchase.items
        if line.category == OFFICE_ASSET_CATEGORY
    )
    stock_value = _closing_stock_value(history, as_of)
    receivables = compute_receivables(history, as_of)
    payables = sum(
        t.amount
        for t in history.transactions
        if t.type is TransactionType.PAYABLE and t.status is TransactionStatus.PENDING and t.due_date in window
    )

    total_assets = money.cash + money.bank + receivables + stock_value + office_assets
    return AccountOverview(
        cash=money.cash,
        bank=money.bank,
        stock_value=stock_value,
        office_assets_value=office_assets,
        receivables=receivables,
        payables=payables,
        total_assets=total_assets,
        equity=total_assets - payables,
        other_assets=money.other,
        as_of=as_of.date() if isinstance(as_of, datetime) else as_of,
    )


class OverviewService:
    def __init__(self, repo: SqliteRepository):
        self.repo = repo

    def load_history(self) -> LedgerHistory:
        return LedgerHistory(
            items=self.repo.list_items(include_inactive=True),
            customers=self.repo.list_customers(),
            sales=self.repo.list_sales(),
            purchases=self.repo.list_purchases(),
            expenses=self.repo.list_expenses(),
            donations=self.repo.list_donations(),
            transfers=self.repo.list_transfers(),
            capital=self.repo.list_capital(),
            returns=self.repo.list_sales_returns(),
            transactions=self.repo.list_transactions(),
        )

    def get_account_overview(self, as_of: Optional[date | datetime] = None) -> AccountOverview:
        return build_account_overview(self.load_history(), as_of)

    def closing_stock(self, as_of: Optional[date | datetime] = None) -> list[tuple[Item, int]]:
        return closing_stock(self.load_history(), as_of)

    def replay_due_balance(self, customer_id: int) -> float:
        """Due balance rebuilt from the history instead of the running total."""
        if self.repo.get_customer(customer_id) is None:
            raise NotFoundError("Customer not found.")
        return compute_receivables(self.load_history(), customer_id=customer_id)
