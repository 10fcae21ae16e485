from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from bookkeeper.domain.errors import InvalidArgumentError
from bookkeeper.domain.ledger import ItemCostLookup, compute_sale_profit, sale_due_portion, sale_paid_portion
from bookkeeper.domain.models import (
    Donation,
    DonationKind,
    Expense,
    PaymentMethod,
    Sale,
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
)
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.services.overview_service import OverviewService

log = logging.getLogger(__name__)

SaleLookup = Callable[[int], Optional[Sale]]


@dataclass(frozen=True)
class OpeningBalances:
    cash: float = 0.0
    bank: float = 0.0
    stock_value: float = 0.0


@dataclass(frozen=True)
class MonthlyActivity:
    total_sales: float
    profit_from_paid_sales: float
    profit_from_due_payments: float
    received_payments_from_dues: float
    total_profit: float
    total_expenses: float
    total_donations: float


@dataclass
class MethodSplit:
    cash: float = 0.0
    bank: float = 0.0

    def add(self, method: Optional[PaymentMethod], amount: float) -> None:
        if method is PaymentMethod.BANK:
            self.bank += amount
        else:
            self.cash += amount


@dataclass
class CashFlow:
    sales: MethodSplit = field(default_factory=MethodSplit)
    due_payments: MethodSplit = field(default_factory=MethodSplit)
    donations: MethodSplit = field(default_factory=MethodSplit)
    expenses: MethodSplit = field(default_factory=MethodSplit)


@dataclass(frozen=True)
class SalesBreakdown:
    paid: float
    due: float


@dataclass(frozen=True)
class MonthlyReport:
    period: Optional[str]
    opening_balances: OpeningBalances
    monthly_activity: MonthlyActivity
    net_profit_or_loss: float
    sales_breakdown: SalesBreakdown
    cash_flow: CashFlow


@dataclass(frozen=True)
class DashboardStats:
    period: str
    total_items_in_stock: int
    total_item_titles: int
    monthly_sales_value: float
    monthly_sales_count: int
    monthly_expenses: float
    gross_profit: float
    net_profit: float
    receivables_amount: float
    pending_receivables_count: int


def _realized_profit(sale: Sale, item_cost: ItemCostLookup) -> float:
    profit = compute_sale_profit(sale, item_cost)
    if sale.payment_method is PaymentMethod.SPLIT:
        # only the part paid at the till is realized now
        return profit * (sale.amount_paid / sale.total) if sale.total > 0 else 0.0
    return profit


def _due_payment_profit(payment: Transaction, sale_lookup: SaleLookup, item_cost: ItemCostLookup) -> float:
    if payment.sale_id is None:
        return 0.0
    sale = sale_lookup(payment.sale_id)
    if sale is None or sale.total <= 0:
        return 0.0
    baseline = sale_due_portion(sale)
    if baseline <= 0:
        return 0.0
    due_share_profit = compute_sale_profit(sale, item_cost) * (baseline / sale.total)
    return due_share_profit * (payment.amount / baseline)


def generate_monthly_report(
    sales: Iterable[Sale],
    expenses: Iterable[Expense],
    donations: Iterable[Donation],
    transactions: Iterable[Transaction],
    item_cost: ItemCostLookup,
    opening_balances: Optional[OpeningBalances] = None,
    sale_lookup: Optional[SaleLookup] = None,
    period: Optional[str] = None,
) -> MonthlyReport:
    """
    Profit and cash movement for one month of already-sliced records.

    ``transactions`` are the ledger entries settled in the month. Profit on a
    settled sale due is the sale's profit scaled to its unpaid share and then
    to the fraction this payment covers. A due whose sale cannot be found, or
    whose unpaid baseline is zero, adds nothing.
    """
    sales = list(sales)
    expenses = list(expenses)
    income = [d for d in donations if d.kind is DonationKind.DONATION]
    transactions = list(transactions)
    if sale_lookup is None:
        by_id = {s.id: s for s in sales}
        sale_lookup = by_id.get

    flow = CashFlow()
    profit_from_paid_sales = 0.0
    paid_total = 0.0
    due_total = 0.0
    for sale in sales:
        if sale.payment_method in (PaymentMethod.CASH, PaymentMethod.BANK, PaymentMethod.SPLIT):
            profit_from_paid_sales += _realized_profit(sale, item_cost)
        paid = sale_paid_portion(sale)
        paid_total += paid
        due_total += sale_due_portion(sale)
        if paid:
            method = sale.split_payment_method if sale.payment_method is PaymentMethod.SPLIT else sale.payment_method
            flow.sales.add(method, paid)

    profit_from_due_payments = 0.0
    received_from_dues = 0.0
    for t in transactions:
        if t.type is not TransactionType.RECEIVABLE or t.status is not TransactionStatus.PAID:
            continue
        if t.purpose is TransactionPurpose.SALE_DUE:
            profit_from_due_payments += _due_payment_profit(t, sale_lookup, item_cost)
        elif t.purpose is TransactionPurpose.CUSTOMER_PAYMENT:
            received_from_dues += t.amount
            flow.due_payments.add(t.payment_method, t.amount)

    for d in income:
        flow.donations.add(d.payment_method, d.amount)
    for e in expenses:
        flow.expenses.add(e.payment_method, e.amount)

    total_expenses = sum(e.amount for e in expenses)
    total_donations = sum(d.amount for d in income)
    total_profit = profit_from_paid_sales + profit_from_due_payments

    activity = MonthlyActivity(
        total_sales=sum(s.total for s in sales),
        profit_from_paid_sales=profit_from_paid_sales,
        profit_from_due_payments=profit_from_due_payments,
        received_payments_from_dues=received_from_dues,
        total_profit=total_profit,
        total_expenses=total_expenses,
        total_donations=total_donations,
    )
    return MonthlyReport(
        period=period,
        opening_balances=opening_balances or OpeningBalances(),
        monthly_activity=activity,
        net_profit_or_loss=total_profit + total_donations - total_expenses,
        sales_breakdown=SalesBreakdown(paid=paid_total, due=due_total),
        cash_flow=flow,
    )


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    if not 1 <= int(month) <= 12:
        raise InvalidArgumentError("Month must be between 1 and 12.")
    start = datetime(int(year), int(month), 1)
    end = datetime(start.year + 1, 1, 1) if start.month == 12 else datetime(start.year, start.month + 1, 1)
    return start, end


class ReportingService:
    def __init__(
        self,
        repo: SqliteRepository,
        overview: Optional[OverviewService] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repo = repo
        self.overview = overview or OverviewService(repo)
        self.clock = clock

    def monthly_report(self, year: int, month: int) -> MonthlyReport:
        start, end = month_bounds(year, month)
        sales = self.repo.list_sales(start, end)
        transactions = self.repo.list_transactions_settled_between(start, end)
        costs = {item.id: item.production_price for item in self.repo.list_items(include_inactive=True)}

        sales_by_id = {s.id: s for s in sales}
        for t in transactions:
            if t.sale_id is not None and t.sale_id not in sales_by_id:
                sales_by_id[t.sale_id] = self.repo.get_sale(t.sale_id)

        before = self.overview.get_account_overview(start - timedelta(days=1))
        report = generate_monthly_report(
            sales,
            self.repo.list_expenses(start, end),
            self.repo.list_donations(start, end),
            transactions,
            costs.get,
            opening_balances=OpeningBalances(cash=before.cash, bank=before.bank, stock_value=before.stock_value),
            sale_lookup=sales_by_id.get,
            period=f"{start.year:04d}-{start.month:02d}",
        )
        log.info("monthly_report period=%s net=%.2f", report.period, report.net_profit_or_loss)
        return report

    def dashboard_stats(self) -> DashboardStats:
        """Headline figures for the current calendar month, plus stock and open dues."""
        today = self.clock()
        start, end = month_bounds(today.year, today.month)
        items = self.repo.list_items()
        costs = {item.id: item.production_price for item in self.repo.list_items(include_inactive=True)}
        sales = self.repo.list_sales(start, end)
        expenses = sum(e.amount for e in self.repo.list_expenses(start, end))
        gross = sum((compute_sale_profit(s, costs.get) for s in sales), 0.0)
        owing = self.repo.list_customers_with_due()

        return DashboardStats(
            period=f"{start.year:04d}-{start.month:02d}",
            total_items_in_stock=sum(item.stock for item in items),
            total_item_titles=len(items),
            monthly_sales_value=sum((s.total for s in sales), 0.0),
            monthly_sales_count=len(sales),
            monthly_expenses=expenses,
            gross_profit=gross,
            net_profit=gross - expenses,
            receivables_amount=sum((c.due_balance for c in owing), 0.0),
            pending_receivables_count=len(owing),
        )

    def export_monthly_report_excel(self, path: str, year: int, month: int) -> MonthlyReport:
        report = self.monthly_report(year, month)
        start, end = month_bounds(year, month)
        items = {item.id: item for item in self.repo.list_items(include_inactive=True)}
        customers = {c.id: c.name for c in self.repo.list_customers()}

        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = f"Monthly report {report.period}"
        ws["A1"].font = Font(bold=True, size=14)

        activity = report.monthly_activity
        flow = report.cash_flow
        rows = [
            ("Opening cash", report.opening_balances.cash),
            ("Opening bank", report.opening_balances.bank),
            ("Opening stock value", report.opening_balances.stock_value),
            ("Total sales", activity.total_sales),
            ("Sales paid", report.sales_breakdown.paid),
            ("Sales due", report.sales_breakdown.due),
            ("Profit from paid sales", activity.profit_from_paid_sales),
            ("Profit from due payments", activity.profit_from_due_payments),
            ("Received payments from dues", activity.received_payments_from_dues),
            ("Total profit", activity.total_profit),
            ("Total donations", activity.total_donations),
            ("Total expenses", activity.total_expenses),
            ("Net profit / loss", report.net_profit_or_loss),
        ]
        r = 3
        for label, val in rows:
            ws[f"A{r}"] = label
            ws[f"B{r}"] = float(val)
            money(ws[f"B{r}"])
            r += 1
        ws[f"A{r - 1}"].font = Font(bold=True)

        r += 1
        ws[f"A{r}"], ws[f"B{r}"], ws[f"C{r}"] = "Cash flow", "Cash", "Bank"
        bold_row(ws, r)
        for label, split in (
            ("Sales", flow.sales),
            ("Due payments", flow.due_payments),
            ("Donations", flow.donations),
            ("Expenses", flow.expenses),
        ):
            r += 1
            ws[f"A{r}"] = label
            ws[f"B{r}"] = float(split.cash)
            ws[f"C{r}"] = float(split.bank)
            money(ws[f"B{r}"])
            money(ws[f"C{r}"])

        set_widths(ws, {"A": 30, "B": 18, "C": 18})

        # -------- 2) Sales Detail --------
        ws2 = wb.create_sheet("Sales Detail")
        ws2.append([
            "Sale ID", "Date", "Customer", "Payment",
            "Item", "Qty", "Unit Price", "Unit Cost",
            "Line Total", "Sale Total",
        ])
        bold_row(ws2, 1)

        out_row = 2
        for s in sorted(self.repo.list_sales(start, end), key=lambda s: (s.date, s.id)):
            for line in s.items:
                item = items.get(line.item_id)
                ws2.append([
                    s.sale_id, s.date.isoformat(sep=" "), customers.get(s.customer_id, ""), s.payment_method.value,
                    item.title if item else f"#{line.item_id}", int(line.quantity), float(line.price),
                    float(item.production_price) if item else 0.0,
                    float(line.line_total), float(s.total),
                ])
                for col in "GHIJ":
                    money(ws2[f"{col}{out_row}"])
                out_row += 1

        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 12, "B": 20, "C": 24, "D": 14,
            "E": 32, "F": 6, "G": 14, "H": 14,
            "I": 14, "J": 14,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "SalesDetail", 1, 1, ws2.max_row, 10)

        wb.save(path)
        log.info("monthly_report_exported period=%s path=%s", report.period, path)
        return report
