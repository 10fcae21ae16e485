from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar

from bookkeeper.domain.errors import InsufficientStockError, NotFoundError, TransactionConflictError
from bookkeeper.domain.models import (
    Customer,
    DiscountType,
    Expense,
    Item,
    PaymentMethod,
    PurchaseLine,
    RefundMethod,
    ReturnLine,
    Sale,
    SaleLine,
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
)
from bookkeeper.repositories.sqlite_repo import (
    SqliteRepository,
    customer_from_row,
    fetch_sales,
    format_sequence,
    insert_expense,
    item_from_row,
    next_sequence,
    to_iso,
    transaction_from_row,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

_CONFLICT_MARKERS = ("database is locked", "database is busy", "database table is locked")


def _is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and any(m in str(exc).lower() for m in _CONFLICT_MARKERS)


class SqliteUnitOfWork:
    """One atomic read-then-write transaction against the ledger database.

    ``BEGIN IMMEDIATE`` takes the write lock up front, so a concurrent writer
    either waits for the busy timeout or fails with TransactionConflictError
    and the caller re-runs the whole procedure. Any exception raised inside the
    ``with`` block rolls every write back.
    """

    def __init__(self, repo: SqliteRepository):
        self.repo = repo
        self.conn: Optional[sqlite3.Connection] = None
        self.cur: Optional[sqlite3.Cursor] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        self.conn = self.repo._conn(manual_transactions=True)
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            self.conn.close()
            if _is_conflict(e):
                raise TransactionConflictError(str(e)) from e
            raise
        self.cur = self.conn.cursor()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self.conn
        try:
            if exc_type is None:
                try:
                    conn.execute("COMMIT")
                except sqlite3.OperationalError as e:
                    conn.execute("ROLLBACK")
                    if _is_conflict(e):
                        raise TransactionConflictError(str(e)) from e
                    raise
            else:
                conn.execute("ROLLBACK")
                if exc is not None and _is_conflict(exc):
                    raise TransactionConflictError(str(exc)) from exc
        finally:
            conn.close()
            self.conn = None
            self.cur = None

    # ---------- Counters ----------
    def next_code(self, counter: str, prefix: str) -> str:
        return format_sequence(prefix, next_sequence(self.cur, counter))

    # ---------- Items ----------
    def get_item(self, item_id: int, include_inactive: bool = False) -> Optional[Item]:
        sql = "SELECT * FROM items WHERE id=?" + ("" if include_inactive else " AND active=1")
        self.cur.execute(sql, (int(item_id),))
        r = self.cur.fetchone()
        return item_from_row(r) if r else None

    def find_item(self, title: str, category: str) -> Optional[Item]:
        self.cur.execute(
            "SELECT * FROM items WHERE title=? AND category=? AND active=1 ORDER BY id LIMIT 1",
            (title, category),
        )
        r = self.cur.fetchone()
        return item_from_row(r) if r else None

    def insert_item(
        self,
        title: str,
        category: str,
        production_price: float,
        selling_price: float,
        stock: int,
        author: Optional[str] = None,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO items (title, author, category, production_price, selling_price, stock)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (title, author, category, float(production_price), float(selling_price), int(stock)),
        )
        return int(self.cur.lastrowid)

    def adjust_item_stock(self, item_id: int, delta: int) -> int:
        """Apply ``delta`` to stock; the guard in the UPDATE keeps stock from going negative."""
        self.cur.execute(
            "UPDATE items SET stock = stock + ? WHERE id = ? AND stock + ? >= 0",
            (int(delta), int(item_id), int(delta)),
        )
        if self.cur.rowcount == 0:
            item = self.get_item(item_id, include_inactive=True)
            if item is None:
                raise NotFoundError(f"Item with id {item_id} does not exist.")
            raise InsufficientStockError(
                f"Not enough stock for {item.title}. Available: {item.stock}, Requested: {-int(delta)}",
                item_id=item.id,
                available=item.stock,
                requested=-int(delta),
            )
        self.cur.execute("SELECT stock FROM items WHERE id=?", (int(item_id),))
        return int(self.cur.fetchone()[0])

    # ---------- Customers ----------
    def get_customer(self, customer_id: int) -> Optional[Customer]:
        self.cur.execute("SELECT * FROM customers WHERE id=?", (int(customer_id),))
        r = self.cur.fetchone()
        return customer_from_row(r) if r else None

    def adjust_customer_due(self, customer_id: int, delta: float) -> float:
        self.cur.execute(
            "UPDATE customers SET due_balance = due_balance + ? WHERE id = ?",
            (float(delta), int(customer_id)),
        )
        if self.cur.rowcount == 0:
            raise NotFoundError(f"Customer with id {customer_id} does not exist.")
        self.cur.execute("SELECT due_balance FROM customers WHERE id=?", (int(customer_id),))
        return float(self.cur.fetchone()[0])

    # ---------- Sales ----------
    def insert_sale(
        self,
        sale_code: str,
        date: datetime,
        customer_id: int,
        lines: Iterable[SaleLine],
        subtotal: float,
        discount_type: DiscountType,
        discount_value: float,
        discount: float,
        total: float,
        payment_method: PaymentMethod,
        amount_paid: float,
        split_payment_method: Optional[PaymentMethod],
        credit_applied: float,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO sales (
                sale_id, date, customer_id, subtotal, discount_type, discount_value, discount,
                total, payment_method, amount_paid, split_payment_method, credit_applied
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                sale_code,
                to_iso(date),
                int(customer_id),
                float(subtotal),
                DiscountType(discount_type).value,
                float(discount_value),
                float(discount),
                float(total),
                PaymentMethod(payment_method).value,
                float(amount_paid),
                split_payment_method.value if split_payment_method else None,
                float(credit_applied),
            ),
        )
        sale_pk = int(self.cur.lastrowid)
        for line in lines:
            self.cur.execute(
                "INSERT INTO sale_items (sale_id, item_id, quantity, price) VALUES (?, ?, ?, ?)",
                (sale_pk, int(line.item_id), int(line.quantity), float(line.price)),
            )
        return sale_pk

    def get_sale(self, sale_pk: int) -> Optional[Sale]:
        found = fetch_sales(self.cur, "WHERE id=?", (int(sale_pk),))
        return found[0] if found else None

    def delete_sale(self, sale_pk: int) -> None:
        self.cur.execute("DELETE FROM sales WHERE id=?", (int(sale_pk),))

    # ---------- Transactions ----------
    def insert_transaction(
        self,
        description: str,
        amount: float,
        due_date: datetime,
        status: TransactionStatus,
        type_: TransactionType,
        purpose: TransactionPurpose,
        customer_id: Optional[int] = None,
        payment_method: Optional[PaymentMethod] = None,
        sale_id: Optional[int] = None,
        purchase_id: Optional[int] = None,
        settled_date: Optional[datetime] = None,
    ) -> Transaction:
        self.cur.execute(
            """
            INSERT INTO transactions (
                description, amount, due_date, status, type, purpose,
                customer_id, payment_method, sale_id, purchase_id, settled_date
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                description,
                float(amount),
                to_iso(due_date),
                TransactionStatus(status).value,
                TransactionType(type_).value,
                TransactionPurpose(purpose).value,
                customer_id,
                payment_method.value if payment_method else None,
                sale_id,
                purchase_id,
                to_iso(settled_date) if settled_date else None,
            ),
        )
        return self.get_transaction(int(self.cur.lastrowid))

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        self.cur.execute("SELECT * FROM transactions WHERE id=?", (int(transaction_id),))
        r = self.cur.fetchone()
        return transaction_from_row(r) if r else None

    def pending_receivables(self, customer_id: int) -> list[Transaction]:
        self.cur.execute(
            """
            SELECT * FROM transactions
            WHERE type='Receivable' AND status='Pending' AND customer_id=?
            ORDER BY due_date, id
            """,
            (int(customer_id),),
        )
        return [transaction_from_row(r) for r in self.cur.fetchall()]

    def mark_transaction_paid(self, transaction_id: int, settled_date: datetime, payment_method: Optional[PaymentMethod] = None) -> None:
        self.cur.execute(
            """
            UPDATE transactions
            SET status='Paid', settled_date=?, payment_method=COALESCE(?, payment_method)
            WHERE id=? AND status='Pending'
            """,
            (to_iso(settled_date), payment_method.value if payment_method else None, int(transaction_id)),
        )

    def delete_transactions_for_sale(self, sale_pk: int) -> int:
        self.cur.execute("DELETE FROM transactions WHERE sale_id=?", (int(sale_pk),))
        return int(self.cur.rowcount)

    # ---------- Purchases ----------
    def insert_purchase(
        self,
        purchase_code: str,
        date: datetime,
        due_date: datetime,
        supplier: str,
        lines: Iterable[PurchaseLine],
        total_amount: float,
        payment_method: PaymentMethod,
        amount_paid: float,
        split_payment_method: Optional[PaymentMethod],
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO purchases (
                purchase_id, date, due_date, supplier, total_amount, payment_method,
                amount_paid, split_payment_method
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                purchase_code,
                to_iso(date),
                to_iso(due_date),
                supplier,
                float(total_amount),
                PaymentMethod(payment_method).value,
                float(amount_paid),
                split_payment_method.value if split_payment_method else None,
            ),
        )
        purchase_pk = int(self.cur.lastrowid)
        for line in lines:
            self.cur.execute(
                """
                INSERT INTO purchase_items (purchase_id, item_id, item_name, category, quantity, cost, author)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (purchase_pk, line.item_id, line.item_name, line.category, int(line.quantity), float(line.cost), line.author),
            )
        return purchase_pk

    # ---------- Expenses ----------
    def insert_expense(
        self,
        date: datetime,
        description: str,
        amount: float,
        payment_method: PaymentMethod,
        category: Optional[str] = None,
    ) -> Expense:
        return insert_expense(self.cur, date, description, amount, payment_method, category)

    # ---------- Sales returns ----------
    def insert_sales_return(
        self,
        return_code: str,
        date: datetime,
        customer_id: int,
        lines: Iterable[ReturnLine],
        total_return_value: float,
        refund_method: RefundMethod,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO sales_returns (return_code, date, customer_id, total_return_value, refund_method)
            VALUES (?, ?, ?, ?, ?)
            """,
            (return_code, to_iso(date), int(customer_id), float(total_return_value), RefundMethod(refund_method).value),
        )
        return_pk = int(self.cur.lastrowid)
        for line in lines:
            self.cur.execute(
                "INSERT INTO sales_return_items (return_id, item_id, quantity, price) VALUES (?, ?, ?, ?)",
                (return_pk, int(line.item_id), int(line.quantity), float(line.price)),
            )
        return return_pk


def run_in_transaction(
    uow_factory: Callable[[], SqliteUnitOfWork],
    work: Callable[[SqliteUnitOfWork], T],
    attempts: int = 3,
) -> T:
    """Run ``work`` inside a fresh unit of work, re-running it on store conflicts."""
    attempts = max(int(attempts), 1)
    for attempt in range(1, attempts + 1):
        try:
            with uow_factory() as uow:
                return work(uow)
        except TransactionConflictError:
            if attempt == attempts:
                raise
            log.warning("transaction_conflict attempt=%s/%s retrying", attempt, attempts)
    raise AssertionError("unreachable")
