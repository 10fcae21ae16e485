from __future__ import annotations

import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from bookkeeper.domain.errors import ConfigurationError
from bookkeeper.domain.models import (
    CapitalContribution,
    CapitalMethod,
    Customer,
    DiscountType,
    Donation,
    DonationKind,
    Expense,
    Item,
    PaymentMethod,
    Purchase,
    PurchaseLine,
    RefundMethod,
    ReturnLine,
    Sale,
    SaleLine,
    SalesReturn,
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
    Transfer,
)

_IN_CHUNK = 500


def to_iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat(sep=" ")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def format_sequence(prefix: str, number: int) -> str:
    return f"{prefix}-{number:04d}"


def next_sequence(cur: sqlite3.Cursor, name: str) -> int:
    """Increment and return a persisted counter. Must run inside the caller's transaction."""
    cur.execute(
        """
        INSERT INTO counters (name, value) VALUES (?, 1)
        ON CONFLICT(name) DO UPDATE SET value = value + 1
        """,
        (name,),
    )
    cur.execute("SELECT value FROM counters WHERE name = ?", (name,))
    return int(cur.fetchone()[0])


def _opt_method(value: Optional[str]) -> Optional[PaymentMethod]:
    return PaymentMethod(value) if value else None


# ---------- Row mappers ----------
def item_from_row(r: sqlite3.Row) -> Item:
    return Item(
        id=int(r["id"]),
        title=str(r["title"]),
        category=str(r["category"]),
        production_price=float(r["production_price"]),
        selling_price=float(r["selling_price"]),
        stock=int(r["stock"]),
        author=r["author"],
        active=int(r["active"]),
    )


def customer_from_row(r: sqlite3.Row) -> Customer:
    return Customer(
        id=int(r["id"]),
        name=str(r["name"]),
        phone=str(r["phone"] or ""),
        address=str(r["address"] or ""),
        opening_balance=float(r["opening_balance"]),
        due_balance=float(r["due_balance"]),
    )


def transaction_from_row(r: sqlite3.Row) -> Transaction:
    return Transaction(
        id=int(r["id"]),
        description=str(r["description"]),
        amount=float(r["amount"]),
        due_date=from_iso(r["due_date"]),
        status=TransactionStatus(r["status"]),
        type=TransactionType(r["type"]),
        purpose=TransactionPurpose(r["purpose"]),
        customer_id=r["customer_id"],
        payment_method=_opt_method(r["payment_method"]),
        sale_id=r["sale_id"],
        purchase_id=r["purchase_id"],
        settled_date=from_iso(r["settled_date"]),
    )


def expense_from_row(r: sqlite3.Row) -> Expense:
    return Expense(
        id=int(r["id"]),
        expense_id=str(r["expense_id"]),
        date=from_iso(r["date"]),
        description=str(r["description"]),
        amount=float(r["amount"]),
        payment_method=PaymentMethod(r["payment_method"]),
        category=r["category"],
    )


def donation_from_row(r: sqlite3.Row) -> Donation:
    return Donation(
        id=int(r["id"]),
        donation_id=str(r["donation_id"]),
        date=from_iso(r["date"]),
        donor_name=str(r["donor_name"]),
        amount=float(r["amount"]),
        payment_method=PaymentMethod(r["payment_method"]),
        kind=DonationKind(r["kind"]),
    )


def transfer_from_row(r: sqlite3.Row) -> Transfer:
    return Transfer(
        id=int(r["id"]),
        date=from_iso(r["date"]),
        from_account=PaymentMethod(r["from_account"]),
        to_account=PaymentMethod(r["to_account"]),
        amount=float(r["amount"]),
    )


def capital_from_row(r: sqlite3.Row) -> CapitalContribution:
    return CapitalContribution(
        id=int(r["id"]),
        date=from_iso(r["date"]),
        amount=float(r["amount"]),
        method=CapitalMethod(r["method"]),
        is_initial=bool(r["is_initial"]),
        description=r["description"],
    )


def _lines_by_parent(cur: sqlite3.Cursor, table: str, column: str, ids: Sequence[int]) -> dict[int, list[sqlite3.Row]]:
    out: dict[int, list[sqlite3.Row]] = {}
    for start in range(0, len(ids), _IN_CHUNK):
        chunk = list(ids[start:start + _IN_CHUNK])
        marks = ",".join("?" * len(chunk))
        cur.execute(f"SELECT * FROM {table} WHERE {column} IN ({marks}) ORDER BY id", chunk)
        for r in cur.fetchall():
            out.setdefault(int(r[column]), []).append(r)
    return out


def fetch_sales(
    cur: sqlite3.Cursor,
    where: str = "",
    params: tuple = (),
    order: str = "date DESC, id DESC",
    limit: Optional[int] = None,
) -> list[Sale]:
    sql = f"SELECT * FROM sales {where} ORDER BY {order}"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    cur.execute(sql, params)
    rows = cur.fetchall()
    lines = _lines_by_parent(cur, "sale_items", "sale_id", [int(r["id"]) for r in rows])
    return [
        Sale(
            id=int(r["id"]),
            sale_id=str(r["sale_id"]),
            date=from_iso(r["date"]),
            customer_id=int(r["customer_id"]),
            items=tuple(
                SaleLine(item_id=int(li["item_id"]), quantity=int(li["quantity"]), price=float(li["price"]))
                for li in lines.get(int(r["id"]), [])
            ),
            subtotal=float(r["subtotal"]),
            discount_type=DiscountType(r["discount_type"]),
            discount_value=float(r["discount_value"]),
            discount=float(r["discount"]),
            total=float(r["total"]),
            payment_method=PaymentMethod(r["payment_method"]),
            amount_paid=float(r["amount_paid"]),
            split_payment_method=_opt_method(r["split_payment_method"]),
            credit_applied=float(r["credit_applied"]),
        )
        for r in rows
    ]


def fetch_purchases(cur: sqlite3.Cursor, where: str = "", params: tuple = ()) -> list[Purchase]:
    cur.execute(f"SELECT * FROM purchases {where} ORDER BY date DESC, id DESC", params)
    rows = cur.fetchall()
    lines = _lines_by_parent(cur, "purchase_items", "purchase_id", [int(r["id"]) for r in rows])
    return [
        Purchase(
            id=int(r["id"]),
            purchase_id=str(r["purchase_id"]),
            date=from_iso(r["date"]),
            due_date=from_iso(r["due_date"]),
            supplier=str(r["supplier"]),
            items=tuple(
                PurchaseLine(
                    item_name=str(li["item_name"]),
                    category=str(li["category"]),
                    quantity=int(li["quantity"]),
                    cost=float(li["cost"]),
                    author=li["author"],
                    item_id=li["item_id"],
                )
                for li in lines.get(int(r["id"]), [])
            ),
            total_amount=float(r["total_amount"]),
            payment_method=PaymentMethod(r["payment_method"]),
            amount_paid=float(r["amount_paid"]),
            split_payment_method=_opt_method(r["split_payment_method"]),
        )
        for r in rows
    ]


def fetch_returns(cur: sqlite3.Cursor, where: str = "", params: tuple = ()) -> list[SalesReturn]:
    cur.execute(f"SELECT * FROM sales_returns {where} ORDER BY date DESC, id DESC", params)
    rows = cur.fetchall()
    lines = _lines_by_parent(cur, "sales_return_items", "return_id", [int(r["id"]) for r in rows])
    return [
        SalesReturn(
            id=int(r["id"]),
            return_id=str(r["return_code"]),
            date=from_iso(r["date"]),
            customer_id=int(r["customer_id"]),
            items=tuple(
                ReturnLine(item_id=int(li["item_id"]), quantity=int(li["quantity"]), price=float(li["price"]))
                for li in lines.get(int(r["id"]), [])
            ),
            total_return_value=float(r["total_return_value"]),
            refund_method=RefundMethod(r["refund_method"]),
        )
        for r in rows
    ]


def insert_expense(
    cur: sqlite3.Cursor,
    date: datetime,
    description: str,
    amount: float,
    payment_method: PaymentMethod,
    category: Optional[str] = None,
) -> Expense:
    expense_id = format_sequence("EXP", next_sequence(cur, "expense"))
    cur.execute(
        """
        INSERT INTO expenses (expense_id, date, description, amount, payment_method, category)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (expense_id, to_iso(date), description, float(amount), PaymentMethod(payment_method).value, category),
    )
    return Expense(
        id=int(cur.lastrowid),
        expense_id=expense_id,
        date=date.replace(microsecond=0),
        description=description,
        amount=float(amount),
        payment_method=PaymentMethod(payment_method),
        category=category,
    )


def _range_clause(column: str, start: Optional[datetime], end: Optional[datetime]) -> tuple[str, tuple]:
    parts: list[str] = []
    params: list[str] = []
    if start is not None:
        parts.append(f"{column} >= ?")
        params.append(to_iso(start))
    if end is not None:
        parts.append(f"{column} < ?")
        params.append(to_iso(end))
    return ("WHERE " + " AND ".join(parts)) if parts else "", tuple(params)


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)

    def _conn(self, manual_transactions: bool = False) -> sqlite3.Connection:
        kwargs = {"timeout": self.busy_timeout}
        if manual_transactions:
            kwargs["isolation_level"] = None
        try:
            conn = sqlite3.connect(self.db_path, **kwargs)
        except sqlite3.OperationalError as e:
            raise ConfigurationError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_indexes),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise ConfigurationError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT,
                category TEXT NOT NULL,
                production_price REAL NOT NULL CHECK(production_price >= 0),
                selling_price REAL NOT NULL CHECK(selling_price >= 0),
                stock INTEGER NOT NULL DEFAULT 0 CHECK(stock >= 0),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                phone TEXT,
                address TEXT,
                opening_balance REAL NOT NULL DEFAULT 0,
                due_balance REAL NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id TEXT NOT NULL UNIQUE,
                date TEXT NOT NULL,
                customer_id INTEGER NOT NULL,
                subtotal REAL NOT NULL CHECK(subtotal >= 0),
                discount_type TEXT NOT NULL CHECK(discount_type IN ('none','percentage','amount')),
                discount_value REAL NOT NULL DEFAULT 0,
                discount REAL NOT NULL DEFAULT 0,
                total REAL NOT NULL CHECK(total >= 0),
                payment_method TEXT NOT NULL,
                amount_paid REAL NOT NULL DEFAULT 0,
                split_payment_method TEXT,
                credit_applied REAL NOT NULL DEFAULT 0,
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                price REAL NOT NULL CHECK(price >= 0),
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(item_id) REFERENCES items(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchases (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                purchase_id TEXT NOT NULL UNIQUE,
                date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                supplier TEXT NOT NULL,
                total_amount REAL NOT NULL CHECK(total_amount >= 0),
                payment_method TEXT NOT NULL,
                amount_paid REAL NOT NULL DEFAULT 0,
                split_payment_method TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchase_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                purchase_id INTEGER NOT NULL,
                item_id INTEGER,
                item_name TEXT NOT NULL,
                category TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                cost REAL NOT NULL CHECK(cost >= 0),
                author TEXT,
                FOREIGN KEY(purchase_id) REFERENCES purchases(id) ON DELETE CASCADE,
                FOREIGN KEY(item_id) REFERENCES items(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                description TEXT NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                due_date TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('Pending','Paid')),
                type TEXT NOT NULL CHECK(type IN ('Receivable','Payable')),
                purpose TEXT NOT NULL,
                customer_id INTEGER,
                payment_method TEXT,
                sale_id INTEGER,
                purchase_id INTEGER,
                settled_date TEXT,
                FOREIGN KEY(customer_id) REFERENCES customers(id),
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(purchase_id) REFERENCES purchases(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id TEXT NOT NULL UNIQUE,
                date TEXT NOT NULL,
                description TEXT NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                payment_method TEXT NOT NULL CHECK(payment_method IN ('Cash','Bank')),
                category TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS donations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                donation_id TEXT NOT NULL UNIQUE,
                date TEXT NOT NULL,
                donor_name TEXT NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                payment_method TEXT NOT NULL CHECK(payment_method IN ('Cash','Bank')),
                kind TEXT NOT NULL DEFAULT 'donation'
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                from_account TEXT NOT NULL CHECK(from_account IN ('Cash','Bank')),
                to_account TEXT NOT NULL CHECK(to_account IN ('Cash','Bank')),
                amount REAL NOT NULL CHECK(amount > 0)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS capital (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                method TEXT NOT NULL CHECK(method IN ('Cash','Bank','Asset')),
                is_initial INTEGER NOT NULL DEFAULT 0,
                description TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales_returns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                return_code TEXT NOT NULL UNIQUE,
                date TEXT NOT NULL,
                customer_id INTEGER NOT NULL,
                total_return_value REAL NOT NULL CHECK(total_return_value >= 0),
                refund_method TEXT NOT NULL,
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales_return_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                return_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                price REAL NOT NULL CHECK(price >= 0),
                FOREIGN KEY(return_id) REFERENCES sales_returns(id) ON DELETE CASCADE,
                FOREIGN KEY(item_id) REFERENCES items(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL DEFAULT 0
            )
            """
        )

    def _migration_v2_indexes(self, cur: sqlite3.Cursor) -> None:
        cur.execute("CREATE INDEX IF NOT EXISTS ix_sales_date ON sales(date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_sale_items_sale ON sale_items(sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_transactions_customer ON transactions(customer_id, status, due_date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_transactions_sale ON transactions(sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_expenses_date ON expenses(date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_donations_date ON donations(date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_purchases_date ON purchases(date)")

    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"

    # ---------- Items ----------
    def add_item(
        self,
        title: str,
        category: str,
        production_price: float,
        selling_price: float,
        stock: int,
        author: Optional[str] = None,
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO items (title, author, category, production_price, selling_price, stock)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (title, author, category, float(production_price), float(selling_price), int(stock)),
        )
        iid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return iid

    def update_item(
        self,
        item_id: int,
        title: str,
        category: str,
        production_price: float,
        selling_price: float,
        author: Optional[str] = None,
    ) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE items
            SET title=?, author=?, category=?, production_price=?, selling_price=?
            WHERE id=? AND active=1
            """,
            (title, author, category, float(production_price), float(selling_price), int(item_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def deactivate_item(self, item_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE items SET active=0 WHERE id=? AND active=1", (int(item_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def get_item(self, item_id: int, include_inactive: bool = False) -> Optional[Item]:
        conn = self._conn()
        cur = conn.cursor()
        sql = "SELECT * FROM items WHERE id=?" + ("" if include_inactive else " AND active=1")
        cur.execute(sql, (int(item_id),))
        r = cur.fetchone()
        conn.close()
        return item_from_row(r) if r else None

    def list_items(self, include_inactive: bool = False) -> list[Item]:
        conn = self._conn()
        cur = conn.cursor()
        where = "" if include_inactive else "WHERE active=1"
        cur.execute(f"SELECT * FROM items {where} ORDER BY title, id")
        rows = cur.fetchall()
        conn.close()
        return [item_from_row(r) for r in rows]

    # ---------- Customers ----------
    def add_customer(self, name: str, phone: str, address: str, opening_balance: float) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO customers (name, phone, address, opening_balance, due_balance)
            VALUES (?, ?, ?, ?, ?)
            """,
            (name, phone, address, float(opening_balance), float(opening_balance)),
        )
        cid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return cid

    def update_customer(self, customer_id: int, name: str, phone: str, address: str, opening_balance: float) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        # shifting the opening balance shifts the running due balance by the same amount
        cur.execute(
            """
            UPDATE customers
            SET name=?, phone=?, address=?,
                due_balance = due_balance + (? - opening_balance),
                opening_balance=?
            WHERE id=?
            """,
            (name, phone, address, float(opening_balance), float(opening_balance), int(customer_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT * FROM customers WHERE id=?", (int(customer_id),))
        r = cur.fetchone()
        conn.close()
        return customer_from_row(r) if r else None

    def list_customers(self) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT * FROM customers ORDER BY name, id")
        rows = cur.fetchall()
        conn.close()
        return [customer_from_row(r) for r in rows]

    def list_customers_with_due(self) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT * FROM customers WHERE due_balance > 0 ORDER BY due_balance DESC, id")
        rows = cur.fetchall()
        conn.close()
        return [customer_from_row(r) for r in rows]

    # ---------- Sales ----------
    def get_sale(self, sale_pk: int) -> Optional[Sale]:
        conn = self._conn()
        try:
            found = fetch_sales(conn.cursor(), "WHERE id=?", (int(sale_pk),))
        finally:
            conn.close()
        return found[0] if found else None

    def list_sales(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Sale]:
        where, params = _range_clause("date", start, end)
        conn = self._conn()
        try:
            return fetch_sales(conn.cursor(), where, params)
        finally:
            conn.close()

    def list_sales_for_customer(self, customer_id: int) -> list[Sale]:
        conn = self._conn()
        try:
            return fetch_sales(conn.cursor(), "WHERE customer_id=?", (int(customer_id),))
        finally:
            conn.close()

    def list_sales_page(self, limit: int = 5, after_id: Optional[int] = None) -> tuple[list[Sale], bool]:
        """Newest first. ``after_id`` is the id of the last sale of the previous page."""
        conn = self._conn()
        cur = conn.cursor()
        try:
            where, params = "", ()
            if after_id is not None:
                cur.execute("SELECT date FROM sales WHERE id=?", (int(after_id),))
                anchor = cur.fetchone()
                if anchor:
                    where = "WHERE (date < ?) OR (date = ? AND id < ?)"
                    params = (anchor["date"], anchor["date"], int(after_id))
            # one extra row tells whether another page exists
            rows = fetch_sales(cur, where, params, limit=int(limit) + 1)
        finally:
            conn.close()
        return rows[: int(limit)], len(rows) > int(limit)

    # ---------- Purchases ----------
    def list_purchases(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Purchase]:
        where, params = _range_clause("date", start, end)
        conn = self._conn()
        try:
            return fetch_purchases(conn.cursor(), where, params)
        finally:
            conn.close()

    # ---------- Sales returns ----------
    def list_sales_returns(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[SalesReturn]:
        where, params = _range_clause("date", start, end)
        conn = self._conn()
        try:
            return fetch_returns(conn.cursor(), where, params)
        finally:
            conn.close()

    # ---------- Transactions ----------
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT * FROM transactions WHERE id=?", (int(transaction_id),))
        r = cur.fetchone()
        conn.close()
        return transaction_from_row(r) if r else None

    def list_transactions(
        self,
        type_: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        customer_id: Optional[int] = None,
    ) -> list[Transaction]:
        parts: list[str] = []
        params: list = []
        if type_ is not None:
            parts.append("type=?")
            params.append(TransactionType(type_).value)
        if status is not None:
            parts.append("status=?")
            params.append(TransactionStatus(status).value)
        if customer_id is not None:
            parts.append("customer_id=?")
            params.append(int(customer_id))
        where = ("WHERE " + " AND ".join(parts)) if parts else ""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT * FROM transactions {where} ORDER BY due_date DESC, id DESC", params)
        rows = cur.fetchall()
        conn.close()
        return [transaction_from_row(r) for r in rows]

    def list_transactions_settled_between(self, start: datetime, end: datetime) -> list[Transaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT * FROM transactions
            WHERE status='Paid'
              AND COALESCE(settled_date, due_date) >= ?
              AND COALESCE(settled_date, due_date) < ?
            ORDER BY COALESCE(settled_date, due_date), id
            """,
            (to_iso(start), to_iso(end)),
        )
        rows = cur.fetchall()
        conn.close()
        return [transaction_from_row(r) for r in rows]

    # ---------- Cashbook ----------
    def add_expense(
        self,
        date: datetime,
        description: str,
        amount: float,
        payment_method: PaymentMethod,
        category: Optional[str] = None,
    ) -> Expense:
        conn = self._conn()
        cur = conn.cursor()
        try:
            expense = insert_expense(cur, date, description, amount, payment_method, category)
            conn.commit()
            return expense
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def list_expenses(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Expense]:
        where, params = _range_clause("date", start, end)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT * FROM expenses {where} ORDER BY date DESC, id DESC", params)
        rows = cur.fetchall()
        conn.close()
        return [expense_from_row(r) for r in rows]

    def add_donation(
        self,
        date: datetime,
        donor_name: str,
        amount: float,
        payment_method: PaymentMethod,
        kind: DonationKind = DonationKind.DONATION,
    ) -> Donation:
        conn = self._conn()
        cur = conn.cursor()
        try:
            donation_id = format_sequence("DON", next_sequence(cur, "donation"))
            cur.execute(
                """
                INSERT INTO donations (donation_id, date, donor_name, amount, payment_method, kind)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (donation_id, to_iso(date), donor_name, float(amount), PaymentMethod(payment_method).value, DonationKind(kind).value),
            )
            did = int(cur.lastrowid)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return Donation(
            id=did,
            donation_id=donation_id,
            date=date.replace(microsecond=0),
            donor_name=donor_name,
            amount=float(amount),
            payment_method=PaymentMethod(payment_method),
            kind=DonationKind(kind),
        )

    def list_donations(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Donation]:
        where, params = _range_clause("date", start, end)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT * FROM donations {where} ORDER BY date DESC, id DESC", params)
        rows = cur.fetchall()
        conn.close()
        return [donation_from_row(r) for r in rows]

    def add_transfer(self, date: datetime, from_account: PaymentMethod, to_account: PaymentMethod, amount: float) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO transfers (date, from_account, to_account, amount) VALUES (?, ?, ?, ?)",
            (to_iso(date), PaymentMethod(from_account).value, PaymentMethod(to_account).value, float(amount)),
        )
        tid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return tid

    def list_transfers(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Transfer]:
        where, params = _range_clause("date", start, end)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT * FROM transfers {where} ORDER BY date DESC, id DESC", params)
        rows = cur.fetchall()
        conn.close()
        return [transfer_from_row(r) for r in rows]

    def add_capital(
        self,
        date: datetime,
        amount: float,
        method: CapitalMethod,
        is_initial: bool = False,
        description: Optional[str] = None,
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO capital (date, amount, method, is_initial, description) VALUES (?, ?, ?, ?, ?)",
            (to_iso(date), float(amount), CapitalMethod(method).value, int(bool(is_initial)), description),
        )
        cid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return cid

    def list_capital(self) -> list[CapitalContribution]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT * FROM capital ORDER BY date, id")
        rows = cur.fetchall()
        conn.close()
        return [capital_from_row(r) for r in rows]
