from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from bookkeeper.domain.errors import InvalidArgumentError
from bookkeeper.domain.models import (
    OFFICE_ASSET_CATEGORY,
    PaymentMethod,
    Purchase,
    PurchaseLine,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
)
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.repositories.unit_of_work import SqliteUnitOfWork, run_in_transaction

log = logging.getLogger("bookkeeper.ledger")

# selling price given to items first created by a purchase
DEFAULT_MARKUP = 1.5


class PurchaseService:
    def __init__(
        self,
        repo: SqliteRepository,
        uow_factory: Callable[[], SqliteUnitOfWork] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        attempts: int = 3,
    ):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))
        self.clock = clock
        self.attempts = attempts

    def add_purchase(
        self,
        supplier: str,
        items: Iterable[dict],
        payment_method: PaymentMethod | str,
        due_date: Optional[datetime] = None,
        amount_paid: Optional[float] = None,
        split_payment_method: PaymentMethod | str | None = None,
    ) -> Purchase:
        """
        items: [{item_name, category, quantity, cost, author?}]

        Stock lines add to the item with the same title and category, or create
        it. Office assets only feed the balance sheet. The paid part becomes an
        Expense, the unpaid part a Pending Payable.
        """
        items = list(items)
        if not items:
            raise InvalidArgumentError("Purchase cart is empty.")
        supplier = (supplier or "").strip()
        if not supplier:
            raise InvalidArgumentError("Supplier is required.")
        try:
            method = PaymentMethod(payment_method)
            split_method = PaymentMethod(split_payment_method) if split_payment_method else PaymentMethod.CASH
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        if method is PaymentMethod.PAID_BY_CREDIT:
            raise InvalidArgumentError("Purchases cannot be paid by credit.")
        if split_method not in (PaymentMethod.CASH, PaymentMethod.BANK):
            raise InvalidArgumentError("Split payments must be made in Cash or Bank.")

        lines: list[PurchaseLine] = []
        for it in items:
            name = str(it.get("item_name") or "").strip()
            category = str(it.get("category") or "").strip()
            qty = int(it["quantity"])
            cost = float(it["cost"])
            if not name or not category:
                raise InvalidArgumentError("Item name and category are required.")
            if qty <= 0:
                raise InvalidArgumentError("Quantity must be >= 1.")
            if cost < 0:
                raise InvalidArgumentError("Cost must be >= 0.")
            lines.append(PurchaseLine(item_name=name, category=category, quantity=qty, cost=cost, author=it.get("author")))

        total_amount = sum(line.line_total for line in lines)
        paid = float(amount_paid or 0.0)
        if method is PaymentMethod.SPLIT and not 0 <= paid <= total_amount:
            raise InvalidArgumentError("Amount paid must be between 0 and the purchase total.")

        def work(uow: SqliteUnitOfWork) -> Purchase:
            now = self.clock().replace(microsecond=0)
            due = (due_date or now).replace(microsecond=0)
            purchase_code = uow.next_code("purchase", "PUR")

            resolved: list[PurchaseLine] = []
            for line in lines:
                if line.category == OFFICE_ASSET_CATEGORY:
                    resolved.append(line)
                    continue
                existing = uow.find_item(line.item_name, line.category)
                if existing is not None:
                    uow.adjust_item_stock(existing.id, line.quantity)
                    item_id = existing.id
                else:
                    item_id = uow.insert_item(
                        title=line.item_name,
                        category=line.category,
                        production_price=line.cost,
                        selling_price=line.cost * DEFAULT_MARKUP,
                        stock=line.quantity,
                        author=line.author or "Unknown",
                    )
                resolved.append(
                    PurchaseLine(
                        item_name=line.item_name,
                        category=line.category,
                        quantity=line.quantity,
                        cost=line.cost,
                        author=line.author,
                        item_id=item_id,
                    )
                )

            stored_paid = paid if method is PaymentMethod.SPLIT else 0.0
            purchase_pk = uow.insert_purchase(
                purchase_code,
                now,
                due,
                supplier,
                resolved,
                total_amount,
                method,
                stored_paid,
                split_method if method is PaymentMethod.SPLIT else None,
            )

            payable = 0.0
            if method in (PaymentMethod.CASH, PaymentMethod.BANK):
                uow.insert_expense(now, f"Payment for Purchase {purchase_code}", total_amount, method, category="Purchase")
            elif method is PaymentMethod.SPLIT:
                if stored_paid > 0:
                    uow.insert_expense(now, f"Partial payment for Purchase {purchase_code}", stored_paid, split_method, category="Purchase")
                payable = total_amount - stored_paid
            else:
                payable = total_amount

            if payable > 0:
                uow.insert_transaction(
                    description=f"Balance for Purchase {purchase_code} from {supplier}",
                    amount=payable,
                    due_date=due,
                    status=TransactionStatus.PENDING,
                    type_=TransactionType.PAYABLE,
                    purpose=TransactionPurpose.PURCHASE_DUE,
                    purchase_id=purchase_pk,
                )

            return Purchase(
                id=purchase_pk,
                purchase_id=purchase_code,
                date=now,
                due_date=due,
                supplier=supplier,
                items=tuple(resolved),
                total_amount=total_amount,
                payment_method=method,
                amount_paid=stored_paid,
                split_payment_method=split_method if method is PaymentMethod.SPLIT else None,
            )

        purchase = run_in_transaction(self.uow_factory, work, self.attempts)
        log.info(
            "purchase_created purchase=%s supplier=%s lines=%s total=%.2f method=%s",
            purchase.purchase_id,
            purchase.supplier,
            len(purchase.items),
            purchase.total_amount,
            purchase.payment_method.value,
        )
        return purchase

    def list_purchases(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Purchase]:
        return self.repo.list_purchases(start, end)
