from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, Optional

from bookkeeper.domain.errors import InsufficientStockError, InvalidArgumentError, NotFoundError
from bookkeeper.domain.ledger import compute_discount, compute_subtotal, sale_due_delta
from bookkeeper.domain.models import (
    DiscountType,
    PaymentMethod,
    Sale,
    SaleLine,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
)
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.repositories.unit_of_work import SqliteUnitOfWork, run_in_transaction

log = logging.getLogger("bookkeeper.ledger")

_SALE_METHODS = (PaymentMethod.CASH, PaymentMethod.BANK, PaymentMethod.DUE, PaymentMethod.SPLIT)


class SalesService:
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

    def add_sale(
        self,
        customer_id: int,
        items: Iterable[dict],
        payment_method: PaymentMethod | str,
        discount_type: DiscountType | str = DiscountType.NONE,
        discount_value: float = 0.0,
        amount_paid: Optional[float] = None,
        split_payment_method: PaymentMethod | str | None = None,
        credit_applied: float = 0.0,
    ) -> Sale:
        """
        items: [{item_id, quantity}]

        Prices are taken from the item's current selling price. Stock, the sale
        record, receivables and the customer's due balance change together or
        not at all.
        """
        items = list(items)
        if not items:
            raise InvalidArgumentError("Cart is empty.")
        try:
            method = PaymentMethod(payment_method)
            split_method = PaymentMethod(split_payment_method) if split_payment_method else None
            discount_kind = DiscountType(discount_type or DiscountType.NONE)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        if method not in _SALE_METHODS:
            raise InvalidArgumentError(f"Unsupported payment method for a sale: {method.value}")
        if split_method is not None and split_method not in (PaymentMethod.CASH, PaymentMethod.BANK):
            raise InvalidArgumentError("Split payments must be received in Cash or Bank.")

        # Aggregate qty by item so repeated lines cannot oversell
        qty_by_item: Counter[int] = Counter()
        for it in items:
            qty = int(it["quantity"])
            if qty <= 0:
                raise InvalidArgumentError("Quantity must be >= 1.")
            qty_by_item[int(it["item_id"])] += qty

        if float(discount_value or 0.0) < 0:
            raise InvalidArgumentError("Discount must be >= 0.")
        credit = float(credit_applied or 0.0)
        paid = float(amount_paid or 0.0)
        if credit < 0 or paid < 0:
            raise InvalidArgumentError("Amounts must be >= 0.")

        def work(uow: SqliteUnitOfWork) -> Sale:
            customer = uow.get_customer(customer_id)
            if customer is None:
                raise NotFoundError(f"Customer with id {customer_id} does not exist.")

            lines: list[SaleLine] = []
            for item_id, qty in qty_by_item.items():
                item = uow.get_item(item_id)
                if item is None:
                    raise NotFoundError(f"Item with id {item_id} does not exist.")
                if item.stock < qty:
                    raise InsufficientStockError(
                        f"Not enough stock for {item.title}. Available: {item.stock}, Requested: {qty}",
                        item_id=item.id,
                        available=item.stock,
                        requested=qty,
                    )
                lines.append(SaleLine(item_id=item.id, quantity=qty, price=item.selling_price))

            subtotal = compute_subtotal(lines)
            discount = compute_discount(subtotal, discount_kind, discount_value)
            total = subtotal - discount
            if credit > total:
                raise InvalidArgumentError("Credit applied cannot exceed the sale total.")
            to_pay = total - credit

            stored_method = method
            if to_pay <= 0:
                stored_method = PaymentMethod.PAID_BY_CREDIT
            elif method is PaymentMethod.SPLIT and not 0 < paid < to_pay:
                # paying all or nothing up front is a Cash/Bank or Due sale
                raise InvalidArgumentError("Split amount paid must be greater than 0 and less than the amount due.")
            stored_paid = paid if stored_method is PaymentMethod.SPLIT else 0.0
            stored_split = (split_method or PaymentMethod.CASH) if stored_method is PaymentMethod.SPLIT else None

            now = self.clock().replace(microsecond=0)
            sale_code = uow.next_code("sale", "SALE")
            sale_pk = uow.insert_sale(
                sale_code,
                now,
                customer.id,
                lines,
                subtotal,
                discount_kind,
                float(discount_value or 0.0),
                discount,
                total,
                stored_method,
                stored_paid,
                stored_split,
                credit,
            )
            # re-validated by the guarded UPDATE inside the same transaction
            for line in lines:
                uow.adjust_item_stock(line.item_id, -line.quantity)

            sale = uow.get_sale(sale_pk)
            delta = sale_due_delta(sale)
            if delta:
                uow.adjust_customer_due(customer.id, delta)

            if stored_method is PaymentMethod.SPLIT and stored_paid > 0:
                uow.insert_transaction(
                    description=f"Partial payment for {sale_code}",
                    amount=stored_paid,
                    due_date=now,
                    status=TransactionStatus.PAID,
                    type_=TransactionType.RECEIVABLE,
                    purpose=TransactionPurpose.SPLIT_PAYMENT,
                    customer_id=customer.id,
                    payment_method=stored_split,
                    sale_id=sale_pk,
                    settled_date=now,
                )
            remainder = delta - credit
            if remainder > 0:
                uow.insert_transaction(
                    description=f"Due from {sale_code}",
                    amount=remainder,
                    due_date=now,
                    status=TransactionStatus.PENDING,
                    type_=TransactionType.RECEIVABLE,
                    purpose=TransactionPurpose.SALE_DUE,
                    customer_id=customer.id,
                    sale_id=sale_pk,
                )
            return sale

        sale = run_in_transaction(self.uow_factory, work, self.attempts)
        log.info(
            "sale_created sale=%s customer=%s lines=%s total=%.2f method=%s",
            sale.sale_id,
            sale.customer_id,
            len(sale.items),
            sale.total,
            sale.payment_method.value,
        )
        return sale

    def delete_sale(self, sale_pk: int) -> Sale:
        """Reverse a sale: restore stock, undo its due-balance change, drop linked receivables."""

        def work(uow: SqliteUnitOfWork) -> Sale:
            sale = uow.get_sale(sale_pk)
            if sale is None:
                raise NotFoundError("Sale not found.")
            for line in sale.items:
                uow.adjust_item_stock(line.item_id, line.quantity)
            delta = sale_due_delta(sale)
            if delta:
                uow.adjust_customer_due(sale.customer_id, -delta)
            uow.delete_transactions_for_sale(sale.id)
            uow.delete_sale(sale.id)
            return sale

        sale = run_in_transaction(self.uow_factory, work, self.attempts)
        log.info("sale_deleted sale=%s customer=%s", sale.sale_id, sale.customer_id)
        return sale

    def get_sale(self, sale_pk: int) -> Sale:
        sale = self.repo.get_sale(sale_pk)
        if sale is None:
            raise NotFoundError("Sale not found.")
        return sale

    def list_sales(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Sale]:
        return self.repo.list_sales(start, end)

    def list_sales_page(self, limit: int = 5, after_id: Optional[int] = None) -> tuple[list[Sale], bool]:
        return self.repo.list_sales_page(limit, after_id)

    def list_sales_for_customer(self, customer_id: int) -> list[Sale]:
        return self.repo.list_sales_for_customer(customer_id)
