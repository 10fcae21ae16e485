from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from bookkeeper.domain.errors import InvalidArgumentError, NotFoundError
from bookkeeper.domain.models import PaymentMethod, RefundMethod, ReturnLine, SalesReturn
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.repositories.unit_of_work import SqliteUnitOfWork, run_in_transaction

log = logging.getLogger("bookkeeper.ledger")


class SalesReturnService:
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

    def add_sales_return(
        self,
        customer_id: int,
        items: Iterable[dict],
        refund_method: RefundMethod | str = RefundMethod.ACCOUNT_CREDIT,
    ) -> SalesReturn:
        """
        items: [{item_id, quantity, price?}]

        Returned goods go back into stock. Account Credit lowers the customer's
        due balance; Cash/Bank refunds are booked as an expense instead.
        """
        items = list(items)
        if not items:
            raise InvalidArgumentError("Return has no items.")
        try:
            refund = RefundMethod(refund_method)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

        requested: dict[tuple[int, Optional[float]], int] = {}
        for it in items:
            qty = int(it["quantity"])
            if qty <= 0:
                raise InvalidArgumentError("Quantity must be >= 1.")
            price = it.get("price")
            if price is not None and float(price) < 0:
                raise InvalidArgumentError("Price must be >= 0.")
            key = (int(it["item_id"]), float(price) if price is not None else None)
            requested[key] = requested.get(key, 0) + qty

        def work(uow: SqliteUnitOfWork) -> SalesReturn:
            customer = uow.get_customer(customer_id)
            if customer is None:
                raise NotFoundError(f"Customer with id {customer_id} does not exist.")

            lines: list[ReturnLine] = []
            for (item_id, price), qty in requested.items():
                item = uow.get_item(item_id, include_inactive=True)
                if item is None:
                    raise NotFoundError(f"Item with id {item_id} does not exist.")
                uow.adjust_item_stock(item.id, qty)
                lines.append(ReturnLine(item_id=item.id, quantity=qty, price=item.selling_price if price is None else price))

            total_value = sum(line.price * line.quantity for line in lines)
            now = self.clock().replace(microsecond=0)
            return_code = uow.next_code("return", "RTN")
            return_pk = uow.insert_sales_return(return_code, now, customer.id, lines, total_value, refund)

            if refund is RefundMethod.ACCOUNT_CREDIT:
                uow.adjust_customer_due(customer.id, -total_value)
            elif total_value > 0:
                uow.insert_expense(
                    now,
                    f"Refund for {return_code}",
                    total_value,
                    PaymentMethod(refund.value),
                    category="Refund",
                )

            return SalesReturn(
                id=return_pk,
                return_id=return_code,
                date=now,
                customer_id=customer.id,
                items=tuple(lines),
                total_return_value=total_value,
                refund_method=refund,
            )

        sales_return = run_in_transaction(self.uow_factory, work, self.attempts)
        log.info(
            "sales_return_created return=%s customer=%s value=%.2f refund=%s",
            sales_return.return_id,
            sales_return.customer_id,
            sales_return.total_return_value,
            sales_return.refund_method.value,
        )
        return sales_return

    def list_sales_returns(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[SalesReturn]:
        return self.repo.list_sales_returns(start, end)
