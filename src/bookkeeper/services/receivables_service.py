from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from bookkeeper.domain.errors import InvalidArgumentError, NotFoundError
from bookkeeper.domain.models import (
    PaymentMethod,
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
)
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.repositories.unit_of_work import SqliteUnitOfWork, run_in_transaction

log = logging.getLogger("bookkeeper.ledger")

_MONEY_METHODS = (PaymentMethod.CASH, PaymentMethod.BANK)


def _money_method(value: PaymentMethod | str) -> PaymentMethod:
    try:
        method = PaymentMethod(value)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from e
    if method not in _MONEY_METHODS:
        raise InvalidArgumentError("Payment method must be Cash or Bank.")
    return method


class ReceivablesService:
    """Receivable/payable ledger entries and customer payments."""

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

    def add_payment(self, customer_id: int, amount: float, payment_method: PaymentMethod | str) -> Transaction:
        """
        Record money received from a customer.

        Pending receivables are settled oldest first. One the remaining amount
        cannot cover in full is skipped and stays Pending, so a later, smaller
        one can still be settled. The due balance drops by the whole payment;
        anything beyond the debt leaves a negative balance, which later sales
        can consume as credit.
        """
        amount = float(amount)
        if amount <= 0:
            raise InvalidArgumentError("Payment amount must be > 0.")
        method = _money_method(payment_method)

        def work(uow: SqliteUnitOfWork) -> tuple[Transaction, int]:
            customer = uow.get_customer(customer_id)
            if customer is None:
                raise NotFoundError("Customer not found.")
            now = self.clock().replace(microsecond=0)
            uow.adjust_customer_due(customer.id, -amount)
            payment = uow.insert_transaction(
                description=f"Payment from customer {customer.name}",
                amount=amount,
                due_date=now,
                status=TransactionStatus.PAID,
                type_=TransactionType.RECEIVABLE,
                purpose=TransactionPurpose.CUSTOMER_PAYMENT,
                customer_id=customer.id,
                payment_method=method,
                settled_date=now,
            )

            remaining = amount
            settled = 0
            for receivable in uow.pending_receivables(customer.id):
                if remaining < receivable.amount:
                    continue
                uow.mark_transaction_paid(receivable.id, now, method)
                remaining -= receivable.amount
                settled += 1
            return payment, settled

        payment, settled = run_in_transaction(self.uow_factory, work, self.attempts)
        log.info(
            "payment_received customer=%s amount=%.2f method=%s settled=%s",
            payment.customer_id,
            payment.amount,
            payment.payment_method.value,
            settled,
        )
        return payment

    def add_transaction(
        self,
        description: str,
        amount: float,
        type_: TransactionType | str,
        due_date: datetime,
        customer_id: Optional[int] = None,
    ) -> Transaction:
        """Manually entered Pending receivable or payable."""
        description = (description or "").strip()
        if not description:
            raise InvalidArgumentError("Description is required.")
        if float(amount) <= 0:
            raise InvalidArgumentError("Amount must be > 0.")
        try:
            kind = TransactionType(type_)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

        def work(uow: SqliteUnitOfWork) -> Transaction:
            if customer_id is not None and uow.get_customer(customer_id) is None:
                raise NotFoundError("Customer not found.")
            return uow.insert_transaction(
                description=description,
                amount=float(amount),
                due_date=due_date,
                status=TransactionStatus.PENDING,
                type_=kind,
                purpose=TransactionPurpose.MANUAL,
                customer_id=customer_id,
            )

        return run_in_transaction(self.uow_factory, work, self.attempts)

    def mark_paid(self, transaction_id: int) -> Transaction:
        """Pending -> Paid. Entries are never reopened."""

        def work(uow: SqliteUnitOfWork) -> Transaction:
            entry = uow.get_transaction(transaction_id)
            if entry is None:
                raise NotFoundError("Transaction not found.")
            if entry.status is TransactionStatus.PAID:
                raise InvalidArgumentError("Transaction is already paid.")
            uow.mark_transaction_paid(entry.id, self.clock())
            return uow.get_transaction(entry.id)

        return run_in_transaction(self.uow_factory, work, self.attempts)

    def settle_payable(self, transaction_id: int, payment_method: PaymentMethod | str) -> Transaction:
        """Pay a pending payable and book the outgoing money as an expense."""
        method = _money_method(payment_method)

        def work(uow: SqliteUnitOfWork) -> Transaction:
            entry = uow.get_transaction(transaction_id)
            if entry is None:
                raise NotFoundError("Transaction not found.")
            if entry.type is not TransactionType.PAYABLE:
                raise InvalidArgumentError("Only payables can be settled this way.")
            if entry.status is TransactionStatus.PAID:
                raise InvalidArgumentError("Transaction is already paid.")
            now = self.clock().replace(microsecond=0)
            uow.mark_transaction_paid(entry.id, now, method)
            uow.insert_expense(now, f"Payment for {entry.description}", entry.amount, method, category="Payable")
            return uow.get_transaction(entry.id)

        entry = run_in_transaction(self.uow_factory, work, self.attempts)
        log.info("payable_settled transaction=%s amount=%.2f method=%s", entry.id, entry.amount, method.value)
        return entry

    def list_pending(self, type_: TransactionType | str) -> list[Transaction]:
        return self.repo.list_transactions(TransactionType(type_), TransactionStatus.PENDING)

    def customer_statement(self, customer_id: int) -> list[Transaction]:
        if self.repo.get_customer(customer_id) is None:
            raise NotFoundError("Customer not found.")
        return self.repo.list_transactions(TransactionType.RECEIVABLE, customer_id=customer_id)
