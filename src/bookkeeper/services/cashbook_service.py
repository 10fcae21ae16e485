from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from bookkeeper.domain.errors import InvalidArgumentError
from bookkeeper.domain.models import (
    CapitalContribution,
    CapitalMethod,
    Donation,
    DonationKind,
    Expense,
    PaymentMethod,
    Transfer,
)
from bookkeeper.repositories.sqlite_repo import SqliteRepository

log = logging.getLogger("bookkeeper.ledger")

_ACCOUNTS = (PaymentMethod.CASH, PaymentMethod.BANK)


def _account(value: PaymentMethod | str) -> PaymentMethod:
    try:
        method = PaymentMethod(value)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from e
    if method not in _ACCOUNTS:
        raise InvalidArgumentError("Account must be Cash or Bank.")
    return method


def _positive(amount: float) -> float:
    amount = float(amount)
    if amount <= 0:
        raise InvalidArgumentError("Amount must be > 0.")
    return amount


class CashbookService:
    """Expenses, donations, cash/bank transfers and owner capital."""

    def __init__(self, repo: SqliteRepository, clock: Callable[[], datetime] = datetime.now):
        self.repo = repo
        self.clock = clock

    def add_expense(
        self,
        description: str,
        amount: float,
        payment_method: PaymentMethod | str,
        category: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Expense:
        description = (description or "").strip()
        if not description:
            raise InvalidArgumentError("Description is required.")
        expense = self.repo.add_expense(date or self.clock(), description, _positive(amount), _account(payment_method), category)
        log.info("expense_created expense=%s amount=%.2f method=%s", expense.expense_id, expense.amount, expense.payment_method.value)
        return expense

    def add_donation(
        self,
        donor_name: str,
        amount: float,
        payment_method: PaymentMethod | str,
        kind: DonationKind | str = DonationKind.DONATION,
        date: Optional[datetime] = None,
    ) -> Donation:
        donor_name = (donor_name or "").strip()
        if not donor_name:
            raise InvalidArgumentError("Donor name is required.")
        try:
            kind = DonationKind(kind)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        donation = self.repo.add_donation(date or self.clock(), donor_name, _positive(amount), _account(payment_method), kind)
        log.info("donation_created donation=%s amount=%.2f kind=%s", donation.donation_id, donation.amount, donation.kind.value)
        return donation

    def record_transfer(
        self,
        from_account: PaymentMethod | str,
        to_account: PaymentMethod | str,
        amount: float,
        date: Optional[datetime] = None,
    ) -> int:
        source, target = _account(from_account), _account(to_account)
        if source is target:
            raise InvalidArgumentError("Transfer accounts must differ.")
        amount = _positive(amount)
        tid = self.repo.add_transfer(date or self.clock(), source, target, amount)
        log.info("transfer_recorded from=%s to=%s amount=%.2f", source.value, target.value, amount)
        return tid

    def add_capital(
        self,
        amount: float,
        method: CapitalMethod | str,
        is_initial: bool = False,
        description: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> int:
        try:
            method = CapitalMethod(method)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        return self.repo.add_capital(date or self.clock(), _positive(amount), method, is_initial, description)

    def list_expenses(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Expense]:
        return self.repo.list_expenses(start, end)

    def list_donations(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Donation]:
        return self.repo.list_donations(start, end)

    def list_transfers(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Transfer]:
        return self.repo.list_transfers(start, end)

    def list_capital(self) -> list[CapitalContribution]:
        return self.repo.list_capital()
