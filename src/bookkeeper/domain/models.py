from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

OFFICE_ASSET_CATEGORY = "Office Asset"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    BANK = "Bank"
    DUE = "Due"
    SPLIT = "Split"
    PAID_BY_CREDIT = "Paid by Credit"


class DiscountType(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class TransactionType(str, Enum):
    RECEIVABLE = "Receivable"
    PAYABLE = "Payable"


class TransactionStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"


class TransactionPurpose(str, Enum):
    SALE_DUE = "sale_due"
    SPLIT_PAYMENT = "split_payment"
    CUSTOMER_PAYMENT = "customer_payment"
    PURCHASE_DUE = "purchase_due"
    MANUAL = "manual"


class DonationKind(str, Enum):
    DONATION = "donation"
    INITIAL_CAPITAL = "initial_capital"
    INTERNAL_TRANSFER = "internal_transfer"


class RefundMethod(str, Enum):
    ACCOUNT_CREDIT = "Account Credit"
    CASH = "Cash"
    BANK = "Bank"


class CapitalMethod(str, Enum):
    CASH = "Cash"
    BANK = "Bank"
    ASSET = "Asset"


@dataclass(frozen=True)
class Item:
    id: int
    title: str
    category: str
    production_price: float
    selling_price: float
    stock: int
    author: Optional[str] = None
    active: int = 1


@dataclass(frozen=True)
class Customer:
    id: int
    name: str
    phone: str
    address: str
    opening_balance: float
    due_balance: float


@dataclass(frozen=True)
class SaleLine:
    item_id: int
    quantity: int
    price: float

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


@dataclass(frozen=True)
class Sale:
    id: int
    sale_id: str
    date: datetime
    customer_id: int
    items: tuple[SaleLine, ...]
    subtotal: float
    discount_type: DiscountType
    discount_value: float
    discount: float
    total: float
    payment_method: PaymentMethod
    amount_paid: float = 0.0
    split_payment_method: Optional[PaymentMethod] = None
    credit_applied: float = 0.0


@dataclass(frozen=True)
class Transaction:
    id: int
    description: str
    amount: float
    due_date: datetime
    status: TransactionStatus
    type: TransactionType
    purpose: TransactionPurpose
    customer_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    sale_id: Optional[int] = None
    purchase_id: Optional[int] = None
    settled_date: Optional[datetime] = None

    @property
    def effective_date(self) -> datetime:
        return self.settled_date or self.due_date


@dataclass(frozen=True)
class PurchaseLine:
    item_name: str
    category: str
    quantity: int
    cost: float
    author: Optional[str] = None
    item_id: Optional[int] = None

    @property
    def line_total(self) -> float:
        return self.cost * self.quantity


@dataclass(frozen=True)
class Purchase:
    id: int
    purchase_id: str
    date: datetime
    due_date: datetime
    supplier: str
    items: tuple[PurchaseLine, ...]
    total_amount: float
    payment_method: PaymentMethod
    amount_paid: float = 0.0
    split_payment_method: Optional[PaymentMethod] = None


@dataclass(frozen=True)
class Expense:
    id: int
    expense_id: str
    date: datetime
    description: str
    amount: float
    payment_method: PaymentMethod
    category: Optional[str] = None


@dataclass(frozen=True)
class Donation:
    id: int
    donation_id: str
    date: datetime
    donor_name: str
    amount: float
    payment_method: PaymentMethod
    kind: DonationKind = DonationKind.DONATION


@dataclass(frozen=True)
class Transfer:
    id: int
    date: datetime
    from_account: PaymentMethod
    to_account: PaymentMethod
    amount: float


@dataclass(frozen=True)
class CapitalContribution:
    id: int
    date: datetime
    amount: float
    method: CapitalMethod
    is_initial: bool = False
    description: Optional[str] = None


@dataclass(frozen=True)
class ReturnLine:
    item_id: int
    quantity: int
    price: float


@dataclass(frozen=True)
class SalesReturn:
    id: int
    return_id: str
    date: datetime
    customer_id: int
    items: tuple[ReturnLine, ...]
    total_return_value: float
    refund_method: RefundMethod


def as_record(value: Any) -> Any:
    """Plain JSON-friendly view of a model: ISO-8601 dates, enum values, lists."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: as_record(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [as_record(v) for v in value]
    if isinstance(value, dict):
        return {k: as_record(v) for k, v in value.items()}
    return value
