from .models import (
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
from .errors import (
    AppError,
    ConfigurationError,
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
    TransactionConflictError,
)

__all__ = [
    "CapitalContribution",
    "CapitalMethod",
    "Customer",
    "DiscountType",
    "Donation",
    "DonationKind",
    "Expense",
    "Item",
    "PaymentMethod",
    "Purchase",
    "PurchaseLine",
    "RefundMethod",
    "ReturnLine",
    "Sale",
    "SaleLine",
    "SalesReturn",
    "Transaction",
    "TransactionPurpose",
    "TransactionStatus",
    "TransactionType",
    "Transfer",
    "AppError",
    "ConfigurationError",
    "InsufficientStockError",
    "InvalidArgumentError",
    "NotFoundError",
    "TransactionConflictError",
]
