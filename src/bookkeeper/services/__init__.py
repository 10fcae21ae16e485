from .inventory_service import InventoryService
from .sales_service import SalesService
from .purchase_service import PurchaseService
from .returns_service import SalesReturnService
from .receivables_service import ReceivablesService
from .cashbook_service import CashbookService
from .overview_service import OverviewService
from .reporting_service import ReportingService

__all__ = [
    "InventoryService",
    "SalesService",
    "PurchaseService",
    "SalesReturnService",
    "ReceivablesService",
    "CashbookService",
    "OverviewService",
    "ReportingService",
]
