from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from bookkeeper.config import Settings
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.repositories.unit_of_work import SqliteUnitOfWork
from bookkeeper.services.cashbook_service import CashbookService
from bookkeeper.services.inventory_service import InventoryService
from bookkeeper.services.overview_service import OverviewService
from bookkeeper.services.purchase_service import PurchaseService
from bookkeeper.services.receivables_service import ReceivablesService
from bookkeeper.services.reporting_service import ReportingService
from bookkeeper.services.returns_service import SalesReturnService
from bookkeeper.services.sales_service import SalesService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    inventory: InventoryService
    sales: SalesService
    purchases: PurchaseService
    returns: SalesReturnService
    receivables: ReceivablesService
    cashbook: CashbookService
    overview: OverviewService
    reporting: ReportingService


def build_container(
    db_path: Path | str,
    settings: Optional[Settings] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> AppContainer:
    settings = settings or Settings()
    repo = SqliteRepository(db_path, busy_timeout=settings.busy_timeout)
    repo.init_db()

    def uow_factory() -> SqliteUnitOfWork:
        return SqliteUnitOfWork(repo)

    mutator_args = dict(uow_factory=uow_factory, clock=clock, attempts=settings.tx_attempts)
    overview = OverviewService(repo)

    return AppContainer(
        repo=repo,
        inventory=InventoryService(repo),
        sales=SalesService(repo, **mutator_args),
        purchases=PurchaseService(repo, **mutator_args),
        returns=SalesReturnService(repo, **mutator_args),
        receivables=ReceivablesService(repo, **mutator_args),
        cashbook=CashbookService(repo, clock=clock),
        overview=overview,
        reporting=ReportingService(repo, overview, clock=clock),
    )
