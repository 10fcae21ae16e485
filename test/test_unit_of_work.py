import sqlite3
from pathlib import Path

import pytest

from bookkeeper.domain.errors import TransactionConflictError
from bookkeeper.domain.models import PaymentMethod
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from bookkeeper.repositories.unit_of_work import SqliteUnitOfWork, run_in_transaction
from bookkeeper.services.sales_service import SalesService
from conftest import make_container


class FlakyFactory:
    """Hands out units of work that fail to start the first ``failures`` times."""

    def __init__(self, repo, failures: int):
        self.repo = repo
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            return _ConflictingUnitOfWork(self.repo)
        return SqliteUnitOfWork(self.repo)


class _ConflictingUnitOfWork(SqliteUnitOfWork):
    def __enter__(self):
        raise TransactionConflictError("database is locked")


def test_whole_procedure_is_retried_on_conflict(tmp_path: Path):
    app, clock = make_container(tmp_path)
    item_id = app.inventory.add_item("Cup", "Kitchen", 1.0, 3.0, 5)
    customer_id = app.inventory.add_customer("Soylent")
    factory = FlakyFactory(app.repo, failures=2)
    sales = SalesService(app.repo, uow_factory=factory, clock=clock, attempts=3)

    sale = sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 2}], PaymentMethod.CASH)

    assert factory.calls == 3
    assert sale.sale_id == "SALE-0001"
    assert app.inventory.get_item(item_id).stock == 3


def test_conflict_surfaces_after_last_attempt(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()
    factory = FlakyFactory(repo, failures=5)

    with pytest.raises(TransactionConflictError):
        run_in_transaction(factory, lambda uow: None, attempts=2)
    assert factory.calls == 2


def test_locked_database_maps_to_conflict(tmp_path: Path):
    db = tmp_path / "locked.db"
    repo = SqliteRepository(db, busy_timeout=0.05)
    repo.init_db()

    blocker = sqlite3.connect(db, isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(TransactionConflictError):
            with SqliteUnitOfWork(repo):
                pass
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()


def test_error_inside_work_rolls_back(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "r.db")
    repo.init_db()
    customer_id = repo.add_customer("Wayne", "", "", 0.0)

    def work(uow):
        uow.adjust_customer_due(customer_id, 50.0)
        uow.next_code("sale", "SALE")
        raise ValueError("stop")

    with pytest.raises(ValueError):
        run_in_transaction(lambda: SqliteUnitOfWork(repo), work)

    assert repo.get_customer(customer_id).due_balance == 0.0
    with SqliteUnitOfWork(repo) as uow:
        assert uow.next_code("sale", "SALE") == "SALE-0001"
