import json
import logging
from datetime import datetime
from pathlib import Path

import pytest

from bookkeeper import main as cli
from bookkeeper.config import Settings, get_app_paths, load_settings
from bookkeeper.domain.errors import ConfigurationError
from bookkeeper.domain.models import PaymentMethod
from bookkeeper.logging_config import JsonFormatter
from bookkeeper.repositories.sqlite_repo import SqliteRepository
from conftest import FixedClock, make_container


def test_paths_and_settings_follow_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("BOOKKEEPER_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("BOOKKEEPER_DB_PATH", str(tmp_path / "data" / "shop.db"))
    monkeypatch.setenv("BOOKKEEPER_TX_ATTEMPTS", "5")
    monkeypatch.delenv("BOOKKEEPER_BUSY_TIMEOUT", raising=False)

    paths = get_app_paths()

    assert paths.base_dir == tmp_path / "home"
    assert paths.logs_dir.is_dir()
    assert paths.db_path == tmp_path / "data" / "shop.db"
    assert load_settings() == Settings(tx_attempts=5, busy_timeout=5.0)

    monkeypatch.setenv("BOOKKEEPER_TX_ATTEMPTS", "lots")
    with pytest.raises(ConfigurationError):
        load_settings()


def test_json_formatter_splits_ledger_events():
    record = logging.LogRecord(
        "bookkeeper.ledger", logging.INFO, __file__, 1, "sale_created sale=%s total=%.2f", ("SALE-0001", 20.0), None
    )
    payload = json.loads(JsonFormatter().format(record))
    assert payload["logger"] == "bookkeeper.ledger"
    assert payload["event"] == "sale_created"
    assert payload["fields"] == {"sale": "SALE-0001", "total": "20.00"}

    plain = logging.LogRecord("bookkeeper.main", logging.INFO, __file__, 1, "hello world", (), None)
    assert "event" not in json.loads(JsonFormatter().format(plain))


def test_migrations_are_idempotent(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    conn = repo._conn()
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    conn.close()
    assert versions == [1, 2]
    assert repo.integrity_check() == "ok"


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_indexes(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.add_customer("Kept", "", "", 3.0)

    conn = repo._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version = 2")
    conn.commit()
    conn.close()

    with pytest.raises(ConfigurationError, match="Original database restored"):
        BrokenMigrationRepo(db).run_migrations()

    assert [c.name for c in repo.list_customers()] == ["Kept"]


def test_cli_prints_overview_and_report(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setenv("BOOKKEEPER_HOME", str(tmp_path / "home"))
    app, clock = make_container(tmp_path, FixedClock(datetime(2024, 2, 5, 10, 0, 0)))
    item_id = app.inventory.add_item("Chair", "Home", 30.0, 50.0, 4)
    customer_id = app.inventory.add_customer("Vandelay")
    app.sales.add_sale(customer_id, [{"item_id": item_id, "quantity": 1}], PaymentMethod.CASH)
    db = str(tmp_path / "ledger.db")

    assert cli.main(["--db", db, "overview", "--as-of", "2024-02-05"]) == 0
    overview = json.loads(capsys.readouterr().out)
    assert overview["cash"] == 50.0
    assert overview["as_of"] == "2024-02-05"

    xlsx = tmp_path / "feb.xlsx"
    assert cli.main(["--db", db, "report", "2024", "2", "--xlsx", str(xlsx)]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["monthly_activity"]["profit_from_paid_sales"] == 20.0
    assert xlsx.exists()

    assert cli.main(["--db", db, "stock", "--as-of", "2024-02-04"]) == 0
    stock = json.loads(capsys.readouterr().out)
    assert stock["items"] == [{"item_id": item_id, "title": "Chair", "closing_stock": 4, "value": 120.0}]

    assert cli.main(["--db", db, "dashboard"]) == 0
    dashboard = json.loads(capsys.readouterr().out)
    assert dashboard["total_items_in_stock"] == 3
    assert dashboard["total_item_titles"] == 1

    assert cli.main(["--db", db, "report", "2024", "14"]) == 1
    assert (tmp_path / "home" / "logs" / "ledger.log").exists()
    assert "Month must be between" in capsys.readouterr().err
