from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LEDGER_LOGGER = "bookkeeper.ledger"


def _split_event(message: str) -> tuple[str, dict[str, str]] | None:
    """``"sale_created sale=SALE-0001 total=20.00"`` -> ("sale_created", {...})."""
    head, _, rest = message.partition(" ")
    if not head or "=" in head or not head.replace("_", "").isalnum():
        return None
    fields: dict[str, str] = {}
    for token in rest.split():
        key, sep, value = token.partition("=")
        if not sep:
            return None
        fields[key] = value
    return head, fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        event = _split_event(message) if record.name.startswith(LEDGER_LOGGER) else None
        if event:
            payload["event"], payload["fields"] = event
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    """app.log and errors.log on the root logger, ledger.log for committed mutations."""
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    ledger = logging.getLogger(LEDGER_LOGGER)
    ledger.addHandler(_handler(logs_dir / "ledger.log", logging.INFO))
    ledger.setLevel(logging.INFO)
