from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys

from bookkeeper.domain.errors import ConfigurationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class Settings:
    tx_attempts: int = 3
    busy_timeout: float = 5.0


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "Bookkeeper") -> AppPaths:
    override = os.environ.get("BOOKKEEPER_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db_override = os.environ.get("BOOKKEEPER_DB_PATH", "").strip()
    db = Path(db_override) if db_override else base / "ledger.db"

    try:
        base.mkdir(parents=True, exist_ok=True)
        logs.mkdir(parents=True, exist_ok=True)
        db.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create data directory {base}: {e}") from e

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def _env_number(name: str, default, cast):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0.")
    return value


def load_settings() -> Settings:
    return Settings(
        tx_attempts=_env_number("BOOKKEEPER_TX_ATTEMPTS", Settings.tx_attempts, int),
        busy_timeout=_env_number("BOOKKEEPER_BUSY_TIMEOUT", Settings.busy_timeout, float),
    )
