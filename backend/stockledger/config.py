# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int | None) -> int | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return float(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ledger transactions: bounded retry on contention, bounded wait per key lock
    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 3)
    LEDGER_RETRY_BACKOFF_SECONDS = _env_float("LEDGER_RETRY_BACKOFF_SECONDS", 0.05)
    LEDGER_LOCK_TIMEOUT_SECONDS = _env_float("LEDGER_LOCK_TIMEOUT_SECONDS", 5.0)

    # Fallback alert thresholds when no StockThreshold row matches
    ALERT_LOW_STOCK_QTY = _env_int("ALERT_LOW_STOCK_QTY", 10)
    ALERT_OVERSTOCK_QTY = _env_int("ALERT_OVERSTOCK_QTY", None)
    ALERT_EXPIRY_WARNING_DAYS = _env_int("ALERT_EXPIRY_WARNING_DAYS", 30)

    # Injected demand forecasting strategy (None -> NullForecastOracle)
    FORECAST_ORACLE = None

    MOVE_HISTORY_PAGE_LIMIT = 200

    # Browser origins allowed to call the API (comma-separated in the env)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if o.strip()
    )
