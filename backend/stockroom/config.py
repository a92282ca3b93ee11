# backend/stockroom/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Local SQLite file keeps the register working offline
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///stockroom.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Shelf prices are VAT-exclusive; see stockroom.money
    STOCKROOM_VAT_RATE = os.environ.get("STOCKROOM_VAT_RATE", "0.12")
    STOCKROOM_CURRENCY_SYMBOL = os.environ.get("STOCKROOM_CURRENCY_SYMBOL", "₱")

    STOCKROOM_CACHE_TTL_SECONDS = float(os.environ.get("STOCKROOM_CACHE_TTL_SECONDS", "60"))
    STOCKROOM_CACHE_MAX_ENTRIES = int(os.environ.get("STOCKROOM_CACHE_MAX_ENTRIES", "1024"))

    # Upper bound on how long a write waits for the database lock
    STOCKROOM_TX_TIMEOUT_SECONDS = float(os.environ.get("STOCKROOM_TX_TIMEOUT_SECONDS", "5"))
    STOCKROOM_READ_RETRY_ATTEMPTS = int(os.environ.get("STOCKROOM_READ_RETRY_ATTEMPTS", "3"))

    STOCKROOM_EVENTS_SYNC = _env_bool("STOCKROOM_EVENTS_SYNC", False)
    STOCKROOM_EVENT_WORKERS = int(os.environ.get("STOCKROOM_EVENT_WORKERS", "2"))

    STOCKROOM_DEFAULT_MIN_STOCK = int(os.environ.get("STOCKROOM_DEFAULT_MIN_STOCK", "5"))
