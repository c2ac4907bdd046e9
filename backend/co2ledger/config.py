# backend/co2ledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/co2ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///co2ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Each filling writes a tank exit row for the CO2 it consumed
    FILLING_DEBITS_TANK = _env_flag("FILLING_DEBITS_TANK", True)

    # Dashboard windows
    TEST_DUE_WARNING_DAYS = int(os.environ.get("TEST_DUE_WARNING_DAYS", "30"))
    SHRINKAGE_WINDOW_DAYS = int(os.environ.get("SHRINKAGE_WINDOW_DAYS", "30"))
