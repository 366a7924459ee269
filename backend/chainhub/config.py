# backend/chainhub/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/chainhub.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///chainhub.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Static key for hub administration endpoints (push, catalog, pricing)
    HUB_ADMIN_API_KEY = os.environ.get("HUB_ADMIN_API_KEY", "")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Branch-initiated sync requests of the same type are refused inside this window
    SYNC_COOLDOWN_SECONDS = _env_int("SYNC_COOLDOWN_SECONDS", 3600)

    # Outbound pushes: bounded waits so an unreachable branch never blocks a request
    BRANCH_PUSH_TIMEOUT_SECONDS = _env_float("BRANCH_PUSH_TIMEOUT_SECONDS", 10.0)
    BRANCH_BULK_TIMEOUT_SECONDS = _env_float("BRANCH_BULK_TIMEOUT_SECONDS", 60.0)

    TRANSACTION_BATCH_SIZE = _env_int("TRANSACTION_BATCH_SIZE", 10)
    BULK_TRANSACTION_LIMIT = _env_int("BULK_TRANSACTION_LIMIT", 100)
    BULK_MOVEMENT_LIMIT = _env_int("BULK_MOVEMENT_LIMIT", 500)
    RETRY_FAILED_LIMIT = _env_int("RETRY_FAILED_LIMIT", 50)

    # Tolerance for baseline comparison in stock count reconciliation
    STOCK_EPSILON = os.environ.get("STOCK_EPSILON", "0.01")
