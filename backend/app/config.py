# backend/app/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/editions.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///editions.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Warehouse provider (PII fallback only). Empty key disables live lookups.
    WAREHOUSE_API_URL = os.environ.get("WAREHOUSE_API_URL", "https://api.chinadivision.com")
    WAREHOUSE_API_KEY = os.environ.get("WAREHOUSE_API_KEY", "")
    WAREHOUSE_TIMEOUT_SECONDS = _env_float("WAREHOUSE_TIMEOUT_SECONDS", 10.0)
    WAREHOUSE_MAX_RETRIES = _env_int("WAREHOUSE_MAX_RETRIES", 3)
    WAREHOUSE_BACKOFF_SECONDS = _env_float("WAREHOUSE_BACKOFF_SECONDS", 0.5)
    WAREHOUSE_LOOKUP_WINDOW_DAYS = _env_int("WAREHOUSE_LOOKUP_WINDOW_DAYS", 3)
    WAREHOUSE_PAGE_SIZE = _env_int("WAREHOUSE_PAGE_SIZE", 100)

    # Certificates are issued once, on first edition assignment
    CERTIFICATE_BASE_URL = os.environ.get("CERTIFICATE_BASE_URL", "")

    # Seconds a reassignment waits for another in-process reassignment of the same product
    PRODUCT_LOCK_TIMEOUT_SECONDS = _env_float("PRODUCT_LOCK_TIMEOUT_SECONDS", 30.0)
