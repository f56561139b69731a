# backend/mypos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/mypos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location (postgresql://... in production)
        "sqlite:///mypos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Document numbering
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    PURCHASE_PREFIX = os.environ.get("PURCHASE_PREFIX", "PO")

    # Store access tokens issued by `flask stores issue-token`
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Response cache (in-process, store-scoped keys)
    CACHE_ENABLED = _env_bool("CACHE_ENABLED", True)
    CACHE_DEFAULT_TTL = int(os.environ.get("CACHE_DEFAULT_TTL", "60"))

    # Requests per window, per store and bucket
    RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_READ = int(os.environ.get("RATE_LIMIT_READ", "200"))
    RATE_LIMIT_WRITE = int(os.environ.get("RATE_LIMIT_WRITE", "50"))
    RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60"))

    SALE_MAX_ITEMS = int(os.environ.get("SALE_MAX_ITEMS", "100"))


def engine_options_for(database_uri: str) -> dict:
    """
    SQLite writers serialize on the database lock; give them a busy timeout
    so concurrent checkouts wait instead of failing with "database is locked".
    """
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True}
