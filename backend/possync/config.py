# backend/possync/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local durable store (one SQLite file per terminal)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "LOCAL_DATABASE_URL",
        "sqlite:///pos_offline.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Hosted ledger database (PostgREST-style surface)
    LEDGER_URL = os.environ.get("LEDGER_URL", "http://127.0.0.1:54321")
    LEDGER_API_KEY = os.environ.get("LEDGER_API_KEY", "")
    LEDGER_SCHEMA = os.environ.get("LEDGER_SCHEMA", "public")
    LEDGER_TIMEOUT_SECONDS = float(os.environ.get("LEDGER_TIMEOUT_SECONDS", "10"))
    LEDGER_TOKEN_TTL_SECONDS = float(os.environ.get("LEDGER_TOKEN_TTL_SECONDS", "3300"))
    LEDGER_AUTH_EMAIL = os.environ.get("LEDGER_AUTH_EMAIL", "")
    LEDGER_AUTH_PASSWORD = os.environ.get("LEDGER_AUTH_PASSWORD", "")

    CONNECTIVITY_PROBE_TIMEOUT_SECONDS = float(os.environ.get("CONNECTIVITY_PROBE_TIMEOUT_SECONDS", "3"))
    FORCE_OFFLINE = _env_bool("FORCE_OFFLINE")

    # Offline queue policy
    SYNC_MAX_RETRIES = int(os.environ.get("SYNC_MAX_RETRIES", "3"))
    SYNC_INTERVAL_SECONDS = float(os.environ.get("SYNC_INTERVAL_SECONDS", "300"))
    SYNCED_RETENTION_HOURS = float(os.environ.get("SYNCED_RETENTION_HOURS", "24"))

    # Business home timezone is a fixed offset (no DST)
    BUSINESS_UTC_OFFSET_HOURS = int(os.environ.get("BUSINESS_UTC_OFFSET_HOURS", "2"))

    CASH_PAYMENT_METHODS = tuple(
        name.strip().lower()
        for name in os.environ.get("CASH_PAYMENT_METHODS", "cash,نقدي,كاش").split(",")
        if name.strip()
    )

    SIDE_EFFECT_WORKERS = int(os.environ.get("SIDE_EFFECT_WORKERS", "8"))
