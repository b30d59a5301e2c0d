# backend/app/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchsync.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///branchsync.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Offline sync
    SYNC_MAX_BATCH_SIZE = _env_int("SYNC_MAX_BATCH_SIZE", 100)

    # Outbox dispatcher
    OUTBOX_POLL_INTERVAL_MS = _env_int("OUTBOX_POLL_INTERVAL_MS", 500)
    OUTBOX_BATCH_SIZE = _env_int("OUTBOX_BATCH_SIZE", 100)
    # Starts a worker in each process that serves the app. Rows are not claimed
    # across processes, so enable it in exactly one process (or run
    # "flask outbox run" as the only dispatcher). CLI processes never autostart.
    OUTBOX_DISPATCHER_AUTOSTART = _env_bool("OUTBOX_DISPATCHER_AUTOSTART", False)
    OUTBOX_RETENTION_DAYS = _env_int("OUTBOX_RETENTION_DAYS", 7)

    # Cash close variance above this (absolute, cents) needs manager review
    CASH_VARIANCE_THRESHOLD_CENTS = _env_int("CASH_VARIANCE_THRESHOLD_CENTS", 500)

    DEVICE_SESSION_TTL_HOURS = _env_int("DEVICE_SESSION_TTL_HOURS", 24)
