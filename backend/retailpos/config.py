# backend/retailpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the working directory unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///retailpos.sqlite3",
    )
    # Offline operation queue lives in its own local store
    SQLALCHEMY_BINDS = {
        "offline": os.environ.get("OFFLINE_QUEUE_URL", "sqlite:///retailpos-offline.sqlite3"),
    }
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Invoice numbering: <prefix>-<sequence zero-padded>
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    INVOICE_SEQUENCE_PAD = 6

    # Business rules
    RETURN_WINDOW_DAYS = int(os.environ.get("RETURN_WINDOW_DAYS", "7"))
    LOYALTY_POINT_VALUE = int(os.environ.get("LOYALTY_POINT_VALUE", "100"))

    # Optimistic concurrency retry
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF = float(os.environ.get("TX_RETRY_BACKOFF", "0.05"))

    # Offline queue poller (off unless the till runs the API locally)
    OFFLINE_POLLER_ENABLED = os.environ.get("OFFLINE_POLLER_ENABLED", "0") == "1"
    OFFLINE_POLL_INTERVAL = float(os.environ.get("OFFLINE_POLL_INTERVAL", "5.0"))

    CORS_ALLOWED_ORIGINS = (
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:4173",
        "http://127.0.0.1:4173",
    )

