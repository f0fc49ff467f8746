# backend/stockflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Whole-unit retries for lock/deadlock/stale-version failures
    STOCKFLOW_RETRY_ATTEMPTS = int(os.environ.get("STOCKFLOW_RETRY_ATTEMPTS", "3"))
    STOCKFLOW_RETRY_BACKOFF = float(os.environ.get("STOCKFLOW_RETRY_BACKOFF", "0.1"))

    STOCKFLOW_LOG_LEVEL = os.environ.get("STOCKFLOW_LOG_LEVEL", "INFO")

    # Page size cap for ledger and audit listings
    STOCKFLOW_MAX_PAGE_SIZE = 200
