# backend/backoffice/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}

    # Seconds a SQLite writer waits on a locked database before failing
    SQLITE_BUSY_TIMEOUT_SECONDS = float(os.environ.get("SQLITE_BUSY_TIMEOUT_SECONDS", "15"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # Adds exception text to 500 responses; development only
    EXPOSE_ERROR_DETAILS = _env_bool("EXPOSE_ERROR_DETAILS")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "12"))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Sale pipeline
    SALE_TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get("SALE_TRANSACTION_TIMEOUT_SECONDS", "10"))
    SALE_NUMBER_ATTEMPTS = int(os.environ.get("SALE_NUMBER_ATTEMPTS", "5"))
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    ADHOC_ITEM_INITIAL_STOCK = int(os.environ.get("ADHOC_ITEM_INITIAL_STOCK", "100000"))

    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
