# storefront/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///storefront.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" or "snapshot"; exactly one backend is active per process
    STORAGE_BACKEND = os.environ.get("STOREFRONT_BACKEND", "sql")
    SNAPSHOT_PATH = os.environ.get("STOREFRONT_SNAPSHOT_PATH", "data.json")

    # Assigned by add_user when the caller supplies no credential
    DEFAULT_USER_PASSWORD = os.environ.get("STOREFRONT_DEFAULT_PASSWORD", "admin123")
    BCRYPT_ROUNDS = int(os.environ.get("STOREFRONT_BCRYPT_ROUNDS", "12"))

    RECENT_LOG_LIMIT = 50
