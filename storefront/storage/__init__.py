"""
Backend selection.

Exactly one Storage implementation is active per app, chosen from
STORAGE_BACKEND at startup and kept in app.extensions.
"""
from __future__ import annotations

from flask import Flask, current_app

from .base import ACTOR_SYSTEM, Storage
from .snapshot import SnapshotStorage
from .sql import SqlStorage

EXTENSION_KEY = "storefront.storage"
BACKENDS = ("sql", "snapshot")


def create_storage(app: Flask) -> Storage:
    backend = (app.config.get("STORAGE_BACKEND") or "sql").lower()
    default_password = app.config["DEFAULT_USER_PASSWORD"]
    rounds = int(app.config["BCRYPT_ROUNDS"])

    if backend == "sql":
        storage = SqlStorage(default_password=default_password, bcrypt_rounds=rounds)
        with app.app_context():
            storage.init_schema()
    elif backend == "snapshot":
        storage = SnapshotStorage(
            app.config["SNAPSHOT_PATH"],
            default_password=default_password,
            bcrypt_rounds=rounds,
        )
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}; expected one of {', '.join(BACKENDS)}")

    app.extensions[EXTENSION_KEY] = storage
    app.logger.info("Storage backend: %s", storage.backend_name)
    return storage


def get_storage() -> Storage:
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    "ACTOR_SYSTEM", "BACKENDS", "Storage", "SnapshotStorage", "SqlStorage",
    "create_storage", "get_storage",
]
