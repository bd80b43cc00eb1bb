# Overview: Error taxonomy shared by both storage backends and its HTTP translation.

"""
Every failure the storage layer reports to callers is a StoreError subclass.

- NotFound / ValidationError / DuplicateUsername / SetupAlreadyCompleted are
  detected before any mutation, so raising them never leaves side effects.
- OutOfStock is raised from inside the order-placement unit of work, which is
  rolled back before the exception leaves the store.
- StorageError wraps driver and I/O faults. Its detail is for operators only;
  clients always see the generic message.
"""

from __future__ import annotations

from flask import current_app


class StoreError(Exception):
    status_code = 500

    def public_message(self) -> str:
        return str(self) or self.__class__.__name__


class NotFound(StoreError):
    """No category/product/user/order matches the given id."""
    status_code = 404


class ValidationError(StoreError, ValueError):
    """400-level input problem."""
    status_code = 400


class OutOfStock(StoreError):
    status_code = 409

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} is out of stock")
        self.product_id = product_id


class DuplicateUsername(StoreError):
    status_code = 409

    def __init__(self, username: str):
        super().__init__("Username already taken")
        self.username = username


class SetupAlreadyCompleted(StoreError):
    status_code = 403

    def __init__(self):
        super().__init__("Setup already completed")


class StorageError(StoreError):
    """Underlying read/write failure, schema mismatch or I/O fault."""
    status_code = 500

    def public_message(self) -> str:
        return "Storage failure"


def register_error_handlers(app) -> None:
    @app.errorhandler(StoreError)
    def handle_store_error(exc: StoreError):
        if isinstance(exc, StorageError):
            current_app.logger.exception("Storage failure: %s", exc)
        return {"error": exc.public_message()}, exc.status_code
