# Overview: The storage contract every backend implements.

"""
Storage contract.

One abstract interface, two concrete backends (SnapshotStorage, SqlStorage),
exactly one of which is selected at startup (see storage.create_storage).

Conventions shared by every implementation:
- Results are plain JSON-serializable dicts/lists; credentials never appear.
- NotFound / ValidationError / DuplicateUsername are raised before anything
  is written.
- Every mutation of catalog, account or settings state appends its audit
  entry inside the same unit of work as the mutation itself: either both are
  durable or neither is.
- place_order is atomic and serialized per store (see services.order_service).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..errors import SetupAlreadyCompleted
from ..models import ROLE_MEMBER, ROLE_SUPER_ADMIN, STATUS_ACTIVE
from ..services.auth_service import hash_password, normalize_username, validate_credential
from ..validation import validate_settings, validate_user

ACTOR_SYSTEM = "System"
DEFAULT_LOG_LIMIT = 50


class Storage(ABC):
    backend_name = "abstract"

    # --- Categories ---
    @abstractmethod
    def list_categories(self) -> list[dict]:
        """All categories, each with its live product_count."""

    @abstractmethod
    def add_category(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict: ...

    @abstractmethod
    def update_category(self, category_id, updates: dict, actor: str = ACTOR_SYSTEM) -> dict:
        """Partial update; only supplied fields are written."""

    @abstractmethod
    def delete_category(self, category_id, actor: str = ACTOR_SYSTEM) -> None:
        """Delete the category and every product referencing it."""

    # --- Products ---
    @abstractmethod
    def list_products(self, category_id=None) -> list[dict]: ...

    @abstractmethod
    def get_product(self, product_id) -> dict: ...

    @abstractmethod
    def add_product(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict: ...

    @abstractmethod
    def update_product(self, product_id, updates: dict, actor: str = ACTOR_SYSTEM) -> dict: ...

    @abstractmethod
    def delete_product(self, product_id, actor: str = ACTOR_SYSTEM) -> None: ...

    # --- Users ---
    @abstractmethod
    def list_users(self) -> list[dict]: ...

    @abstractmethod
    def user_exists(self, username: str) -> bool:
        """Case-insensitive username lookup."""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> dict | None:
        """Return the user (and stamp last_login) if the credential matches, else None."""

    @abstractmethod
    def add_user(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        """
        Create a user. Missing password -> the configured default credential;
        missing role -> Member. Raises DuplicateUsername.
        """

    @abstractmethod
    def delete_user(self, user_id, actor: str = ACTOR_SYSTEM) -> None: ...

    @abstractmethod
    def is_setup_required(self) -> bool:
        """True iff no users exist."""

    # --- Settings ---
    @abstractmethod
    def get_settings(self) -> dict[str, str]: ...

    @abstractmethod
    def upsert_settings(self, updates: dict, actor: str = ACTOR_SYSTEM) -> dict[str, str]: ...

    # --- Logs ---
    @abstractmethod
    def append_log(self, action: str, details: str | None = None, actor: str = ACTOR_SYSTEM,
                   user_id: int | None = None) -> dict: ...

    @abstractmethod
    def list_recent_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> list[dict]:
        """Newest first."""

    # --- Orders ---
    @abstractmethod
    def place_order(self, user_id, product_id, price=None) -> dict: ...

    @abstractmethod
    def list_orders_for_user(self, user_id) -> list[dict]: ...

    @abstractmethod
    def dashboard_stats(self) -> dict: ...

    # --- Account flows built on the primitives above ---
    def register_user(self, username, password) -> dict:
        """Self-service registration: both fields required, always a Member."""
        username = normalize_username(username)
        validate_credential(password)
        return self.add_user(
            {"username": username, "password": password, "role": ROLE_MEMBER, "status": STATUS_ACTIVE},
            actor=username,
        )

    def complete_setup(self, admin_username, admin_password, site_title: str | None = None) -> dict:
        """
        First-run setup: only allowed while no user exists.

        Every input is validated and the credential hashed before anything is
        written; the "no users yet" check is then repeated inside the same
        write as the settings and the Super Admin (see _complete_setup).
        """
        user_patch = validate_user({
            "username": normalize_username(admin_username),
            "role": ROLE_SUPER_ADMIN,
            "status": STATUS_ACTIVE,
        })
        validate_credential(admin_password)
        settings = validate_settings({"site_title": site_title}) if site_title else {}
        if not self.is_setup_required():
            raise SetupAlreadyCompleted()
        password_hash = hash_password(admin_password, self.bcrypt_rounds)
        return self._complete_setup(user_patch, password_hash, settings)

    @abstractmethod
    def _complete_setup(self, user_patch: dict, password_hash: str, settings: dict) -> dict:
        """
        Atomically: raise SetupAlreadyCompleted if any user exists, otherwise
        store `settings` and create the admin, with their audit entries.
        """
