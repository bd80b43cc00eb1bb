# Overview: Whole-file JSON snapshot backend; the full dataset lives in memory.

"""
File-snapshot store.

Document layout (compatible with the legacy data.json):

    {
      "categories": [...], "products": [...], "users": [...],
      "orders": [...], "logs": [...],
      "settings": {"key": "value", ...},
      "sequences": {"categories": 3, ...}
    }

Unknown top-level keys (e.g. "banners") are carried through untouched.

Write model:
- Every mutation runs under one process-wide re-entrant lock against the
  in-memory document, then rewrites the whole file (temp file + os.replace).
- If the rewrite fails the in-memory document is restored, so a mutation and
  its audit entry are durable together or not at all.
- The lock only covers this process. Two processes pointed at the same file
  will lose updates (last full rewrite wins); run one writer per file.

Ids come from the store-owned "sequences" counters, never from max(id) + 1
at insert time, so merged-in records with high ids cannot collide.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path

from ..errors import DuplicateUsername, NotFound, OutOfStock, SetupAlreadyCompleted, StorageError, ValidationError
from ..models import ORDER_STATUS_COMPLETED, ORDER_STATUS_PENDING, STATUS_ACTIVE
from ..seed_data import BASELINE_ADMIN, BASELINE_CATALOG, DEFAULT_SETTINGS, INIT_LOG_ACTION
from ..serialization import load_list
from ..services import order_service
from ..services.auth_service import (
    DEFAULT_ROUNDS,
    hash_password,
    is_password_hash,
    normalize_username,
    username_key,
    verify_password,
)
from ..time_utils import now_z, parse_iso_datetime_lenient, to_utc_z
from ..validation import (
    require_int_id,
    validate_category,
    validate_limit,
    validate_product,
    validate_settings,
    validate_user,
)
from .base import ACTOR_SYSTEM, DEFAULT_LOG_LIMIT, Storage

logger = logging.getLogger(__name__)

COLLECTIONS = ("categories", "products", "users", "orders", "logs")


def _money(value) -> float:
    return float(Decimal(str(value or 0)).quantize(Decimal("0.01")))


def _iso(value) -> str | None:
    return to_utc_z(parse_iso_datetime_lenient(value))


class SnapshotStorage(Storage):
    backend_name = "snapshot"

    def __init__(
        self,
        path,
        *,
        default_password: str = "admin123",
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        seed_if_missing: bool = True,
        upgrade_legacy: bool = True,
    ):
        """
        upgrade_legacy=False leaves plaintext credentials of a legacy file as
        they are and never rewrites it on open; use it for migration sources.
        """
        self.path = Path(path)
        self.default_password = default_password
        self.bcrypt_rounds = bcrypt_rounds
        self.upgrade_legacy = upgrade_legacy
        self._lock = threading.RLock()
        self._data: dict = {}

        with self._lock:
            if self.path.exists():
                self._load()
            elif seed_if_missing:
                self._data = self._empty_document()
                self._seed()
            else:
                raise StorageError(f"Snapshot file not found: {self.path}")

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _empty_document() -> dict:
        doc = {name: [] for name in COLLECTIONS}
        doc["settings"] = {}
        doc["sequences"] = {name: 1 for name in COLLECTIONS}
        return doc

    def _load(self) -> None:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.exception("Could not read snapshot %s", self.path)
            raise StorageError(f"Could not read snapshot {self.path}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Snapshot {self.path} is not a JSON object")

        for name in COLLECTIONS:
            if not isinstance(data.get(name), list):
                data[name] = []
        if not isinstance(data.get("settings"), dict):
            data["settings"] = {}

        stored = data.get("sequences") if isinstance(data.get("sequences"), dict) else {}
        sequences = {}
        try:
            for name in COLLECTIONS:
                ids = [int(r["id"]) for r in data[name] if isinstance(r, dict) and r.get("id") is not None]
                highest = max(ids) if ids else 0
                sequences[name] = max(int(stored.get(name) or 1), highest + 1)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Snapshot {self.path} has non-numeric ids") from exc
        data["sequences"] = sequences
        self._data = data

        if self.upgrade_legacy and self._upgrade_legacy_credentials():
            self._save()

    def _upgrade_legacy_credentials(self) -> bool:
        """Replace plaintext 'password' fields with bcrypt hashes."""
        upgraded = False
        for user in self._data["users"]:
            plaintext = user.pop("password", None)
            if is_password_hash(user.get("password_hash")):
                upgraded = upgraded or plaintext is not None
                continue
            logger.warning("Hashing legacy plaintext credential for user %r", user.get("username"))
            user["password_hash"] = hash_password(plaintext or self.default_password, self.bcrypt_rounds)
            upgraded = True
        return upgraded

    def _save(self) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        except OSError as exc:
            logger.exception("Could not prepare snapshot write for %s", self.path)
            raise StorageError(f"Could not write snapshot {self.path}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            logger.exception("Could not write snapshot %s", self.path)
            raise StorageError(f"Could not write snapshot {self.path}") from exc

    @contextmanager
    def _mutation(self):
        """All-or-nothing change to the in-memory document followed by a full rewrite."""
        with self._lock:
            backup = copy.deepcopy(self._data)
            try:
                yield self._data
                self._save()
            except BaseException:
                self._data = backup
                raise

    def _next_id(self, collection: str) -> int:
        sequences = self._data["sequences"]
        next_id = sequences[collection]
        sequences[collection] = next_id + 1
        return next_id

    def _seed(self) -> None:
        logger.info("Seeding snapshot %s", self.path)
        data = self._data
        for cat in BASELINE_CATALOG:
            products = cat["products"]
            category = {"id": self._next_id("categories"), **validate_category(
                {k: v for k, v in cat.items() if k != "products"}, partial=False)}
            data["categories"].append(category)
            for prod in products:
                patch = validate_product({**prod, "category_id": category["id"]}, partial=False)
                data["products"].append(self._product_record(self._next_id("products"), patch))

        data["users"].append({
            "id": self._next_id("users"),
            "username": BASELINE_ADMIN["username"],
            "password_hash": hash_password(BASELINE_ADMIN["password"], self.bcrypt_rounds),
            "role": BASELINE_ADMIN["role"],
            "status": STATUS_ACTIVE,
            "last_login": None,
            "created_at": now_z(),
        })
        data["settings"] = dict(DEFAULT_SETTINGS)
        self._log(INIT_LOG_ACTION, "Seeded baseline dataset", ACTOR_SYSTEM)
        self._save()
        logger.info("Seeding complete")

    def export_snapshot(self) -> dict:
        """Deep copy of the raw document (credential hashes included) for batch tools."""
        with self._lock:
            return copy.deepcopy(self._data)

    # ------------------------------------------------------------------
    # record helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _product_record(product_id: int, patch: dict) -> dict:
        record = {"id": product_id}
        for key, value in patch.items():
            record[key] = _money(value) if key == "price" else value
        return record

    @staticmethod
    def _find(records: list, record_id: int) -> dict | None:
        for record in records:
            if record.get("id") is not None and int(record["id"]) == record_id:
                return record
        return None

    def _require(self, collection: str, record_id, label: str) -> dict:
        record_id = require_int_id(record_id, f"{label.lower()}_id")
        record = self._find(self._data[collection], record_id)
        if record is None:
            raise NotFound(f"{label} not found")
        return record

    def _log(self, action: str, details: str | None, actor: str, user_id: int | None = None) -> dict:
        entry = {
            "id": self._next_id("logs"),
            "action": action,
            "details": details,
            "user": actor or ACTOR_SYSTEM,
            "user_id": user_id,
            "timestamp": now_z(),
        }
        self._data["logs"].append(entry)
        return entry

    def _find_user_by_name(self, username: str) -> dict | None:
        key = username_key(username)
        for user in self._data["users"]:
            if username_key(str(user.get("username", ""))) == key:
                return user
        return None

    @staticmethod
    def _public_product(record: dict) -> dict:
        return {
            "id": record["id"],
            "category_id": record.get("category_id"),
            "name": record.get("name"),
            "price": _money(record.get("price")),
            "stock": int(record.get("stock") or 0),
            "description": record.get("description"),
            "image_url": record.get("image_url"),
            "features": load_list(record.get("features"), field="features"),
            "supported_maps": load_list(record.get("supported_maps"), field="supported_maps"),
        }

    @staticmethod
    def _public_category(record: dict, product_count: int | None = None) -> dict:
        data = {
            "id": record["id"],
            "name": record.get("name"),
            "description": record.get("description"),
            "image_url": record.get("image_url"),
        }
        if product_count is not None:
            data["product_count"] = product_count
        return data

    @staticmethod
    def _public_user(record: dict) -> dict:
        return {
            "id": record["id"],
            "username": record.get("username"),
            "role": record.get("role"),
            "status": record.get("status"),
            "last_login": _iso(record.get("last_login")),
            "created_at": _iso(record.get("created_at")),
        }

    @staticmethod
    def _public_log(record: dict) -> dict:
        return {
            "id": record["id"],
            "user_id": record.get("user_id"),
            "user": record.get("user"),
            "action": record.get("action"),
            "details": record.get("details"),
            "timestamp": _iso(record.get("timestamp")),
        }

    @staticmethod
    def _public_order(record: dict, product_name: str | None) -> dict:
        return {
            "id": record["id"],
            "user_id": record.get("user_id"),
            "product_id": record.get("product_id"),
            "product_name": product_name,
            "price": _money(record.get("price")),
            "status": record.get("status"),
            "created_at": _iso(record.get("created_at")),
        }

    # ------------------------------------------------------------------
    # categories
    # ------------------------------------------------------------------

    def list_categories(self) -> list[dict]:
        with self._lock:
            counts: dict[int, int] = {}
            for product in self._data["products"]:
                if product.get("category_id") is not None:
                    cid = int(product["category_id"])
                    counts[cid] = counts.get(cid, 0) + 1
            return [
                self._public_category(cat, counts.get(int(cat["id"]), 0))
                for cat in self._data["categories"]
            ]

    def add_category(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_category(data, partial=False)
        with self._mutation() as doc:
            record = {"id": self._next_id("categories"), **patch}
            doc["categories"].append(record)
            self._log("Add Category", f"Added category {record['name']}", actor)
        return self._public_category(record)

    def update_category(self, category_id, updates: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_category(updates, partial=True)
        with self._mutation():
            record = self._require("categories", category_id, "Category")
            record.update(patch)
            self._log("Update Category", f"Updated category ID {record['id']}", actor)
            result = self._public_category(record)
        return result

    def delete_category(self, category_id, actor: str = ACTOR_SYSTEM) -> None:
        with self._mutation() as doc:
            record = self._require("categories", category_id, "Category")
            cid = int(record["id"])
            doc["categories"].remove(record)
            before = len(doc["products"])
            doc["products"] = [
                p for p in doc["products"]
                if p.get("category_id") is None or int(p["category_id"]) != cid
            ]
            removed = before - len(doc["products"])
            self._log("Delete Category", f"Deleted category ID {cid} and {removed} product(s)", actor)

    # ------------------------------------------------------------------
    # products
    # ------------------------------------------------------------------

    def list_products(self, category_id=None) -> list[dict]:
        with self._lock:
            products = self._data["products"]
            if category_id is not None and category_id != "":
                cid = require_int_id(category_id, "category_id")
                products = [
                    p for p in products
                    if p.get("category_id") is not None and int(p["category_id"]) == cid
                ]
            return [self._public_product(p) for p in products]

    def get_product(self, product_id) -> dict:
        with self._lock:
            return self._public_product(self._require("products", product_id, "Product"))

    def add_product(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_product(data, partial=False)
        with self._mutation() as doc:
            self._require("categories", patch["category_id"], "Category")
            record = self._product_record(self._next_id("products"), patch)
            doc["products"].append(record)
            self._log("Add Product", f"Added product {record['name']}", actor)
            result = self._public_product(record)
        return result

    def update_product(self, product_id, updates: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_product(updates, partial=True)
        with self._mutation():
            record = self._require("products", product_id, "Product")
            if "category_id" in patch:
                self._require("categories", patch["category_id"], "Category")
            for key, value in patch.items():
                record[key] = _money(value) if key == "price" else value
            fields = ", ".join(sorted(patch.keys())) or "nothing"
            self._log("Update Product", f"Updated product ID {record['id']} ({fields})", actor)
            result = self._public_product(record)
        return result

    def delete_product(self, product_id, actor: str = ACTOR_SYSTEM) -> None:
        with self._mutation() as doc:
            record = self._require("products", product_id, "Product")
            doc["products"].remove(record)
            self._log("Delete Product", f"Deleted product ID {record['id']}", actor)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def list_users(self) -> list[dict]:
        with self._lock:
            return [self._public_user(u) for u in self._data["users"]]

    def user_exists(self, username: str) -> bool:
        if not isinstance(username, str) or not username.strip():
            return False
        with self._lock:
            return self._find_user_by_name(username) is not None

    def authenticate(self, username: str, password: str) -> dict | None:
        if not isinstance(username, str) or not username.strip():
            return None
        with self._lock:
            user = self._find_user_by_name(username)
            if user is None or user.get("status", STATUS_ACTIVE) != STATUS_ACTIVE:
                return None
            if not verify_password(password, user.get("password_hash")):
                return None
            with self._mutation():
                user["last_login"] = now_z()
            return self._public_user(user)

    def add_user(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        data = dict(data or {})
        password = data.pop("password", None) or self.default_password
        if "username" in data:
            data["username"] = normalize_username(data["username"])
        patch = validate_user(data)
        password_hash = hash_password(password, self.bcrypt_rounds)
        with self._mutation():
            if self._find_user_by_name(patch["username"]) is not None:
                raise DuplicateUsername(patch["username"])
            record = self._insert_user(patch, password_hash, actor)
        return self._public_user(record)

    def _insert_user(self, patch: dict, password_hash: str, actor: str) -> dict:
        """Caller holds a _mutation()."""
        record = {
            "id": self._next_id("users"),
            **patch,
            "password_hash": password_hash,
            "last_login": None,
            "created_at": now_z(),
        }
        self._data["users"].append(record)
        self._log("Add User", f"Added user {record['username']}", actor)
        return record

    def _complete_setup(self, user_patch: dict, password_hash: str, settings: dict) -> dict:
        with self._mutation() as doc:
            if doc["users"]:
                raise SetupAlreadyCompleted()
            if settings:
                doc["settings"].update(settings)
                self._log("Update Settings", f"Updated settings: {', '.join(sorted(settings))}", ACTOR_SYSTEM)
            record = self._insert_user(user_patch, password_hash, ACTOR_SYSTEM)
        return self._public_user(record)

    def delete_user(self, user_id, actor: str = ACTOR_SYSTEM) -> None:
        with self._mutation() as doc:
            record = self._require("users", user_id, "User")
            doc["users"].remove(record)
            self._log("Delete User", f"Deleted user ID {record['id']}", actor)

    def is_setup_required(self) -> bool:
        with self._lock:
            return len(self._data["users"]) == 0

    # ------------------------------------------------------------------
    # settings & logs
    # ------------------------------------------------------------------

    def get_settings(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data["settings"])

    def upsert_settings(self, updates: dict, actor: str = ACTOR_SYSTEM) -> dict[str, str]:
        cleaned = validate_settings(updates)
        with self._mutation() as doc:
            doc["settings"].update(cleaned)
            self._log("Update Settings", f"Updated settings: {', '.join(sorted(cleaned))}", actor)
            result = dict(doc["settings"])
        return result

    def append_log(self, action: str, details: str | None = None, actor: str = ACTOR_SYSTEM,
                   user_id: int | None = None) -> dict:
        if not isinstance(action, str) or not action.strip():
            raise ValidationError("action is required")
        with self._mutation():
            entry = self._log(action.strip(), details, actor, user_id)
        return self._public_log(entry)

    def list_recent_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> list[dict]:
        limit = validate_limit(limit, DEFAULT_LOG_LIMIT)
        with self._lock:
            logs = sorted(self._data["logs"], key=lambda entry: int(entry.get("id") or 0), reverse=True)
            return [self._public_log(entry) for entry in logs[:limit]]

    # ------------------------------------------------------------------
    # orders
    # ------------------------------------------------------------------

    def place_order(self, user_id, product_id, price=None) -> dict:
        request = order_service.build_order_request(user_id, product_id, price)
        with self._mutation() as doc:
            user = self._require("users", request.user_id, "User")
            product = self._require("products", request.product_id, "Product")
            stock = int(product.get("stock") or 0)
            if stock <= 0:
                raise OutOfStock(request.product_id)

            charged = order_service.resolve_price(request, product.get("price"))
            order = {
                "id": self._next_id("orders"),
                "user_id": request.user_id,
                "product_id": request.product_id,
                "price": _money(charged),
                "status": ORDER_STATUS_COMPLETED,
                "created_at": now_z(),
            }
            doc["orders"].append(order)
            product["stock"] = stock - 1
            self._log(
                order_service.PURCHASE_ACTION,
                order_service.purchase_details(
                    username=user.get("username"),
                    product_name=product.get("name"),
                    price=charged,
                    remaining=product["stock"],
                ),
                user.get("username"),
                request.user_id,
            )
            result = self._public_order(order, product.get("name"))
        return result

    def list_orders_for_user(self, user_id) -> list[dict]:
        uid = require_int_id(user_id, "user_id")
        with self._lock:
            names = {int(p["id"]): p.get("name") for p in self._data["products"]}
            orders = [o for o in self._data["orders"] if int(o.get("user_id") or 0) == uid]
            orders.sort(key=lambda o: int(o["id"]), reverse=True)
            return [self._public_order(o, names.get(int(o["product_id"]))) for o in orders]

    def dashboard_stats(self) -> dict:
        with self._lock:
            orders = self._data["orders"]
            total = sum(Decimal(str(o.get("price") or 0)) for o in orders)
            return {
                "total_sales": _money(total),
                "active_users": len(self._data["users"]),
                "total_products": len(self._data["products"]),
                "total_orders": len(orders),
                "pending_orders": sum(1 for o in orders if o.get("status") == ORDER_STATUS_PENDING),
            }
