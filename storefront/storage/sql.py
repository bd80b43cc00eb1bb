# Overview: Relational backend on Flask-SQLAlchemy; one unit of work per contract operation.

"""
Relational store.

Invariants (authoritative)

- Each contract operation is one database transaction: the mutation and its
  LogEntry are flushed in the same session and committed together. Any
  SQLAlchemyError rolls the session back and surfaces as StorageError.
- Order placement takes the write lock before reading stock (BEGIN IMMEDIATE
  on SQLite, SELECT ... FOR UPDATE elsewhere) and decrements with a guarded
  UPDATE (stock > 0), so concurrent placements cannot oversell or lose a
  decrement. Lock contention is retried with backoff.
- First-run setup re-checks "no users" under the same write lock that
  inserts the Super Admin, so concurrent setups create exactly one.
- Category deletion removes dependent products in the same transaction.
- Settings are upserted per key (INSERT ... ON CONFLICT DO UPDATE).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    DuplicateUsername,
    NotFound,
    OutOfStock,
    SetupAlreadyCompleted,
    StorageError,
    StoreError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Category,
    LogEntry,
    Order,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    Product,
    Setting,
    STATUS_ACTIVE,
    User,
)
from ..seed_data import DEFAULT_SETTINGS, INIT_LOG_ACTION
from ..services import order_service
from ..services.auth_service import (
    DEFAULT_ROUNDS,
    hash_password,
    normalize_username,
    username_key,
    verify_password,
)
from ..services.concurrency import begin_write, lock_for_update, run_with_retry
from ..time_utils import utcnow
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


def upsert_setting_rows(values: dict[str, str | None]) -> None:
    """INSERT ... ON CONFLICT(key) DO UPDATE for each pair; caller owns the transaction."""
    dialect = db.engine.dialect.name
    if dialect in ("sqlite", "postgresql"):
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        for key, value in values.items():
            stmt = insert(Setting).values(key=key, value=value)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Setting.key],
                set_={"value": stmt.excluded.value},
            )
            db.session.execute(stmt)
    else:
        for key, value in values.items():
            db.session.merge(Setting(key=key, value=value))
    db.session.flush()


def add_log_entry(action: str, details: str | None, actor: str | None = ACTOR_SYSTEM,
                  user_id: int | None = None) -> LogEntry:
    """Append-only; flushed inside the caller's transaction."""
    entry = LogEntry(
        action=action,
        details=details,
        actor=actor or ACTOR_SYSTEM,
        user_id=user_id,
        timestamp=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


class SqlStorage(Storage):
    backend_name = "sql"

    def __init__(self, *, default_password: str = "admin123", bcrypt_rounds: int = DEFAULT_ROUNDS):
        self.default_password = default_password
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # session handling
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self):
        try:
            yield db.session
            db.session.commit()
        except StoreError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Relational store operation failed")
            raise StorageError(str(exc)) from exc

    @contextmanager
    def _reading(self):
        try:
            yield db.session
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Relational store read failed")
            raise StorageError(str(exc)) from exc

    def init_schema(self) -> None:
        """Create missing tables; seed default settings only when none exist."""
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            logger.exception("Could not create schema")
            raise StorageError(str(exc)) from exc
        with self._unit_of_work():
            if db.session.query(Setting.key).first() is None:
                logger.info("Seeding default settings")
                upsert_setting_rows(dict(DEFAULT_SETTINGS))
                add_log_entry(INIT_LOG_ACTION, "Created schema and default settings", ACTOR_SYSTEM)

    @staticmethod
    def _require(model, record_id, label: str):
        record_id = require_int_id(record_id, f"{label.lower()}_id")
        record = db.session.get(model, record_id)
        if record is None:
            raise NotFound(f"{label} not found")
        return record

    @staticmethod
    def _find_user_by_name(username: str) -> User | None:
        return (
            db.session.query(User)
            .filter(func.lower(User.username) == username_key(username))
            .first()
        )

    # ------------------------------------------------------------------
    # categories
    # ------------------------------------------------------------------

    def list_categories(self) -> list[dict]:
        with self._reading():
            rows = (
                db.session.query(Category, func.count(Product.id))
                .outerjoin(Product, Product.category_id == Category.id)
                .group_by(Category.id)
                .order_by(Category.id.asc())
                .all()
            )
            return [cat.to_dict(product_count=count) for cat, count in rows]

    def add_category(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_category(data, partial=False)
        with self._unit_of_work():
            category = Category(**patch)
            db.session.add(category)
            db.session.flush()
            add_log_entry("Add Category", f"Added category {category.name}", actor)
            result = category.to_dict()
        return result

    def update_category(self, category_id, updates: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_category(updates, partial=True)
        with self._unit_of_work():
            category = self._require(Category, category_id, "Category")
            for key, value in patch.items():
                setattr(category, key, value)
            add_log_entry("Update Category", f"Updated category ID {category.id}", actor)
            result = category.to_dict()
        return result

    def delete_category(self, category_id, actor: str = ACTOR_SYSTEM) -> None:
        with self._unit_of_work():
            category = self._require(Category, category_id, "Category")
            cid = category.id
            removed = (
                db.session.query(Product)
                .filter(Product.category_id == cid)
                .delete(synchronize_session=False)
            )
            db.session.delete(category)
            add_log_entry("Delete Category", f"Deleted category ID {cid} and {removed} product(s)", actor)

    # ------------------------------------------------------------------
    # products
    # ------------------------------------------------------------------

    def list_products(self, category_id=None) -> list[dict]:
        with self._reading():
            query = db.session.query(Product)
            if category_id is not None and category_id != "":
                query = query.filter(Product.category_id == require_int_id(category_id, "category_id"))
            return [p.to_dict() for p in query.order_by(Product.id.asc()).all()]

    def get_product(self, product_id) -> dict:
        with self._reading():
            return self._require(Product, product_id, "Product").to_dict()

    def add_product(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_product(data, partial=False)
        with self._unit_of_work():
            self._require(Category, patch["category_id"], "Category")
            product = Product(**patch)
            db.session.add(product)
            db.session.flush()
            add_log_entry("Add Product", f"Added product {product.name}", actor)
            result = product.to_dict()
        return result

    def update_product(self, product_id, updates: dict, actor: str = ACTOR_SYSTEM) -> dict:
        patch = validate_product(updates, partial=True)
        with self._unit_of_work():
            product = self._require(Product, product_id, "Product")
            if "category_id" in patch:
                self._require(Category, patch["category_id"], "Category")
            for key, value in patch.items():
                setattr(product, key, value)
            db.session.flush()
            fields = ", ".join(sorted(patch.keys())) or "nothing"
            add_log_entry("Update Product", f"Updated product ID {product.id} ({fields})", actor)
            result = product.to_dict()
        return result

    def delete_product(self, product_id, actor: str = ACTOR_SYSTEM) -> None:
        with self._unit_of_work():
            product = self._require(Product, product_id, "Product")
            pid = product.id
            db.session.delete(product)
            add_log_entry("Delete Product", f"Deleted product ID {pid}", actor)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def list_users(self) -> list[dict]:
        with self._reading():
            return [u.to_dict() for u in db.session.query(User).order_by(User.id.asc()).all()]

    def user_exists(self, username: str) -> bool:
        if not isinstance(username, str) or not username.strip():
            return False
        with self._reading():
            return self._find_user_by_name(username) is not None

    def authenticate(self, username: str, password: str) -> dict | None:
        if not isinstance(username, str) or not username.strip():
            return None
        with self._unit_of_work():
            user = self._find_user_by_name(username)
            if user is None or user.status != STATUS_ACTIVE:
                return None
            if not verify_password(password, user.password_hash):
                return None
            user.last_login = utcnow()
            db.session.flush()
            result = user.to_dict()
        return result

    def add_user(self, data: dict, actor: str = ACTOR_SYSTEM) -> dict:
        data = dict(data or {})
        password = data.pop("password", None) or self.default_password
        if "username" in data:
            data["username"] = normalize_username(data["username"])
        patch = validate_user(data)
        if self.user_exists(patch["username"]):
            raise DuplicateUsername(patch["username"])
        password_hash = hash_password(password, self.bcrypt_rounds)

        with self._unit_of_work():
            result = self._insert_user(patch, password_hash, actor).to_dict()
        return result

    @staticmethod
    def _insert_user(patch: dict, password_hash: str, actor: str) -> User:
        user = User(**patch, password_hash=password_hash, created_at=utcnow())
        db.session.add(user)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same name.
            db.session.rollback()
            raise DuplicateUsername(patch["username"])
        add_log_entry("Add User", f"Added user {user.username}", actor)
        return user

    def _complete_setup(self, user_patch: dict, password_hash: str, settings: dict) -> dict:
        def _op() -> dict:
            begin_write()
            if db.session.query(User.id).first() is not None:
                raise SetupAlreadyCompleted()
            if settings:
                upsert_setting_rows(settings)
                add_log_entry("Update Settings", f"Updated settings: {', '.join(sorted(settings))}", ACTOR_SYSTEM)
            result = self._insert_user(user_patch, password_hash, ACTOR_SYSTEM).to_dict()
            db.session.commit()
            return result

        with self._unit_of_work():
            return run_with_retry(_op)

    def delete_user(self, user_id, actor: str = ACTOR_SYSTEM) -> None:
        with self._unit_of_work():
            user = self._require(User, user_id, "User")
            uid = user.id
            db.session.delete(user)
            add_log_entry("Delete User", f"Deleted user ID {uid}", actor)

    def is_setup_required(self) -> bool:
        with self._reading():
            return db.session.query(User.id).first() is None

    # ------------------------------------------------------------------
    # settings & logs
    # ------------------------------------------------------------------

    def get_settings(self) -> dict[str, str]:
        with self._reading():
            return {s.key: s.value for s in db.session.query(Setting).order_by(Setting.key.asc()).all()}

    def upsert_settings(self, updates: dict, actor: str = ACTOR_SYSTEM) -> dict[str, str]:
        cleaned = validate_settings(updates)
        with self._unit_of_work():
            upsert_setting_rows(cleaned)
            add_log_entry("Update Settings", f"Updated settings: {', '.join(sorted(cleaned))}", actor)
        return self.get_settings()

    def append_log(self, action: str, details: str | None = None, actor: str = ACTOR_SYSTEM,
                   user_id: int | None = None) -> dict:
        if not isinstance(action, str) or not action.strip():
            raise ValidationError("action is required")
        with self._unit_of_work():
            result = add_log_entry(action.strip(), details, actor, user_id).to_dict()
        return result

    def list_recent_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> list[dict]:
        limit = validate_limit(limit, DEFAULT_LOG_LIMIT)
        with self._reading():
            rows = db.session.query(LogEntry).order_by(LogEntry.id.desc()).limit(limit).all()
            return [entry.to_dict() for entry in rows]

    # ------------------------------------------------------------------
    # orders
    # ------------------------------------------------------------------

    def place_order(self, user_id, product_id, price=None) -> dict:
        request = order_service.build_order_request(user_id, product_id, price)

        def _op() -> dict:
            begin_write()
            user = self._require(User, request.user_id, "User")
            product = lock_for_update(
                db.session.query(Product).filter(Product.id == request.product_id)
            ).populate_existing().first()
            if product is None:
                raise NotFound("Product not found")
            if product.stock <= 0:
                raise OutOfStock(request.product_id)

            charged = order_service.resolve_price(request, product.price)
            decremented = db.session.execute(
                update(Product)
                .where(Product.id == product.id, Product.stock > 0)
                .values(stock=Product.stock - 1)
                .execution_options(synchronize_session=False)
            )
            if decremented.rowcount != 1:
                raise OutOfStock(request.product_id)

            remaining = product.stock - 1
            order = Order(
                user_id=user.id,
                product_id=product.id,
                price=charged,
                status=ORDER_STATUS_COMPLETED,
                created_at=utcnow(),
            )
            db.session.add(order)
            db.session.flush()
            add_log_entry(
                order_service.PURCHASE_ACTION,
                order_service.purchase_details(
                    username=user.username,
                    product_name=product.name,
                    price=charged,
                    remaining=remaining,
                ),
                user.username,
                user.id,
            )
            result = order.to_dict(product_name=product.name)
            db.session.commit()
            return result

        with self._unit_of_work():
            return run_with_retry(_op)

    def list_orders_for_user(self, user_id) -> list[dict]:
        uid = require_int_id(user_id, "user_id")
        with self._reading():
            rows = (
                db.session.query(Order, Product.name)
                .outerjoin(Product, Product.id == Order.product_id)
                .filter(Order.user_id == uid)
                .order_by(Order.id.desc())
                .all()
            )
            return [order.to_dict(product_name=name) for order, name in rows]

    def dashboard_stats(self) -> dict:
        with self._reading():
            total_sales = db.session.query(func.coalesce(func.sum(Order.price), 0)).scalar()
            return {
                "total_sales": round(float(total_sales or 0), 2),
                "active_users": db.session.query(func.count(User.id)).scalar() or 0,
                "total_products": db.session.query(func.count(Product.id)).scalar() or 0,
                "total_orders": db.session.query(func.count(Order.id)).scalar() or 0,
                "pending_orders": (
                    db.session.query(func.count(Order.id))
                    .filter(Order.status == ORDER_STATUS_PENDING)
                    .scalar() or 0
                ),
            }
