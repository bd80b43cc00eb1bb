# Overview: One-shot merge of a snapshot document into the relational store.

"""
Snapshot -> relational migration.

Per-entity policy:
- users:       skipped when the username already exists (case-insensitive);
               otherwise inserted with a new id. Only users without a bcrypt
               hash get a freshly assigned one: a legacy plaintext credential
               is hashed, a user with neither gets the default credential. An
               existing bcrypt hash is carried over unchanged so the user can
               keep logging in with the same password.
- categories,
  products:    inserted with their original ids; an id already present in the
               target is skipped (explicit lookup, not insert-time conflict).
- settings:    upserted; source values win.

Every record is its own transaction. A failing record is rolled back,
reported and skipped; the run continues. Only an unreadable source document
aborts the run (SnapshotStorage raises StorageError when opening it).

The source is meant to be opened with SnapshotStorage(upgrade_legacy=False)
so a legacy file is read as-is and never rewritten by the run.

A single "Migrate Data" audit entry is written when the run changed anything,
so running the tool again against the same source leaves all row counts as
they were.

Do not run this while either store is serving traffic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import StoreError
from ..extensions import db
from ..models import Category, Product, Setting, User, ROLE_MEMBER, ROLES, STATUS_ACTIVE
from ..storage.base import ACTOR_SYSTEM
from ..storage.snapshot import SnapshotStorage
from ..storage.sql import SqlStorage, add_log_entry, upsert_setting_rows
from ..time_utils import parse_iso_datetime_lenient, utcnow
from ..validation import require_int_id, validate_category, validate_product, validate_settings
from .auth_service import hash_password, is_password_hash, normalize_username, username_key

logger = logging.getLogger(__name__)

MIGRATION_LOG_ACTION = "Migrate Data"
ENTITIES = ("users", "categories", "products", "settings")


@dataclass
class EntityTally:
    inserted: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"inserted": self.inserted, "skipped": self.skipped, "failed": self.failed}


@dataclass
class MigrationFailure:
    entity: str
    source_id: object
    message: str

    def to_dict(self) -> dict:
        return {"entity": self.entity, "source_id": self.source_id, "message": self.message}


@dataclass
class MigrationReport:
    tallies: dict[str, EntityTally] = field(
        default_factory=lambda: {name: EntityTally() for name in ENTITIES}
    )
    failures: list[MigrationFailure] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(t.inserted for t in self.tallies.values())

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        parts = [
            f"{name}: +{t.inserted} ={t.skipped} !{t.failed}"
            for name, t in self.tallies.items()
        ]
        return "; ".join(parts)

    def to_dict(self) -> dict:
        return {
            "tallies": {name: t.to_dict() for name, t in self.tallies.items()},
            "failures": [f.to_dict() for f in self.failures],
        }


class _SkipRecord(Exception):
    pass


def _run_record(report: MigrationReport, entity: str, source_id, func) -> None:
    """Run one record in its own transaction and tally the outcome."""
    tally = report.tallies[entity]
    try:
        func()
        db.session.commit()
        tally.inserted += 1
    except _SkipRecord as skip:
        db.session.rollback()
        tally.skipped += 1
        logger.info("Skipping %s %s: %s", entity, source_id, skip)
    except (StoreError, SQLAlchemyError, TypeError, ValueError) as exc:
        db.session.rollback()
        tally.failed += 1
        message = str(exc) or exc.__class__.__name__
        report.failures.append(MigrationFailure(entity, source_id, message))
        logger.warning("Failed to migrate %s %s: %s", entity, source_id, message)


def _user_credential(record: dict, target: SqlStorage) -> str:
    existing = record.get("password_hash")
    if is_password_hash(existing):
        return existing
    return hash_password(record.get("password") or target.default_password, target.bcrypt_rounds)


def _migrate_user(record: dict, target: SqlStorage) -> None:
    username = normalize_username(record.get("username"))
    exists = (
        db.session.query(User.id)
        .filter(db.func.lower(User.username) == username_key(username))
        .first()
    )
    if exists is not None:
        raise _SkipRecord(f"username {username!r} already exists")

    role = record.get("role") if record.get("role") in ROLES else ROLE_MEMBER
    db.session.add(User(
        username=username,
        password_hash=_user_credential(record, target),
        role=role,
        status=record.get("status") or STATUS_ACTIVE,
        last_login=parse_iso_datetime_lenient(record.get("last_login")),
        created_at=parse_iso_datetime_lenient(record.get("created_at")) or utcnow(),
    ))
    db.session.flush()


def _migrate_category(record: dict) -> None:
    category_id = require_int_id(record.get("id"), "category id")
    if db.session.get(Category, category_id) is not None:
        raise _SkipRecord(f"category id {category_id} already exists")
    patch = validate_category(record, partial=False)
    db.session.add(Category(id=category_id, **patch))
    db.session.flush()


def _migrate_product(record: dict) -> None:
    product_id = require_int_id(record.get("id"), "product id")
    if db.session.get(Product, product_id) is not None:
        raise _SkipRecord(f"product id {product_id} already exists")

    patch = validate_product(record, partial=False)
    if db.session.get(Category, patch["category_id"]) is None:
        raise ValueError(f"category {patch['category_id']} does not exist in target")
    db.session.add(Product(id=product_id, **patch))
    db.session.flush()


def _migrate_settings(settings: dict, report: MigrationReport) -> None:
    tally = report.tallies["settings"]
    try:
        cleaned = validate_settings(settings)
    except StoreError as exc:
        tally.failed += 1
        report.failures.append(MigrationFailure("settings", None, str(exc)))
        logger.warning("Failed to migrate settings: %s", exc)
        return

    current = {s.key: s.value for s in db.session.query(Setting).all()}
    changed = {k: v for k, v in cleaned.items() if current.get(k, object()) != v}
    tally.skipped += len(cleaned) - len(changed)
    if not changed:
        return

    try:
        upsert_setting_rows(changed)
        db.session.commit()
        tally.inserted += len(changed)
    except SQLAlchemyError as exc:
        db.session.rollback()
        tally.failed += len(changed)
        report.failures.append(MigrationFailure("settings", ", ".join(sorted(changed)), str(exc)))
        logger.warning("Failed to migrate settings: %s", exc)


def _sync_sequences() -> None:
    """Explicit ids bypass PostgreSQL serial sequences; move them past max(id)."""
    if db.engine.dialect.name != "postgresql":
        return
    for table in ("categories", "products"):
        db.session.execute(text(
            f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
            f"COALESCE((SELECT MAX(id) FROM {table}), 1))"
        ))
    db.session.commit()


def migrate_snapshot(source: SnapshotStorage, target: SqlStorage) -> MigrationReport:
    """
    Merge the source snapshot into the target relational store.

    Must run inside an app context bound to the target database.
    """
    document = source.export_snapshot()
    report = MigrationReport()

    users = document.get("users") or []
    logger.info("Migrating %d users...", len(users))
    for record in users:
        _run_record(report, "users", record.get("username"), lambda r=record: _migrate_user(r, target))

    categories = document.get("categories") or []
    logger.info("Migrating %d categories...", len(categories))
    for record in categories:
        _run_record(report, "categories", record.get("id"), lambda r=record: _migrate_category(r))

    products = document.get("products") or []
    logger.info("Migrating %d products...", len(products))
    for record in products:
        _run_record(report, "products", record.get("id"), lambda r=record: _migrate_product(r))

    settings = document.get("settings") or {}
    if settings:
        logger.info("Migrating settings...")
        _migrate_settings(settings, report)

    try:
        _sync_sequences()
        if report.changed:
            add_log_entry(MIGRATION_LOG_ACTION, report.summary(), ACTOR_SYSTEM)
            db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not finalize migration bookkeeping")
        report.failures.append(MigrationFailure("migration", None, "could not finalize bookkeeping"))

    logger.info("Migration complete: %s", report.summary())
    return report
