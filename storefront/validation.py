from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models import Category, Product, User, ROLES, ROLE_MEMBER, STATUS_ACTIVE
from .serialization import dump_list

# Maximum price: 99,999,999.99, the capacity of Numeric(10, 2)
MAX_PRICE = Decimal("99999999.99")

LIST_FIELDS = ("features", "supported_maps")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required on add
    - ignored_fields: read-only keys clients commonly echo back (dropped silently)
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    ignored_fields: set[str] = field(default_factory=lambda: {"id"})


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "image_url"},
    required_on_create={"name"},
    ignored_fields={"id", "product_count"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "category_id", "name", "price", "stock",
        "description", "image_url", "features", "supported_maps",
    },
    required_on_create={"category_id", "name"},
)

USER_POLICY = ModelValidationPolicy(
    writable_fields={"username", "role", "status"},
    required_on_create={"username"},
    ignored_fields={"id", "password", "last_login", "created_at"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - reject floats, bools and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (prices) - accept int/float/str, normalize to 2 places
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            dec = Decimal(str(value).strip())
            if not dec.is_finite():
                raise ValidationError(f"{col.key} must be a finite number")
            return dec.quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{col.key} must be a number")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming data against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    The snapshot store uses the same models as its schema, so both backends
    accept and reject exactly the same payloads.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    payload = {k: v for k, v in payload.items() if k not in policy.ignored_fields}

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def validate_category(payload: dict, *, partial: bool) -> dict:
    return validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=partial)


def validate_product(payload: dict, *, partial: bool) -> dict:
    """
    Product payloads additionally serialize list fields and enforce
    non-negative price and stock. Defaults are filled in on create.
    """
    payload = dict(payload or {})
    lists = {}
    for name in LIST_FIELDS:
        if name in payload:
            lists[name] = dump_list(payload.pop(name), field=name)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=partial)
    patch.update(lists)
    enforce_rules_product(patch)

    if not partial:
        patch.setdefault("price", Decimal("0.00"))
        patch.setdefault("stock", 0)
        for name in LIST_FIELDS:
            patch.setdefault(name, "[]")
    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    """
    if patch.get("price") is not None:
        if patch["price"] < 0:
            raise ValidationError("price must be >= 0")
        if patch["price"] > MAX_PRICE:
            raise ValidationError(f"price cannot exceed {MAX_PRICE}")
    if "stock" in patch:
        if patch["stock"] is None or patch["stock"] < 0:
            raise ValidationError("stock must be >= 0")


def validate_user(payload: dict) -> dict:
    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
    role = patch.get("role") or ROLE_MEMBER
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    patch["role"] = role
    patch["status"] = patch.get("status") or STATUS_ACTIVE
    return patch


def validate_price(value) -> Decimal:
    """Order price snapshot: non-negative decimal, 2 places."""
    price = _coerce_value(Product.__table__.c.price, value)
    if price is None or price < 0:
        raise ValidationError("price must be >= 0")
    if price > MAX_PRICE:
        raise ValidationError(f"price cannot exceed {MAX_PRICE}")
    return price


def require_int_id(value, name: str) -> int:
    """Ids arrive from query strings as text; normalize to int or reject."""
    if value is None:
        raise ValidationError(f"{name} is required")
    try:
        return _coerce_value(Product.__table__.c.id, value)
    except ValidationError:
        raise ValidationError(f"{name} must be an integer")


def validate_settings(updates) -> dict[str, str | None]:
    """Settings are string key/value pairs; non-string values are stored as text."""
    if not isinstance(updates, dict):
        raise ValidationError("Settings must be a mapping")
    cleaned = {}
    for key, value in updates.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("Setting keys must be non-empty strings")
        if len(key.strip()) > 128:
            raise ValidationError("Setting key exceeds max length 128")
        cleaned[key.strip()] = None if value is None else str(value)
    return cleaned


def validate_limit(limit, default: int) -> int:
    if limit is None:
        return default
    limit = require_int_id(limit, "limit")
    if limit <= 0:
        raise ValidationError("limit must be > 0")
    return limit
