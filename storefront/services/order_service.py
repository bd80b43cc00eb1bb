# Overview: Order-placement rules shared by the snapshot and relational stores.

"""
Order placement invariants (authoritative)

Both stores execute the same sequence as one unit of work:

    1. re-read the product's current stock under the store's write lock
    2. stock <= 0            -> OutOfStock; nothing is written
    3. otherwise             -> insert the order (price snapshot),
                                decrement stock by exactly 1,
                                append the "Purchase" audit entry

The price recorded on the order is the caller-supplied price, or the
product's price at that moment when none is supplied. It is never recomputed
later. Retrying after OutOfStock is the caller's decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..validation import require_int_id, validate_price

PURCHASE_ACTION = "Purchase"


@dataclass(frozen=True)
class OrderRequest:
    user_id: int
    product_id: int
    price: Decimal | None


def build_order_request(user_id, product_id, price=None) -> OrderRequest:
    """Validate caller input before any lock is taken."""
    return OrderRequest(
        user_id=require_int_id(user_id, "user_id"),
        product_id=require_int_id(product_id, "product_id"),
        price=validate_price(price) if price is not None else None,
    )


def resolve_price(request: OrderRequest, current_price) -> Decimal:
    if request.price is not None:
        return request.price
    return validate_price(current_price if current_price is not None else 0)


def purchase_details(*, username: str, product_name: str, price: Decimal, remaining: int) -> str:
    return f"{username} purchased {product_name} for {price:.2f} ({remaining} left)"
