from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ORDER_STATUS_COMPLETED = "Completed"
ORDER_STATUS_PENDING = "Pending"


class Order(db.Model):
    """
    Immutable purchase record.

    price is the amount charged at order time; it is never re-derived from
    the product afterwards.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_COMPLETED)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self, product_name: str | None = None) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "product_name": product_name,
            "price": float(self.price),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
