from __future__ import annotations

from ..extensions import db
from ..serialization import load_list


class Category(db.Model):
    """
    Catalog grouping.

    Deleting a category removes its products in the same transaction
    (see SqlStorage.delete_category); the FK carries ON DELETE CASCADE as well
    for databases that enforce it.
    """
    __tablename__ = "categories"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(1024), nullable=True)

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self, product_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
        }
        if product_count is not None:
            data["product_count"] = int(product_count)
        return data


class Product(db.Model):
    """
    Purchasable item.

    stock is a mutable counter guarded by a CHECK constraint; it is only
    decremented through SqlStorage.place_order.
    features / supported_maps hold JSON-serialized lists of strings.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="stock_non_negative"),
        db.CheckConstraint("price >= 0", name="price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer,
        db.ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(1024), nullable=True)
    features = db.Column(db.Text, nullable=False, default="[]")
    supported_maps = db.Column(db.Text, nullable=False, default="[]")

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "price": float(self.price) if self.price is not None else 0.0,
            "stock": self.stock,
            "description": self.description,
            "image_url": self.image_url,
            "features": load_list(self.features, field="features"),
            "supported_maps": load_list(self.supported_maps, field="supported_maps"),
        }
