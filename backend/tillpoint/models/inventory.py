from __future__ import annotations

from ..extensions import db
from ..money import cents_to_decimal
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Inventory-tracked SKU.

    STOCK: a signed integer. Overselling is allowed, so stock may go
    negative; a negative balance is a debt that later restocks settle
    (see inventory_service.apply_stock_increase).

    UPC is a lookup key, not a uniqueness constraint. Bulk import
    matches products by name instead.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    upc = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    # VAT-inclusive unit price
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} upc={self.upc!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "upc": self.upc,
            "name": self.name,
            "price_cents": self.price_cents,
            "price": str(cents_to_decimal(self.price_cents or 0)),
            "stock": self.stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit of stock increases.

    Written by restock (manual_add), bulk import (csv_import) and product
    edits (edit). Sales never write movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    MOVEMENT_TYPES = ("csv_import", "manual_add", "edit")

    id = db.Column(db.Integer, primary_key=True)

    # No FK: movements outlive hard-deleted products
    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    quantity_added = db.Column(db.Integer, nullable=False)
    settled_amount = db.Column(db.Integer, nullable=False, default=0)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    created_by = db.Column(db.String(128), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "quantity_added": self.quantity_added,
            "settled_amount": self.settled_amount,
            "movement_type": self.movement_type,
            "created_by": self.created_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
