# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/tillpoint/services/inventory_service.py
"""
Inventory invariants (authoritative)

- Product.stock is a mutable signed counter. Sales decrement it and may
  drive it negative; nothing rejects an oversell.
- A negative balance is "settled" by later increases. Settlement is a
  label only: new_stock = stock + delta in every case, and
  settled = min(delta, -stock) when stock < 0.
- Every increase made by restock / bulk import / product edit appends a
  StockMovement. Sales and undo never do.
- Movement tracking is best effort: a failed movement insert is logged
  and does not undo the stock change it describes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, SaleLine, StockMovement
from ..validation import NotFoundError, PersistenceError, ValidationError, require_positive_int


@dataclass(frozen=True)
class StockIncrease:
    previous_stock: int
    new_stock: int
    quantity_added: int
    settled_amount: int

    @property
    def message(self) -> str:
        return settlement_message(self.previous_stock, self.quantity_added)

    def to_dict(self) -> dict:
        return {
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "quantity_added": self.quantity_added,
            "settled_amount": self.settled_amount,
            "message": self.message,
        }


@dataclass(frozen=True)
class StockWarning:
    """A cart line that will drive a product below zero."""
    product_id: int
    product_name: str
    upc: str
    available: int
    required: int

    @property
    def shortfall(self) -> int:
        return self.required - self.available

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "upc": self.upc,
            "available": self.available,
            "required": self.required,
            "shortfall": self.shortfall,
            "resulting_stock": self.available - self.required,
        }


def compute_stock_increase(current_stock: int, delta: int) -> StockIncrease:
    if delta <= 0:
        raise ValidationError("stock increase must be > 0")
    settled = min(delta, -current_stock) if current_stock < 0 else 0
    return StockIncrease(
        previous_stock=current_stock,
        new_stock=current_stock + delta,
        quantity_added=delta,
        settled_amount=settled,
    )


def settlement_message(previous_stock: int, delta: int) -> str:
    if previous_stock >= 0 or delta <= 0:
        return ""
    owed = -previous_stock
    if delta > owed:
        return f"Settled {owed} units of negative inventory, {delta - owed} new units added"
    if delta == owed:
        return "Fully settled negative inventory"
    return f"Partially settled negative inventory: {delta} units"


def apply_stock_increase(product: Product, delta: int) -> StockIncrease:
    """Raise product.stock by delta (not committed) and describe any settlement."""
    increase = compute_stock_increase(product.stock or 0, delta)
    product.stock = increase.new_stock
    return increase


def record_stock_movement(
    *,
    product: Product,
    increase: StockIncrease,
    movement_type: str,
    created_by: str,
    notes: str | None = None,
) -> StockMovement | None:
    """Append a movement row in its own commit; failures are logged, not raised."""
    if movement_type not in StockMovement.MOVEMENT_TYPES:
        raise ValidationError(f"unknown movement_type: {movement_type}")

    movement = StockMovement(
        product_id=product.id,
        product_name=product.name,
        previous_stock=increase.previous_stock,
        new_stock=increase.new_stock,
        quantity_added=increase.quantity_added,
        settled_amount=increase.settled_amount,
        movement_type=movement_type,
        created_by=created_by,
        notes=notes,
    )
    try:
        db.session.add(movement)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Stock movement not recorded for product %s (%s)",
            product.id, movement_type, exc_info=True,
        )
        return None
    return movement


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


def find_product_by_upc(upc: str, *, active_only: bool = True) -> Product | None:
    query = db.session.query(Product).filter(Product.upc == upc.strip())
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.id.asc()).first()


def list_products(
    *,
    status: str = "active",
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    status: "active" | "inactive" | "all"
    search: case-insensitive substring over name and UPC
    """
    query = db.session.query(Product)
    if status == "active":
        query = query.filter(Product.is_active.is_(True))
    elif status == "inactive":
        query = query.filter(Product.is_active.is_(False))

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.upc.ilike(pattern)))

    query = query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_product(*, patch: dict) -> Product:
    product = Product(
        upc=patch["upc"],
        name=patch["name"],
        price_cents=patch.get("price_cents") or 0,
        stock=patch.get("stock") or 0,
        is_active=patch.get("is_active", True),
    )
    try:
        db.session.add(product)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to create product") from exc
    return product


def restock_product(*, product_id: int, quantity, actor: str, notes: str | None = None) -> tuple[Product, StockIncrease]:
    """Manual restock: add quantity units on top of current stock."""
    quantity = require_positive_int(quantity, "quantity")
    product = get_product(product_id)

    increase = apply_stock_increase(product, quantity)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to update stock") from exc

    record_stock_movement(
        product=product,
        increase=increase,
        movement_type="manual_add",
        created_by=actor,
        notes=notes or "Stock added via manual product entry",
    )
    current_app.logger.info(
        "Restocked product %s by %s (stock %s -> %s)",
        product.id, quantity, increase.previous_stock, increase.new_stock,
    )
    return product, increase


@dataclass
class RestockLineResult:
    product_id: object
    requested: object
    product_name: str | None = None
    increase: StockIncrease | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data = {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.requested,
            "success": self.ok,
        }
        if self.increase is not None:
            data["stock_increase"] = self.increase.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


def restock_many(items, *, actor: str, notes: str | None = None) -> list[RestockLineResult]:
    """
    Purchase-order restock: one restock_product call per line.

    Each line settles and commits on its own, so a failed line is reported
    in its result and the remaining lines still go through.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    results = []
    for raw in items:
        if not isinstance(raw, dict):
            results.append(RestockLineResult(product_id=None, requested=None, error="item must be an object"))
            continue
        result = RestockLineResult(product_id=raw.get("product_id"), requested=raw.get("quantity"))
        try:
            product_id = require_positive_int(raw.get("product_id"), "product_id")
            quantity = require_positive_int(raw.get("quantity"), "quantity")
            product, increase = restock_product(
                product_id=product_id,
                quantity=quantity,
                actor=actor,
                notes=notes or f"Stock added via Purchase Order (cart: {quantity} units)",
            )
        except (ValidationError, NotFoundError, PersistenceError) as exc:
            current_app.logger.warning("Restock line for product %s failed: %s", result.product_id, exc)
            result.error = str(exc)
        else:
            result.product_name = product.name
            result.increase = increase
        results.append(result)

    current_app.logger.info(
        "Purchase-order restock by %s: %s of %s lines applied",
        actor, sum(1 for r in results if r.ok), len(results),
    )
    return results


def update_product(*, product_id: int, patch: dict, actor: str) -> tuple[Product, StockIncrease | None]:
    """
    Apply a validated patch. When the patch raises stock, the increase
    goes through settlement and is recorded as an "edit" movement.
    Decreases are written as-is without a movement.
    """
    product = get_product(product_id)

    increase = None
    if "stock" in patch and patch["stock"] is not None:
        new_stock = patch["stock"]
        if new_stock > (product.stock or 0):
            increase = apply_stock_increase(product, new_stock - (product.stock or 0))
        else:
            product.stock = new_stock

    for key in ("upc", "name", "price_cents", "is_active"):
        if key in patch:
            setattr(product, key, patch[key])

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to update product") from exc

    if increase is not None:
        record_stock_movement(
            product=product,
            increase=increase,
            movement_type="edit",
            created_by=actor,
            notes="Stock updated via product edit",
        )
    return product, increase


def product_has_sales(product_id: int) -> bool:
    return db.session.query(SaleLine.id).filter(SaleLine.product_id == product_id).first() is not None


def delete_product(product_id: int) -> str:
    """
    Products with sale history are deactivated (soft delete); products
    without are removed. Returns "deactivated" or "deleted".
    """
    product = get_product(product_id)
    try:
        if product_has_sales(product_id):
            product.is_active = False
            outcome = "deactivated"
        else:
            db.session.delete(product)
            outcome = "deleted"
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to delete product") from exc
    return outcome


def reactivate_product(product_id: int) -> Product:
    product = get_product(product_id)
    product.is_active = True
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to reactivate product") from exc
    return product


def decrement_stock(product_id: int, quantity: int) -> None:
    """Single UPDATE stock = stock - quantity; raises on store failure."""
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock - quantity, updated_at=func.now())
    )
    if not result.rowcount:
        raise NotFoundError(f"Product {product_id} not found")
    db.session.commit()


def get_stock_history(product_id: int, limit: int = 50) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def list_stock_movements(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if start is not None:
        query = query.filter(StockMovement.created_at >= start)
    if end is not None:
        query = query.filter(StockMovement.created_at <= end)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    return (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
