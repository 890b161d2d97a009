# Overview: Flask API routes for products; parses input and returns JSON responses.

# backend/tillpoint/routes/products.py
"""
Product management routes.

Stock may be set negative through PUT; increases made through PUT or
/restock go through negative-inventory settlement and are recorded as
stock movements. DELETE deactivates products that have sale history.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..models import Product
from ..services import inventory_service
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    PersistenceError,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"upc", "name", "price_cents", "stock", "is_active"},
    required_on_create={"upc", "name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products.

    Query params:
    - status: active (default) | inactive | all
    - search: substring of name or UPC
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    status = request.args.get("status", "active")
    if status not in {"active", "inactive", "all"}:
        return {"error": "status must be active, inactive or all"}, 400

    return inventory_service.list_products(
        status=status,
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
@require_actor
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = inventory_service.create_product(patch=patch)
    except PersistenceError as e:
        current_app.logger.exception("Failed to create product")
        return {"error": str(e)}, 500

    current_app.logger.info("Product %s created by %s", product.id, g.actor)
    return product.to_dict(), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return product.to_dict()


@products_bp.put("/<int:product_id>")
@require_actor
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product, increase = inventory_service.update_product(product_id=product_id, patch=patch, actor=g.actor)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        current_app.logger.exception("Failed to update product %s", product_id)
        return {"error": str(e)}, 500

    return {
        "product": product.to_dict(),
        "stock_increase": increase.to_dict() if increase is not None else None,
    }


@products_bp.delete("/<int:product_id>")
@require_actor
def delete_product_route(product_id: int):
    """Products with sales are deactivated; others are deleted."""
    try:
        outcome = inventory_service.delete_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return {"error": str(e)}, 500

    current_app.logger.info("Product %s %s by %s", product_id, outcome, g.actor)
    return {"ok": True, "outcome": outcome}


@products_bp.post("/<int:product_id>/reactivate")
@require_actor
def reactivate_product_route(product_id: int):
    try:
        product = inventory_service.reactivate_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        current_app.logger.exception("Failed to reactivate product %s", product_id)
        return {"error": str(e)}, 500
    return product.to_dict()


@products_bp.post("/<int:product_id>/restock")
@require_actor
def restock_product_route(product_id: int):
    """
    Add stock on top of the current level.

    Request body:
    {
        "quantity": 8,
        "notes": "Delivery #42"  (optional)
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        product, increase = inventory_service.restock_product(
            product_id=product_id,
            quantity=payload.get("quantity"),
            actor=g.actor,
            notes=payload.get("notes"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        current_app.logger.exception("Failed to restock product %s", product_id)
        return {"error": str(e)}, 500

    return {"product": product.to_dict(), "stock_increase": increase.to_dict()}


@products_bp.post("/restock")
@require_actor
def restock_many_route():
    """
    Purchase-order restock across several products.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 8}, ...],
        "notes": "PO 17"  (optional)
    }

    Lines are applied independently; failed lines carry an error in
    their result and do not block the rest.
    """
    payload = request.get_json(silent=True) or {}

    try:
        results = inventory_service.restock_many(payload.get("items"), actor=g.actor, notes=payload.get("notes"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    applied = sum(1 for r in results if r.ok)
    body = {
        "items": [r.to_dict() for r in results],
        "applied": applied,
        "failed": len(results) - applied,
    }
    return body, 200


@products_bp.get("/<int:product_id>/stock-movements")
def product_stock_movements(product_id: int):
    limit = request.args.get("limit", default=50, type=int)
    try:
        inventory_service.get_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    movements = inventory_service.get_stock_history(product_id, limit=min(max(limit, 1), 500))
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)})
