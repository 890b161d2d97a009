# Overview: Flask API routes for the customer directory.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_actor
from ..services import customer_service
from ..validation import NotFoundError, PersistenceError, ValidationError

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers_route():
    """
    Query params:
    - search: substring of name, mobile or TRN
    - from_sales: "true" to derive customers from sale rows when the
      directory is empty
    """
    customers = customer_service.list_customers(search=request.args.get("search"))
    if not customers and request.args.get("from_sales", "false").lower() == "true":
        derived = customer_service.customers_from_sales()
        return jsonify({"items": derived, "count": len(derived), "source": "sales"})
    return jsonify({
        "items": [c.to_dict() for c in customers],
        "count": len(customers),
        "source": "directory",
    })


@customers_bp.post("")
@require_actor
def create_customer_route():
    try:
        customer = customer_service.create_customer(request.get_json(silent=True) or {})
    except ValidationError as e:
        return {"error": str(e)}, 400
    except PersistenceError as e:
        current_app.logger.exception("Failed to create customer")
        return {"error": str(e)}, 500
    return customer.to_dict(), 201


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        return customer_service.get_customer(customer_id).to_dict()
    except NotFoundError as e:
        return {"error": str(e)}, 404


@customers_bp.put("/<int:customer_id>")
@require_actor
def update_customer_route(customer_id: int):
    try:
        customer = customer_service.update_customer(customer_id, request.get_json(silent=True) or {})
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        current_app.logger.exception("Failed to update customer %s", customer_id)
        return {"error": str(e)}, 500
    return customer.to_dict()


@customers_bp.delete("/<int:customer_id>")
@require_actor
def delete_customer_route(customer_id: int):
    try:
        customer_service.delete_customer(customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        current_app.logger.exception("Failed to delete customer %s", customer_id)
        return {"error": str(e)}, 500
    return {"ok": True}
