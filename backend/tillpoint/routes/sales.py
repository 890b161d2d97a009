# Overview: Flask API routes for sales and transactions; parses input and returns JSON responses.

# backend/tillpoint/routes/sales.py
"""
Sales and transaction routes.

DESIGN:
- POST /api/sales records a whole cart as one transaction
- transactions are rebuilt from sale lines on every read
- undo eligibility (all lines active, within UNDO_WINDOW_DAYS) is
  checked here, before the undo service runs
- partial failures come back as "warnings" on a 2xx response
"""
from flask import Blueprint, Response, current_app, g, jsonify, request

from ..decorators import require_actor
from ..services import invoice_document, invoice_edit_service, sales_service, undo_service
from ..services.transactions import check_undo_eligibility
from ..time_utils import parse_iso_datetime
from ..validation import NotFoundError, PersistenceError, ValidationError

sales_bp = Blueprint("sales", __name__, url_prefix="/api")


def _vat_rate() -> int:
    return current_app.config["VAT_RATE_BPS"]


def _txn_payload(txn) -> dict:
    eligible, reason = check_undo_eligibility(txn, window_days=current_app.config["UNDO_WINDOW_DAYS"])
    data = txn.to_dict(vat_rate_bps=_vat_rate())
    data["undo_eligible"] = eligible
    data["undo_ineligible_reason"] = reason
    return data


@sales_bp.post("/sales/stock-check")
def stock_check_route():
    """
    Read-only check of which cart lines would drive stock negative.

    Request body: {"cart": [{"product_id": 1, "quantity": 2}, ...]}
    """
    payload = request.get_json(silent=True) or {}
    try:
        shortfalls = sales_service.check_cart_stock(payload.get("cart"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {
        "has_negative_stock": bool(shortfalls),
        "items": [w.to_dict() for w in shortfalls],
    }


@sales_bp.post("/sales")
@require_actor
def record_sale_route():
    """
    Record a checkout.

    Request body:
    {
        "cart": [
            {"product_id": 1, "quantity": 2},
            {"upc": "123", "quantity": 1, "unit_price": "9.50"},
            {"manual": true, "product_name": "Gift wrap", "unit_price": "5.00", "quantity": 1}
        ],
        "seller_name": "alice",            (optional, defaults to X-Actor)
        "payment_method": "card",
        "payment_reference": "SLIP-001",   (required for card / bank_transfer)
        "customer": {"name": "...", "mobile": "...", "address": "...", "trn": "..."},
        "invoice_type": "retail",
        "order_comment": "...",
        "sale_date": "2024-05-01T10:00:00Z"
    }

    Returns:
        201: transaction summary (+ warnings, negative_stock)
        400: validation error, nothing written
        500: sale could not be stored
    """
    payload = request.get_json(silent=True) or {}

    try:
        result = sales_service.record_sale(
            cart=payload.get("cart"),
            seller_name=payload.get("seller_name") or g.actor,
            payment_method=payload.get("payment_method"),
            payment_reference=payload.get("payment_reference"),
            customer=payload.get("customer"),
            invoice_type=payload.get("invoice_type"),
            order_comment=payload.get("order_comment"),
            sale_date=payload.get("sale_date"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except PersistenceError as e:
        return {"error": str(e)}, 500
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 201


@sales_bp.get("/transactions")
def list_transactions_route():
    """
    Query params:
    - start / end: ISO-8601 datetimes (optional)
    - seller: exact seller name (optional)
    - payment_method: cash | card | bank_transfer (optional)
    - search: invoice number, customer, seller or product substring
    - limit: int (optional)
    """
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return {"error": "start/end must be ISO-8601 datetimes"}, 400

    transactions = sales_service.list_transactions(
        start=start,
        end=end,
        seller_name=request.args.get("seller"),
        payment_method=request.args.get("payment_method"),
        search=request.args.get("search"),
        limit=request.args.get("limit", type=int),
    )
    include_items = request.args.get("include_items", "true").lower() != "false"
    return jsonify({
        "items": [t.to_dict(include_items=include_items, vat_rate_bps=_vat_rate()) for t in transactions],
        "count": len(transactions),
        "total_amount_cents": sum(t.total_amount_cents for t in transactions),
    })


@sales_bp.get("/transactions/<transaction_key>")
def get_transaction_route(transaction_key: str):
    try:
        txn = sales_service.get_transaction(transaction_key)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return _txn_payload(txn)


@sales_bp.post("/transactions/<transaction_key>/undo")
@require_actor
def undo_transaction_route(transaction_key: str):
    """
    Reverse a transaction.

    Request body (either form):
    {"reason": "Customer Return - damaged box"}
    {"category": "customer_return", "details": "damaged box"}

    Returns:
        200: undo summary (warnings list degraded steps)
        400: missing reason
        404: no such transaction
        409: transaction not eligible for undo
    """
    payload = request.get_json(silent=True) or {}

    try:
        if payload.get("category"):
            reason = undo_service.compose_undo_reason(payload["category"], payload.get("details"))
        else:
            reason = payload.get("reason")
        if not (reason or "").strip():
            raise ValidationError("A reason is required to undo a transaction")

        txn = sales_service.get_transaction(transaction_key)
        eligible, why_not = check_undo_eligibility(txn, window_days=current_app.config["UNDO_WINDOW_DAYS"])
        if not eligible:
            return {"error": why_not}, 409

        result = undo_service.undo_transaction(transaction_key, reason, actor=g.actor)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        return {"error": str(e), "details": e.details}, 500
    except Exception:
        current_app.logger.exception("Failed to undo transaction %s", transaction_key)
        return {"error": "Internal server error"}, 500

    return result.to_dict()


@sales_bp.put("/transactions/<transaction_key>")
@require_actor
def edit_transaction_route(transaction_key: str):
    """
    Edit an invoice.

    Request body:
    {
        "items": [
            {"id": 12, "upc": "123", "product_name": "Widget", "unit_price": "10.00", "quantity": 5},
            {"is_new": true, "upc": "456", "product_name": "Gadget", "unit_price_cents": 750, "quantity": 1}
        ],
        "customer_name": "...", "customer_mobile": "...", "customer_address": "...", "customer_trn": "...",
        "invoice_type": "corporate", "payment_method": "card", "payment_reference": "SLIP-9",
        "order_comment": "...", "transaction_date": "2024-05-01",
        "reason": "Customer asked for TRN on invoice"
    }
    """
    payload = request.get_json(silent=True) or {}
    fields = {k: v for k, v in payload.items() if k not in {"items", "reason"}}

    try:
        result = invoice_edit_service.edit_invoice(
            transaction_key,
            payload.get("items"),
            fields,
            actor=g.actor,
            reason=payload.get("reason"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except PersistenceError as e:
        return {"error": str(e), "details": e.details}, 500
    except Exception:
        current_app.logger.exception("Failed to edit transaction %s", transaction_key)
        return {"error": "Internal server error"}, 500

    return result.to_dict()


@sales_bp.get("/transactions/<transaction_key>/invoice")
def invoice_route(transaction_key: str):
    try:
        txn = sales_service.get_transaction(transaction_key)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return invoice_document.build_invoice_document(txn)


@sales_bp.get("/transactions/<transaction_key>/invoice.pdf")
def invoice_pdf_route(transaction_key: str):
    try:
        txn = sales_service.get_transaction(transaction_key)
        content = invoice_document.render_invoice_pdf(txn)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to render invoice for %s", transaction_key)
        return {"error": "Failed to render invoice"}, 500

    filename = f"{txn.invoice_number or txn.transaction_id}.pdf"
    return Response(
        content,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
