# Overview: Read-only audit trail routes (undo log, invoice edits, stock movements).

from flask import Blueprint, jsonify, request

from ..services import inventory_service, invoice_edit_service, undo_service
from ..time_utils import parse_iso_datetime

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _limit(default: int = 200) -> int:
    return min(max(request.args.get("limit", default=default, type=int), 1), 1000)


@audit_bp.get("/undo-log")
def undo_log_route():
    """Undo-log rows plus any entries still waiting in the local fallback file."""
    entries = undo_service.list_undo_log(limit=_limit())
    pending = undo_service.pending_fallback_entries()
    return jsonify({
        "items": [e.to_dict() for e in entries],
        "count": len(entries),
        "pending_fallback": pending,
        "inventory_restored_count": sum(1 for e in entries if e.inventory_restored),
    })


@audit_bp.get("/invoice-edits")
def invoice_edits_route():
    edits = invoice_edit_service.list_invoice_edits(
        transaction_id=request.args.get("transaction_id"),
        limit=_limit(),
    )
    return jsonify({"items": [e.to_dict() for e in edits], "count": len(edits)})


@audit_bp.get("/stock-movements")
def stock_movements_route():
    """
    Query params:
    - start / end: ISO-8601 datetimes (optional)
    - type: csv_import | manual_add | edit (optional)
    """
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return {"error": "start/end must be ISO-8601 datetimes"}, 400

    movements = inventory_service.list_stock_movements(
        start=start,
        end=end,
        movement_type=request.args.get("type"),
        limit=_limit(),
    )
    return jsonify({
        "items": [m.to_dict() for m in movements],
        "count": len(movements),
        "total_added": sum(m.quantity_added for m in movements),
        "total_settled": sum(m.settled_amount or 0 for m in movements),
    })
