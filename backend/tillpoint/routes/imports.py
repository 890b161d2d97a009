# Overview: Flask API routes for bulk inventory import and export.

# backend/tillpoint/routes/imports.py
from flask import Blueprint, Response, current_app, g, jsonify, request

from ..decorators import require_actor
from ..services import import_service
from ..validation import PersistenceError, ValidationError

imports_bp = Blueprint("imports", __name__, url_prefix="/api/inventory")


@imports_bp.post("/import")
@require_actor
def import_inventory_route():
    """
    Upload a .csv or .xlsx file (multipart field "file").

    Header row: name, upc, price, stock (aliases such as barcode, sku,
    qty, "product name" are accepted).
    """
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]

    try:
        rows = import_service.parse_upload(file.filename or "", file.stream)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to parse upload %s", file.filename)
        return jsonify({"error": "Failed to parse upload"}), 400

    if not rows:
        return jsonify({"error": "The uploaded file contains no data."}), 400

    try:
        result = import_service.import_rows(rows, actor=g.actor)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500

    return jsonify(result.to_dict()), 200


@imports_bp.get("/export")
def export_inventory_route():
    fmt = request.args.get("format", "csv")
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    try:
        content, mimetype, filename = import_service.export_products(fmt, include_inactive=include_inactive)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
