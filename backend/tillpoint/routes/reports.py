# Overview: Flask API routes for sales reports and the sales export.

# backend/tillpoint/routes/reports.py
from flask import Blueprint, Response, jsonify, request

from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _period_args() -> dict:
    return {
        "start": request.args.get("start"),
        "end": request.args.get("end"),
        "month": request.args.get("month"),
    }


@reports_bp.get("/summary")
def sales_summary_route():
    """
    Revenue, item and transaction totals.

    Query params:
    - start / end: ISO-8601 (optional)
    - month: YYYY-MM (optional, exclusive with start/end)
    Without any of them the last REPORT_DEFAULT_DAYS days are reported.
    """
    try:
        report = reporting_service.sales_summary(**_period_args())
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(report), 200


@reports_bp.get("/sellers")
def seller_stats_route():
    try:
        report = reporting_service.seller_stats(**_period_args())
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(report), 200


@reports_bp.get("/sales/export")
def export_sales_route():
    """
    One row per sold line item.

    Query params: the period params above plus format (csv | xlsx),
    seller_name, payment_method and search, as on /api/transactions.
    """
    try:
        content, mimetype, filename = reporting_service.export_sales(
            request.args.get("format", "csv"),
            seller_name=request.args.get("seller_name") or None,
            payment_method=request.args.get("payment_method") or None,
            search=request.args.get("search"),
            **_period_args(),
        )
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400

    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
