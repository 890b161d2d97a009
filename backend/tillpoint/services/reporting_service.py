# Overview: Service-layer reporting over recorded sales; period totals, per-seller stats and sales export.

"""
Reporting Service

Reports are computed from sale lines grouped into transactions (same
rule as the transaction list), so a report never disagrees with what
the sales log shows for the same period.

Periods:
- explicit start / end (ISO-8601, either may be omitted)
- month=YYYY-MM
- nothing -> last REPORT_DEFAULT_DAYS days
"""
from __future__ import annotations

import csv
import io
from datetime import datetime, timedelta

from flask import current_app
from openpyxl import Workbook

from ..extensions import db
from ..models import UndoLogEntry
from ..money import cents_to_decimal, split_vat
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from .sales_service import list_transactions

SALES_EXPORT_HEADER = [
    "Date", "InvoiceNo", "TxnID", "Store / Outlet", "CustomerName", "CustomerType",
    "Product", "UPC", "Qty", "UnitPrice", "LineTotal", "InvoiceTotal",
    "PaymentMethod", "PaymentReference", "Seller / Cashier",
]


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def resolve_period(
    *,
    start: str | None = None,
    end: str | None = None,
    month: str | None = None,
) -> tuple[datetime | None, datetime | None, str]:
    """Returns (start, end, label). end is inclusive."""
    if month:
        if start or end:
            raise ReportError("month cannot be combined with start/end")
        try:
            first = datetime.strptime(month.strip(), "%Y-%m")
        except ValueError:
            raise ReportError("month must be YYYY-MM")
        following = datetime(first.year + first.month // 12, first.month % 12 + 1, 1)
        return first, following - timedelta(microseconds=1), first.strftime("%B %Y")

    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError:
        raise ReportError("start/end must be ISO-8601 datetimes")

    if start_dt is None and end_dt is None:
        days = int(current_app.config["REPORT_DEFAULT_DAYS"])
        return utcnow() - timedelta(days=days), None, f"Last {days} days"
    if start_dt is not None and end_dt is not None and end_dt < start_dt:
        raise ReportError("end must not be before start")

    label = " to ".join(
        dt.strftime("%Y-%m-%d") if dt is not None else "..." for dt in (start_dt, end_dt)
    )
    return start_dt, end_dt, label


def _period_dict(start_dt, end_dt, label) -> dict:
    return {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt), "label": label}


def sales_summary(*, start=None, end=None, month=None) -> dict:
    """Revenue, item and transaction totals for a period."""
    start_dt, end_dt, label = resolve_period(start=start, end=end, month=month)
    transactions = list_transactions(start=start_dt, end=end_dt)

    revenue = sum(t.total_amount_cents for t in transactions)
    vat_rate = current_app.config["VAT_RATE_BPS"]
    subtotal, vat = split_vat(revenue, vat_rate)
    return {
        "period": _period_dict(start_dt, end_dt, label),
        "total_revenue_cents": revenue,
        "subtotal_cents": subtotal,
        "vat_cents": vat,
        "vat_rate_bps": vat_rate,
        "total_items": sum(t.item_count for t in transactions),
        "total_transactions": len(transactions),
        "total_lines": sum(len(t.items) for t in transactions),
        "avg_transaction_cents": _average(revenue, len(transactions)),
    }


def _average(total_cents: int, count: int) -> int:
    if count <= 0:
        return 0
    # half-up on whole cents
    return (total_cents * 2 + count) // (count * 2)


def _undo_counts(start_dt, end_dt) -> dict[str, int]:
    """Undone transactions per seller; legacy rows without an id count once each."""
    query = db.session.query(UndoLogEntry)
    if start_dt is not None:
        query = query.filter(UndoLogEntry.undone_at >= start_dt)
    if end_dt is not None:
        query = query.filter(UndoLogEntry.undone_at <= end_dt)

    seen: dict[str, set] = {}
    for entry in query.all():
        data = entry.sale_data or {}
        seller = data.get("seller_name")
        if not seller:
            continue
        marker = data.get("transaction_id") or f"row-{entry.id}"
        seen.setdefault(seller, set()).add(marker)
    return {seller: len(markers) for seller, markers in seen.items()}


def seller_stats(*, start=None, end=None, month=None) -> dict:
    """
    Per-seller performance for a period, highest revenue first.

    total_sales counts transactions, not lines. undo_count counts
    transactions undone in the same period; sellers with no sales in the
    period are not listed even if they have undos.
    """
    start_dt, end_dt, label = resolve_period(start=start, end=end, month=month)
    transactions = list_transactions(start=start_dt, end=end_dt)

    stats: dict[str, dict] = {}
    for txn in transactions:
        row = stats.setdefault(txn.seller_name, {
            "seller_name": txn.seller_name,
            "total_sales": 0,
            "total_revenue_cents": 0,
            "total_items": 0,
            "undo_count": 0,
        })
        row["total_sales"] += 1
        row["total_revenue_cents"] += txn.total_amount_cents
        row["total_items"] += txn.item_count

    for seller, count in _undo_counts(start_dt, end_dt).items():
        if seller in stats:
            stats[seller]["undo_count"] = count

    for row in stats.values():
        row["avg_sale_value_cents"] = _average(row["total_revenue_cents"], row["total_sales"])

    items = sorted(stats.values(), key=lambda r: (-r["total_revenue_cents"], r["seller_name"]))
    return {"period": _period_dict(start_dt, end_dt, label), "items": items, "count": len(items)}


def sales_export_rows(transactions) -> list[list]:
    """One row per line item; invoice-level columns repeat on every row of a transaction."""
    store = current_app.config["STORE_NAME"]
    rows = []
    for txn in transactions:
        trn = (txn.customer_trn or "").strip()
        shared = {
            "date": txn.created_at.strftime("%Y-%m-%d"),
            "invoice": txn.invoice_number or "",
            "customer": txn.customer_name or "Walk-in",
            "customer_type": "Corporate" if trn else "Retail",
            "invoice_total": f"{cents_to_decimal(txn.total_amount_cents):.2f}",
            "payment_method": txn.payment_method or "cash",
            "payment_reference": txn.payment_reference or "",
            "seller": txn.seller_name or "Unknown",
        }
        for item in sorted(txn.items, key=lambda i: i.id):
            rows.append([
                shared["date"],
                shared["invoice"],
                txn.transaction_id,
                store,
                shared["customer"],
                shared["customer_type"],
                item.product_name or "N/A",
                item.upc or "",
                item.quantity,
                f"{cents_to_decimal(item.unit_price_cents):.2f}",
                f"{cents_to_decimal(item.unit_price_cents * item.quantity):.2f}",
                shared["invoice_total"],
                shared["payment_method"],
                shared["payment_reference"],
                shared["seller"],
            ])
    return rows


def export_sales(
    fmt: str = "csv",
    *,
    start=None,
    end=None,
    month=None,
    seller_name: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
) -> tuple[bytes, str, str]:
    """Returns (content, mimetype, filename)."""
    fmt = (fmt or "csv").lower()
    if fmt not in ("csv", "xlsx"):
        raise ReportError("format must be csv or xlsx")

    start_dt, end_dt, _ = resolve_period(start=start, end=end, month=month)
    transactions = list_transactions(
        start=start_dt,
        end=end_dt,
        seller_name=seller_name,
        payment_method=payment_method,
        search=search,
    )
    rows = sales_export_rows(transactions)
    stem = f"sales-transactions-{utcnow():%Y-%m-%d}"
    current_app.logger.info("Exported %s sales rows (%s transactions) as %s", len(rows), len(transactions), fmt)

    if fmt == "csv":
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(SALES_EXPORT_HEADER)
        writer.writerows(rows)
        return buf.getvalue().encode("utf-8"), "text/csv", f"{stem}.csv"

    wb = Workbook()
    sheet = wb.active
    sheet.title = "Sales"
    sheet.append(SALES_EXPORT_HEADER)
    for row in rows:
        sheet.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return (
        buf.getvalue(),
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        f"{stem}.xlsx",
    )
