# Overview: Transaction reversal ("undo") with stock write-back and audit logging.

"""
Undo Service - reverse a recorded checkout

Order of work for undo_transaction:
1. resolve member lines (same key rule as the grouper)
2. delete each line, one commit per row; first failure aborts
3. restore stock per inventoried line from the CURRENT stock value
4. append one undo-log row per line; on failure the row goes to a local
   JSON-lines file and is reported as degraded

Eligibility (all lines active, within UNDO_WINDOW_DAYS) is enforced by
the caller via transactions.check_undo_eligibility, not here.

Rows already deleted before a failed delete stay deleted. Their ids are
carried on the PersistenceError details and logged.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, UndoLogEntry
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from ..validation import NotFoundError, PartialFailureWarning, PersistenceError, ValidationError, clean_optional
from .inventory_service import apply_stock_increase
from .sales_service import resolve_members

UNDO_REASON_CATEGORIES = {
    "customer_return": "Customer Return",
    "wrong_price": "Wrong Price",
    "wrong_quantity": "Wrong Quantity",
    "duplicate_entry": "Duplicate Entry",
    "system_error": "System Error",
    "customer_complaint": "Customer Complaint",
    "other": "Other",
}


@dataclass
class UndoResult:
    transaction_id: str
    invoice_number: str | None
    lines_reversed: int = 0
    items_restored: int = 0
    revenue_removed_cents: int = 0
    degraded_audit_count: int = 0
    log_entries: list[dict] = field(default_factory=list)
    warnings: list[PartialFailureWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "lines_reversed": self.lines_reversed,
            "items_restored": self.items_restored,
            "revenue_removed_cents": self.revenue_removed_cents,
            "degraded_audit_count": self.degraded_audit_count,
            "log_entries": self.log_entries,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def compose_undo_reason(category: str | None, details: str | None = None) -> str:
    """
    "customer_return", "box damaged" -> "Customer Return - box damaged"
    "other", "typo"                  -> "Other: typo"
    """
    category = (category or "").strip().lower()
    details = clean_optional(details)
    if category not in UNDO_REASON_CATEGORIES:
        raise ValidationError("Please select a reason for undoing this transaction")
    if category == "other":
        if not details:
            raise ValidationError("Please provide details when selecting 'Other'")
        return f"Other: {details}"
    label = UNDO_REASON_CATEGORIES[category]
    return f"{label} - {details}" if details else label


def fallback_log_path() -> str:
    return current_app.config.get("UNDO_LOG_FALLBACK_PATH") or os.path.join(
        current_app.instance_path, "undo_log_fallback.jsonl"
    )


def _append_fallback(entry: dict) -> None:
    path = fallback_log_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(json.dumps(entry, sort_keys=True) + "\n")


def rejected_log_path() -> str:
    return f"{fallback_log_path()}.rejected"


def _read_fallback() -> tuple[list[dict], list[str]]:
    """
    Parse the fallback file line by line.

    Returns (entries, rejected_lines). A torn or non-object line is
    logged and returned as raw text so the rest of the file stays usable.
    """
    path = fallback_log_path()
    if not os.path.exists(path):
        return [], []
    entries, rejected = [], []
    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as exc:
                current_app.logger.warning("Unreadable undo-log fallback line %s in %s: %s", lineno, path, exc)
                rejected.append(line)
                continue
            if not isinstance(entry, dict):
                current_app.logger.warning("Undo-log fallback line %s in %s is not an object", lineno, path)
                rejected.append(line)
                continue
            entries.append(entry)
    return entries, rejected


def pending_fallback_entries() -> list[dict]:
    """Undo-log entries waiting in the local fallback file."""
    return _read_fallback()[0]


def _set_aside(lines: list[str]) -> None:
    with open(rejected_log_path(), "a", encoding="utf-8") as fh:
        for line in lines:
            fh.write(line + "\n")
    current_app.logger.warning("Moved %s undo-log fallback lines to %s", len(lines), rejected_log_path())


def _insert_log_entry(entry: dict) -> UndoLogEntry:
    row = UndoLogEntry(
        sale_id=entry.get("sale_id"),
        sale_data=entry["sale_data"],
        undone_by=entry["undone_by"],
        reason=entry["reason"],
        undone_at=parse_iso_datetime(entry.get("undone_at")) or utcnow(),
    )
    db.session.add(row)
    db.session.commit()
    return row


def replay_fallback_entries() -> tuple[int, int]:
    """
    Move fallback entries into sales_undo_log.

    Entries that still fail stay in the file. Lines that cannot be parsed,
    or entries with missing keys or a bad undone_at, move to the .rejected
    file next to it. Returns (replayed, remaining).
    """
    entries, rejected = _read_fallback()
    if not entries and not rejected:
        return 0, 0

    replayed = 0
    remaining = []
    for entry in entries:
        try:
            _insert_log_entry(entry)
            replayed += 1
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.warning("Undo-log replay failed for sale %s", entry.get("sale_id"), exc_info=True)
            remaining.append(entry)
        except (KeyError, ValueError) as exc:
            db.session.rollback()
            current_app.logger.warning("Undo-log fallback entry for sale %s is invalid: %r", entry.get("sale_id"), exc)
            rejected.append(json.dumps(entry, sort_keys=True))

    if rejected:
        _set_aside(rejected)

    path = fallback_log_path()
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as fh:
        for entry in remaining:
            fh.write(json.dumps(entry, sort_keys=True) + "\n")
    os.replace(tmp_path, path)

    current_app.logger.info("Replayed %s undo-log entries (%s remaining)", replayed, len(remaining))
    return replayed, len(remaining)


def _snapshot(line) -> dict:
    return {
        "product_id": line.product_id,
        "upc": line.upc,
        "product_name": line.product_name,
        "quantity": line.quantity,
        "unit_price_cents": line.unit_price_cents,
        "total_cents": line.unit_price_cents * line.quantity,
        "seller_name": line.seller_name,
        "original_sale_date": to_utc_z(line.created_at),
        "transaction_id": line.transaction_id,
        "invoice_number": line.invoice_number,
        "payment_method": line.payment_method,
        "customer_name": line.customer_name,
        "inventory_restored": False,
        "settled_amount": 0,
    }


def _restore_stock(snapshot: dict, result: UndoResult) -> None:
    product_id = snapshot["product_id"]
    try:
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        increase = apply_stock_increase(product, snapshot["quantity"])
        db.session.commit()
    except (SQLAlchemyError, NotFoundError, ValidationError):
        db.session.rollback()
        current_app.logger.warning(
            "Stock not restored for product %s (qty %s)",
            product_id, snapshot["quantity"], exc_info=True,
        )
        result.warnings.append(
            PartialFailureWarning(
                f"Inventory for {snapshot['product_name']} was not restored",
                step="stock_restore",
                context={"product_id": product_id, "quantity": snapshot["quantity"]},
            )
        )
        return

    snapshot["inventory_restored"] = True
    snapshot["settled_amount"] = increase.settled_amount
    result.items_restored += snapshot["quantity"]


def _write_log(entry: dict, result: UndoResult) -> None:
    try:
        row = _insert_log_entry(entry)
        result.log_entries.append(row.to_dict())
        return
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Undo-log insert failed for sale %s; using fallback", entry["sale_id"], exc_info=True)

    result.degraded_audit_count += 1
    try:
        _append_fallback(entry)
    except OSError:
        current_app.logger.exception("Undo-log fallback write failed for sale %s", entry["sale_id"])
        result.warnings.append(
            PartialFailureWarning(
                "Undo audit entry could not be saved",
                step="undo_log",
                context={"sale_id": entry["sale_id"]},
            )
        )
        return

    result.log_entries.append({**entry, "id": None, "degraded": True})
    result.warnings.append(
        PartialFailureWarning(
            "Undo audit entry saved locally only; run `flask undo-log replay`",
            step="undo_log",
            context={"sale_id": entry["sale_id"]},
        )
    )


def undo_transaction(transaction_key: str, reason: str | None, actor: str | None = None) -> UndoResult:
    reason = clean_optional(reason)
    if not reason:
        raise ValidationError("A reason is required to undo a transaction")
    actor = clean_optional(actor) or current_app.config["DEFAULT_ACTOR"]

    members = resolve_members(transaction_key)
    if not members:
        raise NotFoundError("Transaction not found")

    result = UndoResult(
        transaction_id=transaction_key,
        invoice_number=next((m.invoice_number for m in members if m.invoice_number), None),
    )

    deleted: list[tuple[int, dict]] = []
    for line in members:
        sale_id = line.id
        snapshot = _snapshot(line)
        try:
            db.session.delete(line)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Delete failed for sale line %s of %s", sale_id, transaction_key)
            raise PersistenceError(
                "Failed to delete transaction line",
                details={"sale_id": sale_id, "deleted_sale_ids": [sid for sid, _ in deleted]},
            ) from exc
        deleted.append((sale_id, snapshot))
        result.lines_reversed += 1
        result.revenue_removed_cents += snapshot["total_cents"]

    for sale_id, snapshot in deleted:
        if snapshot["product_id"] is not None and snapshot["quantity"]:
            _restore_stock(snapshot, result)

        _write_log(
            {
                "sale_id": sale_id,
                "sale_data": snapshot,
                "undone_by": actor,
                "reason": reason,
                "undone_at": to_utc_z(utcnow()),
            },
            result,
        )

    current_app.logger.info(
        "Undid transaction %s: %s lines, %s items restored, %s cents removed",
        transaction_key, result.lines_reversed, result.items_restored, result.revenue_removed_cents,
    )
    return result


def list_undo_log(*, limit: int = 200) -> list[UndoLogEntry]:
    return (
        db.session.query(UndoLogEntry)
        .order_by(UndoLogEntry.undone_at.desc(), UndoLogEntry.id.desc())
        .limit(limit)
        .all()
    )
