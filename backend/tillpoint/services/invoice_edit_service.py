# Overview: Invoice editing; applies item/customer changes to a transaction and records an audit diff.

"""
Invoice Edit Service

An edit replaces the item set and shared fields of one transaction:
- rows missing from the new item list are deleted
- rows present in both are updated in place
- items flagged is_new are inserted with the transaction's shared fields

Each step commits on its own. A failure mid-way raises PersistenceError
and leaves earlier steps applied. Stock is never touched by an edit.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InvoiceEditLog, SaleLine
from ..money import format_money, to_cents
from ..time_utils import as_utc_naive, parse_iso_datetime, to_utc_z, utcnow
from ..validation import (
    MAX_PRICE_CENTS,
    NotFoundError,
    PartialFailureWarning,
    PersistenceError,
    ValidationError,
    clean_optional,
    normalize_invoice_type,
    require_payment_details,
    require_positive_int,
)
from .customer_service import upsert_customer
from .inventory_service import find_product_by_upc
from .sales_service import FUTURE_TOLERANCE, resolve_members
from .transactions import Transaction, group_transactions

EDITABLE_FIELDS = (
    "customer_name",
    "customer_mobile",
    "customer_address",
    "customer_trn",
    "invoice_type",
    "payment_method",
    "payment_reference",
    "order_comment",
)


@dataclass
class EditedItem:
    id: int | None
    upc: str
    product_name: str
    unit_price_cents: int
    quantity: int
    product_id: int | None = None

    @property
    def is_new(self) -> bool:
        return self.id is None


@dataclass
class EditResult:
    transaction: Transaction
    changes_summary: list[str]
    log_entry: InvoiceEditLog | None = None
    warnings: list[PartialFailureWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        vat_rate = current_app.config["VAT_RATE_BPS"]
        return {
            "transaction": self.transaction.to_dict(vat_rate_bps=vat_rate),
            "changes_summary": self.changes_summary,
            "log_entry": self.log_entry.to_dict() if self.log_entry is not None else None,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _parse_item(raw, existing_ids: set[int]) -> EditedItem:
    if not isinstance(raw, dict):
        raise ValidationError("items must be objects")

    upc = clean_optional(raw.get("upc"))
    name = clean_optional(raw.get("product_name"))
    if not upc or not name:
        raise ValidationError("Every item needs a UPC and a product name")

    if raw.get("unit_price_cents") is not None:
        price = raw["unit_price_cents"]
        if isinstance(price, bool) or not isinstance(price, int):
            raise ValidationError("unit_price_cents must be an integer")
    else:
        price = to_cents(raw.get("unit_price"), "unit_price")
    if price <= 0 or price > MAX_PRICE_CENTS:
        raise ValidationError(f"Invalid price for {name}")

    quantity = require_positive_int(raw.get("quantity"), "quantity")

    item_id = None
    if not raw.get("is_new"):
        if raw.get("id") is None:
            raise ValidationError(f"Item {name} needs an id or is_new")
        item_id = require_positive_int(raw["id"], "id")
        if item_id not in existing_ids:
            raise ValidationError(f"Item {item_id} does not belong to this transaction")

    product_id = raw.get("product_id")
    if product_id is not None:
        product_id = require_positive_int(product_id, "product_id")

    return EditedItem(
        id=item_id,
        upc=upc,
        product_name=name,
        unit_price_cents=price,
        quantity=quantity,
        product_id=product_id,
    )


def _resolve_date(value, original: datetime) -> datetime:
    """A bare date keeps the original time of day."""
    if value is None or value == "":
        return original
    if isinstance(value, datetime):
        resolved = as_utc_naive(value)
    elif isinstance(value, date):
        resolved = datetime.combine(value, original.time())
    else:
        text = str(value).strip()
        try:
            if len(text) == 10:
                resolved = datetime.combine(date.fromisoformat(text), original.time())
            else:
                resolved = parse_iso_datetime(text)
        except ValueError:
            raise ValidationError("transaction_date must be an ISO-8601 date")
    if resolved > utcnow() + FUTURE_TOLERANCE:
        raise ValidationError("transaction_date cannot be in the future")
    return resolved


def _resolve_fields(fields: dict, txn: Transaction) -> dict:
    if fields is None:
        fields = {}
    if not isinstance(fields, dict):
        raise ValidationError("fields must be an object")

    current = txn.shared_fields()
    resolved = {}
    for key in EDITABLE_FIELDS:
        resolved[key] = clean_optional(fields[key]) if key in fields else current.get(key)

    resolved["invoice_type"] = normalize_invoice_type(resolved["invoice_type"])
    # Stored payment details are kept as-is unless the edit touches them.
    if "payment_method" in fields or "payment_reference" in fields:
        resolved["payment_method"], resolved["payment_reference"] = require_payment_details(
            resolved["payment_method"] or "cash", resolved["payment_reference"]
        )
    else:
        resolved["payment_method"] = resolved["payment_method"] or "cash"
    resolved["created_at"] = _resolve_date(fields.get("transaction_date"), txn.created_at)
    return resolved


def _snapshot(txn: Transaction, items: list[SaleLine]) -> dict:
    return {
        "items": [item.to_dict() for item in items],
        **txn.shared_fields(),
        "created_at": to_utc_z(txn.created_at),
        "total_amount_cents": txn.total_amount_cents,
        "item_count": txn.item_count,
    }


def build_changes_summary(previous: dict, new: dict, currency: str = "AED") -> list[str]:
    """Human-readable list of differences between two invoice snapshots."""
    changes: list[str] = []

    def shown(value):
        return value or "None"

    if previous.get("customer_name") != new.get("customer_name"):
        changes.append(f'Customer name: "{shown(previous.get("customer_name"))}" → "{shown(new.get("customer_name"))}"')
    if previous.get("customer_mobile") != new.get("customer_mobile"):
        changes.append(f'Customer mobile: "{shown(previous.get("customer_mobile"))}" → "{shown(new.get("customer_mobile"))}"')
    if previous.get("invoice_type") != new.get("invoice_type"):
        changes.append(f'Invoice type: "{previous.get("invoice_type")}" → "{new.get("invoice_type")}"')
    if previous.get("payment_method") != new.get("payment_method"):
        changes.append(f'Payment method: "{previous.get("payment_method")}" → "{new.get("payment_method")}"')
    if previous.get("payment_reference") != new.get("payment_reference"):
        changes.append("Payment reference updated")
    if previous.get("order_comment") != new.get("order_comment"):
        changes.append("Order comment updated")
    if previous.get("created_at") != new.get("created_at"):
        changes.append("Transaction date changed")

    prev_items = {item["id"]: item for item in previous.get("items", [])}
    new_items = {item["id"]: item for item in new.get("items", [])}

    added = [item for item_id, item in new_items.items() if item_id not in prev_items]
    removed = [item for item_id, item in prev_items.items() if item_id not in new_items]
    if added:
        changes.append(f"Added {len(added)} item(s): {', '.join(i['product_name'] for i in added)}")
    if removed:
        changes.append(f"Removed {len(removed)} item(s): {', '.join(i['product_name'] for i in removed)}")

    for item_id, item in new_items.items():
        before = prev_items.get(item_id)
        if before is None:
            continue
        if before["quantity"] != item["quantity"]:
            changes.append(f"{item['product_name']}: Quantity {before['quantity']} → {item['quantity']}")
        if before["unit_price_cents"] != item["unit_price_cents"]:
            changes.append(
                f"{item['product_name']}: Price "
                f"{format_money(before['unit_price_cents'], currency)} → "
                f"{format_money(item['unit_price_cents'], currency)}"
            )

    if not changes:
        changes.append("No changes detected")
    return changes


def _commit_step(step: str, message: str, transaction_key: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Invoice edit step %s failed for %s", step, transaction_key)
        raise PersistenceError(message, details={"step": step}) from exc


def edit_invoice(
    transaction_key: str,
    items,
    fields: dict | None = None,
    *,
    actor: str | None = None,
    reason: str | None = None,
) -> EditResult:
    window = int(current_app.config["LEGACY_GROUP_WINDOW_SECONDS"])
    members = resolve_members(transaction_key)
    if not members:
        raise NotFoundError("Transaction not found")
    txn = group_transactions(members, window)[0]

    # Validation: nothing below this block may fail before the first write
    if not isinstance(items, list) or not items:
        raise ValidationError("Invoice must contain at least one item")
    existing_ids = {m.id for m in members}
    edited = [_parse_item(raw, existing_ids) for raw in items]
    shared = _resolve_fields(fields, txn)
    actor = clean_optional(actor) or current_app.config["DEFAULT_ACTOR"]
    reason = clean_optional(reason)

    previous = _snapshot(txn, members)

    for item in edited:
        if item.is_new and item.product_id is None:
            product = find_product_by_upc(item.upc)
            item.product_id = product.id if product is not None else None

    kept_ids = {item.id for item in edited if not item.is_new}
    removed_ids = sorted(existing_ids - kept_ids)
    by_id = {m.id: m for m in members}

    if removed_ids:
        db.session.query(SaleLine).filter(SaleLine.id.in_(removed_ids)).delete(synchronize_session=False)
        _commit_step("delete", "Failed to remove deleted items from invoice", transaction_key)

    for item in edited:
        if item.is_new:
            continue
        row = by_id[item.id]
        row.unit_price_cents = item.unit_price_cents
        row.quantity = item.quantity
        row.total_cents = item.unit_price_cents * item.quantity
        row.product_name = item.product_name
        row.status = SaleLine.STATUS_ACTIVE
        for key, value in shared.items():
            setattr(row, key, value)
    _commit_step("update", "Failed to update invoice items", transaction_key)

    new_rows = [
        SaleLine(
            product_id=item.product_id,
            upc=item.upc,
            product_name=item.product_name,
            unit_price_cents=item.unit_price_cents,
            quantity=item.quantity,
            total_cents=item.unit_price_cents * item.quantity,
            seller_name=txn.seller_name,
            transaction_id=txn.key.transaction_id if not txn.is_legacy else None,
            invoice_number=txn.invoice_number,
            status=SaleLine.STATUS_ACTIVE,
            recorded_at=utcnow(),
            **shared,
        )
        for item in edited
        if item.is_new
    ]
    if new_rows:
        db.session.add_all(new_rows)
        _commit_step("insert", "Failed to add new products to invoice", transaction_key)

    post_ids = sorted(kept_ids | {row.id for row in new_rows})
    post_rows = (
        db.session.query(SaleLine)
        .filter(SaleLine.id.in_(post_ids))
        .order_by(SaleLine.created_at.desc(), SaleLine.id.desc())
        .all()
    )
    post_txn = group_transactions(post_rows, window)[0]
    new_data = _snapshot(post_txn, post_rows)

    changes = build_changes_summary(previous, new_data, current_app.config["CURRENCY_CODE"])
    result = EditResult(transaction=post_txn, changes_summary=changes)

    log_entry = InvoiceEditLog(
        invoice_number=txn.invoice_number or "",
        transaction_id=txn.transaction_id,
        edited_by=actor,
        changes_summary=changes,
        previous_data=previous,
        new_data=new_data,
        edit_reason=reason,
    )
    try:
        db.session.add(log_entry)
        db.session.commit()
        result.log_entry = log_entry
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Invoice edit log not saved for %s", transaction_key, exc_info=True)
        result.warnings.append(
            PartialFailureWarning(
                "Invoice updated but edit log could not be saved",
                step="invoice_edit_log",
                context={"transaction_id": txn.transaction_id},
            )
        )

    if shared.get("customer_name"):
        try:
            upsert_customer(
                name=shared["customer_name"],
                mobile=shared.get("customer_mobile"),
                address=shared.get("customer_address"),
                trn=shared.get("customer_trn"),
                customer_type=shared.get("invoice_type"),
            )
        except PersistenceError:
            current_app.logger.warning("Customer directory not updated for %s", transaction_key, exc_info=True)
            result.warnings.append(
                PartialFailureWarning(
                    "Customer details were not saved to the directory",
                    step="customer_upsert",
                    context={"customer_name": shared["customer_name"]},
                )
            )

    current_app.logger.info("Edited invoice %s (%s changes) by %s", txn.invoice_number, len(changes), actor)
    return result


def list_invoice_edits(*, transaction_id: str | None = None, limit: int = 200) -> list[InvoiceEditLog]:
    query = db.session.query(InvoiceEditLog)
    if transaction_id:
        query = query.filter(InvoiceEditLog.transaction_id == transaction_id)
    return query.order_by(InvoiceEditLog.edited_at.desc(), InvoiceEditLog.id.desc()).limit(limit).all()
