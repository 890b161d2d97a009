# Overview: Bulk inventory import (CSV/XLSX) and export.

"""
Bulk import works in one of two modes, picked per file:

UPDATE - every row has a name and every name matches an existing product
         (trimmed, case-insensitive). upc / price / stock are overwritten;
         stock is absolute. A stock increase goes through settlement and
         is recorded as a csv_import movement.
INSERT - anything else. Every row becomes a new product; name, price and
         stock are required and a missing UPC is generated.
"""
from __future__ import annotations

import csv
import io
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from flask import current_app
from openpyxl import Workbook, load_workbook
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product
from ..money import cents_to_decimal, to_cents
from ..validation import MAX_PRICE_CENTS, PersistenceError, ValidationError, clean_optional
from .inventory_service import StockIncrease, apply_stock_increase, record_stock_movement

EXPORT_HEADER = ("name", "upc", "price", "stock")

XLSX_EXTENSIONS = {"xlsx", "xlsm", "xltx", "xltm"}

HEADER_ALIASES = {
    "id": "id",
    "product_id": "id",
    "name": "name",
    "product_name": "name",
    "product name": "name",
    "upc": "upc",
    "barcode": "upc",
    "sku": "upc",
    "price": "price",
    "stock": "stock",
    "quantity": "stock",
    "qty": "stock",
}

MODE_UPDATE = "update"
MODE_INSERT = "insert"


@dataclass
class ImportResult:
    mode: str
    total_rows: int
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    skipped_rows: list[dict] = field(default_factory=list)
    validation_errors: list[dict] = field(default_factory=list)
    settlements: list[dict] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.total_rows == 0:
            return "No rows to process"
        if self.mode == MODE_UPDATE:
            text = f"Updated {self.updated} products."
        else:
            text = f"Imported {self.created} new products."
        if self.skipped:
            text += f" Skipped {self.skipped} rows."
        if self.errors:
            text += f" {self.errors} rows had errors."
        return text

    def skip(self, row_index: int, identifier, reason: str) -> None:
        self.skipped += 1
        self.skipped_rows.append({"row_index": row_index, "identifier": identifier, "reason": reason})

    def invalid(self, row_index: int, field_name: str, value, message: str) -> None:
        self.errors += 1
        self.validation_errors.append({
            "row_index": row_index,
            "field": field_name,
            "value": None if value is None else str(value),
            "message": message,
        })

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "total_rows": self.total_rows,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "skipped_rows": self.skipped_rows,
            "validation_errors": self.validation_errors,
            "settlements": self.settlements,
            "message": self.message,
        }


def parse_upload(filename: str, stream) -> list[dict]:
    """Read an uploaded CSV or Excel file into a list of raw row dicts."""
    ext = (filename or "").rsplit(".", 1)[-1].lower()

    if ext == "csv":
        raw = stream.read()
        text = raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw
        return [dict(row) for row in csv.DictReader(io.StringIO(text))]

    if ext in XLSX_EXTENSIONS:
        wb = load_workbook(stream, data_only=True, read_only=True)
        try:
            data = list(wb.active.values)
        finally:
            wb.close()
        if not data:
            return []
        headers = [str(h) if h is not None else "" for h in data[0]]
        return [
            {headers[i]: row[i] for i in range(min(len(headers), len(row)))}
            for row in data[1:]
            if any(cell not in (None, "") for cell in row)
        ]

    raise ValidationError("Unsupported file format. Please use CSV or Excel files.")


def normalize_row(row: dict) -> dict:
    """Map header variants (barcode, qty, product name, ...) onto name/upc/price/stock."""
    normalized = {}
    for key, value in row.items():
        if key is None:
            continue
        canonical = HEADER_ALIASES.get(str(key).strip().lower())
        if isinstance(value, str):
            value = value.strip()
        normalized[canonical or key] = value
    return normalized


def _name_key(value) -> str | None:
    text = clean_optional(value)
    return text.lower() if text else None


def detect_mode(rows: list[dict], products_by_name: dict[str, Product]) -> str:
    if not rows:
        return MODE_INSERT
    keys = [_name_key(row.get("name")) for row in rows]
    if all(key and key in products_by_name for key in keys):
        return MODE_UPDATE
    return MODE_INSERT


def _parse_price(value) -> int:
    cents = to_cents(value, "price")
    if cents < 0:
        raise ValidationError(f"Price cannot be negative: {value}")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"Price too large: {value}")
    return cents


def _parse_stock(value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid stock value: {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid stock value: {value!r}")
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"Stock must be an integer: {value}")
    return int(number)


def _present(value) -> bool:
    return value is not None and value != ""


def _products_by_name() -> dict[str, Product]:
    # First product wins when names collide
    by_name: dict[str, Product] = {}
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        key = _name_key(product.name)
        if key and key not in by_name:
            by_name[key] = product
    return by_name


def _update_row(index: int, row: dict, product: Product, result: ImportResult, actor: str) -> None:
    changes = {}
    for field_name, parser in (("upc", clean_optional), ("price", _parse_price), ("stock", _parse_stock)):
        if not _present(row.get(field_name)):
            continue
        try:
            changes[field_name] = parser(row[field_name])
        except ValidationError as e:
            result.invalid(index, field_name, row[field_name], str(e))
            return

    if not changes:
        result.skip(index, product.name, "No updatable fields found in row")
        return

    increase: StockIncrease | None = None
    if "upc" in changes:
        product.upc = changes["upc"]
    if "price" in changes:
        product.price_cents = changes["price"]
    if "stock" in changes:
        current = product.stock or 0
        if changes["stock"] > current:
            increase = apply_stock_increase(product, changes["stock"] - current)
        else:
            product.stock = changes["stock"]

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Import update failed for product %s", product.id, exc_info=True)
        result.errors += 1
        result.skipped_rows.append({"row_index": index, "identifier": product.name, "reason": "Update failed"})
        return

    result.updated += 1
    if increase is not None:
        record_stock_movement(
            product=product,
            increase=increase,
            movement_type="csv_import",
            created_by=actor,
            notes="Stock updated via CSV/Excel bulk import",
        )
        if increase.settled_amount:
            result.settlements.append({
                "product_id": product.id,
                "product_name": product.name,
                "settled_amount": increase.settled_amount,
                "message": increase.message,
            })


def _insert_rows(rows: list[dict], result: ImportResult) -> None:
    stamp = int(time.time() * 1000)
    products = []
    for i, row in enumerate(rows, start=1):
        name = clean_optional(row.get("name"))
        missing = [f for f, ok in (
            ("name", bool(name)),
            ("price", _present(row.get("price"))),
            ("stock", _present(row.get("stock"))),
        ) if not ok]
        if missing:
            result.invalid(i, ",".join(missing), None, f"Missing required fields ({', '.join(missing)})")
            continue
        try:
            price = _parse_price(row["price"])
            stock = _parse_stock(row["stock"])
        except ValidationError as e:
            result.invalid(i, "price/stock", row.get("price"), str(e))
            continue

        upc = clean_optional(row.get("upc")) or f"AUTO-{stamp}-{i - 1}"
        products.append(Product(name=name, upc=upc, price_cents=price, stock=stock, is_active=True))

    if not products:
        return

    try:
        db.session.add_all(products)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Bulk product insert failed")
        raise PersistenceError("Failed to import products") from exc
    result.created = len(products)


def import_rows(rows: list[dict], *, actor: str) -> ImportResult:
    rows = [normalize_row(row) for row in rows]
    by_name = _products_by_name()
    mode = detect_mode(rows, by_name)
    result = ImportResult(mode=mode, total_rows=len(rows))

    if mode == MODE_UPDATE:
        for i, row in enumerate(rows, start=1):
            _update_row(i, row, by_name[_name_key(row["name"])], result, actor)
    else:
        _insert_rows(rows, result)

    current_app.logger.info(
        "Inventory import (%s): %s rows, %s created, %s updated, %s skipped, %s errors",
        mode, result.total_rows, result.created, result.updated, result.skipped, result.errors,
    )
    return result


def export_rows(*, include_inactive: bool = False) -> list[tuple]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return [
        (p.name, p.upc, str(cents_to_decimal(p.price_cents or 0)), p.stock)
        for p in query.order_by(Product.name.asc(), Product.id.asc()).all()
    ]


def export_products(fmt: str = "csv", *, include_inactive: bool = False) -> tuple[bytes, str, str]:
    """Returns (content, mimetype, filename)."""
    fmt = (fmt or "csv").lower()
    rows = export_rows(include_inactive=include_inactive)

    if fmt == "csv":
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(EXPORT_HEADER)
        writer.writerows(rows)
        return buf.getvalue().encode("utf-8"), "text/csv", "inventory.csv"

    if fmt == "xlsx":
        wb = Workbook()
        sheet = wb.active
        sheet.title = "Inventory"
        sheet.append(EXPORT_HEADER)
        for name, upc, price, stock in rows:
            sheet.append([name, upc, float(price), stock])
        out = io.BytesIO()
        wb.save(out)
        return (
            out.getvalue(),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "inventory.xlsx",
        )

    raise ValidationError("format must be csv or xlsx")
