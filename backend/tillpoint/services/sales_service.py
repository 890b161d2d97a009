# Overview: Sale recording and transaction lookup.

"""
Sales Service - cart checkout and transaction lookup

WHY: A checkout has no parent row. All of its lines are inserted in one
batch sharing a transaction_id and invoice number, and the logical
transaction is rebuilt from those lines on every read.

Write order for record_sale:
1. validate everything (no writes)
2. allocate invoice number (own commit; a failed sale leaves a gap)
3. insert all lines (one commit; failure -> nothing recorded)
4. decrement stock per inventoried line (one commit each; failure -> warning)
5. upsert customer directory (failure -> warning)
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, SaleLine
from ..money import to_cents
from ..time_utils import as_utc_naive, parse_iso_datetime, utcnow
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
from .document_service import DocumentSequenceError, is_valid_invoice_number, next_invoice_number
from .inventory_service import StockWarning, decrement_stock, find_product_by_upc
from .transactions import ExplicitId, Transaction, group_key_for, group_transactions, members_for_key

# Client clocks drift; a sale date slightly ahead of the server is not "future"
FUTURE_TOLERANCE = timedelta(minutes=2)

CUSTOMER_FIELDS = ("name", "mobile", "address", "trn")


@dataclass
class CartLine:
    """A validated cart entry, ready to become a SaleLine."""
    product: Product | None
    upc: str
    product_name: str
    unit_price_cents: int
    quantity: int

    @property
    def total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass
class SaleResult:
    transaction_id: str
    invoice_number: str
    lines: list[SaleLine]
    total_amount_cents: int
    item_count: int
    negative_stock: list[StockWarning] = field(default_factory=list)
    warnings: list[PartialFailureWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "total_amount_cents": self.total_amount_cents,
            "item_count": self.item_count,
            "items": [line.to_dict() for line in self.lines],
            "negative_stock": [w.to_dict() for w in self.negative_stock],
            "has_negative_stock": bool(self.negative_stock),
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _window() -> int:
    return int(current_app.config["LEGACY_GROUP_WINDOW_SECONDS"])


def _resolve_unit_price(entry: dict, default_cents: int | None) -> int:
    if entry.get("unit_price_cents") is not None:
        price = entry["unit_price_cents"]
        if isinstance(price, bool) or not isinstance(price, int):
            raise ValidationError("unit_price_cents must be an integer")
    elif entry.get("unit_price") is not None:
        price = to_cents(entry["unit_price"], "unit_price")
    elif default_cents is not None:
        price = default_cents
    else:
        raise ValidationError("unit_price is required for manual items")

    if price <= 0:
        raise ValidationError("unit price must be greater than 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"unit price cannot exceed {MAX_PRICE_CENTS} cents")
    return price


def _resolve_cart_entry(entry) -> CartLine:
    if not isinstance(entry, dict):
        raise ValidationError("cart entries must be objects")

    quantity = require_positive_int(entry.get("quantity"), "quantity")

    product = None
    if entry.get("product_id") is not None:
        product_id = require_positive_int(entry["product_id"], "product_id")
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ValidationError(f"Product {product_id} not found")
    elif not entry.get("manual") and clean_optional(entry.get("upc")):
        product = find_product_by_upc(str(entry["upc"]))
        if product is None:
            raise ValidationError(f"No active product with UPC {entry['upc']}")

    if product is not None:
        return CartLine(
            product=product,
            upc=product.upc,
            product_name=clean_optional(entry.get("product_name")) or product.name,
            unit_price_cents=_resolve_unit_price(entry, product.price_cents),
            quantity=quantity,
        )

    # Manual line: sold without an inventory record
    name = clean_optional(entry.get("product_name"))
    if not name:
        raise ValidationError("product_name is required for manual items")
    return CartLine(
        product=None,
        upc=clean_optional(entry.get("upc")) or f"MANUAL-{uuid.uuid4().hex[:8].upper()}",
        product_name=name,
        unit_price_cents=_resolve_unit_price(entry, None),
        quantity=quantity,
    )


def validate_cart(cart) -> list[CartLine]:
    if not isinstance(cart, list) or not cart:
        raise ValidationError("Cart is empty")
    return [_resolve_cart_entry(entry) for entry in cart]


def _stock_shortfalls(lines: list[CartLine]) -> list[StockWarning]:
    required: dict[int, int] = {}
    products: dict[int, Product] = {}
    for line in lines:
        if line.product is None:
            continue
        required[line.product.id] = required.get(line.product.id, 0) + line.quantity
        products[line.product.id] = line.product

    warnings = []
    for product_id, qty in required.items():
        product = products[product_id]
        available = product.stock or 0
        if available < qty:
            warnings.append(
                StockWarning(
                    product_id=product_id,
                    product_name=product.name,
                    upc=product.upc,
                    available=available,
                    required=qty,
                )
            )
    return warnings


def check_cart_stock(cart) -> list[StockWarning]:
    """
    Read-only pre-check: which products would go negative.

    Not atomic with record_sale; stock can change in between.
    """
    return _stock_shortfalls(validate_cart(cart))


def _resolve_sale_date(sale_date) -> datetime:
    now = utcnow()
    if sale_date is None or sale_date == "":
        return now
    if isinstance(sale_date, datetime):
        value = as_utc_naive(sale_date)
    else:
        try:
            value = parse_iso_datetime(str(sale_date))
        except ValueError:
            raise ValidationError("sale_date must be an ISO-8601 datetime")
    if value > now + FUTURE_TOLERANCE:
        raise ValidationError("sale_date cannot be in the future")
    return value


def _clean_customer(customer) -> dict:
    if customer is None:
        return {}
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object")
    return {key: clean_optional(customer.get(key)) for key in CUSTOMER_FIELDS}


def record_sale(
    *,
    cart,
    seller_name: str,
    payment_method: str,
    payment_reference: str | None = None,
    customer: dict | None = None,
    invoice_type: str | None = None,
    order_comment: str | None = None,
    sale_date=None,
) -> SaleResult:
    seller_name = clean_optional(seller_name)
    if not seller_name:
        raise ValidationError("seller_name is required")
    payment_method, payment_reference = require_payment_details(payment_method, payment_reference)
    lines = validate_cart(cart)
    customer_fields = _clean_customer(customer)
    invoice_type = normalize_invoice_type(invoice_type)
    order_comment = clean_optional(order_comment)
    created_at = _resolve_sale_date(sale_date)

    negative_stock = _stock_shortfalls(lines)

    transaction_id = str(uuid.uuid4())
    try:
        invoice_number = next_invoice_number()
    except (DocumentSequenceError, SQLAlchemyError) as exc:
        db.session.rollback()
        current_app.logger.exception("Invoice number allocation failed")
        raise PersistenceError("Could not allocate an invoice number") from exc

    recorded_at = utcnow()
    rows = [
        SaleLine(
            product_id=line.product.id if line.product is not None else None,
            upc=line.upc,
            product_name=line.product_name,
            unit_price_cents=line.unit_price_cents,
            quantity=line.quantity,
            total_cents=line.total_cents,
            seller_name=seller_name,
            transaction_id=transaction_id,
            invoice_number=invoice_number,
            payment_method=payment_method,
            payment_reference=payment_reference,
            customer_name=customer_fields.get("name"),
            customer_mobile=customer_fields.get("mobile"),
            customer_address=customer_fields.get("address"),
            customer_trn=customer_fields.get("trn"),
            invoice_type=invoice_type,
            order_comment=order_comment,
            status=SaleLine.STATUS_ACTIVE,
            created_at=created_at,
            recorded_at=recorded_at,
        )
        for line in lines
    ]

    try:
        db.session.add_all(rows)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Sale insert failed for %s", invoice_number)
        raise PersistenceError("Failed to record sale", details={"invoice_number": invoice_number}) from exc

    warnings: list[PartialFailureWarning] = []

    for row in rows:
        if row.product_id is None:
            continue
        try:
            decrement_stock(row.product_id, row.quantity)
        except (SQLAlchemyError, NotFoundError):
            db.session.rollback()
            current_app.logger.warning(
                "Stock not decremented for product %s on %s",
                row.product_id, invoice_number, exc_info=True,
            )
            warnings.append(
                PartialFailureWarning(
                    f"Stock for {row.product_name} was not updated",
                    step="stock_decrement",
                    context={"product_id": row.product_id, "quantity": row.quantity},
                )
            )

    if customer_fields.get("name"):
        try:
            upsert_customer(
                name=customer_fields["name"],
                mobile=customer_fields.get("mobile"),
                address=customer_fields.get("address"),
                trn=customer_fields.get("trn"),
                customer_type=invoice_type,
            )
        except PersistenceError:
            current_app.logger.warning("Customer directory not updated for %s", invoice_number, exc_info=True)
            warnings.append(
                PartialFailureWarning(
                    "Customer details were not saved to the directory",
                    step="customer_upsert",
                    context={"customer_name": customer_fields["name"]},
                )
            )

    current_app.logger.info(
        "Recorded sale %s (%s lines, %s cents) by %s",
        invoice_number, len(rows), sum(r.total_cents for r in rows), seller_name,
    )

    return SaleResult(
        transaction_id=transaction_id,
        invoice_number=invoice_number,
        lines=rows,
        total_amount_cents=sum(line.total_cents for line in lines),
        item_count=sum(line.quantity for line in lines),
        negative_stock=negative_stock,
        warnings=warnings,
    )


def _ordered(query):
    # Newest first: grouping takes the first non-null shared value it sees
    return query.order_by(SaleLine.created_at.desc(), SaleLine.id.desc())


def _explicit_members(transaction_id: str) -> list[SaleLine]:
    return _ordered(db.session.query(SaleLine).filter(SaleLine.transaction_id == transaction_id)).all()


def _legacy_members(key: str) -> list[SaleLine]:
    seller, sep, bucket = key.rpartition("-")
    if not sep or not seller or not bucket.lstrip("-").isdigit():
        return []

    candidates = _ordered(
        db.session.query(SaleLine).filter(
            or_(SaleLine.transaction_id.is_(None), SaleLine.transaction_id == ""),
            SaleLine.seller_name == seller,
        )
    ).all()
    return members_for_key(candidates, key, _window())


def resolve_members(transaction_key: str) -> list[SaleLine]:
    """
    Sale lines belonging to the transaction rendered as transaction_key.

    An explicit transaction_id match wins. A printed invoice number
    (INV-1000) resolves to the transaction carrying it. Anything else is
    treated as a legacy "<seller>-<bucket>" key over rows lacking an id.
    """
    key = (transaction_key or "").strip()
    if not key:
        return []

    explicit = _explicit_members(key)
    if explicit:
        return explicit

    if is_valid_invoice_number(key):
        line = (
            db.session.query(SaleLine)
            .filter(SaleLine.invoice_number == key)
            .order_by(SaleLine.id)
            .first()
        )
        if line is not None:
            owner = group_key_for(line, _window())
            if isinstance(owner, ExplicitId):
                return _explicit_members(owner.transaction_id)
            return _legacy_members(str(owner))

    return _legacy_members(key)


def get_transaction(transaction_key: str) -> Transaction:
    members = resolve_members(transaction_key)
    if not members:
        raise NotFoundError("Transaction not found")
    return group_transactions(members, _window())[0]


def _matches(txn: Transaction, search: str) -> bool:
    needle = search.lower()
    haystack = [
        txn.transaction_id,
        txn.invoice_number,
        txn.customer_name,
        txn.customer_mobile,
        txn.seller_name,
    ]
    haystack.extend(item.product_name for item in txn.items)
    return any(value and needle in value.lower() for value in haystack)


def list_transactions(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    seller_name: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    limit: int | None = None,
) -> list[Transaction]:
    """Transactions newest first, rebuilt from sale lines."""
    query = db.session.query(SaleLine)
    if start is not None:
        query = query.filter(SaleLine.created_at >= start)
    if end is not None:
        query = query.filter(SaleLine.created_at <= end)
    if seller_name:
        query = query.filter(SaleLine.seller_name == seller_name)

    transactions = group_transactions(_ordered(query).all(), _window())

    if payment_method:
        transactions = [t for t in transactions if t.payment_method == payment_method]
    if search and search.strip():
        transactions = [t for t in transactions if _matches(t, search.strip())]
    if limit is not None:
        transactions = transactions[: max(limit, 0)]
    return transactions
