# Overview: Customer directory service; upserts and CRUD for customer records.

from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, SaleLine
from ..validation import (
    NotFoundError,
    PersistenceError,
    ValidationError,
    clean_optional,
    normalize_invoice_type,
)

# Fuzzy name matching needs at least this many characters
MIN_FUZZY_NAME_LENGTH = 3


def _find_match(name: str, mobile: str | None) -> Customer | None:
    if mobile:
        by_mobile = (
            db.session.query(Customer)
            .filter(Customer.mobile == mobile)
            .order_by(Customer.id.asc())
            .first()
        )
        if by_mobile is not None:
            return by_mobile

    if len(name) >= MIN_FUZZY_NAME_LENGTH:
        return (
            db.session.query(Customer)
            .filter(Customer.name.ilike(f"%{name}%"))
            .order_by(Customer.id.asc())
            .first()
        )
    return None


def upsert_customer(
    *,
    name: str | None,
    mobile: str | None = None,
    address: str | None = None,
    trn: str | None = None,
    customer_type: str | None = None,
) -> Customer | None:
    """
    Record a customer seen on a sale or invoice edit.

    Matches by exact mobile first, then by case-insensitive name
    substring. A match has its non-blank fields refreshed; otherwise a
    new row is inserted. Blank name -> no-op (returns None).
    """
    name = clean_optional(name)
    if not name:
        return None
    mobile = clean_optional(mobile)
    address = clean_optional(address)
    trn = clean_optional(trn)
    customer_type = normalize_invoice_type(customer_type)

    existing = _find_match(name, mobile)
    try:
        if existing is not None:
            existing.name = name
            existing.type = customer_type
            if mobile:
                existing.mobile = mobile
            if address:
                existing.address = address
            if trn:
                existing.trn = trn
            customer = existing
        else:
            customer = Customer(name=name, mobile=mobile, address=address, trn=trn, type=customer_type)
            db.session.add(customer)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to save customer") from exc
    return customer


def list_customers(*, search: str | None = None, limit: int = 200) -> list[Customer]:
    query = db.session.query(Customer)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Customer.name.ilike(pattern),
                Customer.mobile.ilike(pattern),
                Customer.trn.ilike(pattern),
            )
        )
    return query.order_by(Customer.name.asc(), Customer.id.asc()).limit(limit).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


def _clean_fields(payload: dict, *, partial: bool) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    allowed = {"name", "mobile", "address", "trn", "type"}
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    fields: dict = {}
    if "name" in payload or not partial:
        name = clean_optional(payload.get("name"))
        if not name:
            raise ValidationError("name is required")
        fields["name"] = name
    for key in ("mobile", "address", "trn"):
        if key in payload:
            fields[key] = clean_optional(payload[key])
    if "type" in payload or not partial:
        fields["type"] = normalize_invoice_type(payload.get("type"))
    return fields


def create_customer(payload: dict) -> Customer:
    customer = Customer(**_clean_fields(payload, partial=False))
    try:
        db.session.add(customer)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to create customer") from exc
    return customer


def update_customer(customer_id: int, payload: dict) -> Customer:
    customer = get_customer(customer_id)
    for key, value in _clean_fields(payload, partial=True).items():
        setattr(customer, key, value)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to update customer") from exc
    return customer


def delete_customer(customer_id: int) -> None:
    customer = get_customer(customer_id)
    try:
        db.session.delete(customer)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to delete customer") from exc


def customers_from_sales() -> list[dict]:
    """
    Unique customers (keyed by mobile, else name) derived from sale rows,
    most recent sale first. Used when the directory is still empty.
    """
    rows = (
        db.session.query(SaleLine)
        .filter(SaleLine.customer_name.isnot(None))
        .order_by(SaleLine.created_at.desc(), SaleLine.id.desc())
        .all()
    )

    seen: dict[str, dict] = {}
    for row in rows:
        name = clean_optional(row.customer_name)
        if not name:
            continue
        key = clean_optional(row.customer_mobile) or name.lower()
        if key in seen:
            continue
        seen[key] = {
            "name": name,
            "mobile": clean_optional(row.customer_mobile),
            "address": clean_optional(row.customer_address),
            "trn": clean_optional(row.customer_trn),
            "type": normalize_invoice_type(row.invoice_type),
        }
    return list(seen.values())
