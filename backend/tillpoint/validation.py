from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum unit price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

PAYMENT_METHODS = {"cash", "card", "bank_transfer"}
# Payment methods that must carry a card slip / bank transfer reference
REFERENCE_PAYMENT_METHODS = {"card", "bank_transfer"}

INVOICE_TYPES = {"retail", "wholesale", "corporate"}
DEFAULT_INVOICE_TYPE = "retail"


class ValidationError(ValueError):
    """400-level input problem. Raised before any write begins."""


class NotFoundError(LookupError):
    """404-level: the referenced transaction/product/customer does not exist."""


class PersistenceError(RuntimeError):
    """
    The underlying store call failed.

    The message is short and safe to show; the original exception is
    chained (__cause__) and logged, never returned to the client.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PartialFailureWarning(UserWarning):
    """
    A multi-step operation committed some but not all of its sub-steps.

    Never raised; collected on operation results so the caller can
    surface it without blocking completion.
    """

    def __init__(self, message: str, step: str, context: dict | None = None):
        super().__init__(message)
        self.step = step
        self.context = context or {}

    def to_dict(self) -> dict:
        return {"message": str(self), "step": self.step, "context": self.context}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if "e" in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if "." in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against SQLAlchemy column
    metadata and a policy allowlist. Returns a cleaned patch dict.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Product rules not captured by column metadata. Stock may be negative."""
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")


def normalize_invoice_type(value: str | None) -> str:
    if not value:
        return DEFAULT_INVOICE_TYPE
    normalized = str(value).strip().lower()
    return normalized if normalized in INVOICE_TYPES else DEFAULT_INVOICE_TYPE


def clean_optional(value: Any) -> str | None:
    """Trim a free-text field; blank -> None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_payment_details(payment_method: str | None, payment_reference: str | None) -> tuple[str, str | None]:
    method = (payment_method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}"
        )
    reference = clean_optional(payment_reference)
    if method in REFERENCE_PAYMENT_METHODS and not reference:
        raise ValidationError("payment_reference is required for card or bank transfer payments")
    return method, reference


def require_positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a positive integer")
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer")
    return value
