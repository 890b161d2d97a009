"""
Transaction grouping - rebuilds logical checkouts from flat sale lines.

Grouping invariants (authoritative):
- A line with a transaction_id belongs to ExplicitId(transaction_id).
- A legacy line without one belongs to TimeBucket(seller_name,
  floor(epoch_ms(created_at) / window)), window = 5 minutes. This is a
  lossy heuristic: two checkouts by one seller inside the same window
  merge. New rows always carry a transaction_id.
- Shared fields (customer, payment, invoice) are taken from the first
  line, in input order, that has a non-null value. Callers pass lines
  newest first, so the most recent non-null value wins.
- Transactions are derived, never stored; regroup after any change.

Everything here is pure: no session, no app context.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Union

from ..money import split_vat
from ..time_utils import time_bucket, to_utc_z, utcnow, is_within_days
from ..validation import normalize_invoice_type

LEGACY_WINDOW_SECONDS = 300

SHARED_FIELDS = (
    "payment_reference",
    "customer_name",
    "customer_mobile",
    "customer_address",
    "customer_trn",
    "invoice_number",
    "order_comment",
)


@dataclass(frozen=True)
class ExplicitId:
    transaction_id: str

    def __str__(self) -> str:
        return self.transaction_id


@dataclass(frozen=True)
class TimeBucket:
    seller_name: str
    bucket: int

    def __str__(self) -> str:
        return f"{self.seller_name}-{self.bucket}"


GroupKey = Union[ExplicitId, TimeBucket]


def group_key_for(line, window_seconds: int = LEGACY_WINDOW_SECONDS) -> GroupKey:
    if line.transaction_id:
        return ExplicitId(line.transaction_id)
    return TimeBucket(line.seller_name, time_bucket(line.created_at, window_seconds))


@dataclass
class Transaction:
    key: GroupKey
    created_at: datetime
    seller_name: str
    payment_method: str = "cash"
    payment_reference: str | None = None
    customer_name: str | None = None
    customer_mobile: str | None = None
    customer_address: str | None = None
    customer_trn: str | None = None
    invoice_number: str | None = None
    invoice_type: str = "retail"
    order_comment: str | None = None
    items: list = field(default_factory=list)
    total_amount_cents: int = 0
    item_count: int = 0

    @property
    def transaction_id(self) -> str:
        return str(self.key)

    @property
    def is_legacy(self) -> bool:
        return isinstance(self.key, TimeBucket)

    @property
    def all_active(self) -> bool:
        # NULL status predates the column and counts as active
        return all(item.status in (None, "active") for item in self.items)

    def vat_breakdown(self, rate_bps: int = 500) -> dict:
        subtotal, vat = split_vat(self.total_amount_cents, rate_bps)
        return {
            "subtotal_cents": subtotal,
            "vat_cents": vat,
            "total_cents": self.total_amount_cents,
            "vat_rate_bps": rate_bps,
        }

    def shared_fields(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "customer_mobile": self.customer_mobile,
            "customer_address": self.customer_address,
            "customer_trn": self.customer_trn,
            "invoice_type": self.invoice_type,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "order_comment": self.order_comment,
        }

    def to_dict(self, *, include_items: bool = True, vat_rate_bps: int = 500) -> dict:
        data = {
            "transaction_id": self.transaction_id,
            "is_legacy": self.is_legacy,
            "created_at": to_utc_z(self.created_at),
            "seller_name": self.seller_name,
            "invoice_number": self.invoice_number,
            "total_amount_cents": self.total_amount_cents,
            "item_count": self.item_count,
            "line_count": len(self.items),
            "all_active": self.all_active,
            "vat": self.vat_breakdown(vat_rate_bps),
            **self.shared_fields(),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


def _new_transaction(key: GroupKey, line) -> Transaction:
    return Transaction(key=key, created_at=line.created_at, seller_name=line.seller_name)


def group_transactions(
    lines: Iterable,
    window_seconds: int = LEGACY_WINDOW_SECONDS,
) -> list[Transaction]:
    """Group sale lines into transactions, newest first."""
    by_key: dict[GroupKey, Transaction] = {}
    # payment_method / invoice_type carry defaults, so track which were set by a line
    paid: set[GroupKey] = set()
    typed: set[GroupKey] = set()

    for line in lines:
        key = group_key_for(line, window_seconds)
        txn = by_key.get(key)
        if txn is None:
            txn = by_key[key] = _new_transaction(key, line)

        txn.items.append(line)
        txn.total_amount_cents += line.unit_price_cents * line.quantity
        txn.item_count += line.quantity

        for name in SHARED_FIELDS:
            if getattr(txn, name) is None:
                value = getattr(line, name)
                if value:
                    setattr(txn, name, value)

        if key not in paid and line.payment_method:
            txn.payment_method = line.payment_method
            paid.add(key)

        if key not in typed and line.invoice_type:
            txn.invoice_type = normalize_invoice_type(line.invoice_type)
            typed.add(key)

        if line.created_at < txn.created_at:
            txn.created_at = line.created_at

    # sorted() is stable: equal timestamps keep first-seen order
    return sorted(by_key.values(), key=lambda t: t.created_at, reverse=True)


def members_for_key(
    lines: Iterable,
    key: str,
    window_seconds: int = LEGACY_WINDOW_SECONDS,
) -> list:
    """Lines whose group key renders to `key` (same rule as the grouper)."""
    return [line for line in lines if str(group_key_for(line, window_seconds)) == key]


def check_undo_eligibility(
    txn: Transaction,
    *,
    window_days: int = 30,
    now: datetime | None = None,
) -> tuple[bool, str | None]:
    """
    Business policy for undo, enforced by callers before undo runs:
    every line still active and the checkout no older than window_days.
    """
    if not txn.all_active:
        return False, "Transaction has lines that are no longer active"
    if not is_within_days(txn.created_at, window_days, now=now or utcnow()):
        return False, f"Only transactions from the last {window_days} days can be undone"
    return True, None
