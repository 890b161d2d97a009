from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SaleLine(db.Model):
    """
    One product line of a checkout.

    There is no parent transaction row: every line of a checkout carries
    the same transaction_id, invoice_number, payment and customer fields.
    The logical transaction is rebuilt by services.transactions.

    Legacy rows may lack transaction_id; those are grouped by seller and
    a 5-minute time bucket.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created", "created_at"),
        db.Index("ix_sales_seller_created", "seller_name", "created_at"),
        {"sqlite_autoincrement": True},
    )

    STATUS_ACTIVE = "active"

    id = db.Column(db.Integer, primary_key=True)

    # NULL for manual (non-inventoried) lines
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    # Denormalized copies survive product deletion
    upc = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    seller_name = db.Column(db.String(128), nullable=False)

    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    invoice_number = db.Column(db.String(64), nullable=True, index=True)

    payment_method = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_mobile = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)
    customer_trn = db.Column(db.String(64), nullable=True)

    invoice_type = db.Column(db.String(16), nullable=True)
    order_comment = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=True, default=STATUS_ACTIVE, index=True)

    # Business time (may be back-dated by the seller)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    # System time the row was actually entered
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "upc": self.upc,
            "product_name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "total_cents": self.total_cents,
            "seller_name": self.seller_name,
            "transaction_id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "customer_name": self.customer_name,
            "customer_mobile": self.customer_mobile,
            "customer_address": self.customer_address,
            "customer_trn": self.customer_trn,
            "invoice_type": self.invoice_type,
            "order_comment": self.order_comment,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "recorded_at": to_utc_z(self.recorded_at),
        }


class InvoiceSequence(db.Model):
    """
    Sequential invoice numbers per prefix.

    WHY: scanning existing invoice numbers for a maximum races between
    two tills; a single counter row updated in place does not.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_invoice_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
