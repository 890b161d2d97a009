from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer directory entry.

    Denormalized: sale lines keep their own copy of the customer fields.
    This table is filled opportunistically whenever a sale or invoice
    edit supplies a customer name.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_mobile", "mobile"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    mobile = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    trn = db.Column(db.String(64), nullable=True)

    # retail / wholesale / corporate
    type = db.Column(db.String(16), nullable=False, default="retail")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mobile": self.mobile,
            "address": self.address,
            "trn": self.trn,
            "type": self.type,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
