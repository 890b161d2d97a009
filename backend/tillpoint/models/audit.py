from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class UndoLogEntry(db.Model):
    """
    Append-only record of one reversed sale line.

    sale_data is a snapshot of the line taken before deletion, plus
    inventory_restored / settled_amount describing the stock write-back.
    IMMUTABLE: never updated or deleted.
    """
    __tablename__ = "sales_undo_log"
    __table_args__ = (
        db.Index("ix_sales_undo_log_undone_at", "undone_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # No FK: the sale row is gone by the time this is written
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    sale_data = db.Column(db.JSON, nullable=False)
    undone_by = db.Column(db.String(128), nullable=False)
    reason = db.Column(db.String(512), nullable=False)
    undone_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def inventory_restored(self) -> bool:
        return bool((self.sale_data or {}).get("inventory_restored"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_data": self.sale_data,
            "undone_by": self.undone_by,
            "reason": self.reason,
            "undone_at": to_utc_z(self.undone_at),
            "inventory_restored": self.inventory_restored,
        }


class InvoiceEditLog(db.Model):
    """Append-only record of one invoice edit, with before/after snapshots."""
    __tablename__ = "invoice_edit_logs"
    __table_args__ = (
        db.Index("ix_invoice_edit_logs_edited_at", "edited_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, default="", index=True)
    # explicit id, or "<seller_name>-<bucket>" for legacy rows
    transaction_id = db.Column(db.String(160), nullable=False, index=True)
    edited_by = db.Column(db.String(128), nullable=False)
    edited_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    changes_summary = db.Column(db.JSON, nullable=False)
    previous_data = db.Column(db.JSON, nullable=False)
    new_data = db.Column(db.JSON, nullable=False)
    edit_reason = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "transaction_id": self.transaction_id,
            "edited_by": self.edited_by,
            "edited_at": to_utc_z(self.edited_at),
            "changes_summary": self.changes_summary,
            "changes_count": len(self.changes_summary or []),
            "previous_data": self.previous_data,
            "new_data": self.new_data,
            "edit_reason": self.edit_reason,
        }
