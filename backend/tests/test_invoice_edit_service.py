# Overview: Pytest coverage for invoice edits and the change summary audit log.

"""
Invoice Edit Tests

An edit replaces the item set and shared fields of one transaction and
writes an audit row with a human-readable summary. Stock is untouched.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tillpoint.extensions import db
from tillpoint.models import InvoiceEditLog, SaleLine
from tillpoint.services.invoice_edit_service import (
    build_changes_summary,
    edit_invoice,
    list_invoice_edits,
)
from tillpoint.services.sales_service import record_sale
from tillpoint.services.transactions import group_key_for
from tillpoint.time_utils import utcnow
from tillpoint.validation import NotFoundError, ValidationError


@pytest.fixture
def sale(db_session, make_product):
    """Apple x1 @ 10.00 and Banana x2 @ 5.00 in one transaction."""
    apple = make_product(upc="A1", name="Apple", price_cents=1000, stock=10)
    banana = make_product(upc="B1", name="Banana", price_cents=500, stock=10)
    return record_sale(
        cart=[{"product_id": apple.id, "quantity": 1}, {"product_id": banana.id, "quantity": 2}],
        seller_name="alice",
        payment_method="cash",
    )


def _items(result):
    return {line.product_name: line for line in result.lines}


def _item_payload(line, **overrides):
    data = {
        "id": line.id,
        "upc": line.upc,
        "product_name": line.product_name,
        "unit_price_cents": line.unit_price_cents,
        "quantity": line.quantity,
    }
    data.update(overrides)
    return data


class TestEditInvoice:
    def test_remove_item_and_change_quantity(self, sale):
        items = _items(sale)

        result = edit_invoice(
            sale.transaction_id,
            [_item_payload(items["Banana"], quantity=5)],
            actor="manager",
            reason="Customer changed order",
        )

        assert "Removed 1 item(s): Apple" in result.changes_summary
        assert "Banana: Quantity 2 → 5" in result.changes_summary

        rows = db.session.query(SaleLine).all()
        assert len(rows) == 1
        assert rows[0].quantity == 5
        assert rows[0].total_cents == 2500
        assert result.transaction.total_amount_cents == 2500

        log = db.session.query(InvoiceEditLog).one()
        assert log.edited_by == "manager"
        assert log.edit_reason == "Customer changed order"
        assert log.invoice_number == sale.invoice_number
        assert log.changes_summary == result.changes_summary
        assert len(log.previous_data["items"]) == 2
        assert len(log.new_data["items"]) == 1

    def test_add_item_inherits_transaction_fields(self, sale, make_product):
        items = _items(sale)
        cherry = make_product(upc="C1", name="Cherry", price_cents=250)

        result = edit_invoice(
            sale.transaction_id,
            [
                _item_payload(items["Apple"]),
                _item_payload(items["Banana"]),
                {"is_new": True, "upc": "C1", "product_name": "Cherry", "unit_price": "2.50", "quantity": 4},
            ],
        )

        assert "Added 1 item(s): Cherry" in result.changes_summary
        new_row = db.session.query(SaleLine).filter(SaleLine.upc == "C1").one()
        assert new_row.transaction_id == sale.transaction_id
        assert new_row.invoice_number == sale.invoice_number
        assert new_row.seller_name == "alice"
        assert new_row.product_id == cherry.id
        assert result.transaction.total_amount_cents == 1000 + 1000 + 1000

    def test_price_change_summary(self, sale):
        items = _items(sale)

        result = edit_invoice(
            sale.transaction_id,
            [_item_payload(items["Apple"], unit_price_cents=1250), _item_payload(items["Banana"])],
        )

        assert result.changes_summary == ["Apple: Price AED 10.00 → AED 12.50"]

    def test_customer_and_payment_changes(self, sale):
        items = _items(sale)

        result = edit_invoice(
            sale.transaction_id,
            [_item_payload(items["Apple"]), _item_payload(items["Banana"])],
            {"customer_name": "Dana", "payment_method": "card", "payment_reference": "SLIP-7"},
        )

        assert 'Customer name: "None" → "Dana"' in result.changes_summary
        assert 'Payment method: "cash" → "card"' in result.changes_summary
        assert "Payment reference updated" in result.changes_summary
        rows = db.session.query(SaleLine).all()
        assert {r.customer_name for r in rows} == {"Dana"}
        assert {r.payment_method for r in rows} == {"card"}

    def test_date_change_keeps_time_of_day(self, sale):
        items = _items(sale)
        original = db.session.query(SaleLine).first().created_at
        new_date = (original - timedelta(days=2)).date().isoformat()

        result = edit_invoice(
            sale.transaction_id,
            [_item_payload(items["Apple"]), _item_payload(items["Banana"])],
            {"transaction_date": new_date},
        )

        assert "Transaction date changed" in result.changes_summary
        row = db.session.query(SaleLine).first()
        assert row.created_at.date().isoformat() == new_date
        assert row.created_at.time() == original.time()

    def test_no_changes(self, sale):
        items = _items(sale)
        result = edit_invoice(
            sale.transaction_id,
            [_item_payload(items["Apple"]), _item_payload(items["Banana"])],
        )
        assert result.changes_summary == ["No changes detected"]

    def test_edit_does_not_touch_stock(self, sale):
        items = _items(sale)
        banana = items["Banana"].product

        edit_invoice(sale.transaction_id, [_item_payload(items["Banana"], quantity=9)])

        assert banana.stock == 8

    def test_list_invoice_edits(self, sale):
        items = _items(sale)
        edit_invoice(sale.transaction_id, [_item_payload(items["Apple"]), _item_payload(items["Banana"])])

        assert len(list_invoice_edits(transaction_id=sale.transaction_id)) == 1
        assert list_invoice_edits(transaction_id="other") == []

    def test_failed_log_write_is_a_warning(self, sale, monkeypatch):
        items = _items(sale)

        def boom(instance):
            raise SQLAlchemyError("audit table locked")

        monkeypatch.setattr(db.session, "add", boom)
        result = edit_invoice(sale.transaction_id, [_item_payload(items["Banana"], quantity=3)])
        monkeypatch.undo()

        assert result.log_entry is None
        assert [w.step for w in result.warnings] == ["invoice_edit_log"]
        assert db.session.query(SaleLine).one().quantity == 3

    def test_legacy_card_sale_without_reference_is_editable(self, db_session, make_legacy_line):
        line = make_legacy_line(datetime(2024, 1, 1, 10, 0, 30), payment_method="card")
        key = str(group_key_for(line))

        result = edit_invoice(key, [_item_payload(line)], {"customer_name": "Dana"})

        assert result.transaction.customer_name == "Dana"
        assert result.transaction.payment_method == "card"
        assert result.transaction.payment_reference is None

    def test_legacy_card_sale_payment_change_still_validated(self, db_session, make_legacy_line):
        line = make_legacy_line(datetime(2024, 1, 1, 10, 0, 30), payment_method="card")
        with pytest.raises(ValidationError):
            edit_invoice(str(group_key_for(line)), [_item_payload(line)], {"payment_reference": "  "})

    def test_long_legacy_key_is_logged(self, db_session, make_legacy_line):
        seller = "s" * 128
        line = make_legacy_line(datetime(2024, 1, 1, 10, 0, 30), seller_name=seller)
        key = str(group_key_for(line))

        result = edit_invoice(key, [_item_payload(line, quantity=2)], actor="manager")

        assert len(key) > 64
        assert result.warnings == []
        assert db.session.query(InvoiceEditLog).one().transaction_id == key
        assert InvoiceEditLog.__table__.c.transaction_id.type.length >= len(key)


class TestEditValidation:
    @pytest.mark.parametrize("items", [[], None])
    def test_empty_items_rejected(self, sale, items):
        with pytest.raises(ValidationError):
            edit_invoice(sale.transaction_id, items)
        assert db.session.query(SaleLine).count() == 2

    def test_zero_price_rejected(self, sale):
        items = _items(sale)
        with pytest.raises(ValidationError):
            edit_invoice(sale.transaction_id, [_item_payload(items["Apple"], unit_price_cents=0)])
        assert db.session.query(SaleLine).count() == 2

    def test_zero_quantity_rejected(self, sale):
        items = _items(sale)
        with pytest.raises(ValidationError):
            edit_invoice(sale.transaction_id, [_item_payload(items["Apple"], quantity=0)])

    def test_foreign_item_id_rejected(self, sale):
        items = _items(sale)
        with pytest.raises(ValidationError):
            edit_invoice(sale.transaction_id, [_item_payload(items["Apple"], id=99999)])

    def test_card_without_reference_rejected(self, sale):
        items = _items(sale)
        with pytest.raises(ValidationError):
            edit_invoice(sale.transaction_id, [_item_payload(items["Apple"])], {"payment_method": "card"})

    def test_future_date_rejected(self, sale):
        items = _items(sale)
        future = (utcnow() + timedelta(days=3)).date().isoformat()
        with pytest.raises(ValidationError):
            edit_invoice(sale.transaction_id, [_item_payload(items["Apple"])], {"transaction_date": future})

    def test_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            edit_invoice("missing", [{"is_new": True, "upc": "X", "product_name": "X", "unit_price_cents": 1, "quantity": 1}])


class TestChangesSummary:
    def test_mobile_change(self):
        previous = {"customer_mobile": "050", "items": []}
        new = {"customer_mobile": None, "items": []}
        assert build_changes_summary(previous, new) == ['Customer mobile: "050" → "None"']

    def test_comment_change(self):
        assert build_changes_summary({"order_comment": "a"}, {"order_comment": "b"}) == ["Order comment updated"]
