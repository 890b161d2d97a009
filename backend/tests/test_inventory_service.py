# Overview: Pytest coverage for stock increases, negative-stock settlement and product lifecycle.

"""
Inventory Service Tests

Settlement is a label on top of plain arithmetic: new = old + delta in
every case, and the settled part is min(delta, -old) when old < 0.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tillpoint.extensions import db
from tillpoint.models import SaleLine, StockMovement
from tillpoint.services import inventory_service
from tillpoint.services.inventory_service import (
    apply_stock_increase,
    compute_stock_increase,
    decrement_stock,
    delete_product,
    get_stock_history,
    list_products,
    list_stock_movements,
    reactivate_product,
    restock_many,
    restock_product,
    settlement_message,
    update_product,
)
from tillpoint.validation import NotFoundError, ValidationError


class TestComputeStockIncrease:
    def test_overflowing_increase_settles_debt_and_adds_stock(self):
        inc = compute_stock_increase(-5, 8)
        assert inc.new_stock == 3
        assert inc.settled_amount == 5
        assert inc.message == "Settled 5 units of negative inventory, 3 new units added"

    def test_exact_increase_fully_settles(self):
        inc = compute_stock_increase(-5, 5)
        assert inc.new_stock == 0
        assert inc.settled_amount == 5
        assert inc.message == "Fully settled negative inventory"

    def test_small_increase_partially_settles(self):
        inc = compute_stock_increase(-5, 3)
        assert inc.new_stock == -2
        assert inc.settled_amount == 3
        assert inc.message == "Partially settled negative inventory: 3 units"

    def test_positive_stock_has_no_settlement(self):
        inc = compute_stock_increase(4, 3)
        assert inc.new_stock == 7
        assert inc.settled_amount == 0
        assert inc.message == ""

    @pytest.mark.parametrize("old,delta", [(-10, 1), (-10, 10), (-10, 25), (0, 3), (7, 2)])
    def test_new_stock_is_plain_sum(self, old, delta):
        inc = compute_stock_increase(old, delta)
        assert inc.new_stock == old + delta
        assert 0 <= inc.settled_amount <= delta

    @pytest.mark.parametrize("delta", [0, -1])
    def test_non_positive_delta_rejected(self, delta):
        with pytest.raises(ValidationError):
            compute_stock_increase(3, delta)

    def test_settlement_message_ignores_non_negative(self):
        assert settlement_message(0, 5) == ""


class TestRestock:
    def test_restock_records_manual_add_movement(self, db_session, make_product):
        product = make_product(stock=-4)

        updated, increase = restock_product(product_id=product.id, quantity=10, actor="clerk")

        assert updated.stock == 6
        assert increase.settled_amount == 4
        movements = get_stock_history(product.id)
        assert len(movements) == 1
        movement = movements[0]
        assert movement.movement_type == "manual_add"
        assert movement.previous_stock == -4
        assert movement.new_stock == 6
        assert movement.quantity_added == 10
        assert movement.settled_amount == 4
        assert movement.created_by == "clerk"

    def test_restock_accepts_digit_string(self, db_session, product):
        updated, _ = restock_product(product_id=product.id, quantity="3", actor="clerk")
        assert updated.stock == 13

    def test_restock_rejects_zero(self, db_session, product):
        with pytest.raises(ValidationError):
            restock_product(product_id=product.id, quantity=0, actor="clerk")

    def test_restock_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            restock_product(product_id=9999, quantity=1, actor="clerk")

    def test_failed_movement_insert_keeps_stock_change(self, db_session, product, monkeypatch):
        """Movement tracking is best effort; the stock update stands."""
        def boom(*args, **kwargs):
            raise SQLAlchemyError("insert failed")

        monkeypatch.setattr(db.session, "add", boom)
        updated, increase = restock_product(product_id=product.id, quantity=5, actor="clerk")
        monkeypatch.undo()

        db.session.expire_all()
        assert updated.stock == 15
        assert increase.new_stock == 15
        assert db.session.query(StockMovement).count() == 0


class TestRestockMany:
    def test_each_line_settles_and_records_movement(self, db_session, make_product):
        owed = make_product(upc="A1", name="Apple", stock=-4)
        stocked = make_product(upc="B1", name="Banana", stock=2)

        results = restock_many(
            [{"product_id": owed.id, "quantity": 6}, {"product_id": str(stocked.id), "quantity": "3"}],
            actor="buyer",
        )

        assert [r.ok for r in results] == [True, True]
        assert owed.stock == 2
        assert stocked.stock == 5
        assert results[0].increase.settled_amount == 4
        assert results[0].to_dict()["stock_increase"]["message"] == "Settled 4 units of negative inventory, 2 new units added"
        movements = db.session.query(StockMovement).order_by(StockMovement.id).all()
        assert [m.movement_type for m in movements] == ["manual_add", "manual_add"]
        assert movements[0].notes == "Stock added via Purchase Order (cart: 6 units)"
        assert {m.created_by for m in movements} == {"buyer"}

    def test_bad_lines_do_not_block_the_rest(self, db_session, product):
        results = restock_many(
            [
                {"product_id": 9999, "quantity": 1},
                {"product_id": product.id, "quantity": 0},
                "not-a-line",
                {"product_id": product.id, "quantity": 2},
            ],
            actor="buyer",
            notes="PO 17",
        )

        assert [r.ok for r in results] == [False, False, False, True]
        assert results[0].error == "Product not found"
        assert "quantity" in results[1].error
        assert product.stock == 12
        assert db.session.query(StockMovement).one().notes == "PO 17"

    def test_failed_commit_is_reported_per_line(self, db_session, make_product, monkeypatch):
        first = make_product(upc="A1", name="Apple", stock=1)
        second = make_product(upc="B1", name="Banana", stock=1)
        real_commit = db.session.commit
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise SQLAlchemyError("database is locked")
            return real_commit()

        monkeypatch.setattr(db.session, "commit", flaky)
        results = restock_many(
            [{"product_id": first.id, "quantity": 5}, {"product_id": second.id, "quantity": 5}],
            actor="buyer",
        )
        monkeypatch.undo()

        assert results[0].error == "Failed to update stock"
        assert results[1].ok
        db.session.expire_all()
        assert first.stock == 1
        assert second.stock == 6

    @pytest.mark.parametrize("items", [None, [], {"product_id": 1}])
    def test_items_must_be_a_list(self, db_session, items):
        with pytest.raises(ValidationError):
            restock_many(items, actor="buyer")


class TestUpdateProduct:
    def test_stock_increase_recorded_as_edit(self, db_session, make_product):
        product = make_product(stock=-2)

        updated, increase = update_product(product_id=product.id, patch={"stock": 5}, actor="manager")

        assert updated.stock == 5
        assert increase.quantity_added == 7
        assert increase.settled_amount == 2
        movement = db.session.query(StockMovement).one()
        assert movement.movement_type == "edit"

    def test_stock_decrease_is_not_a_movement(self, db_session, product):
        updated, increase = update_product(product_id=product.id, patch={"stock": 2, "name": "Renamed"}, actor="m")

        assert updated.stock == 2
        assert updated.name == "Renamed"
        assert increase is None
        assert db.session.query(StockMovement).count() == 0


class TestDecrement:
    def test_decrement_can_go_negative(self, db_session, make_product):
        product = make_product(stock=1)
        decrement_stock(product.id, 3)
        assert product.stock == -2

    def test_decrement_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            decrement_stock(9999, 1)

    def test_apply_stock_increase_does_not_commit(self, db_session, product):
        apply_stock_increase(product, 5)
        db.session.rollback()
        assert product.stock == 10


class TestProductLifecycle:
    def test_delete_without_sales_removes_row(self, db_session, product):
        assert delete_product(product.id) == "deleted"
        with pytest.raises(NotFoundError):
            inventory_service.get_product(product.id)

    def test_delete_with_sales_deactivates(self, db_session, product):
        db.session.add(SaleLine(
            product_id=product.id, upc=product.upc, product_name=product.name,
            unit_price_cents=1000, quantity=1, total_cents=1000,
            seller_name="alice", transaction_id="t1",
        ))
        db.session.commit()

        assert delete_product(product.id) == "deactivated"
        assert inventory_service.get_product(product.id).is_active is False

        reactivated = reactivate_product(product.id)
        assert reactivated.is_active is True

    def test_list_products_filters_and_paginates(self, db_session, make_product):
        make_product(upc="A1", name="Apple")
        make_product(upc="B1", name="Banana")
        make_product(upc="C1", name="Cherry", is_active=False)

        assert list_products()["count"] == 2
        assert list_products(status="inactive")["items"][0]["name"] == "Cherry"
        assert list_products(status="all", search="an")["count"] == 1

        page = list_products(status="all", page=2, per_page=2)
        assert page["count"] == 1
        assert page["pagination"]["total"] == 3
        assert page["pagination"]["has_prev"] is True
        assert page["pagination"]["has_next"] is False

    def test_list_stock_movements_filters_by_type(self, db_session, make_product):
        a = make_product(upc="A1", name="Apple", stock=0)
        restock_product(product_id=a.id, quantity=2, actor="clerk")
        update_product(product_id=a.id, patch={"stock": 10}, actor="clerk")

        assert len(list_stock_movements()) == 2
        edits = list_stock_movements(movement_type="edit")
        assert len(edits) == 1
        assert edits[0].quantity_added == 8
