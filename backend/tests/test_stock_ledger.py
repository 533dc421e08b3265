# Overview: Pytest coverage for the stock ledger (receipts, outbound, adjustments, reports).

"""
Stock Ledger Tests

Proves the ledger invariants:
1. current_stock always equals the sum of the product's movement deltas
2. batch remaining_qty never goes negative
3. decrements beyond available stock are refused and write nothing
4. adjustments may go negative and are flagged
"""

from datetime import timedelta

import pytest
from sqlalchemy import func

from conftest import receive
from stockpoint.extensions import db
from stockpoint.models import StockBatch, StockMovement
from stockpoint.services import stock_service
from stockpoint.services.stock_service import InsufficientStockError
from stockpoint.time_utils import utcnow
from stockpoint.validation import NotFoundError, ValidationError


def ledger_sum(product_id: int) -> int:
    return db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0)).filter(
        StockMovement.product_id == product_id
    ).scalar()


class TestStockIn:

    def test_multi_line_receipt_creates_one_batch(self, db_session, ctx_main, product, second_product):
        batch = stock_service.record_stock_in(ctx_main, [
            {"product_id": product.id, "quantity": 10, "batch_number": "L1", "location": "pharmacy"},
            {"product_id": second_product.id, "quantity": 5, "purchase_rate_cents": 550},
        ])

        assert batch.remaining_qty == 15
        assert product.current_stock == 10
        assert second_product.current_stock == 5

        movements = db_session.query(StockMovement).filter_by(batch_id=batch.id).order_by(StockMovement.id).all()
        assert [m.type for m in movements] == ["IN", "IN"]
        assert movements[0].location == "PHARMACY"
        assert movements[0].batch_number == "L1"
        # Pricing snapshot: line override wins, product prices fill the rest
        assert movements[1].purchase_rate_cents == 550
        assert movements[1].sale_rate_cents == 1000

    def test_stock_equals_ledger_sum(self, db_session, ctx_main, product):
        receive(ctx_main, product, 20)
        receive(ctx_main, product, 7)
        stock_service.record_outbound(ctx_main, product.id, 4, reason="Damaged")
        stock_service.adjust_stock(ctx_main, product.id, -3, "Count correction")

        assert product.current_stock == 20
        assert ledger_sum(product.id) == product.current_stock

    def test_empty_items_rejected(self, db_session, ctx_main):
        with pytest.raises(ValidationError):
            stock_service.record_stock_in(ctx_main, [])

    def test_non_positive_quantity_rejected(self, db_session, ctx_main, product):
        with pytest.raises(ValidationError):
            receive(ctx_main, product, 0)
        assert db_session.query(StockBatch).count() == 0

    def test_invalid_location_writes_nothing(self, db_session, ctx_main, product):
        with pytest.raises(ValidationError):
            receive(ctx_main, product, 5, location="BASEMENT")
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(StockBatch).count() == 0

    def test_non_string_location_rejected(self, db_session, ctx_main, product):
        with pytest.raises(ValidationError) as exc:
            receive(ctx_main, product, 5, location=5)
        assert exc.value.field == "location"
        assert db_session.query(StockMovement).count() == 0

    def test_non_string_remark_rejected(self, db_session, ctx_main, product):
        with pytest.raises(ValidationError) as exc:
            receive(ctx_main, product, 5, remark={"note": "x"})
        assert exc.value.field == "remark"
        assert db_session.query(StockBatch).count() == 0

    def test_foreign_product_not_found(self, db_session, ctx_foreign, product):
        with pytest.raises(NotFoundError):
            receive(ctx_foreign, product, 5)

    def test_record_inbound_single_product(self, db_session, ctx_main, product):
        batch = stock_service.record_inbound(
            ctx_main, product.id, 12,
            pricing={"mrp_cents": 3600},
            batch_meta={"batch_number": "INB-1", "expiry_date": "2030-01-31"},
        )
        movement = batch.movements[0]
        assert movement.mrp_cents == 3600
        assert movement.expiry_date.isoformat() == "2030-01-31"
        assert product.current_stock == 12


class TestOutbound:

    def test_outbound_decrements(self, db_session, ctx_main, stocked_product):
        movement = stock_service.record_outbound(ctx_main, stocked_product.id, 30)
        assert movement.type == "OUT"
        assert movement.quantity_delta == -30
        assert stocked_product.current_stock == 70

    def test_outbound_beyond_stock_is_refused(self, db_session, ctx_main, stocked_product):
        with pytest.raises(InsufficientStockError) as exc:
            stock_service.record_outbound(ctx_main, stocked_product.id, 101)

        assert exc.value.details == {"product_id": stocked_product.id, "requested": 101, "available": 100}
        assert stocked_product.current_stock == 100
        assert db_session.query(StockMovement).filter_by(type="OUT").count() == 0

    def test_outbound_from_batch(self, db_session, ctx_main, product):
        batch = receive(ctx_main, product, 10)
        stock_service.record_outbound(ctx_main, product.id, 4, batch_id=batch.id)

        db_session.refresh(batch)
        assert batch.remaining_qty == 6
        assert product.current_stock == 6

    def test_batch_never_goes_negative(self, db_session, ctx_main, product):
        batch = receive(ctx_main, product, 3)
        receive(ctx_main, product, 10)

        with pytest.raises(InsufficientStockError):
            stock_service.record_outbound(ctx_main, product.id, 5, batch_id=batch.id)

        db_session.refresh(batch)
        assert batch.remaining_qty == 3
        assert product.current_stock == 13


class TestAdjustments:

    def test_positive_adjustment(self, db_session, ctx_main, stocked_product):
        movement, new_stock = stock_service.adjust_stock(ctx_main, stocked_product.id, 5, "Found in back room")
        assert new_stock == 105
        assert movement.type == "ADJUSTMENT"
        assert movement.location == "PHARMACY"
        assert movement.remark == "Found in back room"

    def test_adjustment_may_go_negative(self, db_session, ctx_main, product):
        movement, new_stock = stock_service.adjust_stock(ctx_main, product.id, -2, "Shrinkage")
        assert new_stock == -2
        assert ledger_sum(product.id) == -2

    def test_zero_adjustment_rejected(self, db_session, ctx_main, product):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(ctx_main, product.id, 0, "Nothing")

    def test_reason_required(self, db_session, ctx_main, product):
        with pytest.raises(ValidationError) as exc:
            stock_service.adjust_stock(ctx_main, product.id, 1, "  ")
        assert exc.value.field == "reason"


class TestReports:

    def test_fifo_orders_by_expiry_with_undated_last(self, db_session, ctx_main, product):
        today = utcnow().date()
        late = receive(ctx_main, product, 5, expiry_date=(today + timedelta(days=90)).isoformat())
        undated = receive(ctx_main, product, 5)
        early = receive(ctx_main, product, 5, expiry_date=(today + timedelta(days=10)).isoformat())

        rows = stock_service.fifo_batches(ctx_main, product.id)
        assert [r["batch_id"] for r in rows] == [early.id, late.id, undated.id]
        assert rows[2]["expiry_date"] is None

    def test_fifo_skips_exhausted_batches(self, db_session, ctx_main, product):
        batch = receive(ctx_main, product, 2)
        stock_service.record_outbound(ctx_main, product.id, 2, batch_id=batch.id)
        assert stock_service.fifo_batches(ctx_main, product.id) == []

    def test_stock_by_product_is_read_only(self, db_session, ctx_main, product, second_product):
        receive(ctx_main, product, 10)
        receive(ctx_main, second_product, 4)
        stock_service.record_outbound(ctx_main, product.id, 3)

        first = stock_service.stock_by_product(ctx_main)
        second = stock_service.stock_by_product(ctx_main)

        assert first == second
        totals = {row["product_id"]: row["total_quantity"] for row in first}
        assert totals == {product.id: 7, second_product.id: 4}

    def test_stock_by_product_date_range(self, db_session, ctx_main, product):
        receive(ctx_main, product, 10)
        tomorrow = (utcnow().date() + timedelta(days=1)).isoformat()
        assert stock_service.stock_by_product(ctx_main, tomorrow, tomorrow) == []

    def test_stock_by_product_bad_date(self, db_session, ctx_main):
        with pytest.raises(ValidationError):
            stock_service.stock_by_product(ctx_main, "not-a-date", None)

    def test_low_stock(self, db_session, ctx_main, product, second_product):
        receive(ctx_main, product, 50)
        receive(ctx_main, second_product, 3)

        low = stock_service.low_stock_products(ctx_main, 10)
        assert [p.id for p in low] == [second_product.id]

    def test_expiring_batches(self, db_session, ctx_main, product):
        today = utcnow().date()
        receive(ctx_main, product, 5, expiry_date=(today + timedelta(days=5)).isoformat())
        receive(ctx_main, product, 5, expiry_date=(today + timedelta(days=120)).isoformat())

        rows = stock_service.expiring_batches(ctx_main, 30)
        assert len(rows) == 1
        assert rows[0]["days_to_expiry"] == 5
        assert rows[0]["product_name"] == "Paracetamol 500mg"
        assert rows[0]["batch_remaining_qty"] == 5

    def test_movements_scoped_to_site(self, db_session, ctx_main, ctx_foreign, stocked_product):
        assert len(stock_service.movements_by_product(ctx_main, stocked_product.id)) == 1
        with pytest.raises(NotFoundError):
            stock_service.movements_by_product(ctx_foreign, stocked_product.id)
