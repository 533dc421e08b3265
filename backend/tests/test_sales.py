# Overview: Pytest coverage for sale creation, edits and the loyalty hooks.

"""
Sale Tests

Proves:
1. A sale freezes per-line tax and takes its stock in one transaction
2. A failed sale writes nothing (no bill, no movement, no bill number)
3. Bill numbers are sequential per site
4. Loyalty runs after commit: points on net, reward discount capped
5. Edits recompute with the frozen rates and write ADJUSTMENT movements
6. Return bills credit stock against a SALE bill, never beyond what it sold
"""

from decimal import Decimal

import pytest

from conftest import receive
from stockpoint.models import RoyaltyRedemption, Sale, SaleItem, StockMovement
from stockpoint.services import loyalty_service, sales_service, tax_service
from stockpoint.services.loyalty_service import InsufficientPointsError
from stockpoint.services.sales_service import SaleError
from stockpoint.services.stock_service import InsufficientStockError
from stockpoint.validation import NotFoundError, ValidationError


PHONE = "4165550199"


def cart(product, quantity=3, **extra):
    body = {"items": [{"product_id": product.id, "quantity": quantity}]}
    body.update(extra)
    return body


@pytest.fixture
def discount_reward(db_session, ctx_main):
    return loyalty_service.create_reward(ctx_main, {
        "name": "20% off",
        "reward_type": "DISCOUNT",
        "points_required": 50,
        "discount_percent": "20",
        "discount_max_cap_cents": 500,
    })


class TestCreateSale:

    def test_sale_freezes_tax_and_takes_stock(self, db_session, ctx_main, stocked_product):
        result = sales_service.create_sale(ctx_main, cart(stocked_product, customer_name="Walk-in"))
        sale = result.sale

        assert sale.bill_no == "SALE0001"
        item = sale.items[0]
        assert item.product_name == "Paracetamol 500mg"
        assert item.rate_cents == 3333
        assert item.subtotal_cents == 9999
        assert item.hst_cents == 1300
        assert item.tax_cents == 1300
        assert item.line_total_cents == 11299
        assert Decimal(item.hst_rate) == Decimal("13")

        assert sale.gross_amount_cents == 11299
        assert sale.net_amount_cents == 11299
        assert sale.due_amount_cents == 11299
        assert sale.payment_status == "UNPAID"
        assert stocked_product.current_stock == 97

        movement = db_session.query(StockMovement).filter_by(sale_id=sale.id).one()
        assert movement.type == "OUT"
        assert movement.quantity_delta == -3
        assert movement.remark == "Sale SALE0001"

    def test_bill_numbers_are_sequential_per_site(
        self, db_session, ctx_main, ctx_branch, stocked_product, category_branch
    ):
        from stockpoint.models import Product
        branch_product = Product(
            site_id=ctx_branch.site_id, category_id=category_branch.id,
            name="Branch item", short_name="BR1", sale_rate_cents=100, _current_stock=0,
        )
        db_session.add(branch_product)
        db_session.commit()
        receive(ctx_branch, branch_product, 5)

        first = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        second = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        branch = sales_service.create_sale(ctx_branch, cart(branch_product, 1)).sale

        assert (first.bill_no, second.bill_no, branch.bill_no) == ("SALE0001", "SALE0002", "SALE0001")

    def test_insufficient_stock_writes_nothing(self, db_session, ctx_main, stocked_product, second_product):
        receive(ctx_main, second_product, 1)
        body = {"items": [
            {"product_id": stocked_product.id, "quantity": 2},
            {"product_id": second_product.id, "quantity": 5},
        ]}

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(ctx_main, body)

        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).filter_by(type="OUT").count() == 0
        assert stocked_product.current_stock == 100
        # The failed sale did not consume a bill number
        assert sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale.bill_no == "SALE0001"

    def test_payment_status(self, db_session, ctx_main, stocked_product):
        paid = sales_service.create_sale(ctx_main, cart(stocked_product, 1, paid_amount_cents=3766)).sale
        partial = sales_service.create_sale(ctx_main, cart(stocked_product, 1, paid_amount_cents=1000)).sale
        over = sales_service.create_sale(ctx_main, cart(stocked_product, 1, paid_amount_cents=4000)).sale

        # 3333 + 433 HST = 3766
        assert paid.net_amount_cents == 3766
        assert (paid.payment_status, paid.due_amount_cents) == ("PAID", 0)
        assert (partial.payment_status, partial.due_amount_cents) == ("PARTIAL", 2766)
        assert (over.payment_status, over.due_amount_cents) == ("PAID", -234)

    def test_discounts(self, db_session, ctx_main, stocked_product):
        body = {
            "items": [{"product_id": stocked_product.id, "quantity": 3, "discount_cents": 999}],
            "bill_discount_cents": 300,
        }
        sale = sales_service.create_sale(ctx_main, body).sale

        assert sale.items[0].line_total_cents == 11299 - 999
        assert sale.gross_amount_cents == 11299
        assert sale.discount_cents == 1299
        assert sale.net_amount_cents == 10000

    def test_discount_cannot_exceed_line(self, db_session, ctx_main, stocked_product):
        body = {"items": [{"product_id": stocked_product.id, "quantity": 1, "discount_cents": 3334}]}
        with pytest.raises(ValidationError):
            sales_service.create_sale(ctx_main, body)

    def test_rate_override(self, db_session, ctx_main, stocked_product):
        body = {"items": [{"product_id": stocked_product.id, "quantity": 2, "rate_cents": 1000}]}
        item = sales_service.create_sale(ctx_main, body).sale.items[0]
        assert item.subtotal_cents == 2000
        assert item.hst_cents == 260

    def test_tax_disabled(self, db_session, ctx_main, site_main, stocked_product):
        tax_service.toggle_tax(site_main.id, False)
        sale = sales_service.create_sale(ctx_main, cart(stocked_product)).sale
        assert sale.items[0].tax_cents == 0
        assert sale.net_amount_cents == 9999

    def test_tax_snapshot_survives_province_change(self, db_session, ctx_main, site_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product)).sale
        tax_service.update_tax_province(site_main.id, "AB")

        reloaded = sales_service.get_sale(ctx_main, sale.id)
        assert reloaded.items[0].hst_cents == 1300
        assert Decimal(reloaded.items[0].gst_rate) == Decimal("0")

    def test_empty_cart(self, db_session, ctx_main):
        with pytest.raises(ValidationError):
            sales_service.create_sale(ctx_main, {"items": []})

    def test_foreign_product(self, db_session, ctx_foreign, stocked_product):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(ctx_foreign, cart(stocked_product, 1))

    def test_sale_from_batch(self, db_session, ctx_main, product):
        batch = receive(ctx_main, product, 10, batch_number="LOT-7")
        body = {"items": [{"product_id": product.id, "quantity": 4, "batch_id": batch.id}]}

        sale = sales_service.create_sale(ctx_main, body).sale

        assert sale.items[0].batch_number == "LOT-7"
        db_session.refresh(batch)
        assert batch.remaining_qty == 6
        assert product.current_stock == 6

    def test_batch_must_hold_product(self, db_session, ctx_main, product, second_product):
        batch = receive(ctx_main, second_product, 10)
        receive(ctx_main, product, 10)
        body = {"items": [{"product_id": product.id, "quantity": 1, "batch_id": batch.id}]}

        with pytest.raises(SaleError):
            sales_service.create_sale(ctx_main, body)


class TestSaleLoyalty:

    def test_points_earned_on_net(self, db_session, ctx_main, stocked_product):
        result = sales_service.create_sale(ctx_main, cart(stocked_product, customer_phone=PHONE))

        assert result.points_earned == 112
        assert result.loyalty_errors == []
        account = loyalty_service.get_account_by_phone(ctx_main, PHONE)
        assert account.current_points == 112

    def test_discount_reward_applied(self, db_session, ctx_main, stocked_product, discount_reward):
        loyalty_service.earn_points(ctx_main, PHONE, 12000)

        result = sales_service.create_sale(ctx_main, cart(
            stocked_product, customer_phone=PHONE, reward={"reward_id": discount_reward.id},
        ))
        sale = result.sale

        assert sale.reward_discount_cents == 500
        assert sale.net_amount_cents == 10799
        assert result.redemption is not None
        assert result.redemption.discount_applied_cents == 500
        assert result.redemption.sale_id == sale.id
        assert result.points_earned == 107

        account = loyalty_service.get_account_by_phone(ctx_main, PHONE)
        assert account.current_points == 120 - 50 + 107

    def test_reward_precheck_blocks_sale(self, db_session, ctx_main, stocked_product, discount_reward):
        loyalty_service.earn_points(ctx_main, PHONE, 1000)

        with pytest.raises(InsufficientPointsError):
            sales_service.create_sale(ctx_main, cart(
                stocked_product, customer_phone=PHONE, reward={"reward_id": discount_reward.id},
            ))

        assert db_session.query(Sale).count() == 0
        assert stocked_product.current_stock == 100

    def test_reward_requires_known_account(self, db_session, ctx_main, stocked_product, discount_reward):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(ctx_main, cart(
                stocked_product, customer_phone="4160000000", reward={"reward_id": discount_reward.id},
            ))

    def test_product_reward_adds_free_line(self, db_session, ctx_main, stocked_product, second_product):
        receive(ctx_main, second_product, 5)
        reward = loyalty_service.create_reward(ctx_main, {
            "name": "Free ibuprofen", "reward_type": "PRODUCT", "points_required": 10,
            "product_id": second_product.id, "product_qty": 2,
        })
        loyalty_service.earn_points(ctx_main, PHONE, 5000)
        account = loyalty_service.get_account_by_phone(ctx_main, PHONE)

        result = sales_service.create_sale(ctx_main, cart(
            stocked_product, 1, customer_phone=PHONE, reward={"reward_id": reward.id, "account_id": account.id},
        ))

        reward_line = [i for i in result.sale.items if i.is_reward_item][0]
        assert reward_line.quantity == 2
        assert reward_line.line_total_cents == 0
        assert second_product.current_stock == 3
        assert result.redemption.discount_applied_cents == 0

    def test_product_reward_out_of_stock(self, db_session, ctx_main, stocked_product, second_product):
        reward = loyalty_service.create_reward(ctx_main, {
            "name": "Free ibuprofen", "reward_type": "PRODUCT", "points_required": 10,
            "product_id": second_product.id,
        })
        loyalty_service.earn_points(ctx_main, PHONE, 5000)

        with pytest.raises(SaleError):
            sales_service.create_sale(ctx_main, cart(
                stocked_product, 1, customer_phone=PHONE, reward={"reward_id": reward.id},
            ))
        assert db_session.query(RoyaltyRedemption).count() == 0


class TestUpdateSale:

    def test_increase_quantity(self, db_session, ctx_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 3)).sale
        item_id = sale.items[0].id

        updated = sales_service.update_sale(
            ctx_main, sale.id, {"items": [{"id": item_id, "quantity": 5}]}, "Customer added two"
        )

        assert updated.is_edited is True
        assert updated.edit_reason == "Customer added two"
        assert updated.items[0].subtotal_cents == 16665
        assert updated.items[0].hst_cents == 2166
        assert updated.net_amount_cents == 18831
        assert stocked_product.current_stock == 95

        adjustment = db_session.query(StockMovement).filter_by(sale_id=sale.id, type="ADJUSTMENT").one()
        assert adjustment.quantity_delta == -2
        assert adjustment.remark == f"Bill {sale.bill_no} edited: Customer added two"

    def test_decrease_restores_stock_and_batch(self, db_session, ctx_main, product):
        batch = receive(ctx_main, product, 10)
        sale = sales_service.create_sale(ctx_main, {
            "items": [{"product_id": product.id, "quantity": 6, "batch_id": batch.id}],
        }).sale

        sales_service.update_sale(ctx_main, sale.id, {"items": [{"id": sale.items[0].id, "quantity": 2}]}, "Returned 4")

        db_session.refresh(batch)
        assert batch.remaining_qty == 8
        assert product.current_stock == 8

    def test_edit_uses_frozen_rates(self, db_session, ctx_main, site_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        tax_service.update_tax_province(site_main.id, "AB")

        updated = sales_service.update_sale(
            ctx_main, sale.id, {"items": [{"id": sale.items[0].id, "quantity": 2}]}, "Fix quantity"
        )
        assert updated.items[0].hst_cents == 867
        assert updated.items[0].gst_cents == 0

    def test_edit_beyond_stock_refused(self, db_session, ctx_main, product):
        receive(ctx_main, product, 3)
        sale = sales_service.create_sale(ctx_main, cart(product, 2)).sale

        with pytest.raises(InsufficientStockError):
            sales_service.update_sale(ctx_main, sale.id, {"items": [{"id": sale.items[0].id, "quantity": 4}]}, "More")

        reloaded = sales_service.get_sale(ctx_main, sale.id)
        assert reloaded.items[0].quantity == 2
        assert reloaded.is_edited is False

    def test_reason_required(self, db_session, ctx_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        with pytest.raises(ValidationError):
            sales_service.update_sale(ctx_main, sale.id, {"bill_discount_cents": 10}, "")

    def test_bill_discount_only(self, db_session, ctx_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 1, paid_amount_cents=3766)).sale
        updated = sales_service.update_sale(ctx_main, sale.id, {"bill_discount_cents": 766}, "Loyal customer")

        assert updated.net_amount_cents == 3000
        assert updated.due_amount_cents == -766
        assert updated.payment_status == "PAID"

    def test_edit_history(self, db_session, ctx_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        sales_service.update_sale(ctx_main, sale.id, {"items": [{"id": sale.items[0].id, "quantity": 3}]}, "Typo")

        history = sales_service.sale_edit_history(ctx_main, sale.id)
        assert history["is_edited"] is True
        assert history["edit_reason"] == "Typo"
        assert [m["quantity_delta"] for m in history["adjustments"]] == [-2]


def return_cart(product, quantity=2, bill_no="SALE0001", **extra):
    body = cart(product, quantity, bill_type="RETURN", return_for_bill_no=bill_no, return_reason="Damaged")
    body.update(extra)
    return body


class TestReturnBills:

    def test_return_credits_stock(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))

        result = sales_service.create_sale(ctx_main, return_cart(stocked_product, paid_amount_cents=7533))
        ret = result.sale

        assert ret.bill_no == "SALE0002"
        assert ret.bill_type == "RETURN"
        assert ret.return_for_bill_no == "SALE0001"
        assert ret.return_reason == "Damaged"
        assert ret.items[0].rate_cents == 3333
        assert ret.items[0].hst_cents == 867
        assert ret.net_amount_cents == 7533
        assert ret.payment_status == "REFUNDED"
        assert stocked_product.current_stock == 99

        movement = db_session.query(StockMovement).filter_by(sale_id=ret.id).one()
        assert movement.type == "RETURN"
        assert movement.quantity_delta == 2
        assert movement.location == "PHARMACY"
        assert movement.remark == "Return SALE0002 against SALE0001: Damaged"

    def test_original_and_reason_required(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))

        with pytest.raises(ValidationError) as exc:
            sales_service.create_sale(ctx_main, return_cart(stocked_product, return_for_bill_no=None))
        assert exc.value.field == "return_for_bill_no"

        with pytest.raises(ValidationError) as exc:
            sales_service.create_sale(ctx_main, return_cart(stocked_product, return_reason=" "))
        assert exc.value.field == "return_reason"

    def test_unknown_original_bill(self, db_session, ctx_main, stocked_product):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(ctx_main, return_cart(stocked_product, bill_no="SALE0042"))
        assert stocked_product.current_stock == 100

    def test_cannot_return_more_than_sold(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))
        sales_service.create_sale(ctx_main, return_cart(stocked_product, 2))

        with pytest.raises(SaleError) as exc:
            sales_service.create_sale(ctx_main, return_cart(stocked_product, 2))

        assert exc.value.details == {"product_id": stocked_product.id, "requested": 2, "returnable": 1}
        assert stocked_product.current_stock == 99
        assert db_session.query(Sale).count() == 2

    def test_product_not_on_bill(self, db_session, ctx_main, stocked_product, second_product):
        receive(ctx_main, second_product, 5)
        sales_service.create_sale(ctx_main, cart(stocked_product))

        with pytest.raises(SaleError) as exc:
            sales_service.create_sale(ctx_main, return_cart(second_product, 1))
        assert exc.value.details["returnable"] == 0
        assert second_product.current_stock == 5

    def test_return_against_a_return_refused(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))
        sales_service.create_sale(ctx_main, return_cart(stocked_product, 1))

        with pytest.raises(SaleError):
            sales_service.create_sale(ctx_main, return_cart(stocked_product, 1, bill_no="SALE0002"))

    def test_return_keeps_original_rates(self, db_session, ctx_main, site_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))
        tax_service.update_tax_province(site_main.id, "QC")

        item = sales_service.create_sale(ctx_main, return_cart(stocked_product, 1)).sale.items[0]

        assert Decimal(item.hst_rate) == Decimal("13")
        assert Decimal(item.qst_rate) == Decimal("0")
        assert item.hst_cents == 433

    def test_return_restores_batch(self, db_session, ctx_main, product):
        batch = receive(ctx_main, product, 10, batch_number="LOT-7")
        sales_service.create_sale(ctx_main, {"items": [{"product_id": product.id, "quantity": 4, "batch_id": batch.id}]})

        ret = sales_service.create_sale(ctx_main, return_cart(product, 3)).sale

        assert ret.items[0].batch_number == "LOT-7"
        db_session.refresh(batch)
        assert batch.remaining_qty == 9
        assert product.current_stock == 9

    def test_return_skips_loyalty(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product, customer_phone=PHONE))

        result = sales_service.create_sale(ctx_main, return_cart(stocked_product, customer_phone=PHONE))

        assert result.points_earned == 0
        assert loyalty_service.get_account_by_phone(ctx_main, PHONE).current_points == 112

    def test_reward_claim_on_return_rejected(self, db_session, ctx_main, stocked_product, discount_reward):
        with pytest.raises(ValidationError) as exc:
            sales_service.create_sale(ctx_main, return_cart(
                stocked_product, customer_phone=PHONE, reward={"reward_id": discount_reward.id},
            ))
        assert exc.value.field == "reward"

    def test_return_bill_not_editable(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))
        ret = sales_service.create_sale(ctx_main, return_cart(stocked_product, 2)).sale

        with pytest.raises(SaleError):
            sales_service.update_sale(ctx_main, ret.id, {"items": [{"id": ret.items[0].id, "quantity": 1}]}, "Typo")
        assert stocked_product.current_stock == 99


class TestSaleQueries:

    def test_list_and_filter(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product, 1, customer_phone=PHONE, paid_amount_cents=3766))
        sales_service.create_sale(ctx_main, cart(stocked_product, 1))

        sales, total = sales_service.list_sales(ctx_main)
        assert total == 2
        assert [s.bill_no for s in sales] == ["SALE0002", "SALE0001"]

        paid, paid_total = sales_service.list_sales(ctx_main, payment_status="paid")
        assert paid_total == 1
        assert paid[0].customer_phone == PHONE

        by_phone, _ = sales_service.list_sales(ctx_main, customer_phone=PHONE)
        assert len(by_phone) == 1

    def test_list_pagination(self, db_session, ctx_main, stocked_product):
        for _ in range(3):
            sales_service.create_sale(ctx_main, cart(stocked_product, 1))
        page, total = sales_service.list_sales(ctx_main, limit=2, offset=2)
        assert total == 3
        assert [s.bill_no for s in page] == ["SALE0001"]

    def test_bad_status_filter(self, db_session, ctx_main):
        with pytest.raises(ValidationError):
            sales_service.list_sales(ctx_main, payment_status="SETTLED")

    def test_lookup_by_bill_no(self, db_session, ctx_main, ctx_foreign, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        assert sales_service.get_sale_by_bill_no(ctx_main, "sale0001").id == sale.id
        with pytest.raises(NotFoundError):
            sales_service.get_sale_by_bill_no(ctx_foreign, "SALE0001")

    def test_items_ordered_by_line(self, db_session, ctx_main, stocked_product, second_product):
        receive(ctx_main, second_product, 5)
        sale = sales_service.create_sale(ctx_main, {"items": [
            {"product_id": stocked_product.id, "quantity": 1},
            {"product_id": second_product.id, "quantity": 1},
        ]}).sale
        lines = db_session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.line_no).all()
        assert [line.line_no for line in lines] == [1, 2]
        assert [i.product_id for i in sale.items] == [stocked_product.id, second_product.id]

    def test_filter_by_bill_type(self, db_session, ctx_main, stocked_product):
        sales_service.create_sale(ctx_main, cart(stocked_product))
        sales_service.create_sale(ctx_main, return_cart(stocked_product, 1))

        returns, total = sales_service.list_sales(ctx_main, bill_type="return")
        assert total == 1
        assert returns[0].return_for_bill_no == "SALE0001"
        with pytest.raises(ValidationError):
            sales_service.list_sales(ctx_main, bill_type="VOID")

    def test_tax_summary(self, db_session, ctx_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product)).sale

        summary = sales_service.sale_tax_summary(sale)

        assert summary["subtotal_cents"] == 9999
        assert summary["hst_cents"] == 1300
        assert summary["total_cents"] == 11299
        assert summary["lines"] == [{"label": "HST (13%)", "amount_cents": 1300}]

    def test_tax_summary_uses_frozen_rates(self, db_session, ctx_main, site_main, stocked_product):
        sale = sales_service.create_sale(ctx_main, cart(stocked_product, 1)).sale
        tax_service.update_tax_province(site_main.id, "AB")
        sales_service.create_sale(ctx_main, cart(stocked_product, 1))
        ret = sales_service.create_sale(ctx_main, return_cart(stocked_product, 1)).sale

        assert sales_service.sale_tax_summary(ret)["lines"] == [{"label": "HST (13%)", "amount_cents": 433}]
        assert sales_service.sale_tax_summary(sale)["tax_cents"] == 433
