# Overview: Sale orchestration; bill creation, stock decrement, tax freeze and loyalty hooks.

"""
Sale lifecycle:

create_sale
    1. Validate the cart and pre-check any claimed reward (read-only).
    2. Freeze a tax snapshot per line from the site's current rates.
    3. Compute totals:
           gross    = sum(line subtotal + line tax)
           discount = item discounts + bill discount + reward discount
           net      = max(0, gross - discount)
           due      = net - paid
    4. One transaction: bill number, sale, items, OUT movements (and batch
       decrements when a batch is named). A PRODUCT reward adds a zero-priced
       line that takes stock like any other.
    5. After commit, separately: earn points on net, then redeem the claimed
       reward. A failure here is logged and reported on the result; the
       committed bill stands.

Return bills (bill_type RETURN)
    Reference an existing SALE bill of the site and carry a reason. Each
    product may be returned up to the quantity sold on that bill less what
    earlier returns already took back. Lines reuse the original line's rate,
    tax rates and batch; stock is credited through RETURN movements. No
    loyalty runs on a return, and a fully refunded return is REFUNDED.

update_sale
    Quantity/discount corrections on existing lines, recomputed with each
    line's frozen tax rates. Stock differences are written as ADJUSTMENT
    movements; totals are recomputed against the original paid amount.
    Return bills are not editable.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext
from ..extensions import db
from ..models import Sale, SaleItem, StockMovement
from ..models.loyalty import REWARD_DISCOUNT, REWARD_PRODUCT
from ..models.sales import (
    BILL_RETURN,
    BILL_SALE,
    BILL_TYPES,
    PAYMENT_PAID,
    PAYMENT_PARTIAL,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    PAYMENT_UNPAID,
)
from ..models.stock import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_RETURN, LOCATION_PHARMACY
from ..time_utils import day_range, utcnow, to_utc_z
from ..validation import NotFoundError, ValidationError, coerce_int, require_text
from . import loyalty_service, tax_service
from .concurrency import atomic
from .document_service import DOCUMENT_SALE, next_document_number
from .stock_service import (
    _apply_stock_delta,
    _consume_batch,
    _restore_batch,
    _write_movement,
    get_site_product,
)
from .tax_rates import LineTax, RateSet, calculate_line_tax, sum_line_taxes, tax_lines


class SaleError(Exception):
    """Raised when a sale violates a business rule."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class SaleResult:
    sale: Sale
    points_earned: int = 0
    redemption: object | None = None
    loyalty_errors: list | None = None

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "tax_summary": sale_tax_summary(self.sale),
            "points_earned": self.points_earned,
            "redemption": self.redemption.to_dict() if self.redemption else None,
            "loyalty_errors": self.loyalty_errors or [],
        }


def payment_status_for(net_cents: int, paid_cents: int, is_return: bool = False) -> str:
    if paid_cents >= net_cents:
        return PAYMENT_REFUNDED if is_return else PAYMENT_PAID
    if paid_cents > 0:
        return PAYMENT_PARTIAL
    return PAYMENT_UNPAID


def _non_negative(value, field: str, default: int = 0) -> int:
    if value is None:
        return default
    value = coerce_int(value, field)
    if value < 0:
        raise ValidationError(f"{field} must be >= 0", field)
    return value


def _parse_cart(cart: dict) -> dict:
    if not isinstance(cart, dict):
        raise ValidationError("Invalid JSON payload")
    items = cart.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", "items")

    parsed_items = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object", "items")
        quantity = coerce_int(raw.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0", "quantity")
        parsed_items.append({
            "product_id": coerce_int(raw.get("product_id"), "product_id"),
            "quantity": quantity,
            "rate_cents": _non_negative(raw.get("rate_cents"), "rate_cents", default=None),
            "discount_cents": _non_negative(raw.get("discount_cents"), "discount_cents"),
            "batch_id": coerce_int(raw["batch_id"], "batch_id") if raw.get("batch_id") is not None else None,
        })

    reward = cart.get("reward")
    claim = None
    if reward:
        if not isinstance(reward, dict) or reward.get("reward_id") is None:
            raise ValidationError("reward.reward_id is required", "reward")
        claim = {
            "reward_id": coerce_int(reward["reward_id"], "reward_id"),
            "account_id": coerce_int(reward["account_id"], "account_id") if reward.get("account_id") is not None else None,
        }

    phone = str(cart.get("customer_phone") or "").strip() or None
    if claim and claim["account_id"] is None and not phone:
        raise ValidationError("customer_phone or reward.account_id is required to redeem", "customer_phone")

    bill_type = str(cart.get("bill_type") or BILL_SALE).strip().upper()
    if bill_type not in BILL_TYPES:
        raise ValidationError(f"bill_type must be one of {', '.join(BILL_TYPES)}", "bill_type")
    return_for_bill_no = return_reason = None
    if bill_type == BILL_RETURN:
        return_for_bill_no = require_text(cart.get("return_for_bill_no"), "return_for_bill_no").upper()
        return_reason = require_text(cart.get("return_reason"), "return_reason")
        if claim:
            raise ValidationError("Rewards cannot be claimed on a return bill", "reward")

    return {
        "bill_type": bill_type,
        "return_for_bill_no": return_for_bill_no,
        "return_reason": return_reason,
        "items": parsed_items,
        "customer_name": str(cart.get("customer_name") or "").strip() or None,
        "customer_phone": phone,
        "remark": str(cart.get("remark") or "").strip() or None,
        "bill_discount_cents": _non_negative(cart.get("bill_discount_cents"), "bill_discount_cents"),
        "paid_amount_cents": _non_negative(cart.get("paid_amount_cents"), "paid_amount_cents"),
        "reward": claim,
    }


def _precheck_reward(ctx: RequestContext, claim: dict, phone: str | None):
    if claim["account_id"] is not None:
        account = loyalty_service.get_account(ctx, claim["account_id"])
    else:
        account = loyalty_service.get_account_by_phone(ctx, phone)
        if account is None:
            raise NotFoundError("Royalty account not found")
    reward = loyalty_service.get_reward(ctx, claim["reward_id"])
    loyalty_service.check_redeemable(ctx, account, reward)
    if reward.reward_type == REWARD_PRODUCT:
        product = get_site_product(ctx.site_id, reward.product_id)
        if product.current_stock < reward.product_qty:
            raise SaleError(
                f"Reward product {product.name} is out of stock",
                {"product_id": product.id, "requested": reward.product_qty, "available": product.current_stock},
            )
    return account, reward


def _batch_number(site_id: int, batch_id: int, product_id: int) -> str | None:
    movement = (
        db.session.query(StockMovement)
        .filter_by(site_id=site_id, batch_id=batch_id, product_id=product_id, type=MOVEMENT_IN)
        .order_by(StockMovement.id.asc())
        .first()
    )
    if movement is None:
        raise SaleError(
            "Batch does not contain this product",
            {"batch_id": batch_id, "product_id": product_id},
        )
    return movement.batch_number


def _returnable_bill(ctx: RequestContext, bill_no: str, lines: list[dict]) -> tuple[Sale, dict[int, SaleItem]]:
    """
    The SALE bill being returned against, plus its first line per product.

    Raises SaleError when a product was not on the bill or the requested
    quantity exceeds what is still returnable.
    """
    original = db.session.query(Sale).filter_by(site_id=ctx.site_id, bill_no=bill_no).first()
    if original is None:
        raise NotFoundError(f"Original bill {bill_no} not found")
    if original.is_return:
        raise SaleError("Cannot return against a return bill", {"bill_no": bill_no})

    sold: dict[int, int] = {}
    source_lines: dict[int, SaleItem] = {}
    for item in original.items:
        if item.is_reward_item:
            continue
        sold[item.product_id] = sold.get(item.product_id, 0) + item.quantity
        source_lines.setdefault(item.product_id, item)

    returned: dict[int, int] = {}
    earlier = (
        db.session.query(SaleItem.product_id, SaleItem.quantity)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(
            Sale.site_id == ctx.site_id,
            Sale.bill_type == BILL_RETURN,
            Sale.return_for_bill_no == original.bill_no,
        )
    )
    for product_id, quantity in earlier:
        returned[product_id] = returned.get(product_id, 0) + quantity

    requested: dict[int, int] = {}
    for line in lines:
        requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]
    for product_id, quantity in requested.items():
        returnable = sold.get(product_id, 0) - returned.get(product_id, 0)
        if quantity > returnable:
            raise SaleError(
                f"Return exceeds the quantity sold on bill {original.bill_no}",
                {"product_id": product_id, "requested": quantity, "returnable": max(returnable, 0)},
            )
    return original, source_lines


def _item_rates(item: SaleItem) -> RateSet:
    return RateSet(gst=item.gst_rate, hst=item.hst_rate, pst=item.pst_rate, qst=item.qst_rate)


def _line_tax(item: SaleItem) -> LineTax:
    return LineTax(
        subtotal_cents=item.subtotal_cents,
        gst_cents=item.gst_cents,
        hst_cents=item.hst_cents,
        pst_cents=item.pst_cents,
        qst_cents=item.qst_cents,
    )


def sale_tax_summary(sale: Sale) -> dict:
    """Bill-level tax totals and receipt lines, grouped by each line's frozen rates."""
    groups: dict[RateSet, list[LineTax]] = {}
    for item in sale.items:
        groups.setdefault(_item_rates(item), []).append(_line_tax(item))
    lines = []
    for rates, line_taxes in groups.items():
        lines.extend(tax_lines(rates, sum_line_taxes(line_taxes)))
    summary = sum_line_taxes(_line_tax(item) for item in sale.items).to_dict()
    summary["lines"] = lines
    return summary


def _apply_line_amounts(item: SaleItem, rates: RateSet) -> None:
    """(Re)compute a line's frozen tax and totals from its rate, quantity and discount."""
    line_tax = calculate_line_tax(item.rate_cents, item.quantity, rates)
    if item.discount_cents > line_tax.subtotal_cents:
        raise ValidationError("discount_cents cannot exceed the line subtotal", "discount_cents")
    item.gst_rate = rates.gst
    item.hst_rate = rates.hst
    item.pst_rate = rates.pst
    item.qst_rate = rates.qst
    item.subtotal_cents = line_tax.subtotal_cents
    item.gst_cents = line_tax.gst_cents
    item.hst_cents = line_tax.hst_cents
    item.pst_cents = line_tax.pst_cents
    item.qst_cents = line_tax.qst_cents
    item.tax_cents = line_tax.tax_cents
    item.line_total_cents = line_tax.total_cents - item.discount_cents


def _apply_totals(sale: Sale, items: list[SaleItem]) -> None:
    gross = sum_line_taxes(_line_tax(i) for i in items).total_cents
    item_discounts = sum(i.discount_cents for i in items)
    sale.gross_amount_cents = gross
    sale.discount_cents = item_discounts + sale.bill_discount_cents + sale.reward_discount_cents
    sale.net_amount_cents = max(0, gross - sale.discount_cents)
    sale.due_amount_cents = sale.net_amount_cents - sale.paid_amount_cents
    sale.payment_status = payment_status_for(sale.net_amount_cents, sale.paid_amount_cents, sale.is_return)


def create_sale(ctx: RequestContext, cart: dict) -> SaleResult:
    """
    Create a bill and take its stock in one transaction, then run loyalty.

    Raises:
        ValidationError, NotFoundError: bad cart or unknown product/batch/reward
        InsufficientStockError: a line exceeds stock; nothing was written
        LoyaltyError / InsufficientPointsError: the claimed reward fails the pre-check
        SaleError: a return exceeds what is still returnable on the original bill
    """
    data = _parse_cart(cart)

    account = reward = None
    if data["reward"]:
        account, reward = _precheck_reward(ctx, data["reward"], data["customer_phone"])

    is_return = data["bill_type"] == BILL_RETURN

    with atomic():
        rates = tax_service.rates_for_site(ctx.site_id)

        source_lines: dict[int, SaleItem] = {}
        if is_return:
            _, source_lines = _returnable_bill(ctx, data["return_for_bill_no"], data["items"])

        items: list[SaleItem] = []
        stock_lines = []
        for line_no, line in enumerate(data["items"], start=1):
            product = get_site_product(ctx.site_id, line["product_id"])
            source = source_lines.get(product.id)
            batch_id = line["batch_id"]
            if batch_id is None and source is not None:
                batch_id = source.batch_id
            batch_number = None
            if batch_id is not None:
                batch_number = _batch_number(ctx.site_id, batch_id, product.id)
            default_rate = source.rate_cents if source is not None else product.sale_rate_cents
            item = SaleItem(
                line_no=line_no,
                product_id=product.id,
                batch_id=batch_id,
                product_name=product.name,
                batch_number=batch_number,
                quantity=line["quantity"],
                mrp_cents=source.mrp_cents if source is not None else product.mrp_cents,
                rate_cents=line["rate_cents"] if line["rate_cents"] is not None else default_rate,
                discount_cents=line["discount_cents"],
            )
            _apply_line_amounts(item, _item_rates(source) if source is not None else rates)
            items.append(item)
            stock_lines.append((product, item))

        if reward is not None and reward.reward_type == REWARD_PRODUCT:
            product = get_site_product(ctx.site_id, reward.product_id)
            item = SaleItem(
                line_no=len(items) + 1,
                product_id=product.id,
                product_name=product.name,
                is_reward_item=True,
                quantity=reward.product_qty,
                mrp_cents=product.mrp_cents,
                rate_cents=0,
                discount_cents=0,
            )
            _apply_line_amounts(item, rates)
            items.append(item)
            stock_lines.append((product, item))

        gross = sum_line_taxes(_line_tax(i) for i in items).total_cents
        reward_base = gross - sum(i.discount_cents for i in items)
        reward_discount = 0
        if reward is not None and reward.reward_type == REWARD_DISCOUNT:
            reward_discount = loyalty_service.compute_reward_discount(reward, reward_base)

        bill_no = next_document_number(site_id=ctx.site_id, document_type=DOCUMENT_SALE, prefix="SALE")
        sale = Sale(
            site_id=ctx.site_id,
            bill_no=bill_no,
            bill_type=data["bill_type"],
            return_for_bill_no=data["return_for_bill_no"],
            return_reason=data["return_reason"],
            customer_name=data["customer_name"],
            customer_phone=data["customer_phone"],
            remark=data["remark"],
            bill_discount_cents=data["bill_discount_cents"],
            reward_discount_cents=reward_discount,
            paid_amount_cents=data["paid_amount_cents"],
            created_by_user_id=ctx.user_id,
            created_at=utcnow(),
        )
        _apply_totals(sale, items)
        sale.items = items
        db.session.add(sale)
        db.session.flush()

        for product, item in stock_lines:
            if is_return:
                if item.batch_id is not None:
                    _restore_batch(ctx.site_id, item.batch_id, item.quantity)
                _apply_stock_delta(product, item.quantity)
                _write_movement(
                    ctx=ctx,
                    product=product,
                    movement_type=MOVEMENT_RETURN,
                    quantity_delta=item.quantity,
                    batch_id=item.batch_id,
                    location=LOCATION_PHARMACY,
                    pricing={"mrp_cents": item.mrp_cents, "sale_rate_cents": item.rate_cents},
                    batch_number=item.batch_number,
                    remark=f"Return {bill_no} against {sale.return_for_bill_no}: {sale.return_reason}",
                    sale_id=sale.id,
                )
                continue
            if item.batch_id is not None:
                _consume_batch(ctx.site_id, item.batch_id, item.quantity)
            _apply_stock_delta(product, -item.quantity)
            _write_movement(
                ctx=ctx,
                product=product,
                movement_type=MOVEMENT_OUT,
                quantity_delta=-item.quantity,
                batch_id=item.batch_id,
                pricing={"mrp_cents": item.mrp_cents, "sale_rate_cents": item.rate_cents},
                batch_number=item.batch_number,
                remark=f"Sale {bill_no}",
                sale_id=sale.id,
            )

    current_app.logger.info(
        "%s %s created: site=%s lines=%s net=%s status=%s",
        sale.bill_type.title(), sale.bill_no, ctx.site_id, len(items), sale.net_amount_cents, sale.payment_status,
    )

    result = SaleResult(sale=sale, loyalty_errors=[])
    if is_return:
        return result

    if sale.customer_phone:
        try:
            result.points_earned = loyalty_service.earn_points(
                ctx, sale.customer_phone, sale.net_amount_cents, sale=sale, customer_name=sale.customer_name,
            )
        except (loyalty_service.LoyaltyError, ValidationError, SQLAlchemyError) as exc:
            current_app.logger.warning("Points not earned for sale %s: %s", sale.bill_no, exc)
            result.loyalty_errors.append(f"Points not earned: {exc}")

    if reward is not None:
        try:
            result.redemption = loyalty_service.redeem_reward(ctx, account.id, reward.id, sale=sale)
        except (loyalty_service.LoyaltyError, NotFoundError, SQLAlchemyError) as exc:
            current_app.logger.warning("Reward redemption failed for sale %s: %s", sale.bill_no, exc)
            result.loyalty_errors.append(f"Reward not redeemed: {exc}")

    return result


def update_sale(ctx: RequestContext, sale_id: int, corrections: dict, edit_reason: str) -> Sale:
    """
    Correct line quantities/discounts (and optionally the bill discount or
    remark) on an existing bill.

    Stock differences are written as ADJUSTMENT movements tied to the sale;
    an increase is guarded against current stock like any decrement.
    """
    edit_reason = require_text(edit_reason, "edit_reason")
    if not isinstance(corrections, dict):
        raise ValidationError("Invalid JSON payload")
    line_changes = corrections.get("items") or []
    if not isinstance(line_changes, list):
        raise ValidationError("items must be a list", "items")

    with atomic():
        sale = get_sale(ctx, sale_id)
        if sale.is_return:
            raise SaleError("Return bills cannot be edited", {"bill_no": sale.bill_no})
        by_id = {item.id: item for item in sale.items}

        for i, change in enumerate(line_changes):
            if not isinstance(change, dict) or change.get("id") is None:
                raise ValidationError(f"items[{i}].id is required", "items")
            item = by_id.get(coerce_int(change["id"], "id"))
            if item is None:
                raise NotFoundError("Sale item not found")
            if item.is_reward_item:
                raise SaleError("Reward lines cannot be edited", {"item_id": item.id})

            old_qty = item.quantity
            if "quantity" in change:
                new_qty = coerce_int(change["quantity"], "quantity")
                if new_qty <= 0:
                    raise ValidationError("quantity must be > 0", "quantity")
                item.quantity = new_qty
            if "discount_cents" in change:
                item.discount_cents = _non_negative(change["discount_cents"], "discount_cents")
            _apply_line_amounts(item, _item_rates(item))

            sold_more = item.quantity - old_qty
            if sold_more == 0:
                continue
            product = get_site_product(ctx.site_id, item.product_id)
            if item.batch_id is not None:
                if sold_more > 0:
                    _consume_batch(ctx.site_id, item.batch_id, sold_more)
                else:
                    _restore_batch(ctx.site_id, item.batch_id, -sold_more)
            _apply_stock_delta(product, -sold_more)
            _write_movement(
                ctx=ctx,
                product=product,
                movement_type=MOVEMENT_ADJUSTMENT,
                quantity_delta=-sold_more,
                batch_id=item.batch_id,
                location=LOCATION_PHARMACY,
                pricing={"mrp_cents": item.mrp_cents, "sale_rate_cents": item.rate_cents},
                remark=f"Bill {sale.bill_no} edited: {edit_reason}",
                sale_id=sale.id,
            )

        if "bill_discount_cents" in corrections:
            sale.bill_discount_cents = _non_negative(corrections["bill_discount_cents"], "bill_discount_cents")
        if "remark" in corrections:
            sale.remark = str(corrections["remark"] or "").strip() or None

        _apply_totals(sale, list(sale.items))
        sale.is_edited = True
        sale.edit_reason = edit_reason
        sale.edited_at = utcnow()
        sale.edited_by_user_id = ctx.user_id

    current_app.logger.info(
        "Sale %s edited by user=%s: net=%s reason=%r",
        sale.bill_no, ctx.user_id, sale.net_amount_cents, edit_reason,
    )
    return sale


def get_sale(ctx: RequestContext, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, site_id=ctx.site_id).first()
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


def get_sale_by_bill_no(ctx: RequestContext, bill_no: str) -> Sale:
    sale = db.session.query(Sale).filter_by(bill_no=(bill_no or "").strip().upper(), site_id=ctx.site_id).first()
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    ctx: RequestContext,
    *,
    date_from=None,
    date_to=None,
    payment_status: str | None = None,
    customer_phone: str | None = None,
    bill_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    """Newest first; returns (page, total)."""
    try:
        start, end = day_range(date_from, date_to)
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates", "from")

    query = db.session.query(Sale).filter(Sale.site_id == ctx.site_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if payment_status:
        status = payment_status.upper()
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}", "payment_status")
        query = query.filter(Sale.payment_status == status)
    if customer_phone:
        query = query.filter(Sale.customer_phone == customer_phone.strip())
    if bill_type:
        kind = bill_type.upper()
        if kind not in BILL_TYPES:
            raise ValidationError(f"bill_type must be one of {', '.join(BILL_TYPES)}", "bill_type")
        query = query.filter(Sale.bill_type == kind)

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    sales = query.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(offset).limit(limit).all()
    return sales, total


def sale_edit_history(ctx: RequestContext, sale_id: int) -> dict:
    sale = get_sale(ctx, sale_id)
    adjustments = (
        db.session.query(StockMovement)
        .filter_by(site_id=ctx.site_id, sale_id=sale.id, type=MOVEMENT_ADJUSTMENT)
        .order_by(StockMovement.id.asc())
        .all()
    )
    return {
        "sale_id": sale.id,
        "bill_no": sale.bill_no,
        "created_at": to_utc_z(sale.created_at),
        "is_edited": sale.is_edited,
        "edited_at": to_utc_z(sale.edited_at),
        "edit_reason": sale.edit_reason,
        "edited_by_user_id": sale.edited_by_user_id,
        "adjustments": [m.to_dict() for m in adjustments],
    }
