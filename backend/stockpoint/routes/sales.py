# backend/stockpoint/routes/sales.py
"""
Sale (bill) routes for one site.
"""
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import require_site_context
from ..services import sales_service
from ..validation import ValidationError, coerce_int
from .errors import DOMAIN_ERRORS, error_response, server_error


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sites/<site_slug>/sales")


@sales_bp.route("", methods=["POST"])
@require_site_context
def create_sale(ctx):
    """
    Create a bill, take its stock and run loyalty accrual/redemption.
    A RETURN bill credits the stock back instead and skips loyalty.

    Request body:
    {
        "bill_type": "SALE"|"RETURN"?, "return_for_bill_no": str?, "return_reason": str?,
        "customer_name": str?, "customer_phone": str?, "remark": str?,
        "items": [{"product_id": int, "quantity": int, "rate_cents": int?,
                   "discount_cents": int?, "batch_id": int?}],
        "bill_discount_cents": int?, "paid_amount_cents": int?,
        "reward": {"reward_id": int, "account_id": int?}?
    }
    """
    cart = request.get_json(silent=True) or {}
    try:
        result = sales_service.create_sale(ctx, cart)
        body = result.to_dict()
        body["sale_id"] = result.sale.id
        body["bill_no"] = result.sale.bill_no
        return jsonify(body), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to create sale")


@sales_bp.route("/<int:sale_id>", methods=["PATCH"])
@require_site_context
def update_sale(ctx, sale_id: int):
    """
    Correct an existing bill.

    Request body:
    {
        "edit_reason": str,
        "items": [{"id": int, "quantity": int?, "discount_cents": int?}],
        "bill_discount_cents": int?, "remark": str?
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.update_sale(ctx, sale_id, data, data.get("edit_reason"))
        return jsonify({"sale": sale.to_dict(), "tax_summary": sales_service.sale_tax_summary(sale)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to update sale")


@sales_bp.route("", methods=["GET"])
@require_site_context
def list_sales(ctx):
    try:
        sales, total = sales_service.list_sales(
            ctx,
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
            payment_status=request.args.get("payment_status"),
            customer_phone=request.args.get("phone"),
            bill_type=request.args.get("bill_type"),
            limit=coerce_int(request.args.get("limit", "100"), "limit"),
            offset=coerce_int(request.args.get("offset", "0"), "offset"),
        )
    except ValidationError as e:
        return error_response(e)
    return jsonify({
        "items": [s.to_dict(include_items=False) for s in sales],
        "count": len(sales),
        "total": total,
    }), 200


@sales_bp.route("/<int:sale_id>", methods=["GET"])
@require_site_context
def get_sale(ctx, sale_id: int):
    try:
        sale = sales_service.get_sale(ctx, sale_id)
        return jsonify({"sale": sale.to_dict(), "tax_summary": sales_service.sale_tax_summary(sale)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@sales_bp.route("/<int:sale_id>/history", methods=["GET"])
@require_site_context
def sale_history(ctx, sale_id: int):
    try:
        return jsonify(sales_service.sale_edit_history(ctx, sale_id)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@sales_bp.route("/bill/<bill_no>", methods=["GET"])
@require_site_context
def get_sale_by_bill(ctx, bill_no: str):
    try:
        sale = sales_service.get_sale_by_bill_no(ctx, bill_no)
        return jsonify({"sale": sale.to_dict(), "tax_summary": sales_service.sale_tax_summary(sale)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
