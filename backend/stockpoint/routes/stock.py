# backend/stockpoint/routes/stock.py
"""
Stock ledger routes for one site.

Time semantics:
- from/to are dates (YYYY-MM-DD) and inclusive whole days.
- Responses serialize datetimes as ISO-8601 'Z' strings.
"""
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import require_site_context
from ..services import stock_service
from .errors import DOMAIN_ERRORS, error_response, server_error


stock_bp = Blueprint("stock", __name__, url_prefix="/api/sites/<site_slug>/stock")


@stock_bp.post("/in")
@require_site_context
def stock_in(ctx):
    """
    Receive stock as one batch.

    Request body:
    {
        "items": [
            {"product_id": int, "quantity": int, "location": "STORE|PHARMACY|WAREHOUSE",
             "batch_number": str?, "expiry_date": "YYYY-MM-DD"?, "mrp_cents": int?,
             "sale_rate_cents": int?, "purchase_rate_cents": int?, "remark": str?}
        ]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        batch = stock_service.record_stock_in(ctx, payload.get("items"))
        return jsonify({"batch_id": batch.id, "batch": batch.to_dict(include_movements=True)}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Stock entry failed")


@stock_bp.post("/adjust")
@require_site_context
def adjust(ctx):
    """
    Signed stock correction.

    Request body: {"product_id": int, "quantity": int (non-zero), "reason": str}
    """
    payload = request.get_json(silent=True) or {}
    try:
        movement, new_stock = stock_service.adjust_stock(
            ctx,
            payload.get("product_id"),
            payload.get("quantity"),
            payload.get("reason"),
        )
        return jsonify({
            "movement_id": movement.id,
            "movement": movement.to_dict(),
            "new_stock": new_stock,
            "negative_stock": new_stock < 0,
        }), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Stock adjustment failed")


@stock_bp.get("/by-product")
@require_site_context
def by_product(ctx):
    try:
        rows = stock_service.stock_by_product(ctx, request.args.get("from"), request.args.get("to"))
        return jsonify({"items": rows, "count": len(rows)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@stock_bp.get("/expiring")
@require_site_context
def expiring(ctx):
    try:
        rows = stock_service.expiring_batches(ctx, request.args.get("days"))
        return jsonify({"items": rows, "count": len(rows)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@stock_bp.get("/low")
@require_site_context
def low_stock(ctx):
    try:
        products = stock_service.low_stock_products(ctx, request.args.get("threshold"))
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@stock_bp.get("/batches")
@require_site_context
def batches(ctx):
    rows = stock_service.list_batches(ctx)
    return jsonify({"items": [b.to_dict(include_movements=True) for b in rows], "count": len(rows)}), 200


@stock_bp.get("/products/<int:product_id>/movements")
@require_site_context
def product_movements(ctx, product_id: int):
    try:
        rows = stock_service.movements_by_product(ctx, product_id)
        return jsonify({"items": [m.to_dict() for m in rows], "count": len(rows)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@stock_bp.get("/products/<int:product_id>/fifo")
@require_site_context
def product_fifo(ctx, product_id: int):
    try:
        rows = stock_service.fifo_batches(ctx, product_id)
        return jsonify({"items": rows, "count": len(rows)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
