# backend/stockpoint/routes/loyalty.py
"""
Loyalty (royalty points) routes for one site.
"""
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import require_site_context
from ..services import loyalty_service, sales_service
from ..validation import coerce_int
from .errors import DOMAIN_ERRORS, error_response, server_error


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/sites/<site_slug>/loyalty")


@loyalty_bp.get("/config")
@require_site_context
def get_config(ctx):
    config = loyalty_service.get_royalty_config(ctx.site_id)
    return jsonify({"config": config.to_dict()}), 200


@loyalty_bp.put("/config")
@require_site_context
def update_config(ctx):
    payload = request.get_json(silent=True) or {}
    try:
        config = loyalty_service.update_royalty_config(ctx.site_id, payload)
        return jsonify({"config": config.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@loyalty_bp.get("/accounts")
@require_site_context
def find_account(ctx):
    """Look up an account by ?phone=; includes the rewards it can redeem now."""
    account = loyalty_service.get_account_by_phone(ctx, request.args.get("phone"))
    if account is None:
        return jsonify({"account": None, "eligible_rewards": []}), 200
    rewards = loyalty_service.eligible_rewards(ctx, account)
    return jsonify({
        "account": account.to_dict(),
        "eligible_rewards": [r.to_dict() for r in rewards],
    }), 200


@loyalty_bp.get("/accounts/<int:account_id>/transactions")
@require_site_context
def account_transactions(ctx, account_id: int):
    try:
        rows = loyalty_service.account_transactions(ctx, account_id)
        return jsonify({"items": [t.to_dict() for t in rows], "count": len(rows)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@loyalty_bp.post("/earn")
@require_site_context
def earn(ctx):
    """Request body: {"phone": str, "bill_amount_cents": int, "sale_id": int?, "customer_name": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        sale = None
        if data.get("sale_id") is not None:
            sale = sales_service.get_sale(ctx, coerce_int(data["sale_id"], "sale_id"))
        points = loyalty_service.earn_points(
            ctx,
            data.get("phone"),
            data.get("bill_amount_cents"),
            sale=sale,
            customer_name=data.get("customer_name"),
        )
        return jsonify({"points_awarded": points}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to award points")


@loyalty_bp.post("/redeem")
@require_site_context
def redeem(ctx):
    """
    Request body: {"account_id": int, "reward_id": int, "sale_id": int?}

    A DISCOUNT reward is valued against the named bill's own amounts.
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = None
        if data.get("sale_id") is not None:
            sale = sales_service.get_sale(ctx, coerce_int(data["sale_id"], "sale_id"))
        redemption = loyalty_service.redeem_reward(
            ctx,
            coerce_int(data.get("account_id"), "account_id"),
            coerce_int(data.get("reward_id"), "reward_id"),
            sale=sale,
        )
        return jsonify({
            "redemption_id": redemption.id,
            "discount_applied_cents": redemption.discount_applied_cents,
            "redemption": redemption.to_dict(),
        }), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to redeem reward")


@loyalty_bp.get("/rewards")
@require_site_context
def list_rewards(ctx):
    rewards = loyalty_service.list_rewards(ctx, request.args.get("status"))
    return jsonify({"items": [r.to_dict() for r in rewards], "count": len(rewards)}), 200


@loyalty_bp.post("/rewards")
@require_site_context
def create_reward(ctx):
    payload = request.get_json(silent=True) or {}
    try:
        reward = loyalty_service.create_reward(ctx, payload)
        return jsonify({"reward": reward.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to create reward")


@loyalty_bp.patch("/rewards/<int:reward_id>")
@require_site_context
def update_reward(ctx, reward_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        reward = loyalty_service.update_reward(ctx, reward_id, payload)
        return jsonify({"reward": reward.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to update reward")


@loyalty_bp.post("/rewards/<int:reward_id>/toggle")
@require_site_context
def toggle_reward(ctx, reward_id: int):
    try:
        reward = loyalty_service.toggle_reward_status(ctx, reward_id)
        return jsonify({"reward": reward.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@loyalty_bp.delete("/rewards/<int:reward_id>")
@require_site_context
def delete_reward(ctx, reward_id: int):
    try:
        loyalty_service.delete_reward(ctx, reward_id)
        return jsonify({"deleted": True}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
