# backend/stockpoint/routes/transfers.py
"""
Inter-site transfer routes. The caller's site (URL slug) is always the source.
"""
from flask import Blueprint, request, jsonify

from ..decorators import require_site_context
from ..services import transfer_service
from .errors import DOMAIN_ERRORS, error_response


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/sites/<site_slug>/transfers")


@transfers_bp.route("", methods=["POST"])
@require_site_context
def create_transfer(ctx):
    """
    Move stock to another site of the same tenant.

    Request body:
    {
        "destination_site": str (slug),
        "remark": str (optional),
        "items": [{"product_id": int, "quantity": int}]
    }

    Returns:
        201: Transfer committed
        400: Malformed request
        404: Site or product not found
        409: Rejected (CROSS_TENANT, INSUFFICIENT_STOCK, CATEGORY_MISSING, ...)
        500: Commit failed and was rolled back
    """
    data = request.get_json(silent=True) or {}
    try:
        result = transfer_service.transfer_stock(
            ctx,
            data.get("destination_site"),
            data.get("items"),
            remark=data.get("remark"),
        )
        return jsonify(result.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)


@transfers_bp.route("", methods=["GET"])
@require_site_context
def list_transfers(ctx):
    history = transfer_service.transfer_history(ctx)
    return jsonify({"items": history, "count": len(history)}), 200


@transfers_bp.route("/sites", methods=["GET"])
@require_site_context
def list_destination_sites(ctx):
    sites = transfer_service.sibling_sites(ctx)
    return jsonify({"items": [s.to_dict() for s in sites], "count": len(sites)}), 200
