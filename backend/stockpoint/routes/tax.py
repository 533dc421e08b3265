# backend/stockpoint/routes/tax.py
"""
Site tax configuration routes.
"""
from flask import Blueprint, request, jsonify

from ..decorators import require_site_context
from ..services import tax_service
from .errors import DOMAIN_ERRORS, error_response


tax_bp = Blueprint("tax", __name__, url_prefix="/api/sites/<site_slug>/tax")


@tax_bp.get("")
@require_site_context
def get_tax_config(ctx):
    config = tax_service.get_tax_config(ctx.site_id)
    return jsonify({"tax_config": config.to_dict()}), 200


@tax_bp.get("/jurisdictions")
@require_site_context
def list_jurisdictions(ctx):
    items = tax_service.list_jurisdictions()
    return jsonify({"items": items, "count": len(items)}), 200


@tax_bp.put("/province")
@require_site_context
def update_province(ctx):
    data = request.get_json(silent=True) or {}
    try:
        config = tax_service.update_tax_province(ctx.site_id, data.get("province_code"))
        return jsonify({"tax_config": config.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@tax_bp.put("/registration")
@require_site_context
def update_registration(ctx):
    data = request.get_json(silent=True) or {}
    try:
        config = tax_service.update_registration_numbers(ctx.site_id, data)
        return jsonify({"tax_config": config.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@tax_bp.put("/enabled")
@require_site_context
def toggle(ctx):
    data = request.get_json(silent=True) or {}
    try:
        config = tax_service.toggle_tax(ctx.site_id, data.get("is_enabled"))
        return jsonify({"tax_config": config.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@tax_bp.put("/rates")
@require_site_context
def override_rates(ctx):
    data = request.get_json(silent=True) or {}
    try:
        config = tax_service.override_tax_rates(ctx.site_id, data)
        return jsonify({"tax_config": config.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
