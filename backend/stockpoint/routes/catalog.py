# backend/stockpoint/routes/catalog.py
"""
Catalog admin routes (categories and products) for one site.

current_stock is read-only here; stock changes go through /stock.
"""
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import require_site_context
from ..services import catalog_service
from .errors import DOMAIN_ERRORS, error_response, server_error


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/sites/<site_slug>/catalog")


@catalog_bp.get("/categories")
@require_site_context
def list_categories(ctx):
    categories = catalog_service.list_categories(ctx, request.args.get("type"))
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)}), 200


@catalog_bp.post("/categories")
@require_site_context
def create_category(ctx):
    payload = request.get_json(silent=True) or {}
    try:
        category = catalog_service.create_category(ctx, payload)
        return jsonify({"category": category.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to create category")


@catalog_bp.get("/products")
@require_site_context
def list_products(ctx):
    products = catalog_service.list_products(ctx)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@catalog_bp.post("/products")
@require_site_context
def create_product(ctx):
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.create_product(ctx, payload)
        return jsonify({"product": product.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to create product")


@catalog_bp.patch("/products/<int:product_id>")
@require_site_context
def update_product(ctx, product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.update_product(ctx, product_id, payload)
        return jsonify({"product": product.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except SQLAlchemyError:
        return server_error("Failed to update product")
