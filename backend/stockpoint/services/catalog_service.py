# backend/stockpoint/services/catalog_service.py
"""
Catalog Service (categories and products), site-scoped.

MULTI-TENANT: every write is pinned to ctx.site_id; ids in the payload are
re-checked against the site before use.

STOCK: current_stock is never writable here. New products start at zero
and receive stock only through the stock ledger.
"""
from __future__ import annotations

from ..context import RequestContext
from ..extensions import db
from ..models import Category, Product
from ..models.catalog import CATEGORY_TYPES
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_prices,
    validate_payload,
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "short_name", "type"},
    required_on_create={"name", "short_name"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "category_id", "name", "short_name", "sku", "unit_code",
        "mrp_cents", "sale_rate_cents", "purchase_rate_cents",
    },
    required_on_create={"category_id", "name", "short_name"},
)


def _site_category(ctx: RequestContext, category_id: int) -> Category:
    category = db.session.query(Category).filter_by(id=category_id, site_id=ctx.site_id).first()
    if not category:
        raise NotFoundError("Category not found")
    return category


def _ensure_unique(model, ctx: RequestContext, field: str, value, exclude_id=None, **scope) -> None:
    query = db.session.query(model.id).filter_by(site_id=ctx.site_id, **{field: value}, **scope)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ConflictError(f"{model.__name__} with {field} '{value}' already exists")


def list_categories(ctx: RequestContext, category_type: str | None = None) -> list[Category]:
    query = db.session.query(Category).filter_by(site_id=ctx.site_id)
    if category_type:
        query = query.filter_by(type=category_type.upper())
    return query.order_by(Category.name.asc()).all()


def create_category(ctx: RequestContext, payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    category_type = (patch.get("type") or CATEGORY_TYPES[0]).upper()
    if category_type not in CATEGORY_TYPES:
        raise ValidationError(f"type must be one of {', '.join(CATEGORY_TYPES)}", "type")
    patch["type"] = category_type

    _ensure_unique(Category, ctx, "name", patch["name"], type=category_type)
    _ensure_unique(Category, ctx, "short_name", patch["short_name"], type=category_type)

    category = Category(site_id=ctx.site_id, created_by_user_id=ctx.user_id, **patch)
    db.session.add(category)
    db.session.commit()
    return category


def list_products(ctx: RequestContext) -> list[Product]:
    return (
        db.session.query(Product)
        .filter_by(site_id=ctx.site_id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )


def create_product(ctx: RequestContext, payload: dict) -> Product:
    """
    Raises:
        ValidationError: bad payload (including any attempt to set current_stock)
        NotFoundError: category not at this site
        ConflictError: name or short_name already used at this site
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_prices(patch)
    _site_category(ctx, patch["category_id"])
    _ensure_unique(Product, ctx, "name", patch["name"])
    _ensure_unique(Product, ctx, "short_name", patch["short_name"])

    product = Product(site_id=ctx.site_id, created_by_user_id=ctx.user_id, _current_stock=0, **patch)
    db.session.add(product)
    db.session.commit()
    return product


def update_product(ctx: RequestContext, product_id: int, payload: dict) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, site_id=ctx.site_id).first()
    if not product:
        raise NotFoundError("Product not found")

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_prices(patch)
    if "category_id" in patch:
        _site_category(ctx, patch["category_id"])
    if "name" in patch:
        _ensure_unique(Product, ctx, "name", patch["name"], exclude_id=product.id)
    if "short_name" in patch:
        _ensure_unique(Product, ctx, "short_name", patch["short_name"], exclude_id=product.id)

    for key, value in patch.items():
        setattr(product, key, value)
    db.session.commit()
    return product
