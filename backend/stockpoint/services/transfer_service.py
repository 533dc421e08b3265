"""
Inter-site stock transfers.

A transfer moves quantities of products from the caller's site to another
site of the same tenant in one database transaction.

STATES:
    VALIDATING -> COMMITTING -> DONE
    VALIDATING -> REJECTED          (nothing written)

Every validation runs before the first write. A rejection carries a code so
callers can tell "not there" from "not allowed" from "not enough".

PRODUCT MATCHING:
Product identities are not shared across sites. The destination product is
found by name; resolve_destination_product is the only place that knows this,
so the matching key can change without touching the orchestration.

PAIRING:
Each line writes two TRANSFER movements (-qty at source, +qty at
destination) sharing one source_id. All lines of a request share one
transfer_ref.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext
from ..extensions import db
from ..models import Category, Product, Site, StockMovement
from ..models.stock import MOVEMENT_TRANSFER
from ..time_utils import to_utc_z
from ..validation import enforce_rules_transfer_items
from .concurrency import atomic
from .stock_service import InsufficientStockError, _apply_stock_delta, _write_movement
from .tenant_service import find_site_by_slug, get_tenant_sites


STATE_VALIDATING = "VALIDATING"
STATE_COMMITTING = "COMMITTING"
STATE_DONE = "DONE"
STATE_REJECTED = "REJECTED"

SAME_SITE = "SAME_SITE"
SITE_NOT_FOUND = "SITE_NOT_FOUND"
CROSS_TENANT = "CROSS_TENANT"
PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
CATEGORY_MISSING = "CATEGORY_MISSING"
SHORT_NAME_CONFLICT = "SHORT_NAME_CONFLICT"


class TransferError(Exception):
    """Raised when a transfer fails after validation (rolled back in full)."""
    pass


class TransferRejected(TransferError):
    """Raised when validation rejects a transfer; nothing was written."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.state = STATE_REJECTED


@dataclass
class TransferResult:
    transfer_ref: str
    source_site: Site
    destination_site: Site
    lines: list[dict] = field(default_factory=list)
    state: str = STATE_DONE

    def to_dict(self) -> dict:
        return {
            "transfer_ref": self.transfer_ref,
            "state": self.state,
            "source_site": self.source_site.to_dict(),
            "destination_site": self.destination_site.to_dict(),
            "lines": self.lines,
        }


@dataclass
class _PlannedLine:
    source_product: Product
    quantity: int
    destination_product: Product | None
    destination_category: Category | None


def resolve_destination_product(destination_site_id: int, source_product: Product) -> Product | None:
    """Same-named product at the destination, or None when it must be created."""
    return (
        db.session.query(Product)
        .filter_by(site_id=destination_site_id, name=source_product.name)
        .first()
    )


def _matching_category(destination_site_id: int, source_product: Product) -> Category | None:
    source_category = source_product.category
    return (
        db.session.query(Category)
        .filter_by(
            site_id=destination_site_id,
            name=source_category.name,
            type=source_category.type,
        )
        .first()
    )


def _resolve_sites(ctx: RequestContext, destination_slug: str) -> tuple[Site, Site]:
    source = db.session.query(Site).filter_by(id=ctx.site_id).first()
    destination = find_site_by_slug(destination_slug)

    if source and destination and source.id == destination.id:
        raise TransferRejected(SAME_SITE, "Source and destination sites must be different")
    if not source or not source.is_active or not destination or not destination.is_active:
        raise TransferRejected(SITE_NOT_FOUND, "Site not found")
    if source.tenant_id != ctx.tenant_id or destination.tenant_id != source.tenant_id:
        current_app.logger.warning(
            "Cross-tenant transfer rejected: tenant=%s source=%s destination=%s",
            ctx.tenant_id, source.id, destination.id,
        )
        raise TransferRejected(CROSS_TENANT, "Transfers are only allowed between sites of the same tenant")
    return source, destination


def _plan_lines(source: Site, destination: Site, lines: list[tuple[int, int]]) -> list[_PlannedLine]:
    planned: list[_PlannedLine] = []
    for product_id, quantity in lines:
        product = db.session.query(Product).filter_by(id=product_id, site_id=source.id).first()
        if not product:
            raise TransferRejected(
                PRODUCT_NOT_FOUND,
                "Product not found at source site",
                {"product_id": product_id},
            )

        if product.current_stock < quantity:
            raise TransferRejected(
                INSUFFICIENT_STOCK,
                f"Insufficient stock for {product.name}: requested {quantity}, available {product.current_stock}",
                {"product_id": product_id, "requested": quantity, "available": product.current_stock},
            )

        existing = resolve_destination_product(destination.id, product)
        category = None
        if existing is None:
            category = _matching_category(destination.id, product)
            if category is None:
                raise TransferRejected(
                    CATEGORY_MISSING,
                    f"Category '{product.category.name}' ({product.category.type}) does not exist at {destination.name}",
                    {"product_id": product_id, "category": product.category.name, "type": product.category.type},
                )
            taken = (
                db.session.query(Product.id)
                .filter_by(site_id=destination.id, short_name=product.short_name)
                .first()
            )
            if taken:
                raise TransferRejected(
                    SHORT_NAME_CONFLICT,
                    f"Short name '{product.short_name}' is already used by another product at {destination.name}",
                    {"product_id": product_id, "short_name": product.short_name},
                )

        planned.append(_PlannedLine(product, quantity, existing, category))
    return planned


def _provision_destination_product(ctx: RequestContext, destination: Site, line: _PlannedLine) -> Product:
    """New product at the destination starting at zero stock; the ledger credits it afterwards."""
    source = line.source_product
    product = Product(
        site_id=destination.id,
        category_id=line.destination_category.id,
        name=source.name,
        short_name=source.short_name,
        sku=source.sku,
        unit_code=source.unit_code,
        mrp_cents=source.mrp_cents,
        sale_rate_cents=source.sale_rate_cents,
        purchase_rate_cents=source.purchase_rate_cents,
        _current_stock=0,
        created_by_user_id=ctx.user_id,
    )
    db.session.add(product)
    db.session.flush()
    return product


def _remark(prefix: str, site: Site, remark: str | None) -> str:
    text = f"{prefix} {site.name}"
    return f"{text}: {remark}" if remark else text


def transfer_stock(
    ctx: RequestContext,
    destination_slug: str,
    items: list,
    remark: str | None = None,
) -> TransferResult:
    """
    Move stock from ctx.site_id to the site named by destination_slug.

    Raises:
        ValidationError: malformed items (empty, non-positive, duplicate product)
        TransferRejected: a business rule failed; nothing was written
        TransferError: the commit failed and was rolled back in full
    """
    lines = enforce_rules_transfer_items(items)
    remark = (remark or "").strip() or None

    state = STATE_VALIDATING
    try:
        source, destination = _resolve_sites(ctx, destination_slug)
        planned = _plan_lines(source, destination, lines)
    except TransferRejected as exc:
        current_app.logger.info(
            "Transfer %s -> %s: site=%s dest=%r code=%s",
            state, STATE_REJECTED, ctx.site_id, destination_slug, exc.code,
        )
        raise

    state = STATE_COMMITTING
    transfer_ref = uuid.uuid4().hex
    result_lines: list[dict] = []
    try:
        with atomic():
            for line in planned:
                source_id = uuid.uuid4().hex
                quantity = line.quantity
                pricing = line.source_product.pricing_snapshot()

                _write_movement(
                    ctx=ctx,
                    product=line.source_product,
                    movement_type=MOVEMENT_TRANSFER,
                    quantity_delta=-quantity,
                    pricing=pricing,
                    remark=_remark("Transfer to", destination, remark),
                    source_id=source_id,
                    transfer_ref=transfer_ref,
                )
                _apply_stock_delta(line.source_product, -quantity)

                created = line.destination_product is None
                dest_product = line.destination_product or _provision_destination_product(ctx, destination, line)

                _write_movement(
                    ctx=ctx,
                    product=dest_product,
                    movement_type=MOVEMENT_TRANSFER,
                    quantity_delta=quantity,
                    pricing=pricing,
                    remark=_remark("Transfer from", source, remark),
                    source_id=source_id,
                    transfer_ref=transfer_ref,
                )
                _apply_stock_delta(dest_product, quantity)

                result_lines.append({
                    "source_id": source_id,
                    "product_id": line.source_product.id,
                    "product_name": line.source_product.name,
                    "destination_product_id": dest_product.id,
                    "destination_product_created": created,
                    "quantity": quantity,
                })
    except InsufficientStockError as exc:
        # Stock moved between validation and commit
        current_app.logger.warning("Transfer %s aborted, stock changed: %s", transfer_ref, exc)
        raise TransferRejected(INSUFFICIENT_STOCK, str(exc), exc.details) from exc
    except SQLAlchemyError as exc:
        current_app.logger.exception("Transfer %s failed during commit", transfer_ref)
        raise TransferError("Transfer failed; no stock was moved") from exc

    state = STATE_DONE
    current_app.logger.info(
        "Transfer %s %s: %s -> %s lines=%s",
        transfer_ref, state, source.slug, destination.slug, len(result_lines),
    )
    return TransferResult(
        transfer_ref=transfer_ref,
        source_site=source,
        destination_site=destination,
        lines=result_lines,
        state=state,
    )


def transfer_history(ctx: RequestContext) -> list[dict]:
    """
    Transfers touching the caller's site, newest first, one entry per
    transfer_ref with its direction and the site on the other side.
    """
    movements = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.site_id == ctx.site_id,
            StockMovement.type == MOVEMENT_TRANSFER,
            StockMovement.transfer_ref.isnot(None),
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    if not movements:
        return []

    source_ids = [m.source_id for m in movements]
    counterparts = {
        m.source_id: m
        for m in db.session.query(StockMovement)
        .filter(
            StockMovement.source_id.in_(source_ids),
            StockMovement.site_id != ctx.site_id,
        )
        .all()
    }

    grouped: dict[str, dict] = {}
    for m in movements:
        entry = grouped.get(m.transfer_ref)
        if entry is None:
            other = counterparts.get(m.source_id)
            entry = grouped[m.transfer_ref] = {
                "transfer_ref": m.transfer_ref,
                "direction": "OUT" if m.quantity_delta < 0 else "IN",
                "counter_site": other.site.to_dict() if other else None,
                "remark": m.remark,
                "created_at": m.created_at,
                "created_by_user_id": m.created_by_user_id,
                "lines": [],
                "total_quantity": 0,
            }
        quantity = abs(m.quantity_delta)
        entry["lines"].append({
            "source_id": m.source_id,
            "product_id": m.product_id,
            "product_name": m.product.name,
            "quantity": quantity,
        })
        entry["total_quantity"] += quantity

    history = sorted(grouped.values(), key=lambda e: e["created_at"], reverse=True)
    for entry in history:
        entry["created_at"] = to_utc_z(entry["created_at"])
    return history


def sibling_sites(ctx: RequestContext) -> list[Site]:
    """Other active sites of the caller's tenant (valid transfer destinations)."""
    return [s for s in get_tenant_sites(ctx.tenant_id) if s.id != ctx.site_id]
