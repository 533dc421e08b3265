# Overview: Stock ledger; the only writer of product stock counters and batch remainders.

"""
StockPoint Stock Ledger Invariants (authoritative)

Ledger model:
- stock_movements is append-only; rows are never updated or deleted.
- products.current_stock == SUM(stock_movements.quantity_delta) per product.
- stock_batches.remaining_qty >= 0 at all times.

Counter writes:
- Counters change only through relative UPDATEs (col = col + delta) so
  concurrent writers never lose an update.
- Decrements carry a guard (col >= qty) in the same statement; a guard miss
  means the stock is not there and raises InsufficientStockError.
- Adjustments are the only operation allowed to drive current_stock
  negative; that is logged and reported, not refused.

Transactions:
- _apply_stock_delta, _write_movement and _consume_batch flush only. The
  transfer engine and the sale orchestrator compose them inside their own
  transaction. Public functions here wrap their work in atomic().

Time semantics:
- created_at is server-assigned (UTC-naive).
- Date-range reads are inclusive whole days.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from ..context import RequestContext
from ..extensions import db
from ..models import Product, StockBatch, StockMovement
from ..models.stock import (
    LOCATIONS,
    LOCATION_PHARMACY,
    LOCATION_STORE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
)
from ..time_utils import day_range, utcnow, to_utc_z, to_iso_date
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_int,
    enforce_rules_adjustment,
    enforce_rules_stock_line,
)
from .concurrency import atomic


class StockError(Exception):
    """Base class for stock ledger failures."""
    pass


class InsufficientStockError(StockError):
    """Raised when a decrement would exceed the product's (or batch's) stock."""

    def __init__(self, message: str, *, product_id: int | None = None,
                 requested: int | None = None, available: int | None = None):
        super().__init__(message)
        self.product_id = product_id
        self.requested = requested
        self.available = available

    @property
    def details(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


# =============================================================================
# Inner primitives (flush, never commit)
# =============================================================================

def get_site_product(site_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, site_id=site_id).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def _apply_stock_delta(product: Product, delta: int, *, allow_negative: bool = False) -> int:
    """
    Relative update of products.current_stock; returns the new value.

    A negative delta is guarded (current_stock >= -delta) unless
    allow_negative is set.
    """
    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.site_id == product.site_id)
        .values({Product._current_stock: Product._current_stock + delta})
        .execution_options(synchronize_session=False)
    )
    if delta < 0 and not allow_negative:
        stmt = stmt.where(Product._current_stock >= -delta)

    result = db.session.execute(stmt)
    if not result.rowcount:
        db.session.refresh(product, ["_current_stock"])
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}: requested {-delta}, available {product.current_stock}",
            product_id=product.id,
            requested=-delta,
            available=product.current_stock,
        )

    db.session.refresh(product, ["_current_stock"])
    return product.current_stock


def _consume_batch(site_id: int, batch_id: int, quantity: int) -> StockBatch:
    """Guarded relative decrement of a batch's remaining_qty."""
    batch = db.session.query(StockBatch).filter_by(id=batch_id, site_id=site_id).first()
    if not batch:
        raise NotFoundError("Batch not found")

    result = db.session.execute(
        update(StockBatch)
        .where(
            StockBatch.id == batch_id,
            StockBatch._remaining_qty >= quantity,
        )
        .values({StockBatch._remaining_qty: StockBatch._remaining_qty - quantity})
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(batch, ["_remaining_qty"])
    if not result.rowcount:
        raise InsufficientStockError(
            f"Insufficient quantity in batch {batch_id}: requested {quantity}, remaining {batch.remaining_qty}",
            requested=quantity,
            available=batch.remaining_qty,
        )
    return batch


def _restore_batch(site_id: int, batch_id: int, quantity: int) -> None:
    """Return quantity to a batch (sale edits that reduce a line)."""
    db.session.execute(
        update(StockBatch)
        .where(StockBatch.id == batch_id, StockBatch.site_id == site_id)
        .values({StockBatch._remaining_qty: StockBatch._remaining_qty + quantity})
        .execution_options(synchronize_session=False)
    )


def _write_movement(
    *,
    ctx: RequestContext,
    product: Product,
    movement_type: str,
    quantity_delta: int,
    batch_id: int | None = None,
    location: str | None = None,
    pricing: dict | None = None,
    batch_number: str | None = None,
    expiry_date=None,
    remark: str | None = None,
    source_id: str | None = None,
    transfer_ref: str | None = None,
    sale_id: int | None = None,
) -> StockMovement:
    """Append one ledger row. Pricing defaults to the product's current prices."""
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero", "quantity")
    location = (location or LOCATION_STORE).upper()
    if location not in LOCATIONS:
        raise ValidationError(f"location must be one of {', '.join(LOCATIONS)}", "location")

    snapshot = product.pricing_snapshot()
    snapshot.update({k: v for k, v in (pricing or {}).items() if v is not None})

    movement = StockMovement(
        site_id=product.site_id,
        product_id=product.id,
        batch_id=batch_id,
        type=movement_type,
        quantity_delta=quantity_delta,
        location=location,
        mrp_cents=snapshot["mrp_cents"],
        sale_rate_cents=snapshot["sale_rate_cents"],
        purchase_rate_cents=snapshot["purchase_rate_cents"],
        batch_number=batch_number,
        expiry_date=expiry_date,
        remark=remark,
        source_id=source_id,
        transfer_ref=transfer_ref,
        sale_id=sale_id,
        created_by_user_id=ctx.user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# =============================================================================
# Writes
# =============================================================================

def record_stock_in(ctx: RequestContext, lines: list) -> StockBatch:
    """
    Multi-line stock entry: one batch, one IN movement per line.

    The batch's remaining_qty is the total quantity received; each product's
    current_stock is incremented by its line quantity. One transaction.
    """
    if not isinstance(lines, list) or not lines:
        raise ValidationError("items must be a non-empty list", "items")
    parsed = [enforce_rules_stock_line(line, i) for i, line in enumerate(lines)]

    with atomic():
        products = {p["product_id"]: get_site_product(ctx.site_id, p["product_id"]) for p in parsed}

        batch = StockBatch(
            site_id=ctx.site_id,
            _remaining_qty=sum(p["quantity"] for p in parsed),
            created_by_user_id=ctx.user_id,
            created_at=utcnow(),
        )
        db.session.add(batch)
        db.session.flush()

        for line in parsed:
            product = products[line["product_id"]]
            _write_movement(
                ctx=ctx,
                product=product,
                movement_type=MOVEMENT_IN,
                quantity_delta=line["quantity"],
                batch_id=batch.id,
                location=line["location"],
                pricing=line["pricing"],
                batch_number=line["batch_number"],
                expiry_date=line["expiry_date"],
                remark=line["remark"],
            )
            _apply_stock_delta(product, line["quantity"])

    current_app.logger.info(
        "Stock in: site=%s batch=%s lines=%s qty=%s",
        ctx.site_id, batch.id, len(parsed), batch.remaining_qty,
    )
    return batch


def record_inbound(
    ctx: RequestContext,
    product_id: int,
    quantity: int,
    pricing: dict | None = None,
    batch_meta: dict | None = None,
) -> StockBatch:
    """Single-product receipt; a one-line record_stock_in."""
    line = {"product_id": product_id, "quantity": quantity}
    line.update(pricing or {})
    line.update(batch_meta or {})
    return record_stock_in(ctx, [line])


def record_outbound(
    ctx: RequestContext,
    product_id: int,
    quantity: int,
    reason: str | None = None,
    batch_id: int | None = None,
) -> StockMovement:
    """
    All-or-nothing OUT movement.

    Raises InsufficientStockError when quantity exceeds current stock (or
    the named batch's remaining quantity); nothing is written in that case.
    """
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", "quantity")

    with atomic():
        product = get_site_product(ctx.site_id, product_id)
        batch = _consume_batch(ctx.site_id, batch_id, quantity) if batch_id else None
        _apply_stock_delta(product, -quantity)
        movement = _write_movement(
            ctx=ctx,
            product=product,
            movement_type=MOVEMENT_OUT,
            quantity_delta=-quantity,
            batch_id=batch.id if batch else None,
            remark=reason,
        )
    return movement


def adjust_stock(
    ctx: RequestContext,
    product_id: int,
    quantity: int,
    reason: str,
) -> tuple[StockMovement, int]:
    """
    Signed manual correction. Does not touch batches.

    May drive current_stock negative: that is logged as a warning and the
    caller reports it (negative_stock: true).
    """
    quantity, reason = enforce_rules_adjustment(quantity, reason)

    with atomic():
        product = get_site_product(ctx.site_id, product_id)
        movement = _write_movement(
            ctx=ctx,
            product=product,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity_delta=quantity,
            location=LOCATION_PHARMACY,
            remark=reason,
        )
        new_stock = _apply_stock_delta(product, quantity, allow_negative=True)

    if new_stock < 0:
        current_app.logger.warning(
            "Adjustment drove stock negative: site=%s product=%s stock=%s reason=%r",
            ctx.site_id, product.id, new_stock, reason,
        )
    return movement, new_stock


# =============================================================================
# Reads
# =============================================================================

def fifo_batches(ctx: RequestContext, product_id: int) -> list[dict]:
    """
    Batches holding the product with remaining quantity, in the order a
    picker should offer them: earliest expiry first, undated last, then
    oldest first. Ordering only; nothing here selects or consumes.
    """
    get_site_product(ctx.site_id, product_id)
    rows = (
        db.session.query(StockMovement, StockBatch)
        .join(StockBatch, StockBatch.id == StockMovement.batch_id)
        .filter(
            StockMovement.site_id == ctx.site_id,
            StockMovement.product_id == product_id,
            StockMovement.type == MOVEMENT_IN,
            StockBatch._remaining_qty > 0,
        )
        .all()
    )

    seen: dict[int, dict] = {}
    for movement, batch in rows:
        entry = seen.get(batch.id)
        if entry is None:
            seen[batch.id] = {
                "batch_id": batch.id,
                "batch_number": movement.batch_number,
                "expiry_date": movement.expiry_date,
                "remaining_qty": batch.remaining_qty,
                "created_at": batch.created_at,
            }
        elif movement.expiry_date and (entry["expiry_date"] is None or movement.expiry_date < entry["expiry_date"]):
            entry["expiry_date"] = movement.expiry_date

    ordered = sorted(
        seen.values(),
        key=lambda e: (e["expiry_date"] is None, e["expiry_date"] or e["created_at"].date(), e["created_at"], e["batch_id"]),
    )
    for entry in ordered:
        entry["expiry_date"] = to_iso_date(entry["expiry_date"])
        entry["created_at"] = to_utc_z(entry["created_at"])
    return ordered


def stock_by_product(ctx: RequestContext, date_from=None, date_to=None) -> list[dict]:
    """
    Fold the site's movements (optionally within an inclusive day range)
    into per-product totals with the latest movement time.

    Read-only: calling it twice over unchanged data returns the same result.
    """
    try:
        start, end = day_range(date_from, date_to)
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates", "from")

    query = db.session.query(StockMovement).filter(StockMovement.site_id == ctx.site_id)
    if start is not None:
        query = query.filter(StockMovement.created_at >= start)
    if end is not None:
        query = query.filter(StockMovement.created_at <= end)

    totals: dict[int, dict] = {}
    for m in query.order_by(StockMovement.id.asc()).all():
        entry = totals.get(m.product_id)
        if entry is None:
            totals[m.product_id] = {
                "product": m.product,
                "total_quantity": m.quantity_delta,
                "last_updated": m.created_at,
            }
        else:
            entry["total_quantity"] += m.quantity_delta
            if m.created_at > entry["last_updated"]:
                entry["last_updated"] = m.created_at

    return [
        {
            "product_id": product_id,
            "product_name": entry["product"].name,
            "total_quantity": entry["total_quantity"],
            "last_updated": to_utc_z(entry["last_updated"]),
        }
        for product_id, entry in sorted(totals.items())
    ]


def list_batches(ctx: RequestContext) -> list[StockBatch]:
    return (
        db.session.query(StockBatch)
        .filter_by(site_id=ctx.site_id)
        .order_by(StockBatch.created_at.desc(), StockBatch.id.desc())
        .all()
    )


def movements_by_product(ctx: RequestContext, product_id: int) -> list[StockMovement]:
    get_site_product(ctx.site_id, product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(site_id=ctx.site_id, product_id=product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .all()
    )


def low_stock_products(ctx: RequestContext, threshold: int | None = None) -> list[Product]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    threshold = coerce_int(threshold, "threshold")
    return (
        db.session.query(Product)
        .filter(Product.site_id == ctx.site_id, Product._current_stock <= threshold)
        .order_by(Product._current_stock.asc(), Product.name.asc())
        .all()
    )


def expiring_batches(ctx: RequestContext, days_ahead: int | None = None) -> list[dict]:
    """IN lines expiring between today and today + days_ahead whose batch still holds stock."""
    if days_ahead is None:
        days_ahead = current_app.config.get("EXPIRY_WINDOW_DAYS", 30)
    days_ahead = coerce_int(days_ahead, "days")
    if days_ahead < 0:
        raise ValidationError("days must be >= 0", "days")

    today = utcnow().date()
    horizon = today + timedelta(days=days_ahead)

    rows = (
        db.session.query(StockMovement)
        .join(StockBatch, StockBatch.id == StockMovement.batch_id)
        .filter(
            StockMovement.site_id == ctx.site_id,
            StockMovement.type == MOVEMENT_IN,
            StockMovement.expiry_date.isnot(None),
            StockMovement.expiry_date >= today,
            StockMovement.expiry_date <= horizon,
            StockBatch._remaining_qty > 0,
        )
        .order_by(StockMovement.expiry_date.asc(), StockMovement.id.asc())
        .all()
    )
    return [
        {
            **m.to_dict(),
            "product_name": m.product.name,
            "batch_remaining_qty": m.batch.remaining_qty,
            "days_to_expiry": (m.expiry_date - today).days,
        }
        for m in rows
    ]
