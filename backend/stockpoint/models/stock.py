from __future__ import annotations

from ..extensions import db
from stockpoint.time_utils import to_utc_z, to_iso_date


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_TRANSFER = "TRANSFER"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
# Stock credited back by a return bill
MOVEMENT_RETURN = "RETURN"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_TRANSFER, MOVEMENT_ADJUSTMENT, MOVEMENT_RETURN)

LOCATION_STORE = "STORE"
LOCATION_PHARMACY = "PHARMACY"
LOCATION_WAREHOUSE = "WAREHOUSE"
LOCATIONS = (LOCATION_STORE, LOCATION_PHARMACY, LOCATION_WAREHOUSE)


class StockBatch(db.Model):
    """
    A receipt of stock. remaining_qty is decremented as the batch is
    consumed and never goes below zero; exhausted batches are kept for
    history.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        db.CheckConstraint("remaining_qty >= 0", name="ck_stock_batches_remaining_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    _remaining_qty = db.Column("remaining_qty", db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    movements = db.relationship(
        "StockMovement",
        backref="batch",
        lazy=True,
        order_by="StockMovement.id",
    )

    @property
    def remaining_qty(self) -> int:
        return self._remaining_qty or 0

    @property
    def expiry_date(self):
        """Earliest expiry among the batch's inbound lines (None when undated)."""
        dates = [m.expiry_date for m in self.movements if m.expiry_date is not None]
        return min(dates) if dates else None

    def to_dict(self, include_movements: bool = False) -> dict:
        data = {
            "id": self.id,
            "site_id": self.site_id,
            "remaining_qty": self.remaining_qty,
            "expiry_date": to_iso_date(self.expiry_date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_movements:
            data["movements"] = [m.to_dict() for m in self.movements]
        return data


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    INVARIANTS:
    - Never updated or deleted once written
    - quantity_delta is signed (+ increases stock, - decreases)
    - SUM(quantity_delta) per product equals products.current_stock
    - Pricing columns are a snapshot at the time of the movement

    TRANSFERS:
    Both halves of one transferred line share source_id; every line of one
    transfer request shares transfer_ref.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_delta <> 0", name="ck_stock_movements_delta_nonzero"),
        db.Index("ix_stock_movements_site_product", "site_id", "product_id"),
        db.Index("ix_stock_movements_site_created", "site_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    location = db.Column(db.String(16), nullable=False, default=LOCATION_STORE)

    mrp_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_rate_cents = db.Column(db.Integer, nullable=False, default=0)
    purchase_rate_cents = db.Column(db.Integer, nullable=False, default=0)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True, index=True)
    remark = db.Column(db.Text, nullable=True)

    source_id = db.Column(db.String(36), nullable=True, index=True)
    transfer_ref = db.Column(db.String(36), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))
    site = db.relationship("Site")

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} type={self.type} product_id={self.product_id} delta={self.quantity_delta}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "location": self.location,
            "mrp_cents": self.mrp_cents,
            "sale_rate_cents": self.sale_rate_cents,
            "purchase_rate_cents": self.purchase_rate_cents,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "remark": self.remark,
            "source_id": self.source_id,
            "transfer_ref": self.transfer_ref,
            "sale_id": self.sale_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
