from __future__ import annotations

from ..extensions import db
from stockpoint.time_utils import to_utc_z


CATEGORY_TYPE_PRODUCT = "PRODUCT"
CATEGORY_TYPE_SERVICE = "SERVICE"
CATEGORY_TYPES = (CATEGORY_TYPE_PRODUCT, CATEGORY_TYPE_SERVICE)


class Category(db.Model):
    """
    Site-scoped category. Names are unique per (site, type).

    Transfers match destination categories on (name, type) and never
    create categories on their own.
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("site_id", "type", "name", name="uq_categories_site_type_name"),
        db.UniqueConstraint("site_id", "type", "short_name", name="uq_categories_site_type_short"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    short_name = db.Column(db.String(32), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=CATEGORY_TYPE_PRODUCT)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    site = db.relationship("Site", backref=db.backref("categories", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "name": self.name,
            "short_name": self.short_name,
            "type": self.type,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data, scoped to exactly one site.

    STOCK COUNTER:
    current_stock is a cache of SUM(stock_movements.quantity_delta) for the
    product. It is mapped to a private attribute and exposed read-only;
    stock_service is its only writer, always with a relative UPDATE
    (current_stock = current_stock + delta) so concurrent sales never lose
    an update.

    Identities are not shared across sites; the same medicine at two sites
    is two Product rows, matched by name during transfers.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("site_id", "name", name="uq_products_site_name"),
        db.UniqueConstraint("site_id", "short_name", name="uq_products_site_short"),
        db.Index("ix_products_site_stock", "site_id", "current_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    short_name = db.Column(db.String(64), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    unit_code = db.Column(db.String(16), nullable=False, default="EA")

    # Authoritative storage in cents
    mrp_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_rate_cents = db.Column(db.Integer, nullable=False, default=0)
    purchase_rate_cents = db.Column(db.Integer, nullable=False, default=0)

    _current_stock = db.Column("current_stock", db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    site = db.relationship("Site", backref=db.backref("products", lazy=True))
    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    @property
    def current_stock(self) -> int:
        return self._current_stock or 0

    def pricing_snapshot(self) -> dict:
        return {
            "mrp_cents": self.mrp_cents,
            "sale_rate_cents": self.sale_rate_cents,
            "purchase_rate_cents": self.purchase_rate_cents,
        }

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} site_id={self.site_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "category_id": self.category_id,
            "name": self.name,
            "short_name": self.short_name,
            "sku": self.sku,
            "unit_code": self.unit_code,
            "mrp_cents": self.mrp_cents,
            "sale_rate_cents": self.sale_rate_cents,
            "purchase_rate_cents": self.purchase_rate_cents,
            "current_stock": self.current_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
