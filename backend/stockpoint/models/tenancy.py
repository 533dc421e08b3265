from __future__ import annotations

from ..extensions import db
from stockpoint.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every business owning sites is a Tenant.

    All sites, products and ledgers belong to exactly one tenant.
    Stock may only move between sites of the same tenant.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Site(db.Model):
    """
    A tenant-owned location (pharmacy, store, warehouse).

    SLUG vs ID:
    - id is internal and never trusted from client input
    - slug is the public identifier callers pass in; it is resolved to
      the internal id (and checked against the caller's tenant) before
      any ledger operation
    """
    __tablename__ = "sites"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_sites_tenant_name"),
        db.Index("ix_sites_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(64), nullable=False, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("sites", lazy=True))

    def __repr__(self) -> str:
        return f"<Site id={self.id} slug={self.slug!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
