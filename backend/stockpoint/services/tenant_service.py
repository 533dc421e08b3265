"""
Multi-Tenant Service: Site Resolution and Scoping Helpers

WHY: Centralize tenant validation logic for reuse across services and routes.
Every request is scoped to a tenant, and cross-tenant access must be
explicitly denied.

SECURITY INVARIANTS:
1. Callers pass a site slug; it is resolved to the internal id here
2. A slug that exists under another tenant is reported exactly like a
   missing one (no existence leak)
3. Cross-tenant access attempts are logged as warnings

USAGE:
    from stockpoint.services.tenant_service import resolve_site

    site = resolve_site(tenant_id, "downtown-pharmacy")
"""

from __future__ import annotations

import re

from flask import current_app

from ..extensions import db
from ..models import Site, Tenant
from ..validation import ConflictError, ValidationError


class TenantAccessError(Exception):
    """Raised when a site is missing or owned by another tenant."""
    pass


_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _SLUG_STRIP.sub("-", (name or "").lower()).strip("-")
    if not slug:
        raise ValidationError("Site name must contain letters or digits", "name")
    return slug[:64]


def _log_cross_tenant_attempt(reason: str, **extra) -> None:
    current_app.logger.warning("Cross-tenant access denied: %s %s", reason, extra or "")


def get_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if not tenant or not tenant.is_active:
        raise TenantAccessError("Tenant not found")
    return tenant


def find_site_by_slug(slug: str) -> Site | None:
    """Unscoped lookup. Only the transfer engine uses it, to tell CROSS_TENANT from SITE_NOT_FOUND."""
    if not slug:
        return None
    return db.session.query(Site).filter_by(slug=slug).first()


def resolve_site(tenant_id: int, slug: str) -> Site:
    """
    Resolve a public site slug inside the caller's tenant.

    Raises:
        TenantAccessError if the slug is unknown, inactive, or belongs to
        a different tenant
    """
    site = find_site_by_slug(slug)

    if not site or not site.is_active:
        raise TenantAccessError("Site not found")

    if site.tenant_id != tenant_id:
        # CRITICAL: Cross-tenant access attempt
        _log_cross_tenant_attempt(
            f"Site {slug!r} belongs to tenant {site.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise TenantAccessError("Site not found")  # Don't reveal it exists in another tenant

    return site


def require_site_in_tenant(site_id: int, tenant_id: int) -> Site:
    site = db.session.query(Site).filter_by(id=site_id).first()
    if not site or site.tenant_id != tenant_id:
        if site:
            _log_cross_tenant_attempt(
                f"Site {site_id} belongs to tenant {site.tenant_id}, not {tenant_id}",
                tenant_id=tenant_id,
            )
        raise TenantAccessError("Site not found")
    return site


def get_tenant_sites(tenant_id: int, *, active_only: bool = True) -> list[Site]:
    query = db.session.query(Site).filter_by(tenant_id=tenant_id)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Site.name.asc()).all()


def create_tenant(name: str, code: str | None = None) -> Tenant:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Tenant name is required", "name")
    if code and db.session.query(Tenant).filter_by(code=code).first():
        raise ConflictError(f"Tenant code {code!r} already exists")
    tenant = Tenant(name=name, code=code)
    db.session.add(tenant)
    db.session.commit()
    return tenant


def create_site(tenant_id: int, name: str, slug: str | None = None) -> Site:
    """Create a site under a tenant. The slug defaults to a slugified name and must be globally unique."""
    get_tenant(tenant_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Site name is required", "name")
    slug = slugify(slug or name)

    if db.session.query(Site).filter_by(slug=slug).first():
        raise ConflictError(f"Site slug {slug!r} is already taken")
    if db.session.query(Site).filter_by(tenant_id=tenant_id, name=name).first():
        raise ConflictError(f"Site {name!r} already exists for this tenant")

    site = Site(tenant_id=tenant_id, name=name, slug=slug)
    db.session.add(site)
    db.session.commit()
    return site
