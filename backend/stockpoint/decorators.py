# Overview: Request decorators that turn caller headers and the site slug into a RequestContext.

from functools import wraps
from flask import request, jsonify

from .context import RequestContext
from .services import tenant_service
from .services.tenant_service import TenantAccessError


TENANT_HEADER = "X-Tenant-Id"
USER_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"


def _int_header(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_site_context(f):
    """
    Resolve caller identity and the <site_slug> URL segment.

    Identity is established upstream and arrives in headers; this layer only
    reads it. The slug is resolved inside the caller's tenant, so a site of
    another tenant is indistinguishable from a missing one.

    The view receives the RequestContext as its first argument in place of
    site_slug.

    Returns 401 when identity headers are missing or malformed, 404 when the
    site does not resolve for the tenant.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _int_header(TENANT_HEADER)
        user_id = _int_header(USER_HEADER)
        if tenant_id is None or user_id is None:
            return jsonify({"error": "Caller identity required"}), 401

        site_slug = kwargs.pop("site_slug", None)
        try:
            tenant_service.get_tenant(tenant_id)
            site = tenant_service.resolve_site(tenant_id, site_slug)
        except TenantAccessError as e:
            return jsonify({"error": str(e)}), 404

        ctx = RequestContext(
            tenant_id=tenant_id,
            site_id=site.id,
            user_id=user_id,
            role=(request.headers.get(ROLE_HEADER) or "").strip() or None,
        )
        return f(ctx, *args, **kwargs)

    return decorated_function
