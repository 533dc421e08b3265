from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """
    Caller identity threaded explicitly through every service call.

    MULTI-TENANT: tenant_id and site_id are resolved and validated before a
    context is built; services trust them and never read request globals.
    """
    tenant_id: int
    site_id: int
    user_id: int | None = None
    role: str | None = None

    def for_site(self, site_id: int) -> "RequestContext":
        return RequestContext(
            tenant_id=self.tenant_id,
            site_id=site_id,
            user_id=self.user_id,
            role=self.role,
        )
