from __future__ import annotations

import logging
from typing import Any, Dict, List

from facilitydesk.core import AccessGranted
from facilitydesk.directory import Directory
from facilitydesk.errors import NotFoundError
from facilitydesk.infrastructure.repositories.access_grant_repository import AccessGrantRepository
from facilitydesk.observability import observe_access_grant_created
from facilitydesk.quotes.aggregate import utc_now
from facilitydesk.quotes.states import ACCESS_LEVEL_RANK, access_level_at_least, parse_access_level
from facilitydesk.tenant import RequestContext, visible_site_tenants


logger = logging.getLogger("facilitydesk.access")

ACCESS_NONE = "none"


class AccessGrantStore:
    """Per-principal site grants; additive and never downgraded."""

    def __init__(self, repository: AccessGrantRepository | None = None) -> None:
        self.repository = repository or AccessGrantRepository.unscoped()

    def strongest_level(self, db, *, principal_id: int, site_id: int) -> str | None:
        best: str | None = None
        for grant in self.repository.list_for_principal_site(db, principal_id=principal_id, site_id=site_id):
            level = str(grant["level"])
            if best is None or ACCESS_LEVEL_RANK.get(level, 0) > ACCESS_LEVEL_RANK.get(best, 0):
                best = level
        return best

    def ensure_grant(
        self,
        db,
        *,
        principal_id: int,
        site_id: int,
        tenant_id: str,
        level: str,
        origin_quote_id: int | None = None,
    ) -> AccessGranted | None:
        """Create the grant unless an equal or stronger one exists.

        Returns the event to publish after commit, or ``None`` when nothing
        was written.
        """
        wanted = parse_access_level(level)
        existing = self.strongest_level(db, principal_id=principal_id, site_id=site_id)
        if access_level_at_least(existing, wanted):
            return None
        grant_id = self.repository.insert(
            db,
            principal_id=principal_id,
            site_id=site_id,
            tenant_id=tenant_id,
            level=wanted,
            origin_quote_id=origin_quote_id,
            now=utc_now(),
        )
        if grant_id is None:
            return None
        observe_access_grant_created()
        logger.info(
            "access_grant_created",
            extra={
                "grant_id": grant_id,
                "principal_id": int(principal_id),
                "site_id": int(site_id),
                "level": wanted,
                "origin_quote_id": origin_quote_id,
            },
        )
        return AccessGranted(
            tenant_id=tenant_id,
            principal_id=int(principal_id),
            site_id=int(site_id),
            level=wanted,
            origin_quote_id=origin_quote_id,
        )

    def list_for_principal(self, db, principal_id: int) -> List[Dict[str, Any]]:
        return self.repository.list_for_principal(db, principal_id)

    def effective_site_access(
        self,
        db,
        ctx: RequestContext,
        site_id: int,
        *,
        directory: Directory | None = None,
    ) -> Dict[str, Any]:
        site = (directory or Directory()).resolve_site(db, site_id)
        if not site.get("exists"):
            raise NotFoundError(code="site_not_found", details=f"site_id={site_id}")

        if ctx.is_superadmin:
            return {"site_id": int(site_id), "level": "full", "source": "role"}

        if ctx.role == "client_admin":
            tenants = visible_site_tenants(db, ctx) or []
            if str(site["tenant_id"]) in tenants:
                return {"site_id": int(site_id), "level": "full", "source": "tenant"}

        level = self.strongest_level(db, principal_id=ctx.principal_id, site_id=site_id)
        if level:
            return {"site_id": int(site_id), "level": level, "source": "grant"}
        return {"site_id": int(site_id), "level": ACCESS_NONE, "source": None}
