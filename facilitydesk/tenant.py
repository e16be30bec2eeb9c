from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

from flask import g

from facilitydesk.errors import ForbiddenError
from facilitydesk.policies import CLIENT_ADMIN, is_superadmin, normalize_role


SCOPE_ALL = "all"
SCOPE_TENANT = "tenant"
SCOPE_DENY = "deny"


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


@dataclass(frozen=True)
class RequestContext:
    """The authenticated principal acting on a request.

    Built once per request by the auth layer and passed explicitly to every
    service call; services never read the session themselves.
    """

    principal_id: int
    role: str
    tenant_id: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "principal_id", int(self.principal_id))
        object.__setattr__(self, "role", normalize_role(self.role))
        object.__setattr__(self, "tenant_id", normalize_tenant_id(self.tenant_id))

    @property
    def is_superadmin(self) -> bool:
        return is_superadmin(self.role)


@dataclass(frozen=True)
class TenantScope:
    mode: str
    tenant_id: str | None = None

    @property
    def denied(self) -> bool:
        return self.mode == SCOPE_DENY

    def clause(self, *, table_alias: str | None = None, column_name: str = "tenant_id") -> tuple[str, tuple[Any, ...]]:
        """SQL predicate and params restricting rows to this scope."""
        if self.mode == SCOPE_ALL:
            return "1 = 1", ()
        if self.mode == SCOPE_TENANT and self.tenant_id:
            prefix = f"{table_alias.strip()}." if table_alias and str(table_alias).strip() else ""
            return f"{prefix}{column_name} = ?", (self.tenant_id,)
        return "1 = 0", ()

    def allows(self, tenant_id: str | None) -> bool:
        if self.mode == SCOPE_ALL:
            return True
        if self.mode == SCOPE_TENANT:
            return bool(tenant_id) and tenant_id == self.tenant_id
        return False


def resolve_scope(ctx: RequestContext | None) -> TenantScope:
    if ctx is None:
        return TenantScope(SCOPE_DENY)
    if ctx.is_superadmin:
        return TenantScope(SCOPE_ALL)
    if ctx.tenant_id:
        return TenantScope(SCOPE_TENANT, ctx.tenant_id)
    return TenantScope(SCOPE_DENY)


def tenant_tree(db, root_tenant_id: str) -> List[str]:
    """Return the tenant and all of its direct and transitive sub-tenants."""
    seen: List[str] = []
    frontier = [root_tenant_id]
    while frontier:
        tenant_id = frontier.pop(0)
        if tenant_id in seen:
            continue
        seen.append(tenant_id)
        rows = db.execute(
            "SELECT id FROM tenants WHERE parent_tenant_id = ? ORDER BY id",
            (tenant_id,),
        ).fetchall()
        frontier.extend(str(row["id"]) for row in rows)
    return seen


def visible_site_tenants(db, ctx: RequestContext) -> List[str] | None:
    """Tenants whose sites the caller may see; ``None`` means every tenant."""
    if ctx.is_superadmin:
        return None
    if not ctx.tenant_id:
        return []
    if ctx.role == CLIENT_ADMIN:
        return tenant_tree(db, ctx.tenant_id)
    return [ctx.tenant_id]


def current_context() -> RequestContext:
    ctx = getattr(g, "request_context", None)
    if ctx is None:
        raise ForbiddenError(code="auth_required", http_status=401)
    return ctx
