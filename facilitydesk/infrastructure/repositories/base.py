from __future__ import annotations

from typing import Any, Iterable

from facilitydesk.tenant import SCOPE_ALL, SCOPE_TENANT, TenantScope


class TenantScopeRequiredError(ValueError):
    """Raised when a write needs a concrete tenant and the scope has none."""


class BaseRepository:
    def __init__(self, scope: TenantScope) -> None:
        self.scope = scope

    @classmethod
    def for_tenant(cls, tenant_id: str):
        tenant = str(tenant_id or "").strip()
        if not tenant:
            raise TenantScopeRequiredError("tenant_id is required for repository access")
        return cls(TenantScope(SCOPE_TENANT, tenant))

    @classmethod
    def unscoped(cls):
        return cls(TenantScope(SCOPE_ALL))

    def tenant_clause(self, *, table_alias: str | None = None, column_name: str = "tenant_id") -> tuple[str, tuple]:
        return self.scope.clause(table_alias=table_alias, column_name=column_name)

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def inserted_id(cursor) -> int:
        row = cursor.fetchone()
        return int(row["id"] if isinstance(row, dict) else row[0])
