from __future__ import annotations

from typing import Any, Dict, Iterable, List

from facilitydesk.policies import normalize_role


class Directory:
    """Read-side lookups of the tenant's reference data (sites, equipment, people).

    Every ``resolve_*`` call returns ``{"exists": False}`` for an unknown id
    so callers decide which error to raise.
    """

    def resolve_site(self, db, site_id: int | None) -> Dict[str, Any]:
        if site_id is None:
            return {"exists": False}
        row = db.execute(
            "SELECT id, tenant_id, name, address FROM sites WHERE id = ?",
            (int(site_id),),
        ).fetchone()
        if not row:
            return {"exists": False}
        return {"exists": True, **dict(row)}

    def resolve_equipment(self, db, equipment_id: int | None) -> Dict[str, Any]:
        if equipment_id is None:
            return {"exists": False}
        row = db.execute(
            "SELECT id, tenant_id, site_id, name, category FROM equipment WHERE id = ?",
            (int(equipment_id),),
        ).fetchone()
        if not row:
            return {"exists": False}
        return {"exists": True, **dict(row)}

    def resolve_principal(self, db, principal_id: int | None) -> Dict[str, Any]:
        if principal_id is None:
            return {"exists": False}
        row = db.execute(
            "SELECT id, email, display_name, role, tenant_id FROM principals WHERE id = ?",
            (int(principal_id),),
        ).fetchone()
        if not row:
            return {"exists": False}
        return {"exists": True, **dict(row)}

    def resolve_principals(self, db, principal_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        ids = [int(value) for value in principal_ids]
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = db.execute(
            f"""
            SELECT id, email, display_name, role, tenant_id
            FROM principals
            WHERE id IN ({placeholders})
            """,
            ids,
        ).fetchall()
        return {int(row["id"]): {"exists": True, **dict(row)} for row in rows}

    def list_sites(self, db, tenant_ids: List[str] | None) -> List[Dict[str, Any]]:
        if tenant_ids is None:
            rows = db.execute("SELECT id, tenant_id, name, address FROM sites ORDER BY id").fetchall()
            return [dict(row) for row in rows]
        if not tenant_ids:
            return []
        placeholders = ",".join("?" for _ in tenant_ids)
        rows = db.execute(
            f"SELECT id, tenant_id, name, address FROM sites WHERE tenant_id IN ({placeholders}) ORDER BY id",
            list(tenant_ids),
        ).fetchall()
        return [dict(row) for row in rows]


def _inserted_id(cursor) -> int:
    row = cursor.fetchone()
    return int(row["id"] if isinstance(row, dict) else row[0])


def create_tenant(db, tenant_id: str, name: str, *, parent_tenant_id: str | None = None) -> str:
    db.execute(
        "INSERT INTO tenants (id, name, parent_tenant_id) VALUES (?, ?, ?)",
        (tenant_id, name, parent_tenant_id),
    )
    return tenant_id


def create_principal(
    db,
    *,
    email: str,
    role: str,
    tenant_id: str | None,
    display_name: str | None = None,
) -> int:
    normalized_role = normalize_role(role)
    if not normalized_role:
        raise ValueError(f"unknown role: {role!r}")
    cursor = db.execute(
        """
        INSERT INTO principals (email, display_name, role, tenant_id)
        VALUES (?, ?, ?, ?)
        RETURNING id
        """,
        (email.strip().lower(), display_name, normalized_role, tenant_id),
    )
    return _inserted_id(cursor)


def create_site(db, *, tenant_id: str, name: str, address: str | None = None) -> int:
    cursor = db.execute(
        """
        INSERT INTO sites (tenant_id, name, address)
        VALUES (?, ?, ?)
        RETURNING id
        """,
        (tenant_id, name, address),
    )
    return _inserted_id(cursor)


def create_equipment(db, *, tenant_id: str, site_id: int, name: str, category: str | None = None) -> int:
    cursor = db.execute(
        """
        INSERT INTO equipment (tenant_id, site_id, name, category)
        VALUES (?, ?, ?, ?)
        RETURNING id
        """,
        (tenant_id, int(site_id), name, category),
    )
    return _inserted_id(cursor)
