from __future__ import annotations

from facilitydesk.infrastructure.repositories.base import BaseRepository
from facilitydesk.quotes.aggregate import to_iso


class AccessGrantRepository(BaseRepository):
    def list_for_principal_site(self, db, *, principal_id: int, site_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, principal_id, site_id, tenant_id, level, origin_quote_id, created_at
            FROM access_grants
            WHERE principal_id = ? AND site_id = ?
            ORDER BY id
            """,
            (int(principal_id), int(site_id)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_principal(self, db, principal_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT g.id, g.principal_id, g.site_id, g.tenant_id, g.level, g.origin_quote_id, g.created_at,
                   s.name AS site_name
            FROM access_grants g
            LEFT JOIN sites s ON s.id = g.site_id
            WHERE g.principal_id = ?
            ORDER BY g.id
            """,
            (int(principal_id),),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def insert(
        self,
        db,
        *,
        principal_id: int,
        site_id: int,
        tenant_id: str,
        level: str,
        origin_quote_id: int | None,
        now,
    ) -> int | None:
        """Insert a grant; ``None`` when the unique index already holds one."""
        row = db.execute(
            """
            INSERT INTO access_grants (principal_id, site_id, tenant_id, level, origin_quote_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT DO NOTHING
            RETURNING id
            """,
            (int(principal_id), int(site_id), tenant_id, level, origin_quote_id, to_iso(now)),
        ).fetchone()
        if not row:
            return None
        return int(row["id"] if isinstance(row, dict) else row[0])
