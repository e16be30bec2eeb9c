from __future__ import annotations

from facilitydesk.infrastructure.repositories.base import BaseRepository


class SequenceRepository(BaseRepository):
    def next_value(self, db, *, tenant_id: str, scope: str, year: int) -> int:
        """Atomically bump and return the (tenant, scope, year) counter.

        A single upsert statement, so concurrent writers never read the same
        value: the row lock serializes them.
        """
        row = db.execute(
            """
            INSERT INTO sequence_counters (tenant_id, scope, year, last_value)
            VALUES (?, ?, ?, 1)
            ON CONFLICT (tenant_id, scope, year)
            DO UPDATE SET last_value = sequence_counters.last_value + 1
            RETURNING last_value
            """,
            (tenant_id, scope, int(year)),
        ).fetchone()
        return int(row["last_value"] if isinstance(row, dict) else row[0])
