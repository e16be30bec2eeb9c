from __future__ import annotations

from facilitydesk.infrastructure.repositories.base import BaseRepository
from facilitydesk.quotes.aggregate import Transition, to_iso


class StatusEventRepository(BaseRepository):
    def add_event(
        self,
        db,
        *,
        tenant_id: str,
        quote_id: int,
        entity: str,
        entity_id: int,
        from_status: str | None,
        to_status: str,
        reason: str | None,
        actor_id: int | None,
        occurred_at,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO status_events (
                tenant_id, quote_id, entity, entity_id, from_status, to_status, reason, actor_id, occurred_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                tenant_id,
                int(quote_id),
                entity,
                int(entity_id),
                from_status,
                to_status,
                reason,
                actor_id,
                to_iso(occurred_at),
            ),
        )
        return self.inserted_id(cursor)

    def record_transitions(
        self,
        db,
        transitions: list[Transition],
        *,
        tenant_id: str,
        quote_id: int,
        actor_id: int | None,
        occurred_at,
    ) -> int:
        for transition in transitions:
            self.add_event(
                db,
                tenant_id=tenant_id,
                quote_id=quote_id,
                entity=transition.entity,
                entity_id=transition.entity_id if transition.entity_id is not None else quote_id,
                from_status=transition.from_status,
                to_status=transition.to_status,
                reason=transition.reason,
                actor_id=actor_id,
                occurred_at=occurred_at,
            )
        return len(transitions)

    def list_for_quote(self, db, quote_id: int, *, limit: int = 500) -> list[dict]:
        clause, params = self.tenant_clause()
        rows = db.execute(
            f"""
            SELECT id, entity, entity_id, from_status, to_status, reason, actor_id, occurred_at
            FROM status_events
            WHERE quote_id = ? AND {clause}
            ORDER BY id ASC
            LIMIT ?
            """,
            (int(quote_id), *params, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def delete_for_quote(self, db, quote_id: int) -> None:
        db.execute("DELETE FROM status_events WHERE quote_id = ?", (int(quote_id),))
