from __future__ import annotations

import json
from typing import Any, Dict, List

from facilitydesk.domain.contracts import QuoteListFilters
from facilitydesk.errors import ConflictError
from facilitydesk.infrastructure.repositories.base import BaseRepository
from facilitydesk.quotes.aggregate import Quote, Response, to_iso


_RESPONSE_COLUMNS = (
    "status",
    "amount_before_tax",
    "currency",
    "delay",
    "conditions",
    "message",
    "document_ref",
    "validity_date",
    "info_request_message",
    "rejection_reason",
    "viewed_at",
    "responded_at",
    "resolved_at",
)


def _load_recipient_ids(raw: object) -> List[int]:
    if isinstance(raw, list):
        return [int(value) for value in raw]
    try:
        values = json.loads(str(raw or "[]"))
    except ValueError:
        return []
    return [int(value) for value in values]


def _float_or_none(value: object) -> float | None:
    if value is None:
        return None
    return float(value)


class QuoteRepository(BaseRepository):
    def insert(self, db, quote: Quote, *, now) -> int:
        stamp = to_iso(now)
        cursor = db.execute(
            """
            INSERT INTO quotes (
                number, tenant_id, requester_id, site_id, equipment_id, work_type, urgency,
                title, description, status, recipient_ids, version, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                quote.number,
                quote.tenant_id,
                quote.requester_id,
                quote.site_id,
                quote.equipment_id,
                quote.work_type,
                quote.urgency,
                quote.title,
                quote.description,
                quote.status,
                json.dumps(quote.recipient_ids),
                quote.version,
                stamp,
                stamp,
            ),
        )
        quote.id = self.inserted_id(cursor)
        quote.created_at = stamp
        quote.updated_at = stamp
        for response in quote.responses:
            response_cursor = db.execute(
                """
                INSERT INTO quote_responses (quote_id, tenant_id, recipient_id, status, currency, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (quote.id, quote.tenant_id, response.recipient_id, response.status, response.currency, stamp, stamp),
            )
            response.id = self.inserted_id(response_cursor)
        return quote.id

    def get(self, db, quote_id: int) -> Quote | None:
        clause, params = self.tenant_clause()
        row = db.execute(
            f"""
            SELECT *
            FROM quotes
            WHERE id = ? AND {clause}
            LIMIT 1
            """,
            (int(quote_id), *params),
        ).fetchone()
        if not row:
            return None
        return self._hydrate(db, dict(row))

    def _hydrate(self, db, row: Dict[str, Any]) -> Quote:
        response_rows = db.execute(
            """
            SELECT *
            FROM quote_responses
            WHERE quote_id = ?
            ORDER BY id
            """,
            (int(row["id"]),),
        ).fetchall()
        responses = []
        for response_row in response_rows:
            data = dict(response_row)
            responses.append(
                Response(
                    id=int(data["id"]),
                    recipient_id=int(data["recipient_id"]),
                    status=str(data["status"]),
                    amount_before_tax=_float_or_none(data.get("amount_before_tax")),
                    currency=str(data.get("currency") or "EUR"),
                    delay=data.get("delay"),
                    conditions=data.get("conditions"),
                    message=data.get("message"),
                    document_ref=data.get("document_ref"),
                    validity_date=data.get("validity_date"),
                    info_request_message=data.get("info_request_message"),
                    rejection_reason=data.get("rejection_reason"),
                    viewed_at=data.get("viewed_at"),
                    responded_at=data.get("responded_at"),
                    resolved_at=data.get("resolved_at"),
                )
            )
        return Quote(
            id=int(row["id"]),
            number=str(row["number"]),
            tenant_id=str(row["tenant_id"]),
            requester_id=int(row["requester_id"]),
            site_id=int(row["site_id"]),
            equipment_id=int(row["equipment_id"]) if row.get("equipment_id") is not None else None,
            work_type=str(row["work_type"]),
            urgency=str(row["urgency"]),
            title=str(row["title"]),
            description=row.get("description"),
            status=str(row["status"]),
            recipient_ids=_load_recipient_ids(row.get("recipient_ids")),
            version=int(row["version"]),
            created_at=to_iso(row.get("created_at")),
            updated_at=to_iso(row.get("updated_at")),
            responses=responses,
        )

    def save(self, db, quote: Quote, *, now) -> None:
        """Persist ``quote`` if nobody changed it since it was loaded.

        Raises ``ConflictError("concurrent_update")`` when the stored version
        moved on; the caller's transaction then rolls back.
        """
        stamp = to_iso(now)
        cursor = db.execute(
            """
            UPDATE quotes
            SET title = ?, description = ?, urgency = ?, work_type = ?, status = ?,
                version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (
                quote.title,
                quote.description,
                quote.urgency,
                quote.work_type,
                quote.status,
                stamp,
                quote.id,
                quote.version,
            ),
        )
        if int(cursor.rowcount or 0) != 1:
            raise ConflictError(
                code="concurrent_update",
                details=f"quote_id={quote.id} expected_version={quote.version}",
            )
        quote.version += 1
        quote.updated_at = stamp

        assignments = ", ".join(f"{column} = ?" for column in _RESPONSE_COLUMNS)
        for response in quote.responses:
            values = [getattr(response, column) for column in _RESPONSE_COLUMNS]
            db.execute(
                f"""
                UPDATE quote_responses
                SET {assignments}, updated_at = ?
                WHERE id = ? AND quote_id = ?
                """,
                (*values, stamp, response.id, quote.id),
            )

    def delete(self, db, quote_id: int) -> None:
        db.execute("DELETE FROM quote_responses WHERE quote_id = ?", (int(quote_id),))
        db.execute("DELETE FROM quotes WHERE id = ?", (int(quote_id),))

    def _visibility(self, *, viewer_id: int | None, recipient_only: bool) -> tuple[str, tuple]:
        clause, params = self.tenant_clause(table_alias="q")
        if recipient_only and viewer_id is not None:
            clause = (
                f"{clause} AND (q.requester_id = ? OR EXISTS ("
                "SELECT 1 FROM quote_responses r WHERE r.quote_id = q.id AND r.recipient_id = ?))"
            )
            params = (*params, int(viewer_id), int(viewer_id))
        return clause, params

    def list(
        self,
        db,
        filters: QuoteListFilters,
        *,
        viewer_id: int | None = None,
        recipient_only: bool = False,
    ) -> List[Dict[str, Any]]:
        clause, params = self._visibility(viewer_id=viewer_id, recipient_only=recipient_only)
        conditions = [clause]
        values: List[Any] = list(params)
        if filters.status:
            conditions.append("q.status = ?")
            values.append(filters.status)
        if filters.work_type:
            conditions.append("q.work_type = ?")
            values.append(filters.work_type)
        if filters.site_id is not None:
            conditions.append("q.site_id = ?")
            values.append(int(filters.site_id))
        if filters.requester_id is not None:
            conditions.append("q.requester_id = ?")
            values.append(int(filters.requester_id))
        if filters.recipient_id is not None:
            conditions.append(
                "EXISTS (SELECT 1 FROM quote_responses rf WHERE rf.quote_id = q.id AND rf.recipient_id = ?)"
            )
            values.append(int(filters.recipient_id))
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            conditions.append(
                "(LOWER(q.number) LIKE ? OR LOWER(q.title) LIKE ? OR LOWER(COALESCE(q.description, '')) LIKE ?)"
            )
            values.extend([pattern, pattern, pattern])
        values.append(max(1, min(int(filters.limit or 200), 500)))

        rows = db.execute(
            f"""
            SELECT q.id, q.number, q.tenant_id, q.requester_id, q.site_id, q.equipment_id, q.work_type,
                   q.urgency, q.title, q.status, q.version, q.created_at, q.updated_at,
                   (SELECT COUNT(*) FROM quote_responses rc WHERE rc.quote_id = q.id) AS response_count
            FROM quotes q
            WHERE {" AND ".join(conditions)}
            ORDER BY q.id DESC
            LIMIT ?
            """,
            values,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def stats(self, db, *, viewer_id: int | None = None, recipient_only: bool = False) -> Dict[str, Any]:
        clause, params = self._visibility(viewer_id=viewer_id, recipient_only=recipient_only)
        by_status = db.execute(
            f"""
            SELECT q.status AS bucket, COUNT(*) AS total
            FROM quotes q
            WHERE {clause}
            GROUP BY q.status
            """,
            params,
        ).fetchall()
        by_work_type = db.execute(
            f"""
            SELECT q.work_type AS bucket, COUNT(*) AS total
            FROM quotes q
            WHERE {clause}
            GROUP BY q.work_type
            """,
            params,
        ).fetchall()
        status_counts = {str(row["bucket"]): int(row["total"]) for row in by_status}
        return {
            "total": sum(status_counts.values()),
            "by_status": status_counts,
            "by_work_type": {str(row["bucket"]): int(row["total"]) for row in by_work_type},
        }
