from __future__ import annotations

import json
from typing import Dict, List

from facilitydesk.infrastructure.repositories.base import BaseRepository
from facilitydesk.quotes.aggregate import to_iso


OUTBOX_STATUS_PENDING = "pending"
OUTBOX_STATUS_SENT = "sent"
OUTBOX_STATUS_FAILED = "failed"


def _json_loads(value: str | None) -> Dict[str, object]:
    raw = str(value or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class NotificationRepository(BaseRepository):
    def add_notification(
        self,
        db,
        *,
        recipient_id: int,
        tenant_id: str | None,
        title: str,
        message: str,
        related_quote_id: int | None,
        now,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (recipient_id, tenant_id, title, message, related_quote_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (int(recipient_id), tenant_id, title, message, related_quote_id, to_iso(now)),
        )
        return self.inserted_id(cursor)

    def list_for_recipient(self, db, recipient_id: int, *, limit: int = 100) -> List[dict]:
        rows = db.execute(
            """
            SELECT id, recipient_id, title, message, related_quote_id, read_at, created_at
            FROM notifications
            WHERE recipient_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (int(recipient_id), int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def enqueue(
        self,
        db,
        *,
        kind: str,
        recipient_id: int,
        tenant_id: str | None,
        quote_id: int | None,
        payload: Dict[str, object],
        now,
    ) -> int:
        stamp = to_iso(now)
        cursor = db.execute(
            """
            INSERT INTO notification_outbox (
                tenant_id, kind, recipient_id, quote_id, payload, status, attempts, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
            RETURNING id
            """,
            (
                tenant_id,
                kind,
                int(recipient_id),
                quote_id,
                json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str),
                OUTBOX_STATUS_PENDING,
                stamp,
                stamp,
            ),
        )
        return self.inserted_id(cursor)

    def select_pending(self, db, *, limit: int) -> List[dict]:
        rows = db.execute(
            """
            SELECT id, tenant_id, kind, recipient_id, quote_id, payload, attempts
            FROM notification_outbox
            WHERE status = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (OUTBOX_STATUS_PENDING, max(1, int(limit))),
        ).fetchall()
        entries = []
        for row in rows:
            entry = dict(row)
            entry["payload"] = _json_loads(entry.get("payload"))
            entries.append(entry)
        return entries

    def mark_sent(self, db, entry_id: int, *, now) -> None:
        stamp = to_iso(now)
        db.execute(
            """
            UPDATE notification_outbox
            SET status = ?, attempts = attempts + 1, last_error = NULL, sent_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (OUTBOX_STATUS_SENT, stamp, stamp, int(entry_id)),
        )

    def mark_attempt_failed(self, db, entry_id: int, *, error: str, give_up: bool, now) -> None:
        db.execute(
            """
            UPDATE notification_outbox
            SET status = ?, attempts = attempts + 1, last_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                OUTBOX_STATUS_FAILED if give_up else OUTBOX_STATUS_PENDING,
                error[:500],
                to_iso(now),
                int(entry_id),
            ),
        )
