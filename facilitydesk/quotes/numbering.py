from __future__ import annotations

from datetime import datetime

from facilitydesk.infrastructure.repositories.sequence_repository import SequenceRepository


QUOTE_PREFIX = "DEV"
ORDER_PREFIX = "CMD"


class DocumentNumberGenerator:
    """``<PREFIX>-<year>-<00001>`` numbers from a per-tenant yearly counter."""

    def __init__(self, repository: SequenceRepository | None = None) -> None:
        self.repository = repository or SequenceRepository.unscoped()

    def _next(self, db, *, prefix: str, scope: str, tenant_id: str, now: datetime) -> str:
        value = self.repository.next_value(db, tenant_id=tenant_id, scope=scope, year=now.year)
        return f"{prefix}-{now.year}-{value:05d}"

    def next_quote_number(self, db, tenant_id: str, now: datetime) -> str:
        return self._next(db, prefix=QUOTE_PREFIX, scope="quote", tenant_id=tenant_id, now=now)

    def next_order_number(self, db, tenant_id: str, now: datetime) -> str:
        return self._next(db, prefix=ORDER_PREFIX, scope="order", tenant_id=tenant_id, now=now)
