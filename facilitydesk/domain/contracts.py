from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class QuoteCreateInput:
    recipient_ids: List[int]
    site_id: int | None
    work_type: str
    equipment_id: int | None = None
    urgency: str = "normal"
    description: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class QuoteUpdateInput:
    title: str | None = None
    description: str | None = None
    urgency: str | None = None
    work_type: str | None = None


@dataclass(frozen=True)
class ProposalInput:
    amount_before_tax: float
    currency: str = "EUR"
    delay: str | None = None
    conditions: str | None = None
    message: str | None = None
    document_ref: str | None = None
    validity_date: str | None = None


@dataclass(frozen=True)
class QuoteListFilters:
    status: str | None = None
    work_type: str | None = None
    site_id: int | None = None
    requester_id: int | None = None
    recipient_id: int | None = None
    search: str | None = None
    limit: int = 200

