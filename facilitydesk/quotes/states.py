from __future__ import annotations

from typing import Dict, FrozenSet, Iterable

from facilitydesk.errors import ConflictError, ValidationError
from facilitydesk.ui_strings import status_keys_for_group


QUOTE_STATUSES = tuple(status_keys_for_group("quote"))
RESPONSE_STATUSES = tuple(status_keys_for_group("quote_response"))
WORK_TYPES = tuple(status_keys_for_group("work_type"))
URGENCIES = tuple(status_keys_for_group("urgency"))
ACCESS_LEVELS = tuple(status_keys_for_group("access_level"))

QUOTE_TERMINAL: FrozenSet[str] = frozenset({"accepted", "rejected", "expired"})
RESPONSE_TERMINAL: FrozenSet[str] = frozenset({"accepted", "rejected"})

# Targets reachable through PATCH /quotes/:id/status, per actor kind.
REQUESTER_STATUS_TARGETS: FrozenSet[str] = frozenset({"in_progress", "submitted", "expired"})
STAFF_STATUS_TARGETS: FrozenSet[str] = frozenset(
    {"pending_response", "viewed", "in_progress", "submitted", "rejected", "expired"}
)

RESPONSE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"viewed", "responded", "info_requested", "rejected", "accepted"}),
    "viewed": frozenset({"responded", "info_requested", "rejected", "accepted"}),
    "info_requested": frozenset({"responded", "rejected", "accepted"}),
    "responded": frozenset({"responded", "info_requested", "rejected", "accepted"}),
    "rejected": frozenset(),
    "accepted": frozenset(),
}

SIBLING_ACCEPTED_REASON = "sibling_accepted"


def _parse_enum(value: object, allowed: Iterable[str], code: str) -> str:
    normalized = str(value or "").strip()
    if normalized not in allowed:
        raise ValidationError(code=code, details=f"value={value!r}")
    return normalized


def parse_quote_status(value: object) -> str:
    return _parse_enum(value, QUOTE_STATUSES, "status_invalid")


def parse_work_type(value: object) -> str:
    return _parse_enum(value, WORK_TYPES, "work_type_invalid")


def parse_urgency(value: object, default: str | None = None) -> str:
    if (value is None or str(value).strip() == "") and default is not None:
        return default
    return _parse_enum(value, URGENCIES, "urgency_invalid")


def parse_access_level(value: object) -> str:
    return _parse_enum(value, ACCESS_LEVELS, "validation_error")


def can_transition_response(from_status: str, to_status: str) -> bool:
    return to_status in RESPONSE_TRANSITIONS.get(from_status, frozenset())


def ensure_response_transition(from_status: str, to_status: str) -> None:
    if from_status in RESPONSE_TERMINAL:
        raise ConflictError(code="response_already_resolved", details=f"{from_status}->{to_status}")
    if not can_transition_response(from_status, to_status):
        raise ConflictError(code="status_transition_not_allowed", details=f"{from_status}->{to_status}")


def derive_quote_status(response_statuses: Iterable[str]) -> str:
    """Quote status implied by its responses while the quote is still open."""
    statuses = list(response_statuses)
    if statuses and all(status == "rejected" for status in statuses):
        return "rejected"
    if "responded" in statuses:
        return "submitted"
    if "info_requested" in statuses:
        return "in_progress"
    if "viewed" in statuses:
        return "viewed"
    return "pending_response"


ACCESS_LEVEL_RANK: Dict[str, int] = {level: rank for rank, level in enumerate(ACCESS_LEVELS, start=1)}


def access_level_at_least(level: str | None, required: str) -> bool:
    return ACCESS_LEVEL_RANK.get(str(level or ""), 0) >= ACCESS_LEVEL_RANK.get(required, 0)
