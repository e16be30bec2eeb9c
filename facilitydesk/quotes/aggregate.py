from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

from facilitydesk.domain.contracts import ProposalInput
from facilitydesk.errors import ConflictError, NotFoundError, ValidationError
from facilitydesk.quotes.states import (
    QUOTE_TERMINAL,
    RESPONSE_TERMINAL,
    SIBLING_ACCEPTED_REASON,
    derive_quote_status,
    ensure_response_transition,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        resolved = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return resolved.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")
    return str(value)


@dataclass(frozen=True)
class Transition:
    entity: str
    entity_id: int | None
    from_status: str | None
    to_status: str
    reason: str | None = None


@dataclass
class Response:
    recipient_id: int
    status: str = "pending"
    id: int | None = None
    amount_before_tax: float | None = None
    currency: str = "EUR"
    delay: str | None = None
    conditions: str | None = None
    message: str | None = None
    document_ref: str | None = None
    validity_date: str | None = None
    info_request_message: str | None = None
    rejection_reason: str | None = None
    viewed_at: str | None = None
    responded_at: str | None = None
    resolved_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in RESPONSE_TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "status": self.status,
            "amount_before_tax": self.amount_before_tax,
            "currency": self.currency,
            "delay": self.delay,
            "conditions": self.conditions,
            "message": self.message,
            "document_ref": self.document_ref,
            "validity_date": self.validity_date,
            "info_request_message": self.info_request_message,
            "rejection_reason": self.rejection_reason,
            "viewed_at": self.viewed_at,
            "responded_at": self.responded_at,
            "resolved_at": self.resolved_at,
        }


@dataclass
class Quote:
    """Quote request root: one requester, N recipients, one response each.

    Every mutating method validates against the response state machine and
    records a :class:`Transition`; the repository persists the transitions
    together with the new state and bumps ``version``.
    """

    tenant_id: str
    requester_id: int
    site_id: int
    work_type: str
    title: str
    recipient_ids: List[int]
    number: str = ""
    id: int | None = None
    equipment_id: int | None = None
    urgency: str = "normal"
    description: str | None = None
    status: str = "pending_response"
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None
    responses: List[Response] = field(default_factory=list)
    transitions: List[Transition] = field(default_factory=list)

    @classmethod
    def open(
        cls,
        *,
        tenant_id: str,
        requester_id: int,
        site_id: int,
        work_type: str,
        recipient_ids: List[int],
        equipment_id: int | None = None,
        urgency: str = "normal",
        description: str | None = None,
        title: str | None = None,
    ) -> "Quote":
        unique_recipients = list(dict.fromkeys(int(value) for value in recipient_ids))
        if not unique_recipients:
            raise ValidationError(code="recipients_required")
        quote = cls(
            tenant_id=tenant_id,
            requester_id=int(requester_id),
            site_id=int(site_id),
            equipment_id=int(equipment_id) if equipment_id is not None else None,
            work_type=work_type,
            urgency=urgency,
            description=description,
            title=(title or "").strip() or f"Quote request - {work_type}",
            recipient_ids=unique_recipients,
            responses=[Response(recipient_id=recipient_id) for recipient_id in unique_recipients],
        )
        quote.transitions.append(Transition("quote", None, None, quote.status, "created"))
        return quote

    @property
    def is_terminal(self) -> bool:
        return self.status in QUOTE_TERMINAL

    def response_for_recipient(self, recipient_id: int) -> Response | None:
        for response in self.responses:
            if response.recipient_id == int(recipient_id):
                return response
        return None

    def response_by_id(self, response_id: int) -> Response:
        for response in self.responses:
            if response.id == int(response_id):
                return response
        raise NotFoundError(code="response_not_found", details=f"response_id={response_id}")

    def accepted_response(self) -> Response | None:
        for response in self.responses:
            if response.status == "accepted":
                return response
        return None

    def ensure_open(self) -> None:
        if self.is_terminal:
            raise ConflictError(code="quote_closed", details=f"quote_status={self.status}")

    def _move_response(self, response: Response, to_status: str, reason: str | None = None) -> None:
        from_status = response.status
        response.status = to_status
        self.transitions.append(Transition("quote_response", response.id, from_status, to_status, reason))

    def _move_quote(self, to_status: str, reason: str | None = None) -> None:
        if to_status == self.status:
            return
        from_status = self.status
        self.status = to_status
        self.transitions.append(Transition("quote", self.id, from_status, to_status, reason))

    def refresh_status(self) -> None:
        if self.is_terminal:
            return
        self._move_quote(derive_quote_status(response.status for response in self.responses), "derived")

    def mark_viewed(self, response: Response, now: datetime) -> bool:
        if response.status != "pending":
            return False
        response.viewed_at = response.viewed_at or to_iso(now)
        self._move_response(response, "viewed")
        self.refresh_status()
        return True

    def submit_proposal(self, response: Response, proposal: ProposalInput, now: datetime, validity_days: int) -> None:
        self.ensure_open()
        ensure_response_transition(response.status, "responded")
        amount = _parse_amount(proposal.amount_before_tax)
        currency = _parse_currency(proposal.currency)
        validity = _parse_validity(proposal.validity_date) or (now + timedelta(days=int(validity_days))).date()

        stamp = to_iso(now)
        response.amount_before_tax = amount
        response.currency = currency
        response.delay = proposal.delay
        response.conditions = proposal.conditions
        response.message = proposal.message
        response.document_ref = proposal.document_ref
        response.validity_date = validity.isoformat()
        response.viewed_at = response.viewed_at or stamp
        response.responded_at = stamp
        self._move_response(response, "responded")
        self.refresh_status()

    def request_info(self, response: Response, message: str | None, now: datetime) -> None:
        self.ensure_open()
        text = str(message or "").strip()
        if not text:
            raise ValidationError(code="message_required")
        ensure_response_transition(response.status, "info_requested")
        response.info_request_message = text
        response.viewed_at = response.viewed_at or to_iso(now)
        self._move_response(response, "info_requested")
        self.refresh_status()

    def self_reject(self, response: Response, reason: str | None, now: datetime) -> None:
        self.ensure_open()
        ensure_response_transition(response.status, "rejected")
        text = str(reason or "").strip() or None
        response.message = text or response.message
        response.rejection_reason = "declined_by_recipient"
        self._resolve(response, "rejected", now, text)
        self.refresh_status()

    def reject_response(self, response: Response, now: datetime, reason: str | None = None) -> None:
        self.ensure_open()
        ensure_response_transition(response.status, "rejected")
        response.rejection_reason = reason or "rejected_by_requester"
        self._resolve(response, "rejected", now, response.rejection_reason)
        self.refresh_status()

    def accept(self, response: Response, now: datetime) -> List[Response]:
        """Accept ``response`` and close every other open response.

        Returns the sibling responses rejected by the cascade.
        """
        self.ensure_open()
        ensure_response_transition(response.status, "accepted")

        self._resolve(response, "accepted", now, None)
        rejected: List[Response] = []
        for sibling in self.responses:
            if sibling is response or sibling.is_terminal:
                continue
            sibling.rejection_reason = SIBLING_ACCEPTED_REASON
            self._resolve(sibling, "rejected", now, SIBLING_ACCEPTED_REASON)
            rejected.append(sibling)
        self._move_quote("accepted", "response_accepted")
        return rejected

    def close(self, to_status: str, now: datetime, reason: str | None = None) -> List[Response]:
        """Status bypass. ``rejected`` also resolves every open response."""
        if self.is_terminal:
            raise ConflictError(code="quote_closed", details=f"quote_status={self.status}")
        resolved: List[Response] = []
        if to_status == "rejected":
            for response in self.responses:
                if response.is_terminal:
                    continue
                response.rejection_reason = reason or "quote_rejected"
                self._resolve(response, "rejected", now, response.rejection_reason)
                resolved.append(response)
        self._move_quote(to_status, reason or "status_override")
        return resolved

    def update_details(
        self,
        *,
        title: str | None = None,
        description: str | None = None,
        urgency: str | None = None,
        work_type: str | None = None,
    ) -> bool:
        changed = False
        if title is not None and title.strip() and title.strip() != self.title:
            self.title = title.strip()
            changed = True
        if description is not None and description != self.description:
            self.description = description
            changed = True
        if urgency is not None and urgency != self.urgency:
            self.urgency = urgency
            changed = True
        if work_type is not None and work_type != self.work_type:
            self.work_type = work_type
            changed = True
        return changed

    def _resolve(self, response: Response, to_status: str, now: datetime, reason: str | None) -> None:
        stamp = to_iso(now)
        if to_status == "accepted" or response.responded_at:
            response.viewed_at = response.viewed_at or response.responded_at or stamp
        response.resolved_at = stamp
        self._move_response(response, to_status, reason)

    def drain_transitions(self) -> List[Transition]:
        drained = list(self.transitions)
        self.transitions.clear()
        return drained

    def to_dict(self, *, visible_recipient_id: int | None = None) -> Dict[str, Any]:
        responses = self.responses
        if visible_recipient_id is not None:
            responses = [response for response in responses if response.recipient_id == int(visible_recipient_id)]
        return {
            "id": self.id,
            "number": self.number,
            "tenant_id": self.tenant_id,
            "requester_id": self.requester_id,
            "site_id": self.site_id,
            "equipment_id": self.equipment_id,
            "work_type": self.work_type,
            "urgency": self.urgency,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "recipient_ids": list(self.recipient_ids),
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "responses": [response.to_dict() for response in responses],
        }


def _parse_amount(value: object) -> float:
    if isinstance(value, bool):
        raise ValidationError(code="amount_invalid", details=f"amount={value!r}")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(code="amount_invalid", details=f"amount={value!r}") from None
    if amount != amount or amount < 0:
        raise ValidationError(code="amount_invalid", details=f"amount={value!r}")
    return round(amount, 2)


def _parse_currency(value: object) -> str:
    currency = str(value or "EUR").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError(code="currency_invalid", details=f"currency={value!r}")
    return currency


def _parse_validity(value: object) -> date | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        raise ValidationError(code="validity_invalid", details=f"validity_date={value!r}") from None
