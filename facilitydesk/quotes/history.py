from __future__ import annotations

import logging

from facilitydesk.infrastructure.repositories.status_event_repository import StatusEventRepository
from facilitydesk.observability import observe_quote_transition
from facilitydesk.quotes.aggregate import Quote


logger = logging.getLogger("facilitydesk.quotes")


def record_transitions(
    db,
    quote: Quote,
    *,
    actor_id: int | None,
    now,
    repository: StatusEventRepository | None = None,
) -> int:
    """Persist the aggregate's pending transitions as ``status_events`` rows."""
    repo = repository or StatusEventRepository.unscoped()
    transitions = quote.drain_transitions()
    repo.record_transitions(
        db,
        transitions,
        tenant_id=quote.tenant_id,
        quote_id=int(quote.id),
        actor_id=actor_id,
        occurred_at=now,
    )
    for transition in transitions:
        observe_quote_transition(transition.entity, transition.to_status)
        if transition.entity == "quote_response":
            logger.info(
                "quote_response_transition",
                extra={
                    "quote_id": quote.id,
                    "response_id": transition.entity_id,
                    "from_status": transition.from_status,
                    "to_status": transition.to_status,
                    "reason": transition.reason,
                    "actor_id": actor_id,
                },
            )
    return len(transitions)
