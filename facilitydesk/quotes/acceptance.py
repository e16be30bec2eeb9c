from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from facilitydesk.access.grants import AccessGrantStore
from facilitydesk.core import (
    AccessGranted,
    EventBus,
    QuoteAccepted,
    QuoteResponseRejected,
    get_event_bus,
)
from facilitydesk.errors import ForbiddenError
from facilitydesk.infrastructure.repositories.quote_repository import QuoteRepository
from facilitydesk.quotes.aggregate import Quote, Response, utc_now
from facilitydesk.quotes.history import record_transitions
from facilitydesk.quotes.states import SIBLING_ACCEPTED_REASON
from facilitydesk.tenant import RequestContext


logger = logging.getLogger("facilitydesk.quotes")

GRANT_LEVEL_ON_ACCEPT = "read"


@dataclass
class AcceptanceResult:
    quote: Quote
    accepted: Response
    rejected: List[Response] = field(default_factory=list)
    grant: AccessGranted | None = None


class AcceptanceResolutionEngine:
    """Accepts one response and cascades the consequences.

    The accepted/rejected transitions, the quote status, the history rows and
    the site grant are written in one transaction guarded by the quote
    version. Events are published only after the commit.
    """

    def __init__(
        self,
        *,
        grants: AccessGrantStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.grants = grants or AccessGrantStore()
        self.event_bus = event_bus or get_event_bus()

    def accept(
        self,
        db,
        ctx: RequestContext,
        quote: Quote,
        response: Response,
        *,
        repository: QuoteRepository,
        now: datetime | None = None,
    ) -> AcceptanceResult:
        if not (ctx.is_superadmin or ctx.principal_id == quote.requester_id):
            raise ForbiddenError(code="permission_denied", details="only the requester may accept")

        moment = now or utc_now()
        rejected = quote.accept(response, moment)
        with db.transaction():
            repository.save(db, quote, now=moment)
            record_transitions(db, quote, actor_id=ctx.principal_id, now=moment)
            grant = self.grants.ensure_grant(
                db,
                principal_id=response.recipient_id,
                site_id=quote.site_id,
                tenant_id=quote.tenant_id,
                level=GRANT_LEVEL_ON_ACCEPT,
                origin_quote_id=quote.id,
            )

        logger.info(
            "quote_accepted",
            extra={
                "quote_id": quote.id,
                "response_id": response.id,
                "recipient_id": response.recipient_id,
                "rejected_response_ids": [item.id for item in rejected],
                "grant_created": grant is not None,
            },
        )
        self.event_bus.publish(
            QuoteAccepted(
                tenant_id=quote.tenant_id,
                quote_id=int(quote.id),
                number=quote.number,
                response_id=int(response.id),
                recipient_id=response.recipient_id,
                requester_id=quote.requester_id,
                rejected_response_ids=tuple(int(item.id) for item in rejected),
            )
        )
        for sibling in rejected:
            self.event_bus.publish(
                QuoteResponseRejected(
                    tenant_id=quote.tenant_id,
                    quote_id=int(quote.id),
                    response_id=int(sibling.id),
                    recipient_id=sibling.recipient_id,
                    reason=SIBLING_ACCEPTED_REASON,
                )
            )
        if grant is not None:
            self.event_bus.publish(grant)
        return AcceptanceResult(quote=quote, accepted=response, rejected=rejected, grant=grant)
