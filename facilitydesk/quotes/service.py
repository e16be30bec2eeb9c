from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Tuple

from facilitydesk.core import (
    EventBus,
    QuoteCreated,
    QuoteResponseRejected,
    QuoteResponseSubmitted,
    get_event_bus,
)
from facilitydesk.directory import Directory
from facilitydesk.domain.contracts import (
    ProposalInput,
    QuoteCreateInput,
    QuoteListFilters,
    QuoteUpdateInput,
    ServiceOutput,
)
from facilitydesk.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from facilitydesk.infrastructure.repositories.order_repository import OrderRepository
from facilitydesk.infrastructure.repositories.quote_repository import QuoteRepository
from facilitydesk.infrastructure.repositories.status_event_repository import StatusEventRepository
from facilitydesk.policies import CLIENT_ADMIN, SUPERADMIN, is_recipient_only, is_staff, require_roles
from facilitydesk.quotes.acceptance import AcceptanceResolutionEngine
from facilitydesk.quotes.aggregate import Quote, Response, utc_now
from facilitydesk.quotes.history import record_transitions
from facilitydesk.quotes.numbering import DocumentNumberGenerator
from facilitydesk.quotes.states import (
    REQUESTER_STATUS_TARGETS,
    STAFF_STATUS_TARGETS,
    parse_quote_status,
    parse_urgency,
    parse_work_type,
)
from facilitydesk.tenant import RequestContext, resolve_scope
from facilitydesk.ui_strings import success_message


logger = logging.getLogger("facilitydesk.quotes")

RECIPIENT_ACTION_ATTEMPTS = 3

RecipientAction = Callable[[Quote, Response, datetime], bool]


def _config_int(name: str, default: int) -> int:
    from flask import current_app, has_app_context

    if not has_app_context():
        return default
    try:
        return int(current_app.config.get(name, default))
    except (TypeError, ValueError):
        return default


class QuoteService:
    """Quote request lifecycle: creation, recipient responses, resolution."""

    def __init__(
        self,
        *,
        directory: Directory | None = None,
        numbering: DocumentNumberGenerator | None = None,
        acceptance: AcceptanceResolutionEngine | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.directory = directory or Directory()
        self.numbering = numbering or DocumentNumberGenerator()
        self.event_bus = event_bus or get_event_bus()
        self.acceptance = acceptance or AcceptanceResolutionEngine(event_bus=self.event_bus)
        self.clock = clock or utc_now

    @staticmethod
    def _repository(ctx: RequestContext) -> QuoteRepository:
        return QuoteRepository(resolve_scope(ctx))

    @staticmethod
    def _is_requester(ctx: RequestContext, quote: Quote) -> bool:
        return ctx.principal_id == quote.requester_id

    def _visible_recipient(self, ctx: RequestContext, quote: Quote) -> int | None:
        if is_recipient_only(ctx.role) and not self._is_requester(ctx, quote):
            return ctx.principal_id
        return None

    def _present(self, ctx: RequestContext, quote: Quote) -> Dict[str, Any]:
        return quote.to_dict(visible_recipient_id=self._visible_recipient(ctx, quote))

    def _load(self, db, ctx: RequestContext, quote_id: int) -> tuple[QuoteRepository, Quote]:
        repository = self._repository(ctx)
        quote = repository.get(db, quote_id)
        if quote is None:
            raise NotFoundError(code="quote_not_found", details=f"quote_id={quote_id}")
        return repository, quote

    def _load_visible(self, db, ctx: RequestContext, quote_id: int) -> tuple[QuoteRepository, Quote]:
        repository, quote = self._load(db, ctx, quote_id)
        if is_recipient_only(ctx.role):
            if not self._is_requester(ctx, quote) and quote.response_for_recipient(ctx.principal_id) is None:
                raise NotFoundError(code="quote_not_found", details=f"quote_id={quote_id}")
        return repository, quote

    def _require_requester(self, ctx: RequestContext, quote: Quote) -> None:
        if not (ctx.is_superadmin or self._is_requester(ctx, quote)):
            raise ForbiddenError(code="permission_denied", details="requester or superadmin only")

    @staticmethod
    def _recipient_response(ctx: RequestContext, quote: Quote, response_id: int | None) -> Response:
        if response_id is not None:
            response = quote.response_by_id(response_id)
            if response.recipient_id != ctx.principal_id:
                raise ForbiddenError(code="permission_denied", details="not the named recipient")
            return response
        response = quote.response_for_recipient(ctx.principal_id)
        if response is None:
            raise ForbiddenError(code="permission_denied", details="not a recipient of this quote")
        return response

    def _persist(self, db, ctx: RequestContext, repository: QuoteRepository, quote: Quote, now: datetime) -> None:
        with db.transaction():
            repository.save(db, quote, now=now)
            record_transitions(db, quote, actor_id=ctx.principal_id, now=now)

    def _run_recipient_action(
        self,
        db,
        ctx: RequestContext,
        quote_id: int,
        response_id: int | None,
        action: RecipientAction,
    ) -> Tuple[Quote, Response]:
        """Apply ``action`` to the caller's response and persist it.

        Recipients only touch their own response, so a version bump from a
        sibling recipient is retried against a fresh load. The action is
        re-validated on every attempt and returns False when nothing changed.
        """
        attempt = 1
        while True:
            repository, quote = self._load(db, ctx, quote_id)
            response = self._recipient_response(ctx, quote, response_id)
            now = self.clock()
            if not action(quote, response, now):
                return quote, response
            try:
                self._persist(db, ctx, repository, quote, now)
            except ConflictError as exc:
                if exc.code != "concurrent_update" or attempt >= RECIPIENT_ACTION_ATTEMPTS:
                    raise
                logger.info(
                    "quote_update_retried",
                    extra={"quote_id": quote_id, "attempt": attempt, "actor_id": ctx.principal_id},
                )
                attempt += 1
                continue
            return quote, response

    def create(self, db, ctx: RequestContext, data: QuoteCreateInput) -> ServiceOutput:
        scope = resolve_scope(ctx)
        if scope.denied:
            raise ForbiddenError(code="tenant_required")

        work_type = parse_work_type(data.work_type)
        urgency = parse_urgency(data.urgency, default="normal")
        recipient_ids = list(dict.fromkeys(int(value) for value in (data.recipient_ids or [])))
        if not recipient_ids:
            raise ValidationError(code="recipients_required")
        if data.site_id is None:
            raise ValidationError(code="site_required")

        site = self.directory.resolve_site(db, data.site_id)
        if not site.get("exists") or not scope.allows(str(site["tenant_id"])):
            raise ValidationError(code="site_not_found", details=f"site_id={data.site_id}")
        tenant_id = str(site["tenant_id"]) if ctx.is_superadmin else str(ctx.tenant_id)

        if data.equipment_id is not None:
            equipment = self.directory.resolve_equipment(db, data.equipment_id)
            if not equipment.get("exists") or str(equipment["tenant_id"]) != tenant_id:
                raise ValidationError(code="equipment_not_found", details=f"equipment_id={data.equipment_id}")
            if int(equipment["site_id"]) != int(site["id"]):
                raise ValidationError(code="equipment_site_mismatch", details=f"equipment_id={data.equipment_id}")

        principals = self.directory.resolve_principals(db, recipient_ids)
        missing = [
            recipient_id
            for recipient_id in recipient_ids
            if recipient_id not in principals or str(principals[recipient_id].get("tenant_id") or "") != tenant_id
        ]
        if missing:
            raise ValidationError(code="recipient_not_found", details=f"recipient_ids={missing}")

        quote = Quote.open(
            tenant_id=tenant_id,
            requester_id=ctx.principal_id,
            site_id=int(site["id"]),
            equipment_id=data.equipment_id,
            work_type=work_type,
            urgency=urgency,
            description=(data.description or "").strip() or None,
            title=data.title,
            recipient_ids=recipient_ids,
        )
        now = self.clock()
        repository = QuoteRepository.for_tenant(tenant_id)
        with db.transaction():
            quote.number = self.numbering.next_quote_number(db, tenant_id, now)
            repository.insert(db, quote, now=now)
            record_transitions(db, quote, actor_id=ctx.principal_id, now=now)

        logger.info(
            "quote_created",
            extra={
                "quote_id": quote.id,
                "number": quote.number,
                "tenant_id": tenant_id,
                "recipient_count": len(quote.recipient_ids),
            },
        )
        self.event_bus.publish(
            QuoteCreated(
                tenant_id=tenant_id,
                quote_id=int(quote.id),
                number=quote.number,
                requester_id=quote.requester_id,
                recipient_ids=tuple(quote.recipient_ids),
            )
        )
        return ServiceOutput({"quote": quote.to_dict(), "message": success_message("quote_created")}, 201)

    def get(self, db, ctx: RequestContext, quote_id: int) -> ServiceOutput:
        _, quote = self._load_visible(db, ctx, quote_id)
        return ServiceOutput({"quote": self._present(ctx, quote)})

    def list(self, db, ctx: RequestContext, filters: QuoteListFilters) -> ServiceOutput:
        if filters.status:
            parse_quote_status(filters.status)
        if filters.work_type:
            parse_work_type(filters.work_type)
        items = self._repository(ctx).list(
            db,
            filters,
            viewer_id=ctx.principal_id,
            recipient_only=is_recipient_only(ctx.role),
        )
        return ServiceOutput({"items": items, "count": len(items)})

    def stats(self, db, ctx: RequestContext) -> ServiceOutput:
        stats = self._repository(ctx).stats(
            db,
            viewer_id=ctx.principal_id,
            recipient_only=is_recipient_only(ctx.role),
        )
        return ServiceOutput(stats)

    def update(self, db, ctx: RequestContext, quote_id: int, data: QuoteUpdateInput) -> ServiceOutput:
        repository, quote = self._load(db, ctx, quote_id)
        self._require_requester(ctx, quote)
        if all(value is None for value in (data.title, data.description, data.urgency, data.work_type)):
            raise ValidationError(code="no_changes")
        quote.ensure_open()
        changed = quote.update_details(
            title=data.title,
            description=data.description,
            urgency=parse_urgency(data.urgency) if data.urgency is not None else None,
            work_type=parse_work_type(data.work_type) if data.work_type is not None else None,
        )
        if changed:
            self._persist(db, ctx, repository, quote, self.clock())
        return ServiceOutput({"quote": quote.to_dict(), "message": success_message("quote_updated")})

    def delete(self, db, ctx: RequestContext, quote_id: int) -> ServiceOutput:
        repository, quote = self._load(db, ctx, quote_id)
        self._require_requester(ctx, quote)
        with db.transaction():
            # Orders outlive a plain delete; only purge removes them.
            if OrderRepository.unscoped().get_by_quote(db, quote.id) is not None:
                raise ConflictError(code="order_exists", details=f"quote_id={quote.id}")
            StatusEventRepository.unscoped().delete_for_quote(db, quote.id)
            repository.delete(db, quote.id)
        logger.info("quote_deleted", extra={"quote_id": quote.id, "actor_id": ctx.principal_id})
        return ServiceOutput({"id": quote.id, "message": success_message("quote_deleted")})

    def purge(self, db, ctx: RequestContext, quote_id: int) -> ServiceOutput:
        require_roles(ctx.role, SUPERADMIN, CLIENT_ADMIN)
        repository, quote = self._load(db, ctx, quote_id)
        with db.transaction():
            orders_deleted = OrderRepository.unscoped().delete_for_quote(db, quote.id)
            StatusEventRepository.unscoped().delete_for_quote(db, quote.id)
            repository.delete(db, quote.id)
        logger.info(
            "quote_purged",
            extra={"quote_id": quote.id, "orders_deleted": orders_deleted, "actor_id": ctx.principal_id},
        )
        return ServiceOutput(
            {"id": quote.id, "orders_deleted": orders_deleted, "message": success_message("quote_purged")}
        )

    def mark_viewed(self, db, ctx: RequestContext, quote_id: int, *, response_id: int | None = None) -> ServiceOutput:
        quote, response = self._run_recipient_action(db, ctx, quote_id, response_id, Quote.mark_viewed)
        return ServiceOutput(
            {
                "quote": self._present(ctx, quote),
                "response": response.to_dict(),
                "message": success_message("quote_viewed"),
            }
        )

    def submit_proposal(
        self,
        db,
        ctx: RequestContext,
        quote_id: int,
        proposal: ProposalInput,
        *,
        response_id: int | None = None,
    ) -> ServiceOutput:
        validity_days = _config_int("QUOTE_VALIDITY_DAYS", 30)

        def propose(quote: Quote, response: Response, now: datetime) -> bool:
            quote.submit_proposal(response, proposal, now, validity_days)
            return True

        quote, response = self._run_recipient_action(db, ctx, quote_id, response_id, propose)
        self.event_bus.publish(
            QuoteResponseSubmitted(
                tenant_id=quote.tenant_id,
                quote_id=int(quote.id),
                number=quote.number,
                response_id=int(response.id),
                recipient_id=response.recipient_id,
                requester_id=quote.requester_id,
            )
        )
        return ServiceOutput(
            {
                "quote": self._present(ctx, quote),
                "response": response.to_dict(),
                "message": success_message("proposal_submitted"),
            }
        )

    def request_info(
        self,
        db,
        ctx: RequestContext,
        quote_id: int,
        message: str | None,
        *,
        response_id: int | None = None,
    ) -> ServiceOutput:
        def ask(quote: Quote, response: Response, now: datetime) -> bool:
            quote.request_info(response, message, now)
            return True

        quote, response = self._run_recipient_action(db, ctx, quote_id, response_id, ask)
        return ServiceOutput(
            {
                "quote": self._present(ctx, quote),
                "response": response.to_dict(),
                "message": success_message("info_requested"),
            }
        )

    def self_reject(
        self,
        db,
        ctx: RequestContext,
        quote_id: int,
        reason: str | None,
        *,
        response_id: int | None = None,
    ) -> ServiceOutput:
        def decline(quote: Quote, response: Response, now: datetime) -> bool:
            quote.self_reject(response, reason, now)
            return True

        quote, response = self._run_recipient_action(db, ctx, quote_id, response_id, decline)
        self.event_bus.publish(
            QuoteResponseRejected(
                tenant_id=quote.tenant_id,
                quote_id=int(quote.id),
                response_id=int(response.id),
                recipient_id=response.recipient_id,
                reason=response.rejection_reason or "",
            )
        )
        return ServiceOutput(
            {
                "quote": self._present(ctx, quote),
                "response": response.to_dict(),
                "message": success_message("response_rejected"),
            }
        )

    def resolve_response(
        self,
        db,
        ctx: RequestContext,
        quote_id: int,
        response_id: int,
        status: str | None,
    ) -> ServiceOutput:
        target = str(status or "").strip()
        if target not in {"accepted", "rejected"}:
            raise ValidationError(code="status_invalid", details=f"status={status!r}")
        repository, quote = self._load(db, ctx, quote_id)
        self._require_requester(ctx, quote)
        response = quote.response_by_id(response_id)

        if target == "accepted":
            result = self.acceptance.accept(db, ctx, quote, response, repository=repository, now=self.clock())
            return ServiceOutput(
                {
                    "quote": result.quote.to_dict(),
                    "response": result.accepted.to_dict(),
                    "rejected_response_ids": [item.id for item in result.rejected],
                    "access_granted": result.grant is not None,
                    "message": success_message("response_accepted"),
                }
            )

        now = self.clock()
        quote.reject_response(response, now)
        self._persist(db, ctx, repository, quote, now)
        self.event_bus.publish(
            QuoteResponseRejected(
                tenant_id=quote.tenant_id,
                quote_id=int(quote.id),
                response_id=int(response.id),
                recipient_id=response.recipient_id,
                reason=response.rejection_reason or "",
            )
        )
        return ServiceOutput(
            {
                "quote": quote.to_dict(),
                "response": response.to_dict(),
                "message": success_message("response_resolution_rejected"),
            }
        )

    def set_status(self, db, ctx: RequestContext, quote_id: int, status: str | None) -> ServiceOutput:
        target = parse_quote_status(status)
        repository, quote = self._load(db, ctx, quote_id)

        privileged = ctx.is_superadmin or is_staff(ctx.role)
        if privileged:
            allowed = STAFF_STATUS_TARGETS
        elif self._is_requester(ctx, quote):
            allowed = REQUESTER_STATUS_TARGETS
        else:
            raise ForbiddenError(code="permission_denied", details="status change not allowed for role")

        quote.ensure_open()
        if target not in allowed:
            if privileged:
                raise ConflictError(code="status_transition_not_allowed", details=f"target={target}")
            raise ForbiddenError(code="permission_denied", details=f"target={target}")

        now = self.clock()
        resolved = quote.close(target, now)
        self._persist(db, ctx, repository, quote, now)
        for response in resolved:
            self.event_bus.publish(
                QuoteResponseRejected(
                    tenant_id=quote.tenant_id,
                    quote_id=int(quote.id),
                    response_id=int(response.id),
                    recipient_id=response.recipient_id,
                    reason=response.rejection_reason or "",
                )
            )
        return ServiceOutput({"quote": quote.to_dict(), "message": success_message("quote_status_updated")})

    def history(self, db, ctx: RequestContext, quote_id: int) -> ServiceOutput:
        _, quote = self._load_visible(db, ctx, quote_id)
        events = StatusEventRepository(resolve_scope(ctx)).list_for_quote(db, quote.id)
        return ServiceOutput({"quote_id": quote.id, "items": events})
