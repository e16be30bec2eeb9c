from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from facilitydesk.domain.contracts import ServiceOutput
from facilitydesk.errors import ConflictError, ForbiddenError, NotFoundError
from facilitydesk.infrastructure.repositories.order_repository import OrderRepository
from facilitydesk.infrastructure.repositories.quote_repository import QuoteRepository
from facilitydesk.quotes.aggregate import utc_now
from facilitydesk.quotes.numbering import DocumentNumberGenerator
from facilitydesk.tenant import RequestContext, resolve_scope
from facilitydesk.ui_strings import success_message


logger = logging.getLogger("facilitydesk.orders")

DEFAULT_TAX_RATE_PERCENT = 20


def _tax_rate_percent() -> int:
    from flask import current_app, has_app_context

    if not has_app_context():
        return DEFAULT_TAX_RATE_PERCENT
    try:
        return int(current_app.config.get("ORDER_TAX_RATE_PERCENT", DEFAULT_TAX_RATE_PERCENT))
    except (TypeError, ValueError):
        return DEFAULT_TAX_RATE_PERCENT


def compute_order_amounts(amount_before_tax: float, tax_rate_percent: int) -> tuple[float, float, float]:
    base = round(float(amount_before_tax or 0.0), 2)
    tax = round(base * int(tax_rate_percent) / 100.0, 2)
    return base, tax, round(base + tax, 2)


class OrderService:
    """Work orders created from an accepted quote, one per quote."""

    def __init__(
        self,
        *,
        numbering: DocumentNumberGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.numbering = numbering or DocumentNumberGenerator()
        self.clock = clock or utc_now

    def create_from_quote(self, db, ctx: RequestContext, quote_id: int) -> ServiceOutput:
        scope = resolve_scope(ctx)
        quote = QuoteRepository(scope).get(db, quote_id)
        if quote is None:
            raise NotFoundError(code="quote_not_found", details=f"quote_id={quote_id}")
        if not (ctx.is_superadmin or ctx.principal_id == quote.requester_id):
            raise ForbiddenError(code="permission_denied", details="requester or superadmin only")

        accepted = quote.accepted_response()
        if quote.status != "accepted" or accepted is None:
            raise ConflictError(code="quote_not_accepted", details=f"quote_status={quote.status}")

        base, tax, total = compute_order_amounts(accepted.amount_before_tax or 0.0, _tax_rate_percent())
        orders = OrderRepository(scope)
        now = self.clock()
        with db.transaction():
            if orders.get_by_quote(db, quote.id) is not None:
                raise ConflictError(code="order_already_exists", details=f"quote_id={quote.id}")
            order = orders.create(
                db,
                number=self.numbering.next_order_number(db, quote.tenant_id, now),
                tenant_id=quote.tenant_id,
                quote_id=quote.id,
                supplier_id=accepted.recipient_id,
                requester_id=quote.requester_id,
                site_id=quote.site_id,
                amount_before_tax=base,
                tax_amount=tax,
                amount_total=total,
                currency=accepted.currency,
                now=now,
            )

        logger.info(
            "order_created",
            extra={"order_id": order["id"], "number": order["number"], "quote_id": quote.id},
        )
        return ServiceOutput({"order": order, "message": success_message("order_created")}, 201)
