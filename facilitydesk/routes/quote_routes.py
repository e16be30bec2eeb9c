from __future__ import annotations

from typing import List

from flask import Blueprint, jsonify, request

from facilitydesk.db import get_db
from facilitydesk.domain.contracts import ProposalInput, QuoteCreateInput, QuoteListFilters, QuoteUpdateInput
from facilitydesk.errors import ValidationError
from facilitydesk.quotes.orders import OrderService
from facilitydesk.quotes.service import QuoteService
from facilitydesk.tenant import current_context


quote_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")

_QUOTE_SERVICE = QuoteService()
_ORDER_SERVICE = OrderService()


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _parse_optional_int(value) -> int | None:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _required_optional_int(value, code: str) -> int | None:
    """``None`` for a missing value; ``ValidationError(code)`` for a malformed one."""
    if value in (None, ""):
        return None
    parsed = _parse_optional_int(value)
    if parsed is None:
        raise ValidationError(code=code, details=f"value={value!r}")
    return parsed


def _parse_recipient_ids(value) -> List[int]:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise ValidationError(code="recipients_required", details="recipient_ids must be a list")
    result: List[int] = []
    for item in value:
        parsed = _parse_optional_int(item)
        if parsed is None:
            raise ValidationError(code="recipient_not_found", details=f"recipient_id={item!r}")
        result.append(parsed)
    return list(dict.fromkeys(result))


def _optional_text(payload: dict, key: str) -> str | None:
    if key not in payload or payload.get(key) is None:
        return None
    return str(payload.get(key))


def _parse_limit(value: str | None, default: int = 200) -> int:
    parsed = _parse_optional_int(value)
    if parsed is None:
        return default
    return max(1, min(parsed, 500))


@quote_bp.route("", methods=["POST"])
def create_quote():
    payload = _payload()
    result = _QUOTE_SERVICE.create(
        get_db(),
        current_context(),
        QuoteCreateInput(
            recipient_ids=_parse_recipient_ids(payload.get("recipient_ids")),
            site_id=_required_optional_int(payload.get("site_id"), "site_not_found"),
            equipment_id=_required_optional_int(payload.get("equipment_id"), "equipment_not_found"),
            work_type=str(payload.get("work_type") or ""),
            urgency=str(payload.get("urgency") or "normal"),
            description=_optional_text(payload, "description"),
            title=_optional_text(payload, "title"),
        ),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("", methods=["GET"])
def list_quotes():
    args = request.args
    filters = QuoteListFilters(
        status=(args.get("status") or "").strip() or None,
        work_type=(args.get("work_type") or "").strip() or None,
        site_id=_parse_optional_int(args.get("site_id")),
        requester_id=_parse_optional_int(args.get("requester_id")),
        recipient_id=_parse_optional_int(args.get("recipient_id")),
        search=(args.get("search") or "").strip() or None,
        limit=_parse_limit(args.get("limit")),
    )
    result = _QUOTE_SERVICE.list(get_db(), current_context(), filters)
    return jsonify(result.payload), result.status_code


@quote_bp.route("/stats", methods=["GET"])
def quote_stats():
    result = _QUOTE_SERVICE.stats(get_db(), current_context())
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>", methods=["GET"])
def get_quote(quote_id: int):
    result = _QUOTE_SERVICE.get(get_db(), current_context(), quote_id)
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>", methods=["PATCH"])
def update_quote(quote_id: int):
    payload = _payload()
    result = _QUOTE_SERVICE.update(
        get_db(),
        current_context(),
        quote_id,
        QuoteUpdateInput(
            title=_optional_text(payload, "title"),
            description=_optional_text(payload, "description"),
            urgency=_optional_text(payload, "urgency"),
            work_type=_optional_text(payload, "work_type"),
        ),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>", methods=["DELETE"])
def delete_quote(quote_id: int):
    result = _QUOTE_SERVICE.delete(get_db(), current_context(), quote_id)
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/purge", methods=["DELETE"])
def purge_quote(quote_id: int):
    result = _QUOTE_SERVICE.purge(get_db(), current_context(), quote_id)
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/view", methods=["POST"])
def view_quote(quote_id: int):
    payload = _payload()
    result = _QUOTE_SERVICE.mark_viewed(
        get_db(),
        current_context(),
        quote_id,
        response_id=_required_optional_int(payload.get("response_id"), "response_not_found"),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/respond", methods=["POST"])
def respond_to_quote(quote_id: int):
    payload = _payload()
    amount = payload.get("amount_before_tax", payload.get("amount"))
    if amount in (None, ""):
        raise ValidationError(code="amount_invalid", details="amount_before_tax missing")
    result = _QUOTE_SERVICE.submit_proposal(
        get_db(),
        current_context(),
        quote_id,
        ProposalInput(
            amount_before_tax=amount,
            currency=str(payload.get("currency") or "EUR"),
            delay=_optional_text(payload, "delay"),
            conditions=_optional_text(payload, "conditions"),
            message=_optional_text(payload, "message"),
            document_ref=_optional_text(payload, "document_ref"),
            validity_date=_optional_text(payload, "validity_date"),
        ),
        response_id=_required_optional_int(payload.get("response_id"), "response_not_found"),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/request-info", methods=["POST"])
def request_quote_info(quote_id: int):
    payload = _payload()
    result = _QUOTE_SERVICE.request_info(
        get_db(),
        current_context(),
        quote_id,
        _optional_text(payload, "message"),
        response_id=_required_optional_int(payload.get("response_id"), "response_not_found"),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/reject", methods=["POST"])
def reject_quote(quote_id: int):
    payload = _payload()
    result = _QUOTE_SERVICE.self_reject(
        get_db(),
        current_context(),
        quote_id,
        _optional_text(payload, "reason") or _optional_text(payload, "message"),
        response_id=_required_optional_int(payload.get("response_id"), "response_not_found"),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/responses/<int:response_id>", methods=["PATCH"])
def resolve_quote_response(quote_id: int, response_id: int):
    payload = _payload()
    result = _QUOTE_SERVICE.resolve_response(
        get_db(),
        current_context(),
        quote_id,
        response_id,
        _optional_text(payload, "status"),
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/status", methods=["PATCH"])
def set_quote_status(quote_id: int):
    payload = _payload()
    result = _QUOTE_SERVICE.set_status(get_db(), current_context(), quote_id, _optional_text(payload, "status"))
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/history", methods=["GET"])
def quote_history(quote_id: int):
    result = _QUOTE_SERVICE.history(get_db(), current_context(), quote_id)
    return jsonify(result.payload), result.status_code


@quote_bp.route("/<int:quote_id>/orders", methods=["POST"])
def create_order(quote_id: int):
    result = _ORDER_SERVICE.create_from_quote(get_db(), current_context(), quote_id)
    return jsonify(result.payload), result.status_code
