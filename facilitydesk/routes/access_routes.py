from __future__ import annotations

from flask import Blueprint, jsonify, request

from facilitydesk.access.grants import AccessGrantStore
from facilitydesk.db import get_db
from facilitydesk.directory import Directory
from facilitydesk.infrastructure.repositories.notification_repository import NotificationRepository
from facilitydesk.tenant import current_context, visible_site_tenants


access_bp = Blueprint("access", __name__, url_prefix="/api")

_GRANTS = AccessGrantStore()
_DIRECTORY = Directory()
_NOTIFICATIONS = NotificationRepository.unscoped()


@access_bp.route("/access/grants", methods=["GET"])
def list_my_grants():
    ctx = current_context()
    items = _GRANTS.list_for_principal(get_db(), ctx.principal_id)
    return jsonify({"items": items, "count": len(items)})


@access_bp.route("/access/sites", methods=["GET"])
def list_visible_sites():
    db = get_db()
    ctx = current_context()
    items = _DIRECTORY.list_sites(db, visible_site_tenants(db, ctx))
    return jsonify({"items": items, "count": len(items)})


@access_bp.route("/access/sites/<int:site_id>", methods=["GET"])
def site_access(site_id: int):
    payload = _GRANTS.effective_site_access(get_db(), current_context(), site_id, directory=_DIRECTORY)
    return jsonify(payload)


@access_bp.route("/notifications", methods=["GET"])
def list_my_notifications():
    ctx = current_context()
    try:
        limit = max(1, min(int(request.args.get("limit") or 100), 300))
    except ValueError:
        limit = 100
    items = _NOTIFICATIONS.list_for_recipient(get_db(), ctx.principal_id, limit=limit)
    return jsonify({"items": items, "count": len(items)})
