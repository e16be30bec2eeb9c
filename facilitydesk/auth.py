from __future__ import annotations

from flask import Blueprint, g, jsonify, request, session

from facilitydesk.db import get_db
from facilitydesk.directory import Directory
from facilitydesk.errors import ForbiddenError
from facilitydesk.tenant import RequestContext, current_context, resolve_scope


auth_bp = Blueprint("auth", __name__, url_prefix="/api")

_PUBLIC_PATHS = {"/health", "/metrics"}

_DIRECTORY = Directory()


def _auth_required() -> ForbiddenError:
    return ForbiddenError(code="auth_required", message_key="auth_required", http_status=401)


def _principal_id_from_request(app) -> int | None:
    raw = session.get("principal_id")
    header_allowed = bool(app.config.get("AUTH_HEADER_ENABLED", True)) or not bool(app.config.get("AUTH_ENABLED", True))
    if raw in (None, "") and header_allowed:
        raw = (request.headers.get("X-Principal-Id") or "").strip()
    if raw in (None, ""):
        return None
    try:
        principal_id = int(raw)
    except (TypeError, ValueError):
        return None
    return principal_id if principal_id > 0 else None


def load_request_context(app) -> RequestContext | None:
    principal_id = _principal_id_from_request(app)
    if principal_id is None:
        return None
    principal = _DIRECTORY.resolve_principal(get_db(), principal_id)
    if not principal.get("exists"):
        return None
    return RequestContext(
        principal_id=int(principal["id"]),
        role=str(principal["role"]),
        tenant_id=principal.get("tenant_id"),
        email=principal.get("email"),
    )


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_principal():
        path = request.path or "/"
        if path in _PUBLIC_PATHS or not path.startswith("/api/"):
            return None

        ctx = load_request_context(app)
        if ctx is None:
            raise _auth_required()
        g.request_context = ctx
        return None


@auth_bp.route("/me", methods=["GET"])
def me():
    ctx = current_context()
    scope = resolve_scope(ctx)
    return jsonify(
        {
            "principal_id": ctx.principal_id,
            "role": ctx.role,
            "tenant_id": ctx.tenant_id,
            "email": ctx.email,
            "scope": scope.mode,
        }
    )
