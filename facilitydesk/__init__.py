import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from facilitydesk.config import Config
from facilitydesk.db import close_db, init_db
from facilitydesk.db_migrations import register_db_cli
from facilitydesk.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    outbox_health,
    prometheus_metrics_text,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_auth(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _register_cli(app)
    _maybe_init_schema(app)

    _register_event_handlers(app)
    _register_worker(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Tests stay self-contained without running external migrations.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from facilitydesk.routes.access_routes import access_bp
    from facilitydesk.routes.quote_routes import quote_bp

    app.register_blueprint(quote_bp)
    app.register_blueprint(access_bp)


def _register_auth(app: Flask) -> None:
    from facilitydesk.auth import register_auth

    register_auth(app)


def _register_cli(app: Flask) -> None:
    from facilitydesk.cli import register_cli

    register_cli(app)


def _register_event_handlers(app: Flask) -> None:
    from facilitydesk.core.event_bus import get_event_bus
    from facilitydesk.notifications import install_notification_handlers

    install_notification_handlers(get_event_bus())


def _register_worker(app: Flask) -> None:
    from facilitydesk.workers.notification_worker import start_notification_worker

    start_notification_worker(app)


def _register_error_handlers(app: Flask) -> None:
    from facilitydesk.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    def _backend() -> str:
        db_path = app.config.get("DB_PATH") or "unknown"
        return "postgres" if str(db_path).startswith("postgres") else "sqlite"

    @app.route("/health")
    def health():
        from facilitydesk.db import get_read_db, missing_tables

        payload = {
            "status": "ok",
            "db": _backend(),
            "env": app.config.get("ENV", "unknown"),
            "metrics": metrics_snapshot(),
        }
        try:
            db = get_read_db()
            missing = missing_tables(db)
            payload["schema"] = "missing" if missing else "ready"
            if missing:
                payload["status"] = "degraded"
                payload["missing_tables"] = missing
            else:
                payload["worker"] = outbox_health(db)
        except Exception:  # noqa: BLE001
            app.logger.exception("health_check_failed")
            payload["status"] = "degraded"
            payload["schema"] = "unknown"
            payload["worker"] = {"worker_status": "unknown", "queue": {"pending": 0, "sent": 0, "failed": 0}}
        return payload, 200

    @app.route("/metrics")
    def metrics():
        from facilitydesk.db import get_read_db

        outbox_state = None
        try:
            outbox_state = outbox_health(get_read_db())
        except Exception:  # noqa: BLE001
            app.logger.exception("metrics_outbox_state_failed")
        return Response(prometheus_metrics_text(outbox_state=outbox_state), mimetype="text/plain")
