from __future__ import annotations

import logging
import smtplib
import time
from email.mime.text import MIMEText
from typing import Callable, Dict

from facilitydesk.core import EventBus, QuoteAccepted, QuoteCreated, QuoteResponseSubmitted
from facilitydesk.directory import Directory
from facilitydesk.errors import DependencyError
from facilitydesk.infrastructure.repositories.notification_repository import NotificationRepository
from facilitydesk.observability import (
    observe_dependency_failure,
    observe_notification_outbox,
    set_log_request_id,
)
from facilitydesk.quotes.aggregate import utc_now
from facilitydesk.ui_strings import notification_text, status_label


logger = logging.getLogger("facilitydesk.notifications")

KIND_QUOTE_REQUESTED = "quote_requested"
KIND_QUOTE_ACCEPTED = "quote_accepted"


class NotificationSink:
    """In-app notifications, one row per recipient in ``notifications``."""

    def __init__(self, repository: NotificationRepository | None = None) -> None:
        self.repository = repository or NotificationRepository.unscoped()

    def notify(
        self,
        db,
        recipient_id: int,
        title: str,
        message: str,
        related_quote_id: int | None = None,
        *,
        tenant_id: str | None = None,
    ) -> int:
        """Insert one notification; it joins the caller's transaction when one is open."""
        return self.repository.add_notification(
            db,
            recipient_id=recipient_id,
            tenant_id=tenant_id,
            title=title,
            message=message,
            related_quote_id=related_quote_id,
            now=utc_now(),
        )


class LoggingEmailSender:
    """Default sender when no SMTP host is configured: logs instead of sending."""

    def __init__(self) -> None:
        self.sent: list[Dict[str, str]] = []

    def send(self, to_address: str, subject: str, body: str) -> None:
        self.sent.append({"to": to_address, "subject": subject, "body": body})
        logger.info("email_logged", extra={"to": to_address, "subject": subject})


class SmtpEmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_seconds: int = 10,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def send(self, to_address: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = self.sender
        msg["To"] = to_address
        msg["Subject"] = subject
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DependencyError(code="dependency_failed", details=f"smtp: {exc}") from exc


def build_email_sender(config) -> LoggingEmailSender | SmtpEmailSender:
    host = str(config.get("MAIL_HOST") or "").strip()
    if not host:
        return LoggingEmailSender()
    return SmtpEmailSender(
        host=host,
        port=int(config.get("MAIL_PORT") or 587),
        sender=str(config.get("MAIL_SENDER") or "no-reply@facilitydesk.local"),
        username=config.get("MAIL_USERNAME"),
        password=config.get("MAIL_PASSWORD"),
        use_tls=bool(config.get("MAIL_USE_TLS", True)),
    )


def _default_db():
    from facilitydesk.db import get_db

    return get_db()


class NotificationDispatcher:
    """Turns committed domain events into notifications and queued emails.

    Runs after the primary transaction; every failure is logged and counted
    and never propagates to the caller.
    """

    def __init__(
        self,
        *,
        sink: NotificationSink | None = None,
        repository: NotificationRepository | None = None,
        db_provider: Callable[[], object] | None = None,
        frontend_url: Callable[[], str] | None = None,
    ) -> None:
        self.sink = sink or NotificationSink()
        self.repository = repository or NotificationRepository.unscoped()
        self._db_provider = db_provider or _default_db
        self._frontend_url = frontend_url or _configured_frontend_url

    def subscribe(self, bus: EventBus) -> None:
        bus.subscribe(QuoteCreated, self.on_quote_created)
        bus.subscribe(QuoteResponseSubmitted, self.on_response_submitted)
        bus.subscribe(QuoteAccepted, self.on_quote_accepted)

    def _best_effort(self, action: str, event, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as exc:  # noqa: BLE001
            observe_dependency_failure("notification")
            logger.warning(
                "notification_failed",
                extra={
                    "action": action,
                    "event_type": type(event).__name__,
                    "quote_id": getattr(event, "quote_id", None),
                    "error": str(exc),
                },
                exc_info=True,
            )

    def on_quote_created(self, event: QuoteCreated) -> None:
        def _enqueue() -> None:
            db = self._db_provider()
            quote_row = db.execute(
                "SELECT number, title, work_type, urgency, description FROM quotes WHERE id = ?",
                (event.quote_id,),
            ).fetchone()
            if not quote_row:
                return
            payload = {
                "number": quote_row["number"],
                "title": quote_row["title"],
                "work_type": status_label("work_type", quote_row["work_type"]),
                "urgency": status_label("urgency", quote_row["urgency"]),
                "description": quote_row["description"] or "",
                "link": f"{self._frontend_url().rstrip('/')}/quotes/{event.quote_id}",
            }
            with db.transaction():
                for recipient_id in event.recipient_ids:
                    self.repository.enqueue(
                        db,
                        kind=KIND_QUOTE_REQUESTED,
                        recipient_id=recipient_id,
                        tenant_id=event.tenant_id,
                        quote_id=event.quote_id,
                        payload=payload,
                        now=utc_now(),
                    )

        self._best_effort("enqueue_quote_requested", event, _enqueue)

    def on_response_submitted(self, event: QuoteResponseSubmitted) -> None:
        def _notify() -> None:
            self.sink.notify(
                self._db_provider(),
                event.requester_id,
                notification_text("proposal_received_title", number=event.number),
                notification_text("proposal_received_body", number=event.number),
                event.quote_id,
                tenant_id=event.tenant_id,
            )

        self._best_effort("notify_proposal_received", event, _notify)

    def on_quote_accepted(self, event: QuoteAccepted) -> None:
        def _notify() -> None:
            db = self._db_provider()
            with db.transaction():
                self.sink.notify(
                    db,
                    event.recipient_id,
                    notification_text("quote_accepted_title", number=event.number),
                    notification_text("quote_accepted_body", number=event.number),
                    event.quote_id,
                    tenant_id=event.tenant_id,
                )
                self.repository.enqueue(
                    db,
                    kind=KIND_QUOTE_ACCEPTED,
                    recipient_id=event.recipient_id,
                    tenant_id=event.tenant_id,
                    quote_id=event.quote_id,
                    payload={"number": event.number},
                    now=utc_now(),
                )

        self._best_effort("notify_quote_accepted", event, _notify)


def _configured_frontend_url() -> str:
    from flask import current_app, has_app_context

    if has_app_context():
        return str(current_app.config.get("FRONTEND_URL") or "")
    return ""


_DEFAULT_DISPATCHER = NotificationDispatcher()


def install_notification_handlers(bus: EventBus) -> NotificationDispatcher:
    _DEFAULT_DISPATCHER.subscribe(bus)
    return _DEFAULT_DISPATCHER


def _render_email(entry: Dict[str, object]) -> tuple[str, str]:
    payload = dict(entry.get("payload") or {})
    if entry.get("kind") == KIND_QUOTE_ACCEPTED:
        return (
            notification_text("quote_accepted_subject", **payload),
            notification_text("quote_accepted_body", **payload),
        )
    return (
        notification_text("quote_requested_subject", **payload),
        notification_text("quote_requested_body", **payload),
    )


def process_notification_outbox(
    db,
    *,
    sender,
    directory: Directory | None = None,
    repository: NotificationRepository | None = None,
    limit: int = 25,
    max_attempts: int = 5,
    worker_request_id: str | None = None,
) -> Dict[str, int]:
    """Deliver pending outbox emails; returns per-batch counters."""
    repo = repository or NotificationRepository.unscoped()
    lookup = directory or Directory()
    summary = {"processed": 0, "sent": 0, "failed": 0, "retried": 0}
    started = time.perf_counter()
    set_log_request_id(worker_request_id)

    for entry in repo.select_pending(db, limit=limit):
        entry_id = int(entry["id"])
        summary["processed"] += 1
        attempt = int(entry.get("attempts") or 0) + 1
        try:
            recipient = lookup.resolve_principal(db, int(entry["recipient_id"]))
            if not recipient.get("exists") or not recipient.get("email"):
                raise DependencyError(code="dependency_failed", details="recipient_email_missing")
            subject, body = _render_email(entry)
            sender.send(str(recipient["email"]), subject, body)
        except Exception as exc:  # noqa: BLE001
            give_up = attempt >= max(1, int(max_attempts))
            repo.mark_attempt_failed(db, entry_id, error=str(exc), give_up=give_up, now=utc_now())
            if give_up:
                summary["failed"] += 1
                observe_notification_outbox("failed")
            else:
                summary["retried"] += 1
                observe_notification_outbox("retried")
            logger.warning(
                "notification_failed",
                extra={
                    "outbox_id": entry_id,
                    "kind": entry.get("kind"),
                    "attempt": attempt,
                    "give_up": give_up,
                    "error": str(exc),
                },
            )
            continue
        repo.mark_sent(db, entry_id, now=utc_now())
        summary["sent"] += 1
        observe_notification_outbox("sent")

    logger.info(
        "notification_outbox_batch_completed",
        extra={**summary, "duration_ms": round((time.perf_counter() - started) * 1000.0, 2)},
    )
    return summary
