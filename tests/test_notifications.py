import unittest
from datetime import datetime, timezone
from unittest import mock

from facilitydesk.core import EventBus, QuoteAccepted, QuoteCreated, QuoteResponseSubmitted
from facilitydesk.domain.contracts import ProposalInput
from facilitydesk.errors import DependencyError
from facilitydesk.infrastructure.repositories.notification_repository import NotificationRepository
from facilitydesk.notifications import (
    KIND_QUOTE_ACCEPTED,
    KIND_QUOTE_REQUESTED,
    LoggingEmailSender,
    NotificationDispatcher,
    NotificationSink,
    SmtpEmailSender,
    build_email_sender,
    process_notification_outbox,
)
from facilitydesk.observability import metrics_snapshot, outbox_health, reset_metrics_for_tests
from facilitydesk.quotes.service import QuoteService
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.world import TENANT, create_input, ctx_for, seed_world


NOW = datetime(2026, 9, 1, 10, 0, tzinfo=timezone.utc)


class _FlakySender:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.sent = []

    def send(self, to_address: str, subject: str, body: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise DependencyError(code="dependency_failed", details="smtp: connection refused")
        self.sent.append(to_address)


class NotificationFlowTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="notifications")
        self.db = self._temp_db.open_database()
        self.world = seed_world(self.db)
        self.bus = EventBus()
        self.dispatcher = NotificationDispatcher(
            db_provider=lambda: self.db,
            frontend_url=lambda: "https://desk.example.test/",
        )
        self.dispatcher.subscribe(self.bus)
        self.service = QuoteService(event_bus=self.bus, clock=lambda: NOW)
        self.repository = NotificationRepository.unscoped()

    def tearDown(self) -> None:
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def _create_quote(self, recipients=None) -> dict:
        return self.service.create(
            self.db,
            ctx_for(self.db, self.world.requester),
            create_input(self.world, recipient_ids=recipients or [self.world.r1, self.world.r2]),
        ).payload["quote"]

    def test_quote_creation_queues_one_email_per_recipient(self) -> None:
        quote = self._create_quote()

        pending = self.repository.select_pending(self.db, limit=10)
        self.assertEqual([entry["recipient_id"] for entry in pending], [self.world.r1, self.world.r2])
        self.assertEqual({entry["kind"] for entry in pending}, {KIND_QUOTE_REQUESTED})
        payload = pending[0]["payload"]
        self.assertEqual(payload["number"], quote["number"])
        self.assertEqual(payload["work_type"], "Repair")
        self.assertEqual(payload["urgency"], "High")
        self.assertEqual(payload["link"], f"https://desk.example.test/quotes/{quote['id']}")

        sender = LoggingEmailSender()
        summary = process_notification_outbox(self.db, sender=sender, limit=10)

        self.assertEqual(summary, {"processed": 2, "sent": 2, "failed": 0, "retried": 0})
        self.assertEqual([mail["to"] for mail in sender.sent], ["r1@north.test", "r2@north.test"])
        self.assertIn(quote["number"], sender.sent[0]["subject"])
        self.assertIn("Boiler pressure drops overnight.", sender.sent[0]["body"])
        self.assertEqual(outbox_health(self.db)["queue"], {"pending": 0, "sent": 2, "failed": 0})

    def test_failed_delivery_is_retried_then_given_up(self) -> None:
        self._create_quote(recipients=[self.world.r1])
        sender = _FlakySender(failures=5)

        first = process_notification_outbox(self.db, sender=sender, max_attempts=2)
        second = process_notification_outbox(self.db, sender=sender, max_attempts=2)
        third = process_notification_outbox(self.db, sender=sender, max_attempts=2)

        self.assertEqual(first["retried"], 1)
        self.assertEqual(second["failed"], 1)
        self.assertEqual(third["processed"], 0)
        entry = self.db.execute("SELECT status, attempts, last_error FROM notification_outbox").fetchone()
        self.assertEqual(entry["status"], "failed")
        self.assertEqual(int(entry["attempts"]), 2)
        self.assertIn("connection refused", entry["last_error"])
        self.assertEqual(outbox_health(self.db)["worker_status"], "degraded")
        self.assertEqual(metrics_snapshot()["notification_outbox"], {"retried": 1, "failed": 1})

    def test_retry_succeeds_on_next_batch(self) -> None:
        self._create_quote(recipients=[self.world.r1])
        sender = _FlakySender(failures=1)

        process_notification_outbox(self.db, sender=sender, max_attempts=3)
        summary = process_notification_outbox(self.db, sender=sender, max_attempts=3)

        self.assertEqual(summary["sent"], 1)
        self.assertEqual(sender.sent, ["r1@north.test"])

    def test_proposal_notifies_requester_and_acceptance_notifies_recipient(self) -> None:
        quote = self._create_quote()
        proposal = self.service.submit_proposal(
            self.db,
            ctx_for(self.db, self.world.r2),
            quote["id"],
            ProposalInput(amount_before_tax=300),
        ).payload

        inbox = self.repository.list_for_recipient(self.db, self.world.requester)
        self.assertEqual(len(inbox), 1)
        self.assertIn(quote["number"], inbox[0]["title"])
        self.assertEqual(inbox[0]["related_quote_id"], quote["id"])

        self.service.resolve_response(
            self.db, ctx_for(self.db, self.world.requester), quote["id"], proposal["response"]["id"], "accepted"
        )

        winner_inbox = self.repository.list_for_recipient(self.db, self.world.r2)
        self.assertEqual(len(winner_inbox), 1)
        kinds = [entry["kind"] for entry in self.repository.select_pending(self.db, limit=10)]
        self.assertEqual(kinds.count(KIND_QUOTE_ACCEPTED), 1)

    def test_sink_joins_the_callers_transaction(self) -> None:
        sink = NotificationSink()

        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                sink.notify(self.db, self.world.r1, "Dropped", "Rolled back with the caller.", tenant_id=TENANT)
                raise RuntimeError("abort")
        self.assertEqual(self.repository.list_for_recipient(self.db, self.world.r1), [])

        sink.notify(self.db, self.world.r1, "Kept", "Stored on its own.", tenant_id=TENANT)
        inbox = self.repository.list_for_recipient(self.db, self.world.r1)
        self.assertEqual([row["title"] for row in inbox], ["Kept"])

    def test_acceptance_notice_and_email_land_together(self) -> None:
        event = QuoteAccepted(
            tenant_id=TENANT,
            quote_id=1,
            number="DEV-2026-00001",
            response_id=1,
            recipient_id=self.world.r2,
            requester_id=self.world.requester,
        )

        with mock.patch.object(NotificationRepository, "enqueue", side_effect=RuntimeError("outbox full")):
            with self.assertLogs("facilitydesk.notifications", level="WARNING"):
                self.bus.publish(event)
        self.assertEqual(self.repository.list_for_recipient(self.db, self.world.r2), [])

        self.bus.publish(event)
        self.assertEqual(len(self.repository.list_for_recipient(self.db, self.world.r2)), 1)
        self.assertEqual(len(self.repository.select_pending(self.db, limit=10)), 1)

    def test_dispatcher_failures_never_reach_the_caller(self) -> None:
        def _broken_db():
            raise RuntimeError("database unavailable")

        bus = EventBus()
        NotificationDispatcher(db_provider=_broken_db).subscribe(bus)

        with self.assertLogs("facilitydesk.notifications", level="WARNING") as logs:
            bus.publish(QuoteCreated(tenant_id="t", quote_id=1, number="DEV-2026-00001", requester_id=1))
            bus.publish(
                QuoteResponseSubmitted(
                    tenant_id="t", quote_id=1, number="DEV-2026-00001", response_id=1, recipient_id=2, requester_id=1
                )
            )
            bus.publish(
                QuoteAccepted(
                    tenant_id="t", quote_id=1, number="DEV-2026-00001", response_id=1, recipient_id=2, requester_id=1
                )
            )

        self.assertEqual(sum("notification_failed" in line for line in logs.output), 3)
        self.assertEqual(metrics_snapshot()["dependency_failures"].get("notification"), 3)


class EmailSenderFactoryTest(unittest.TestCase):
    def test_logging_sender_without_host(self) -> None:
        self.assertIsInstance(build_email_sender({"MAIL_HOST": ""}), LoggingEmailSender)

    def test_smtp_sender_with_host(self) -> None:
        sender = build_email_sender({"MAIL_HOST": "smtp.example.test", "MAIL_PORT": 2525, "MAIL_SENDER": "a@b.c"})
        self.assertIsInstance(sender, SmtpEmailSender)
        self.assertEqual(sender.port, 2525)
        self.assertEqual(sender.sender, "a@b.c")


if __name__ == "__main__":
    unittest.main()
