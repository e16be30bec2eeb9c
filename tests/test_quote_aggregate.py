import unittest
from datetime import datetime, timezone

from facilitydesk.domain.contracts import ProposalInput
from facilitydesk.errors import ConflictError, NotFoundError, ValidationError
from facilitydesk.quotes.aggregate import Quote, to_iso


NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _quote(recipients=(11, 12, 13)) -> Quote:
    quote = Quote.open(
        tenant_id="tenant-a",
        requester_id=1,
        site_id=5,
        work_type="repair",
        recipient_ids=list(recipients),
    )
    quote.id = 100
    for index, response in enumerate(quote.responses, start=1):
        response.id = 1000 + index
    quote.drain_transitions()
    return quote


class QuoteOpenTest(unittest.TestCase):
    def test_one_pending_response_per_unique_recipient(self) -> None:
        quote = Quote.open(
            tenant_id="tenant-a",
            requester_id=1,
            site_id=5,
            work_type="maintenance",
            recipient_ids=[7, 8, 7],
        )
        self.assertEqual(quote.recipient_ids, [7, 8])
        self.assertEqual([r.status for r in quote.responses], ["pending", "pending"])
        self.assertEqual(quote.status, "pending_response")
        self.assertEqual(quote.title, "Quote request - maintenance")
        self.assertEqual(quote.transitions[0].reason, "created")

    def test_empty_recipients_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            Quote.open(tenant_id="t", requester_id=1, site_id=1, work_type="repair", recipient_ids=[])
        self.assertEqual(ctx.exception.code, "recipients_required")


class QuoteResponseFlowTest(unittest.TestCase):
    def test_view_is_idempotent(self) -> None:
        quote = _quote()
        response = quote.response_for_recipient(11)

        self.assertTrue(quote.mark_viewed(response, NOW))
        first_viewed_at = response.viewed_at
        self.assertEqual(quote.status, "viewed")
        self.assertEqual(len(quote.drain_transitions()), 2)

        self.assertFalse(quote.mark_viewed(response, datetime(2026, 3, 3, tzinfo=timezone.utc)))
        self.assertEqual(response.viewed_at, first_viewed_at)
        self.assertEqual(quote.drain_transitions(), [])

    def test_proposal_sets_commercial_terms_and_default_validity(self) -> None:
        quote = _quote()
        response = quote.response_for_recipient(12)
        quote.submit_proposal(response, ProposalInput(amount_before_tax="1000", currency="eur"), NOW, 30)

        self.assertEqual(response.status, "responded")
        self.assertEqual(response.amount_before_tax, 1000.0)
        self.assertEqual(response.currency, "EUR")
        self.assertEqual(response.validity_date, "2026-04-01")
        self.assertEqual(response.responded_at, to_iso(NOW))
        self.assertEqual(quote.status, "submitted")

    def test_proposal_validation(self) -> None:
        quote = _quote()
        response = quote.response_for_recipient(12)
        for proposal, code in (
            (ProposalInput(amount_before_tax=-1), "amount_invalid"),
            (ProposalInput(amount_before_tax="abc"), "amount_invalid"),
            (ProposalInput(amount_before_tax=10, currency="EURO"), "currency_invalid"),
            (ProposalInput(amount_before_tax=10, validity_date="next week"), "validity_invalid"),
        ):
            with self.assertRaises(ValidationError) as ctx:
                quote.submit_proposal(response, proposal, NOW, 30)
            self.assertEqual(ctx.exception.code, code)
        self.assertEqual(response.status, "pending")

    def test_request_info_requires_message(self) -> None:
        quote = _quote()
        response = quote.response_for_recipient(11)
        with self.assertRaises(ValidationError) as ctx:
            quote.request_info(response, "  ", NOW)
        self.assertEqual(ctx.exception.code, "message_required")

        quote.request_info(response, "Which floor?", NOW)
        self.assertEqual(response.status, "info_requested")
        self.assertEqual(response.info_request_message, "Which floor?")
        self.assertEqual(quote.status, "in_progress")

    def test_self_reject_of_every_response_rejects_the_quote(self) -> None:
        quote = _quote(recipients=(11, 12))
        quote.self_reject(quote.response_for_recipient(11), "Too far", NOW)
        self.assertEqual(quote.status, "pending_response")
        quote.self_reject(quote.response_for_recipient(12), None, NOW)

        self.assertEqual(quote.status, "rejected")
        self.assertEqual(quote.response_for_recipient(11).rejection_reason, "declined_by_recipient")
        self.assertEqual(quote.response_for_recipient(11).message, "Too far")

    def test_unknown_response_id(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            _quote().response_by_id(999)
        self.assertEqual(ctx.exception.code, "response_not_found")


class QuoteAcceptanceTest(unittest.TestCase):
    def test_accept_rejects_every_open_sibling(self) -> None:
        quote = _quote()
        r1, r2, r3 = quote.responses
        quote.mark_viewed(r1, NOW)
        quote.submit_proposal(r2, ProposalInput(amount_before_tax=1000), NOW, 30)

        rejected = quote.accept(r2, NOW)

        self.assertEqual(quote.status, "accepted")
        self.assertEqual(r2.status, "accepted")
        self.assertEqual([item.recipient_id for item in rejected], [11, 13])
        for sibling in (r1, r3):
            self.assertEqual(sibling.status, "rejected")
            self.assertEqual(sibling.rejection_reason, "sibling_accepted")
            self.assertEqual(sibling.resolved_at, to_iso(NOW))
        self.assertIs(quote.accepted_response(), r2)

    def test_accept_skips_already_rejected_siblings(self) -> None:
        quote = _quote()
        r1, r2, _ = quote.responses
        quote.self_reject(r1, None, NOW)
        quote.submit_proposal(r2, ProposalInput(amount_before_tax=50), NOW, 30)

        rejected = quote.accept(r2, NOW)

        self.assertEqual([item.recipient_id for item in rejected], [13])
        self.assertEqual(r1.rejection_reason, "declined_by_recipient")

    def test_accepting_a_rejected_response_conflicts(self) -> None:
        quote = _quote()
        r1 = quote.responses[0]
        quote.self_reject(r1, None, NOW)
        with self.assertRaises(ConflictError) as ctx:
            quote.accept(r1, NOW)
        self.assertEqual(ctx.exception.code, "response_already_resolved")

    def test_accepting_an_open_response_without_proposal(self) -> None:
        quote = _quote()
        r1, r2, r3 = quote.responses
        quote.request_info(r3, "Access code?", NOW)

        rejected = quote.accept(r3, NOW)

        self.assertEqual(quote.status, "accepted")
        self.assertEqual(r3.status, "accepted")
        self.assertIsNone(r3.amount_before_tax)
        self.assertEqual([item.recipient_id for item in rejected], [11, 12])
        self.assertEqual(r1.status, "rejected")
        self.assertEqual(r2.status, "rejected")

    def test_accepting_a_pending_response_marks_it_viewed(self) -> None:
        quote = _quote(recipients=(11, 12))
        r1 = quote.responses[0]

        quote.accept(r1, NOW)

        self.assertEqual(r1.status, "accepted")
        self.assertEqual(r1.viewed_at, to_iso(NOW))
        self.assertEqual(r1.resolved_at, to_iso(NOW))

    def test_closed_quote_refuses_further_actions(self) -> None:
        quote = _quote()
        r1, r2, _ = quote.responses
        quote.submit_proposal(r2, ProposalInput(amount_before_tax=10), NOW, 30)
        quote.accept(r2, NOW)

        with self.assertRaises(ConflictError) as ctx:
            quote.submit_proposal(r1, ProposalInput(amount_before_tax=5), NOW, 30)
        self.assertEqual(ctx.exception.code, "quote_closed")


class QuoteStatusBypassTest(unittest.TestCase):
    def test_rejected_resolves_open_responses(self) -> None:
        quote = _quote()
        resolved = quote.close("rejected", NOW)
        self.assertEqual(quote.status, "rejected")
        self.assertEqual(len(resolved), 3)
        self.assertTrue(all(r.rejection_reason == "quote_rejected" for r in resolved))

    def test_expired_leaves_responses_untouched(self) -> None:
        quote = _quote()
        self.assertEqual(quote.close("expired", NOW), [])
        self.assertEqual(quote.status, "expired")
        self.assertEqual({r.status for r in quote.responses}, {"pending"})

    def test_terminal_quote_cannot_be_closed_again(self) -> None:
        quote = _quote()
        quote.close("expired", NOW)
        with self.assertRaises(ConflictError):
            quote.close("rejected", NOW)


class QuoteSerializationTest(unittest.TestCase):
    def test_recipient_view_hides_other_responses(self) -> None:
        payload = _quote().to_dict(visible_recipient_id=12)
        self.assertEqual([r["recipient_id"] for r in payload["responses"]], [12])
        self.assertEqual(payload["recipient_ids"], [11, 12, 13])


if __name__ == "__main__":
    unittest.main()
