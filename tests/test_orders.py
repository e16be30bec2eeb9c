import unittest
from datetime import datetime, timezone

from facilitydesk.core import EventBus
from facilitydesk.domain.contracts import ProposalInput
from facilitydesk.errors import ConflictError, ForbiddenError, NotFoundError
from facilitydesk.quotes.orders import OrderService, compute_order_amounts
from facilitydesk.quotes.service import QuoteService
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.world import create_input, ctx_for, seed_world


NOW = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)


class OrderAmountsTest(unittest.TestCase):
    def test_tax_and_total_are_rounded(self) -> None:
        self.assertEqual(compute_order_amounts(1000, 20), (1000.0, 200.0, 1200.0))
        self.assertEqual(compute_order_amounts(99.99, 20), (99.99, 20.0, 119.99))
        self.assertEqual(compute_order_amounts(None, 20), (0.0, 0.0, 0.0))


class OrderServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="order_service")
        self.db = self._temp_db.open_database()
        self.world = seed_world(self.db)
        self.quotes = QuoteService(event_bus=EventBus(), clock=lambda: NOW)
        self.orders = OrderService(clock=lambda: NOW)

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def _quote(self, *, accept: bool) -> dict:
        requester = ctx_for(self.db, self.world.requester)
        quote = self.quotes.create(self.db, requester, create_input(self.world)).payload["quote"]
        proposal = self.quotes.submit_proposal(
            self.db,
            ctx_for(self.db, self.world.r2),
            quote["id"],
            ProposalInput(amount_before_tax=1000, currency="EUR"),
        ).payload
        if accept:
            self.quotes.resolve_response(self.db, requester, quote["id"], proposal["response"]["id"], "accepted")
        return quote

    def test_order_from_accepted_quote(self) -> None:
        quote = self._quote(accept=True)
        result = self.orders.create_from_quote(self.db, ctx_for(self.db, self.world.requester), quote["id"])

        self.assertEqual(result.status_code, 201)
        order = result.payload["order"]
        self.assertEqual(order["number"], "CMD-2026-00001")
        self.assertEqual(order["supplier_id"], self.world.r2)
        self.assertEqual(order["amount_before_tax"], 1000.0)
        self.assertEqual(order["tax_amount"], 200.0)
        self.assertEqual(order["amount_total"], 1200.0)
        self.assertEqual(order["currency"], "EUR")

    def test_one_order_per_quote(self) -> None:
        quote = self._quote(accept=True)
        ctx = ctx_for(self.db, self.world.requester)
        self.orders.create_from_quote(self.db, ctx, quote["id"])
        with self.assertRaises(ConflictError) as raised:
            self.orders.create_from_quote(self.db, ctx, quote["id"])
        self.assertEqual(raised.exception.code, "order_already_exists")

    def test_open_quote_cannot_be_ordered(self) -> None:
        quote = self._quote(accept=False)
        with self.assertRaises(ConflictError) as raised:
            self.orders.create_from_quote(self.db, ctx_for(self.db, self.world.requester), quote["id"])
        self.assertEqual(raised.exception.code, "quote_not_accepted")

    def test_only_requester_orders(self) -> None:
        quote = self._quote(accept=True)
        with self.assertRaises(ForbiddenError):
            self.orders.create_from_quote(self.db, ctx_for(self.db, self.world.manager), quote["id"])
        with self.assertRaises(NotFoundError):
            self.orders.create_from_quote(self.db, ctx_for(self.db, self.world.outsider), quote["id"])

    def test_delete_refused_while_an_order_exists(self) -> None:
        quote = self._quote(accept=True)
        requester = ctx_for(self.db, self.world.requester)
        self.orders.create_from_quote(self.db, requester, quote["id"])

        with self.assertRaises(ConflictError) as raised:
            self.quotes.delete(self.db, requester, quote["id"])

        self.assertEqual(raised.exception.code, "order_exists")
        self.assertEqual(self.quotes.get(self.db, requester, quote["id"]).payload["quote"]["status"], "accepted")
        orders = self.db.execute("SELECT quote_id FROM orders").fetchall()
        self.assertEqual([int(row["quote_id"]) for row in orders], [quote["id"]])
        history = self.quotes.history(self.db, requester, quote["id"]).payload["items"]
        self.assertTrue(history)

    def test_purge_removes_dependent_orders(self) -> None:
        quote = self._quote(accept=True)
        self.orders.create_from_quote(self.db, ctx_for(self.db, self.world.requester), quote["id"])

        result = self.quotes.purge(self.db, ctx_for(self.db, self.world.superadmin), quote["id"])

        self.assertEqual(result.payload["orders_deleted"], 1)
        remaining = self.db.execute("SELECT COUNT(*) AS total FROM orders").fetchone()
        self.assertEqual(int(remaining["total"]), 0)


if __name__ == "__main__":
    unittest.main()
