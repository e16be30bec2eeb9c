import unittest
from unittest.mock import patch

from facilitydesk import create_app
from facilitydesk.config import Config
from facilitydesk.db import close_db, get_db
from facilitydesk.routes import quote_routes
from facilitydesk.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.world import seed_world


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_perm")
        cfg = self._temp_db.make_config(
            Config,
            TESTING=False,
            DB_AUTO_INIT=False,
            AUTH_ENABLED=True,
            AUTH_HEADER_ENABLED=False,
            PROPAGATE_EXCEPTIONS=False,
        )
        self.app = create_app(cfg)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/quotes", headers={"X-Principal-Id": "1"})
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertEqual(response.headers.get("X-Request-Id"), payload.get("request_id"))
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_incoming_request_id_is_echoed(self) -> None:
        response = self.client.get("/api/me", headers={"X-Request-Id": "gateway-abc-123"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json().get("request_id"), "gateway-abc-123")


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        cfg = self._temp_db.make_config(Config, TESTING=True, PROPAGATE_EXCEPTIONS=False)
        self.app = create_app(cfg)
        self.client = self.app.test_client()
        with self.app.app_context():
            self.world = seed_world(get_db())
            close_db()
        self.headers = {"X-Principal-Id": str(self.world.requester)}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_unknown_principal_is_rejected(self) -> None:
        response = self.client.get("/api/me", headers={"X-Principal-Id": "987654"})
        self.assertEqual(response.status_code, 401)

    def test_me_reports_scope(self) -> None:
        payload = self.client.get("/api/me", headers=self.headers).get_json()
        self.assertEqual(payload["principal_id"], self.world.requester)
        self.assertEqual(payload["scope"], "tenant")

    def test_validation_error_payload(self) -> None:
        response = self.client.post(
            "/api/quotes",
            headers=self.headers,
            json={"recipient_ids": [], "site_id": self.world.site, "work_type": "repair"},
        )
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "recipients_required")
        self.assertEqual(payload.get("message"), error_message("recipients_required"))
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_not_found_payload(self) -> None:
        response = self.client.get("/api/quotes/424242", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload.get("kind"), "NotFoundError")
        self.assertEqual(payload.get("message"), error_message("quote_not_found"))

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        with patch.object(
            quote_routes._QUOTE_SERVICE, "stats", side_effect=RuntimeError("stack_secret_token")
        ):
            response = self.client.get("/api/quotes/stats", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)

    def test_unknown_route_keeps_http_status(self) -> None:
        response = self.client.get("/api/does-not-exist", headers=self.headers)
        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
