import unittest

from facilitydesk.quotes.states import REQUESTER_STATUS_TARGETS, RESPONSE_TRANSITIONS, STAFF_STATUS_TARGETS
from facilitydesk.ui_strings import STATUS_GROUPS, error_message, notification_text, status_label


class UiStringsStatusGroupsTest(unittest.TestCase):
    def test_required_status_groups_exist(self) -> None:
        required_groups = {"quote", "quote_response", "work_type", "urgency", "access_level"}
        self.assertTrue(required_groups.issubset(set(STATUS_GROUPS.keys())))

    def test_state_machines_only_use_labelled_statuses(self) -> None:
        quote_keys = {item["key"] for item in STATUS_GROUPS["quote"]}
        response_keys = {item["key"] for item in STATUS_GROUPS["quote_response"]}
        self.assertTrue(REQUESTER_STATUS_TARGETS.issubset(quote_keys))
        self.assertTrue(STAFF_STATUS_TARGETS.issubset(quote_keys))
        for source, targets in RESPONSE_TRANSITIONS.items():
            self.assertIn(source, response_keys)
            self.assertTrue(set(targets).issubset(response_keys), source)

    def test_status_labels_and_descriptions_are_not_empty(self) -> None:
        for group_name, statuses in STATUS_GROUPS.items():
            for status in statuses:
                self.assertTrue((status.get("label") or "").strip(), f"empty label in {group_name}:{status.get('key')}")
                self.assertTrue(
                    (status.get("description") or "").strip(),
                    f"empty description in {group_name}:{status.get('key')}",
                )

    def test_unknown_label_falls_back_to_key(self) -> None:
        self.assertEqual(status_label("urgency", "urgent"), "Urgent")
        self.assertEqual(status_label("urgency", "someday"), "someday")

    def test_error_messages_cover_api_codes(self) -> None:
        for code in (
            "auth_required",
            "permission_denied",
            "quote_not_found",
            "recipients_required",
            "quote_closed",
            "concurrent_update",
            "order_already_exists",
            "order_exists",
        ):
            self.assertNotEqual(error_message(code), code, code)

    def test_notification_text_tolerates_missing_values(self) -> None:
        self.assertEqual(
            notification_text("proposal_received_title", number="DEV-2026-00007"),
            "New proposal on DEV-2026-00007",
        )
        self.assertIn("{number}", notification_text("proposal_received_title"))


if __name__ == "__main__":
    unittest.main()
