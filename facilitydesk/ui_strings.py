from __future__ import annotations

from typing import Dict, List


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "quote": [
        {
            "key": "pending_response",
            "label": "Awaiting responses",
            "description": "Quote request sent, no recipient has opened it yet.",
        },
        {
            "key": "viewed",
            "label": "Viewed",
            "description": "At least one recipient has opened the request.",
        },
        {
            "key": "in_progress",
            "label": "In progress",
            "description": "A recipient asked for more information.",
        },
        {
            "key": "submitted",
            "label": "Proposals received",
            "description": "At least one proposal is waiting for a decision.",
        },
        {
            "key": "accepted",
            "label": "Accepted",
            "description": "One proposal was accepted; the others were closed.",
        },
        {
            "key": "rejected",
            "label": "Rejected",
            "description": "Every proposal was rejected or the request was closed.",
        },
        {
            "key": "expired",
            "label": "Expired",
            "description": "The request was closed without a decision.",
        },
    ],
    "quote_response": [
        {
            "key": "pending",
            "label": "Not opened",
            "description": "The recipient has not opened the request yet.",
        },
        {
            "key": "viewed",
            "label": "Opened",
            "description": "The recipient opened the request.",
        },
        {
            "key": "responded",
            "label": "Proposal sent",
            "description": "The recipient submitted a priced proposal.",
        },
        {
            "key": "info_requested",
            "label": "Information requested",
            "description": "The recipient needs more details before pricing.",
        },
        {
            "key": "rejected",
            "label": "Rejected",
            "description": "Closed by the recipient, by the requester, or because another proposal won.",
        },
        {
            "key": "accepted",
            "label": "Accepted",
            "description": "The requester accepted this proposal.",
        },
    ],
    "work_type": [
        {"key": "maintenance", "label": "Maintenance", "description": "Scheduled or preventive maintenance."},
        {"key": "repair", "label": "Repair", "description": "Corrective work on a failure."},
        {"key": "installation", "label": "Installation", "description": "New equipment installation."},
        {"key": "replacement", "label": "Replacement", "description": "Swap of existing equipment."},
        {"key": "other", "label": "Other", "description": "Any other kind of work."},
    ],
    "urgency": [
        {"key": "normal", "label": "Normal", "description": "Standard lead time."},
        {"key": "high", "label": "High", "description": "Needs attention this week."},
        {"key": "urgent", "label": "Urgent", "description": "Needs attention now."},
    ],
    "access_level": [
        {"key": "read", "label": "Read", "description": "Can see the site and its equipment."},
        {"key": "write", "label": "Write", "description": "Can update site records."},
        {"key": "full", "label": "Full", "description": "Full control over the site."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quote_created": "Quote request created.",
        "quote_updated": "Quote request updated.",
        "quote_deleted": "Quote request deleted.",
        "quote_purged": "Quote request and its orders were purged.",
        "quote_status_updated": "Quote status updated.",
        "quote_viewed": "Quote marked as viewed.",
        "proposal_submitted": "Proposal submitted.",
        "info_requested": "Information request sent.",
        "response_rejected": "Quote declined.",
        "response_accepted": "Proposal accepted.",
        "response_resolution_rejected": "Proposal rejected.",
        "order_created": "Work order created from the accepted quote.",
    },
    "error": {
        "action_invalid": "This action is not valid for this operation.",
        "amount_invalid": "Amount must be a number greater than or equal to zero.",
        "auth_required": "Authentication required.",
        "concurrent_update": "The quote was changed by someone else. Reload and try again.",
        "conflict": "The request conflicts with the current state.",
        "currency_invalid": "Currency must be a three-letter code.",
        "dependency_failed": "A downstream service did not answer.",
        "description_required": "A description is required.",
        "equipment_not_found": "Equipment not found.",
        "equipment_site_mismatch": "The equipment does not belong to the selected site.",
        "message_required": "A message is required.",
        "no_changes": "No changes were provided.",
        "not_found": "Resource not found.",
        "order_already_exists": "This quote already has a work order.",
        "order_exists": "This quote has a work order. Purge it to remove both.",
        "permission_denied": "You are not allowed to perform this action.",
        "quote_closed": "This quote request is closed.",
        "quote_not_accepted": "Only an accepted quote can produce a work order.",
        "quote_not_found": "Quote request not found.",
        "recipient_not_found": "One or more recipients were not found.",
        "recipients_required": "At least one recipient is required.",
        "response_already_resolved": "This response is already resolved.",
        "response_not_found": "Response not found.",
        "site_not_found": "Site not found.",
        "site_required": "A site is required.",
        "status_invalid": "The status is not valid.",
        "status_transition_not_allowed": "This status change is not allowed.",
        "tenant_required": "The request has no tenant.",
        "unexpected_error": "The operation could not be completed. Try again shortly.",
        "urgency_invalid": "Urgency is not valid.",
        "validation_error": "The request is not valid.",
        "validity_invalid": "Validity date is not valid.",
        "work_type_invalid": "Work type is not valid.",
    },
    "notification": {
        "quote_accepted_title": "Quote {number} accepted",
        "quote_accepted_body": "Your proposal for request {number} was accepted.",
        "proposal_received_title": "New proposal on {number}",
        "proposal_received_body": "A recipient submitted a proposal for request {number}.",
        "quote_requested_subject": "New quote request - {number}",
        "quote_requested_body": (
            "You received a new quote request.\n\n"
            "Number: {number}\nSubject: {title}\nWork type: {work_type}\nUrgency: {urgency}\n\n"
            "{description}\n\nOpen: {link}"
        ),
        "quote_accepted_subject": "Quote {number} accepted",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, key: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    return str(key or "")


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def notification_text(key: str, **values: object) -> str:
    template = get_message("notification", key)
    try:
        return template.format(**values)
    except (KeyError, IndexError):
        return template
