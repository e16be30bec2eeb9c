from facilitydesk.core.event_bus import (
    AccessGranted,
    DomainEvent,
    EventBus,
    QuoteAccepted,
    QuoteCreated,
    QuoteResponseRejected,
    QuoteResponseSubmitted,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuoteCreated",
    "QuoteResponseSubmitted",
    "QuoteAccepted",
    "QuoteResponseRejected",
    "AccessGranted",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
