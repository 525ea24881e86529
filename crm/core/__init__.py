from crm.core.cache import TtlCache
from crm.core.event_bus import (
    CartItemsChanged,
    DomainEvent,
    EventBus,
    LeadConverted,
    LeadCreated,
    LeadDeleted,
    LeadUpdated,
    PricingDecisionLogged,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "LeadCreated",
    "LeadUpdated",
    "LeadDeleted",
    "CartItemsChanged",
    "LeadConverted",
    "PricingDecisionLogged",
    "TtlCache",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
