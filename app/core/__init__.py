from app.core.event_bus import (
    CategoriesBulkChanged,
    CategoryCreated,
    CategoryDeleted,
    CategoryMoved,
    CategoryUpdated,
    DomainEvent,
    EventBus,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "CategoryCreated",
    "CategoryUpdated",
    "CategoryMoved",
    "CategoryDeleted",
    "CategoriesBulkChanged",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
