"""Persistence — entity store, typed repository and audit event log."""

from openfinancing.persistence.event_log import EventKind, EventLog, EventRecord
from openfinancing.persistence.repository import EntityRepository
from openfinancing.persistence.store import (
    EntityStore,
    JsonFileEntityStore,
    MemoryEntityStore,
)

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "EntityRepository",
    "EntityStore",
    "JsonFileEntityStore",
    "MemoryEntityStore",
]
