"""Ports the engine depends on."""

from workflowfsm.domain.interfaces.authorization import AuthorizationProvider
from workflowfsm.domain.interfaces.definition_store import DefinitionStore, DefinitionStoreError
from workflowfsm.domain.interfaces.event_bus import EventBus, EventBusError, EventHandler
from workflowfsm.domain.interfaces.history_store import (
    AppendConflictError,
    HistoryStore,
    HistoryStoreError,
)
from workflowfsm.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)

__all__ = [
    "AuthorizationProvider",
    "DefinitionStore",
    "DefinitionStoreError",
    "EventBus",
    "EventBusError",
    "EventHandler",
    "HistoryStore",
    "HistoryStoreError",
    "AppendConflictError",
    "ObservabilityManager",
    "ObservabilityError",
]
