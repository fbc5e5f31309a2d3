"""Definition and history store implementations."""

from workflowfsm.infrastructure.state_store.caching_store import CachingDefinitionStore
from workflowfsm.infrastructure.state_store.memory_store import (
    InMemoryDefinitionStore,
    InMemoryHistoryStore,
)

__all__ = [
    "CachingDefinitionStore",
    "InMemoryDefinitionStore",
    "InMemoryHistoryStore",
]
