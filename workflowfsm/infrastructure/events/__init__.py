"""Event bus implementations."""

from workflowfsm.infrastructure.events.memory_bus import InMemoryEventBus

__all__ = ["InMemoryEventBus"]
