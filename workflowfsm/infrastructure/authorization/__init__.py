"""AuthorizationProvider implementations."""

from workflowfsm.infrastructure.authorization.memory_provider import (
    InMemoryAuthorizationProvider,
)

__all__ = ["InMemoryAuthorizationProvider"]
