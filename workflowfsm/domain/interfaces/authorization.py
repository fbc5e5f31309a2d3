"""AuthorizationProvider interface consumed by role and capability guards."""

from abc import ABC, abstractmethod


class AuthorizationProvider(ABC):
    """Yes/no authorization lookups for an explicit actor.

    How roles and capabilities are stored is not the engine's concern; guards
    only ask these questions.
    """

    @abstractmethod
    async def actor_exists(self, actor_id: str) -> bool:
        """Whether the actor is known to the authorization backend."""
        pass

    @abstractmethod
    async def actor_has_role(self, actor_id: str, role: str) -> bool:
        """Whether the actor holds a role."""
        pass

    @abstractmethod
    async def actor_has_capability(self, actor_id: str, capability: str) -> bool:
        """Whether the actor holds a capability."""
        pass

    @abstractmethod
    async def actor_roles(self, actor_id: str) -> list[str]:
        """All roles the actor holds, for diagnostics in denial messages."""
        pass
