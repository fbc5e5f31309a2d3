"""In-memory AuthorizationProvider for hosts without a user directory and for tests."""

from workflowfsm.domain.interfaces.authorization import AuthorizationProvider
from workflowfsm.domain.models.transition_log import normalize_identifier


class InMemoryAuthorizationProvider(AuthorizationProvider):
    """Actors with role sets; roles grant capability sets.

    A capability can also be granted to an actor directly.

    Example:
        ```python
        provider = InMemoryAuthorizationProvider(
            role_capabilities={"manager": {"approve_orders"}},
        )
        provider.add_actor(42, roles=["manager"])
        await provider.actor_has_capability("42", "approve_orders")  # True
        ```
    """

    def __init__(self, role_capabilities: dict[str, set[str]] | None = None) -> None:
        self._roles: dict[str, set[str]] = {}
        self._capabilities: dict[str, set[str]] = {}
        self._role_capabilities: dict[str, set[str]] = {
            role: set(caps) for role, caps in (role_capabilities or {}).items()
        }

    def add_actor(
        self,
        actor_id: str | int,
        roles: list[str] | None = None,
        capabilities: list[str] | None = None,
    ) -> None:
        actor_id = normalize_identifier(actor_id)
        self._roles.setdefault(actor_id, set()).update(roles or [])
        self._capabilities.setdefault(actor_id, set()).update(capabilities or [])

    def remove_actor(self, actor_id: str | int) -> None:
        actor_id = normalize_identifier(actor_id)
        self._roles.pop(actor_id, None)
        self._capabilities.pop(actor_id, None)

    def grant_role_capability(self, role: str, capability: str) -> None:
        self._role_capabilities.setdefault(role, set()).add(capability)

    async def actor_exists(self, actor_id: str) -> bool:
        return normalize_identifier(actor_id) in self._roles

    async def actor_has_role(self, actor_id: str, role: str) -> bool:
        return role in self._roles.get(normalize_identifier(actor_id), set())

    async def actor_has_capability(self, actor_id: str, capability: str) -> bool:
        actor_id = normalize_identifier(actor_id)
        if capability in self._capabilities.get(actor_id, set()):
            return True
        return any(
            capability in self._role_capabilities.get(role, set())
            for role in self._roles.get(actor_id, set())
        )

    async def actor_roles(self, actor_id: str) -> list[str]:
        return sorted(self._roles.get(normalize_identifier(actor_id), set()))
