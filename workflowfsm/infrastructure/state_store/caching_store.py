"""Read-through TTL cache in front of a DefinitionStore.

Machine definitions change rarely and are read on every transition, so
lookups are cached for a configurable time. Writes made through this
wrapper clear the cache; writes made directly against the wrapped store
become visible when entries expire. The history store is never wrapped.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from workflowfsm.domain.interfaces.definition_store import DefinitionStore
from workflowfsm.domain.models.machine import Machine, State, Transition, WorkflowGroup

T = TypeVar("T")


class CachingDefinitionStore(DefinitionStore):
    """DefinitionStore decorator with a per-key TTL cache.

    Example:
        ```python
        store = CachingDefinitionStore(MongoDefinitionStore(), ttl_seconds=3600)
        machine = await store.get_machine("order-flow")  # hits Mongo
        machine = await store.get_machine("order-flow")  # served from cache
        ```
    """

    def __init__(self, inner: DefinitionStore, ttl_seconds: float = 3600.0) -> None:
        """Initialize CachingDefinitionStore.

        Args:
            inner: The store to read through to.
            ttl_seconds: Lifetime of a cached lookup. Zero or negative
                disables caching.
        """
        self._inner = inner
        self._ttl = ttl_seconds
        self._entries: dict[tuple[Any, ...], tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    @property
    def inner(self) -> DefinitionStore:
        return self._inner

    def invalidate(self) -> None:
        self._entries.clear()

    async def _cached(self, key: tuple[Any, ...], load: Callable[[], Awaitable[T]]) -> T:
        if self._ttl <= 0:
            return await load()

        now = time.monotonic()
        cached = self._entries.get(key)
        if cached is not None and cached[0] > now:
            self.hits += 1
            return cached[1]

        self.misses += 1
        value = await load()
        # Misses are not cached so a definition registered later is seen at once
        if value is not None:
            self._entries[key] = (now + self._ttl, value)
        return value

    async def get_machine(self, id_or_slug: str) -> Machine | None:
        return await self._cached(
            ("machine", id_or_slug), lambda: self._inner.get_machine(id_or_slug)
        )

    async def list_machines(
        self,
        plugin_slug: str | None = None,
        workflow_group_id: str | None = None,
        active_only: bool = False,
    ) -> list[Machine]:
        return await self._inner.list_machines(plugin_slug, workflow_group_id, active_only)

    async def get_transition(self, transition_id: str) -> Transition | None:
        return await self._cached(
            ("transition", transition_id), lambda: self._inner.get_transition(transition_id)
        )

    async def get_transition_by_slug(self, machine_id: str, slug: str) -> Transition | None:
        return await self._cached(
            ("transition_slug", machine_id, slug),
            lambda: self._inner.get_transition_by_slug(machine_id, slug),
        )

    async def get_state(self, state_id: str) -> State | None:
        return await self._cached(("state", state_id), lambda: self._inner.get_state(state_id))

    async def states_by_machine(self, machine_id: str) -> list[State]:
        return await self._cached(
            ("states", machine_id), lambda: self._inner.states_by_machine(machine_id)
        )

    async def transitions_by_machine(self, machine_id: str) -> list[Transition]:
        return await self._cached(
            ("transitions", machine_id), lambda: self._inner.transitions_by_machine(machine_id)
        )

    async def transitions_from_state(self, machine_id: str, state_id: str) -> list[Transition]:
        return await self._cached(
            ("transitions_from", machine_id, state_id),
            lambda: self._inner.transitions_from_state(machine_id, state_id),
        )

    async def save_group(self, group: WorkflowGroup) -> None:
        await self._inner.save_group(group)
        self.invalidate()

    async def get_group(self, id_or_slug: str) -> WorkflowGroup | None:
        return await self._inner.get_group(id_or_slug)

    async def list_groups(self) -> list[WorkflowGroup]:
        return await self._inner.list_groups()

    async def save_machine(self, machine: Machine) -> None:
        await self._inner.save_machine(machine)
        self.invalidate()

    async def save_state(self, state: State) -> None:
        await self._inner.save_state(state)
        self.invalidate()

    async def save_transition(self, transition: Transition) -> None:
        await self._inner.save_transition(transition)
        self.invalidate()

    async def delete_machine(self, machine_id: str) -> bool:
        deleted = await self._inner.delete_machine(machine_id)
        self.invalidate()
        return deleted
