"""DefinitionStore interface for the machine/state/transition catalog.

The engine treats the definition store as a read-mostly catalog keyed by
machine id or slug and by state/transition ids. Writes exist for the machine
registry; the transition engine never writes definitions.

Example:
    ```python
    from workflowfsm.domain.interfaces.definition_store import DefinitionStore
    from workflowfsm.infrastructure.state_store.memory_store import InMemoryDefinitionStore

    store: DefinitionStore = InMemoryDefinitionStore()
    await store.save_machine(machine)
    machine = await store.get_machine("order-flow")
    states = await store.states_by_machine(machine.id)
    ```
"""

from abc import ABC, abstractmethod

from workflowfsm.domain.models.machine import Machine, State, Transition, WorkflowGroup


class DefinitionStore(ABC):
    """Abstract interface for machine definition persistence and lookup.

    Lookups return None for missing rows. Implementations raise
    DefinitionStoreError when the backend itself fails, which the engine
    reports as a retryable ``definition_lookup_failed`` outcome.
    """

    @abstractmethod
    async def get_machine(self, id_or_slug: str) -> Machine | None:
        """Retrieve a machine by id, falling back to slug.

        Args:
            id_or_slug: Machine id or globally unique slug.

        Returns:
            The Machine if found, None otherwise.

        Raises:
            DefinitionStoreError: If the lookup fails.
        """
        pass

    @abstractmethod
    async def list_machines(
        self,
        plugin_slug: str | None = None,
        workflow_group_id: str | None = None,
        active_only: bool = False,
    ) -> list[Machine]:
        """List machines, optionally filtered by owning module, group or active flag."""
        pass

    @abstractmethod
    async def get_transition(self, transition_id: str) -> Transition | None:
        """Retrieve a transition by id.

        Raises:
            DefinitionStoreError: If the lookup fails.
        """
        pass

    @abstractmethod
    async def get_transition_by_slug(self, machine_id: str, slug: str) -> Transition | None:
        """Retrieve a transition by its slug within a machine."""
        pass

    @abstractmethod
    async def get_state(self, state_id: str) -> State | None:
        """Retrieve a state by id.

        Raises:
            DefinitionStoreError: If the lookup fails.
        """
        pass

    @abstractmethod
    async def states_by_machine(self, machine_id: str) -> list[State]:
        """List the states of a machine ordered by sort_order, then name."""
        pass

    @abstractmethod
    async def transitions_by_machine(self, machine_id: str) -> list[Transition]:
        """List the transitions of a machine ordered by sort_order, then label."""
        pass

    @abstractmethod
    async def transitions_from_state(self, machine_id: str, state_id: str) -> list[Transition]:
        """List transitions leaving a state, ordered by sort_order, then label."""
        pass

    @abstractmethod
    async def save_group(self, group: WorkflowGroup) -> None:
        """Save a workflow group (upsert).

        Raises:
            DefinitionStoreError: If the slug is taken by another group or
                the write fails.
        """
        pass

    @abstractmethod
    async def get_group(self, id_or_slug: str) -> WorkflowGroup | None:
        """Retrieve a workflow group by id, falling back to slug."""
        pass

    @abstractmethod
    async def list_groups(self) -> list[WorkflowGroup]:
        """List workflow groups ordered by sort_order, then name."""
        pass

    @abstractmethod
    async def save_machine(self, machine: Machine) -> None:
        """Save a machine (upsert).

        Raises:
            DefinitionStoreError: If the slug is taken by another machine or
                the write fails.
        """
        pass

    @abstractmethod
    async def save_state(self, state: State) -> None:
        """Save a state (upsert)."""
        pass

    @abstractmethod
    async def save_transition(self, transition: Transition) -> None:
        """Save a transition (upsert)."""
        pass

    @abstractmethod
    async def delete_machine(self, machine_id: str) -> bool:
        """Delete a machine together with its states and transitions.

        History is not touched here; deletion policy for history lives in the
        machine registry.

        Returns:
            True if the machine existed.
        """
        pass


class DefinitionStoreError(Exception):
    """Raised when DefinitionStore operations fail.

    Example:
        ```python
        try:
            await store.save_machine(machine)
        except DefinitionStoreError as e:
            logger.error(f"Failed to save machine: {e}")
        ```
    """

    pass
