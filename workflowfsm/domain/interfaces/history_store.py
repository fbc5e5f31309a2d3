"""HistoryStore interface for the append-only transition ledger.

The history store is the sole authority for an entity's current state: the
to_state of the entity's most recent entry for a machine. It must never be
cached for the validation read.

Example:
    ```python
    from workflowfsm.domain.interfaces.history_store import HistoryStore
    from workflowfsm.infrastructure.state_store.memory_store import InMemoryHistoryStore

    store: HistoryStore = InMemoryHistoryStore()

    latest = await store.latest_entry("order", "1", machine.id)
    entry = TransitionLogEntry(
        machine_id=machine.id,
        entity_type="order",
        entity_id="1",
        from_state_id=latest.to_state_id if latest else None,
        to_state_id=submitted.id,
        transition_id=submit.id,
        actor_id="42",
        previous_entry_id=latest.id if latest else None,
    )
    stored = await store.append_entry(entry)
    ```
"""

from abc import ABC, abstractmethod

from workflowfsm.domain.models.transition_log import TransitionLogEntry


class HistoryStore(ABC):
    """Abstract interface for the transition ledger.

    Append contract:
        - ``append_entry`` is atomic and assigns a strictly increasing id.
        - The append succeeds only if ``entry.previous_entry_id`` equals the
          id of the current latest entry for the same (entity_type,
          entity_id, machine_id), or both are None. Otherwise it raises
          AppendConflictError and writes nothing.
        - Entries are never updated. ``purge_machine`` exists solely for the
          cascade deletion policy.

    Read ordering: newest first, by id.
    """

    @abstractmethod
    async def latest_entry(
        self,
        entity_type: str,
        entity_id: str,
        machine_id: str,
    ) -> TransitionLogEntry | None:
        """Return the most recent entry for an entity in a machine.

        Returns:
            The entry with the highest id, or None if the entity has never
            transitioned in this machine.

        Raises:
            HistoryStoreError: If the read fails.
        """
        pass

    @abstractmethod
    async def append_entry(self, entry: TransitionLogEntry) -> TransitionLogEntry:
        """Append an entry to the ledger.

        Args:
            entry: Entry without an id. ``previous_entry_id`` must name the
                latest entry observed before deciding to append.

        Returns:
            The stored entry, with its assigned id.

        Raises:
            AppendConflictError: If another entry was appended for the same
                entity and machine since ``previous_entry_id`` was observed.
            HistoryStoreError: If the write fails.
        """
        pass

    @abstractmethod
    async def history(
        self,
        entity_type: str,
        entity_id: str,
        limit: int | None = None,
        machine_id: str | None = None,
    ) -> list[TransitionLogEntry]:
        """Return an entity's entries, newest first.

        Args:
            entity_type: Type of entity.
            entity_id: Entity identifier.
            limit: Maximum number of entries (None or 0 for all).
            machine_id: Restrict to one machine.
        """
        pass

    @abstractmethod
    async def machine_history(
        self,
        machine_id: str,
        limit: int | None = None,
    ) -> list[TransitionLogEntry]:
        """Return entries for a machine across all entities, newest first."""
        pass

    @abstractmethod
    async def actor_history(
        self,
        actor_id: str,
        limit: int | None = None,
    ) -> list[TransitionLogEntry]:
        """Return entries written by an actor, newest first."""
        pass

    @abstractmethod
    async def count_machine_entries(self, machine_id: str) -> int:
        """Count all entries recorded for a machine."""
        pass

    @abstractmethod
    async def count_machine_entities(self, machine_id: str) -> int:
        """Count distinct (entity_type, entity_id) pairs recorded for a machine."""
        pass

    @abstractmethod
    async def purge_machine(self, machine_id: str) -> int:
        """Delete every entry of a machine (cascade deletion only).

        Returns:
            Number of entries removed.
        """
        pass


class HistoryStoreError(Exception):
    """Raised when HistoryStore operations fail."""

    pass


class AppendConflictError(HistoryStoreError):
    """Raised when an append loses an optimistic-concurrency race.

    Attributes:
        expected_previous_id: The latest entry id the caller observed.
        actual_previous_id: The latest entry id found at append time.
    """

    def __init__(
        self,
        message: str,
        expected_previous_id: int | None = None,
        actual_previous_id: int | None = None,
    ) -> None:
        self.expected_previous_id = expected_previous_id
        self.actual_previous_id = actual_previous_id
        super().__init__(message)
