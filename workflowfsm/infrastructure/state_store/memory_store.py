"""In-memory definition and history store implementations.

These stores keep everything in Python dictionaries and lists. They are the
default stores and the fakes used throughout the test suite; they require no
external services.

Example:
    ```python
    from workflowfsm.infrastructure.state_store.memory_store import (
        InMemoryDefinitionStore,
        InMemoryHistoryStore,
    )

    definitions = InMemoryDefinitionStore()
    await definitions.save_machine(machine)

    history = InMemoryHistoryStore()
    stored = await history.append_entry(entry)
    latest = await history.latest_entry("order", "1", machine.id)
    ```
"""

import asyncio
import itertools

from workflowfsm.domain.interfaces.definition_store import (
    DefinitionStore,
    DefinitionStoreError,
)
from workflowfsm.domain.interfaces.history_store import (
    AppendConflictError,
    HistoryStore,
    HistoryStoreError,
)
from workflowfsm.domain.models.machine import Machine, State, Transition, WorkflowGroup
from workflowfsm.domain.models.transition_log import TransitionLogEntry


def _limited(entries: list[TransitionLogEntry], limit: int | None) -> list[TransitionLogEntry]:
    if limit is None or limit <= 0:
        return entries
    return entries[:limit]


class InMemoryDefinitionStore(DefinitionStore):
    """In-memory implementation of DefinitionStore.

    Thread Safety:
        - Write operations use an asyncio.Lock
        - Reads are lock-free (dict reads are atomic)

    Attributes:
        _groups: WorkflowGroup objects keyed by id
        _machines: Machine objects keyed by id
        _states: State objects keyed by id
        _transitions: Transition objects keyed by id
        _write_lock: asyncio.Lock for write operations
    """

    def __init__(self) -> None:
        self._groups: dict[str, WorkflowGroup] = {}
        self._machines: dict[str, Machine] = {}
        self._states: dict[str, State] = {}
        self._transitions: dict[str, Transition] = {}
        self._write_lock = asyncio.Lock()

    async def get_machine(self, id_or_slug: str) -> Machine | None:
        try:
            machine = self._machines.get(id_or_slug)
            if machine is not None:
                return machine
            return next(
                (m for m in self._machines.values() if m.slug == id_or_slug),
                None,
            )
        except Exception as e:
            raise DefinitionStoreError(f"Failed to get machine {id_or_slug}: {e}") from e

    async def list_machines(
        self,
        plugin_slug: str | None = None,
        workflow_group_id: str | None = None,
        active_only: bool = False,
    ) -> list[Machine]:
        try:
            machines = [
                m
                for m in self._machines.values()
                if (plugin_slug is None or m.plugin_slug == plugin_slug)
                and (workflow_group_id is None or m.workflow_group_id == workflow_group_id)
                and (not active_only or m.is_active)
            ]
            return sorted(machines, key=lambda m: m.name)
        except Exception as e:
            raise DefinitionStoreError(f"Failed to list machines: {e}") from e

    async def get_transition(self, transition_id: str) -> Transition | None:
        try:
            return self._transitions.get(transition_id)
        except Exception as e:
            raise DefinitionStoreError(f"Failed to get transition {transition_id}: {e}") from e

    async def get_transition_by_slug(self, machine_id: str, slug: str) -> Transition | None:
        try:
            return next(
                (
                    t
                    for t in self._transitions.values()
                    if t.machine_id == machine_id and t.slug == slug
                ),
                None,
            )
        except Exception as e:
            raise DefinitionStoreError(f"Failed to get transition {slug}: {e}") from e

    async def get_state(self, state_id: str) -> State | None:
        try:
            return self._states.get(state_id)
        except Exception as e:
            raise DefinitionStoreError(f"Failed to get state {state_id}: {e}") from e

    async def states_by_machine(self, machine_id: str) -> list[State]:
        try:
            states = [s for s in self._states.values() if s.machine_id == machine_id]
            return sorted(states, key=lambda s: (s.sort_order, s.name))
        except Exception as e:
            raise DefinitionStoreError(f"Failed to list states for {machine_id}: {e}") from e

    async def transitions_by_machine(self, machine_id: str) -> list[Transition]:
        try:
            transitions = [t for t in self._transitions.values() if t.machine_id == machine_id]
            return sorted(transitions, key=lambda t: (t.sort_order, t.label))
        except Exception as e:
            raise DefinitionStoreError(
                f"Failed to list transitions for {machine_id}: {e}"
            ) from e

    async def transitions_from_state(self, machine_id: str, state_id: str) -> list[Transition]:
        transitions = await self.transitions_by_machine(machine_id)
        return [t for t in transitions if t.from_state_id == state_id]

    async def save_group(self, group: WorkflowGroup) -> None:
        async with self._write_lock:
            if any(g.slug == group.slug and g.id != group.id for g in self._groups.values()):
                raise DefinitionStoreError(f"Workflow group slug already exists: {group.slug}")
            self._groups[group.id] = group

    async def get_group(self, id_or_slug: str) -> WorkflowGroup | None:
        group = self._groups.get(id_or_slug)
        if group is not None:
            return group
        return next((g for g in self._groups.values() if g.slug == id_or_slug), None)

    async def list_groups(self) -> list[WorkflowGroup]:
        return sorted(self._groups.values(), key=lambda g: (g.sort_order, g.name))

    async def save_machine(self, machine: Machine) -> None:
        async with self._write_lock:
            if any(
                m.slug == machine.slug and m.id != machine.id for m in self._machines.values()
            ):
                raise DefinitionStoreError(f"Machine slug already exists: {machine.slug}")
            self._machines[machine.id] = machine

    async def save_state(self, state: State) -> None:
        try:
            async with self._write_lock:
                self._states[state.id] = state
        except Exception as e:
            raise DefinitionStoreError(f"Failed to save state {state.id}: {e}") from e

    async def save_transition(self, transition: Transition) -> None:
        try:
            async with self._write_lock:
                self._transitions[transition.id] = transition
        except Exception as e:
            raise DefinitionStoreError(f"Failed to save transition {transition.id}: {e}") from e

    async def delete_machine(self, machine_id: str) -> bool:
        async with self._write_lock:
            if self._machines.pop(machine_id, None) is None:
                return False
            self._states = {k: s for k, s in self._states.items() if s.machine_id != machine_id}
            self._transitions = {
                k: t for k, t in self._transitions.items() if t.machine_id != machine_id
            }
            return True


class InMemoryHistoryStore(HistoryStore):
    """In-memory implementation of HistoryStore.

    Entries are kept in append order, which is also id order. The conditional
    append runs under a single asyncio.Lock, so checking the latest entry and
    writing the new one is atomic with respect to other appends.

    Attributes:
        _entries: All entries, oldest first
        _latest: Latest entry id per (entity_type, entity_id, machine_id)
        _ids: Monotonic id sequence
        _write_lock: asyncio.Lock for appends and purges
    """

    def __init__(self) -> None:
        self._entries: list[TransitionLogEntry] = []
        self._latest: dict[tuple[str, str, str], TransitionLogEntry] = {}
        self._ids = itertools.count(1)
        self._write_lock = asyncio.Lock()

    async def latest_entry(
        self,
        entity_type: str,
        entity_id: str,
        machine_id: str,
    ) -> TransitionLogEntry | None:
        try:
            return self._latest.get((entity_type, str(entity_id), machine_id))
        except Exception as e:
            raise HistoryStoreError(
                f"Failed to read latest entry for {entity_type}:{entity_id}: {e}"
            ) from e

    async def append_entry(self, entry: TransitionLogEntry) -> TransitionLogEntry:
        key = (entry.entity_type, entry.entity_id, entry.machine_id)
        async with self._write_lock:
            current = self._latest.get(key)
            current_id = current.id if current else None
            if entry.previous_entry_id != current_id:
                raise AppendConflictError(
                    f"Entity {entry.entity_type}:{entry.entity_id} moved since entry "
                    f"{entry.previous_entry_id} was read (latest is {current_id})",
                    expected_previous_id=entry.previous_entry_id,
                    actual_previous_id=current_id,
                )
            try:
                stored = entry.model_copy(update={"id": next(self._ids)})
                self._entries.append(stored)
                self._latest[key] = stored
            except Exception as e:
                raise HistoryStoreError(f"Failed to append entry: {e}") from e
            return stored

    async def history(
        self,
        entity_type: str,
        entity_id: str,
        limit: int | None = None,
        machine_id: str | None = None,
    ) -> list[TransitionLogEntry]:
        entity_id = str(entity_id)
        entries = [
            e
            for e in reversed(self._entries)
            if e.entity_type == entity_type
            and e.entity_id == entity_id
            and (machine_id is None or e.machine_id == machine_id)
        ]
        return _limited(entries, limit)

    async def machine_history(
        self,
        machine_id: str,
        limit: int | None = None,
    ) -> list[TransitionLogEntry]:
        entries = [e for e in reversed(self._entries) if e.machine_id == machine_id]
        return _limited(entries, limit)

    async def actor_history(
        self,
        actor_id: str,
        limit: int | None = None,
    ) -> list[TransitionLogEntry]:
        actor_id = str(actor_id)
        entries = [e for e in reversed(self._entries) if e.actor_id == actor_id]
        return _limited(entries, limit)

    async def count_machine_entries(self, machine_id: str) -> int:
        return sum(1 for e in self._entries if e.machine_id == machine_id)

    async def count_machine_entities(self, machine_id: str) -> int:
        return len(
            {(e.entity_type, e.entity_id) for e in self._entries if e.machine_id == machine_id}
        )

    async def purge_machine(self, machine_id: str) -> int:
        async with self._write_lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.machine_id != machine_id]
            self._latest = {k: e for k, e in self._latest.items() if k[2] != machine_id}
            return before - len(self._entries)
