"""MachineRegistry component: definition-time validation, registration and deletion."""

from collections import Counter
from typing import Literal

from workflowfsm.domain.guards.factory import GuardFactory
from workflowfsm.domain.interfaces.definition_store import DefinitionStore, DefinitionStoreError
from workflowfsm.domain.interfaces.history_store import HistoryStore
from workflowfsm.domain.interfaces.observability_manager import ObservabilityManager
from workflowfsm.domain.models.machine import Machine, State, Transition, WorkflowGroup
from workflowfsm.domain.models.system_error import (
    DefinitionValidationError,
    MachineInUseError,
    MachineNotFoundError,
)
from workflowfsm.infrastructure.utils.validation import (
    ValidationError,
    validate_description,
    validate_entity_type,
    validate_name,
    validate_slug,
    validate_state_slug,
)

DeletePolicy = Literal["restrict", "cascade"]


def _check(errors: list[str], validator, *args) -> None:
    try:
        validator(*args)
    except ValidationError as e:
        errors.append(str(e))


class MachineRegistry:
    """Registers machine definitions after checking their structure.

    A definition is a Machine with its States and Transitions. Problems are
    collected rather than raised one at a time, so a module author sees every
    mistake in a definition at once.

    Example:
        ```python
        registry = MachineRegistry(definitions, history, guard_factory, observability)
        machine = Machine(name="Order Flow", slug="order-flow", plugin_slug="shop", entity_type="order")
        draft = State(machine_id=machine.id, slug="draft", name="Draft", kind=StateKind.Initial)
        done = State(machine_id=machine.id, slug="done", name="Done", kind=StateKind.Final)
        finish = Transition(
            machine_id=machine.id,
            from_state_id=draft.id,
            to_state_id=done.id,
            label="Finish",
            slug="finish",
            guard_config="RoleGuard:manager",
        )
        await registry.register_machine(machine, [draft, done], [finish])
        ```
    """

    def __init__(
        self,
        definition_store: DefinitionStore,
        history_store: HistoryStore,
        guard_factory: GuardFactory,
        observability_manager: ObservabilityManager,
        delete_policy: DeletePolicy = "restrict",
    ) -> None:
        """Initialize MachineRegistry with dependencies.

        Args:
            definition_store: Store receiving the definitions.
            history_store: Ledger consulted (and purged) on deletion.
            guard_factory: Validates transition guard configurations.
            observability_manager: ObservabilityManager for events and logging.
            delete_policy: Default policy for ``delete_machine``.
        """
        self._definitions = definition_store
        self._history = history_store
        self._guards = guard_factory
        self._observability = observability_manager
        self._delete_policy = delete_policy

    async def validate_definition(
        self,
        machine: Machine,
        states: list[State],
        transitions: list[Transition],
    ) -> list[str]:
        """Return every structural problem with a machine definition."""
        errors: list[str] = []

        _check(errors, validate_name, machine.name, "machine.name")
        _check(errors, validate_slug, machine.slug, "machine.slug")
        _check(errors, validate_slug, machine.plugin_slug, "machine.plugin_slug")
        _check(errors, validate_entity_type, machine.entity_type)
        _check(errors, validate_description, machine.description, "machine.description")

        existing = await self._definitions.get_machine(machine.slug)
        if existing is not None and existing.id != machine.id:
            errors.append(f"Machine slug already in use: {machine.slug}")

        if machine.workflow_group_id is not None:
            if await self._definitions.get_group(machine.workflow_group_id) is None:
                errors.append(f"Workflow group does not exist: {machine.workflow_group_id}")

        errors.extend(self._validate_states(machine, states))
        errors.extend(self._validate_transitions(machine, states, transitions))
        return errors

    def _validate_states(self, machine: Machine, states: list[State]) -> list[str]:
        errors = []
        if not states:
            return ["State machine must have at least one state"]

        for state in states:
            if state.machine_id != machine.id:
                errors.append(f"State {state.slug} belongs to another machine")
            _check(errors, validate_state_slug, state.slug, f"state.{state.slug}")

        duplicates = [slug for slug, count in Counter(s.slug for s in states).items() if count > 1]
        for slug in duplicates:
            errors.append(f"Duplicate state slug: {slug}")

        initial = [s for s in states if s.is_initial]
        if len(initial) != 1:
            errors.append(
                f"State machine must have exactly one initial state, found {len(initial)}"
            )
        if not any(s.is_final for s in states):
            errors.append("State machine must have at least one final state")
        return errors

    def _validate_transitions(
        self,
        machine: Machine,
        states: list[State],
        transitions: list[Transition],
    ) -> list[str]:
        errors = []
        state_ids = {s.id for s in states}
        slugs: Counter[str] = Counter()

        for transition in transitions:
            name = transition.slug or transition.label
            if transition.machine_id != machine.id:
                errors.append(f"Transition {name} belongs to another machine")
            if transition.from_state_id not in state_ids:
                errors.append(f"Transition {name} starts from a state outside this machine")
            if transition.to_state_id not in state_ids:
                errors.append(f"Transition {name} leads to a state outside this machine")
            if transition.slug is not None:
                slugs[transition.slug] += 1
                _check(errors, validate_state_slug, transition.slug, f"transition.{name}")
            if transition.guard_config is not None:
                for problem in self._guards.validate(transition.guard_config):
                    errors.append(f"Transition {name}: {problem}")

        for slug, count in slugs.items():
            if count > 1:
                errors.append(f"Duplicate transition slug: {slug}")
        return errors

    async def register_machine(
        self,
        machine: Machine,
        states: list[State],
        transitions: list[Transition],
    ) -> Machine:
        """Validate and persist a complete machine definition.

        Raises:
            DefinitionValidationError: If the definition has any problem.
            DefinitionStoreError: If persistence fails.
        """
        errors = await self.validate_definition(machine, states, transitions)
        if errors:
            await self._observability.log(
                level="WARNING",
                message="Machine definition rejected",
                context={"machine_slug": machine.slug, "errors": errors},
            )
            raise DefinitionValidationError(
                f"Invalid definition for machine {machine.slug}: {'; '.join(errors)}",
                errors=errors,
            )

        existed = await self._definitions.get_machine(machine.id) is not None
        await self._definitions.save_machine(machine)
        try:
            for state in states:
                await self._definitions.save_state(state)
            for transition in transitions:
                await self._definitions.save_transition(transition)
        except DefinitionStoreError as e:
            await self._observability.log(
                level="ERROR",
                message="Machine registration failed; removing partial definition",
                context={"machine_id": machine.id, "machine_slug": machine.slug, "error": str(e)},
            )
            if not existed:
                await self._definitions.delete_machine(machine.id)
            raise

        try:
            await self._observability.emit_event(
                event_type="machine_registered",
                payload={
                    "machine_id": machine.id,
                    "slug": machine.slug,
                    "plugin_slug": machine.plugin_slug,
                    "states": len(states),
                    "transitions": len(transitions),
                },
            )
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit machine_registered event: {e}",
                context={"machine_id": machine.id},
            )
        return machine

    async def add_group(self, group: WorkflowGroup) -> WorkflowGroup:
        """Validate and persist a workflow group.

        Raises:
            DefinitionValidationError: If the name or slug is invalid.
        """
        errors: list[str] = []
        _check(errors, validate_name, group.name, "group.name")
        _check(errors, validate_slug, group.slug, "group.slug")
        _check(errors, validate_description, group.description, "group.description")
        if errors:
            raise DefinitionValidationError(
                f"Invalid workflow group {group.slug}: {'; '.join(errors)}",
                errors=errors,
            )
        await self._definitions.save_group(group)
        return group

    async def delete_machine(
        self,
        machine: str,
        policy: DeletePolicy | None = None,
    ) -> int:
        """Delete a machine with its states and transitions.

        Args:
            machine: Machine id or slug.
            policy: ``restrict`` refuses when history exists; ``cascade``
                purges the machine's history first. Defaults to the policy
                given at construction.

        Returns:
            Number of history entries purged (always 0 under restrict).

        Raises:
            MachineNotFoundError: If the machine does not exist.
            MachineInUseError: If history exists under the restrict policy.
        """
        policy = policy or self._delete_policy
        machine_def = await self._definitions.get_machine(machine)
        if machine_def is None:
            raise MachineNotFoundError(f"Machine not found: {machine}")

        entries = await self._history.count_machine_entries(machine_def.id)
        purged = 0
        if entries:
            if policy == "restrict":
                raise MachineInUseError(
                    f"Machine {machine_def.slug} has {entries} transition log entries",
                    details={"machine_id": machine_def.id, "entries": entries},
                )
            purged = await self._history.purge_machine(machine_def.id)

        await self._definitions.delete_machine(machine_def.id)
        await self._observability.log(
            level="INFO",
            message="Machine deleted",
            context={"machine_id": machine_def.id, "policy": policy, "purged_entries": purged},
        )
        return purged
