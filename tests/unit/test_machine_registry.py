"""Tests for MachineRegistry component."""

import pytest

from workflowfsm.domain.components.machine_registry import MachineRegistry
from workflowfsm.domain.interfaces.definition_store import DefinitionStoreError
from workflowfsm.domain.models.machine import Machine, State, StateKind, Transition, WorkflowGroup
from workflowfsm.domain.models.system_error import (
    DefinitionValidationError,
    MachineInUseError,
    MachineNotFoundError,
)
from workflowfsm.infrastructure.state_store.memory_store import InMemoryDefinitionStore
from tests.fixtures.test_data import build_order_flow, order_request


class TransitionWriteFailingStore(InMemoryDefinitionStore):
    """Definition store whose transition writes always fail."""

    async def save_transition(self, transition: Transition) -> None:
        raise DefinitionStoreError("disk full")


class TestMachineRegistryValidation:
    """Tests for definition validation."""

    @pytest.mark.asyncio
    async def test_valid_definition(self, registry, order_flow) -> None:
        """Test that the order flow validates cleanly."""
        errors = await registry.validate_definition(
            order_flow.machine, order_flow.state_list, order_flow.transition_list
        )

        assert errors == []

    @pytest.mark.asyncio
    async def test_bad_identifiers_reported(self, registry) -> None:
        """Test that name, slug and entity type rules are enforced."""
        machine = Machine(name="Or", slug="Bad Slug", plugin_slug="shop", entity_type="x" * 51)
        states = [
            State(machine_id=machine.id, slug="start", name="Start", kind=StateKind.Initial),
            State(machine_id=machine.id, slug="end", name="End", kind=StateKind.Final),
        ]

        errors = await registry.validate_definition(machine, states, [])

        assert len(errors) == 3
        assert any("Name must be at least 3 characters" in e for e in errors)
        assert any("machine.slug" in e for e in errors)
        assert any("entity_type" in e for e in errors)

    @pytest.mark.asyncio
    async def test_initial_and_final_states_required(self, registry) -> None:
        """Test that exactly one initial and at least one final state are required."""
        machine = Machine(name="Broken", slug="broken", plugin_slug="shop", entity_type="order")
        states = [
            State(machine_id=machine.id, slug="a", name="A", kind=StateKind.Initial),
            State(machine_id=machine.id, slug="b", name="B", kind=StateKind.Initial),
        ]

        errors = await registry.validate_definition(machine, states, [])

        assert "State machine must have exactly one initial state, found 2" in errors
        assert "State machine must have at least one final state" in errors

    @pytest.mark.asyncio
    async def test_no_states(self, registry) -> None:
        """Test that a machine without states is invalid."""
        machine = Machine(name="Empty", slug="empty", plugin_slug="shop", entity_type="order")

        errors = await registry.validate_definition(machine, [], [])

        assert errors == ["State machine must have at least one state"]

    @pytest.mark.asyncio
    async def test_duplicate_state_slugs(self, registry, order_flow) -> None:
        """Test that state slugs must be unique within a machine."""
        extra = State(machine_id=order_flow.machine.id, slug="draft", name="Draft again")

        errors = await registry.validate_definition(
            order_flow.machine, [*order_flow.state_list, extra], order_flow.transition_list
        )

        assert errors == ["Duplicate state slug: draft"]

    @pytest.mark.asyncio
    async def test_transition_to_foreign_state(self, registry, order_flow) -> None:
        """Test that transitions must connect states of the same machine."""
        other = build_order_flow(slug="other-flow")
        bad = Transition(
            machine_id=order_flow.machine.id,
            from_state_id=order_flow.states["draft"].id,
            to_state_id=other.states["approved"].id,
            label="Leak",
            slug="leak",
        )

        errors = await registry.validate_definition(
            order_flow.machine, order_flow.state_list, [*order_flow.transition_list, bad]
        )

        assert errors == ["Transition leak leads to a state outside this machine"]

    @pytest.mark.asyncio
    async def test_duplicate_transition_slug(self, registry, order_flow) -> None:
        """Test that transition slugs must be unique within a machine."""
        dup = Transition(
            machine_id=order_flow.machine.id,
            from_state_id=order_flow.states["draft"].id,
            to_state_id=order_flow.states["rejected"].id,
            label="Submit again",
            slug="submit",
        )

        errors = await registry.validate_definition(
            order_flow.machine, order_flow.state_list, [*order_flow.transition_list, dup]
        )

        assert errors == ["Duplicate transition slug: submit"]

    @pytest.mark.asyncio
    async def test_guard_config_validated(self, registry) -> None:
        """Test that invalid guard configurations are reported per transition."""
        flow = build_order_flow(approve_guard="RoleGuard")

        errors = await registry.validate_definition(flow.machine, flow.state_list, flow.transition_list)

        assert errors == [
            "Transition approve: Invalid guard configuration for RoleGuard: "
            "At least one role must be specified"
        ]

    @pytest.mark.asyncio
    async def test_unregistered_callback_reported(self, registry, callbacks) -> None:
        """Test that callback guards need their handler registered first."""
        flow = build_order_flow(approve_guard="CallbackGuard:check_budget")

        errors = await registry.validate_definition(flow.machine, flow.state_list, flow.transition_list)
        assert errors == ['Transition approve: No callback registered for "check_budget"']

        callbacks.register_handler("check_budget", lambda e, a, c: True)
        assert (
            await registry.validate_definition(flow.machine, flow.state_list, flow.transition_list)
            == []
        )

    @pytest.mark.asyncio
    async def test_slug_in_use(self, registry, registered_flow) -> None:
        """Test that another machine cannot reuse a registered slug."""
        copy = build_order_flow()

        errors = await registry.validate_definition(copy.machine, copy.state_list, copy.transition_list)

        assert errors == ["Machine slug already in use: order-flow"]

    @pytest.mark.asyncio
    async def test_unknown_group(self, registry) -> None:
        """Test that a referenced workflow group must exist."""
        flow = build_order_flow()
        machine = flow.machine.model_copy(update={"workflow_group_id": "missing"})

        errors = await registry.validate_definition(machine, flow.state_list, flow.transition_list)

        assert errors == ["Workflow group does not exist: missing"]


class TestMachineRegistryRegistration:
    """Tests for register_machine and add_group."""

    @pytest.mark.asyncio
    async def test_register_persists_definition(self, registry, definition_store, order_flow, observability) -> None:
        """Test that registration stores machine, states and transitions."""
        await registry.register_machine(
            order_flow.machine, order_flow.state_list, order_flow.transition_list
        )

        assert await definition_store.get_machine("order-flow") == order_flow.machine
        assert len(await definition_store.states_by_machine(order_flow.machine.id)) == 4
        assert len(await definition_store.transitions_by_machine(order_flow.machine.id)) == 3
        event = observability.events_of("machine_registered")[0]
        assert event["payload"]["transitions"] == 3

    @pytest.mark.asyncio
    async def test_register_invalid_raises_with_all_errors(self, registry, definition_store) -> None:
        """Test that an invalid definition raises and stores nothing."""
        flow = build_order_flow(approve_guard="RoleGuard")
        machine = flow.machine.model_copy(update={"slug": "X"})

        with pytest.raises(DefinitionValidationError) as exc_info:
            await registry.register_machine(machine, flow.state_list, flow.transition_list)

        assert len(exc_info.value.errors) == 2
        assert await definition_store.list_machines() == []

    @pytest.mark.asyncio
    async def test_failed_write_removes_partial_machine(
        self, history_store, guard_factory, observability
    ) -> None:
        """Test that a store failure mid-registration leaves no machine behind."""
        store = TransitionWriteFailingStore()
        registry = MachineRegistry(
            definition_store=store,
            history_store=history_store,
            guard_factory=guard_factory,
            observability_manager=observability,
        )
        flow = build_order_flow()

        with pytest.raises(DefinitionStoreError):
            await registry.register_machine(flow.machine, flow.state_list, flow.transition_list)

        assert await store.get_machine("order-flow") is None
        assert await store.states_by_machine(flow.machine.id) == []
        assert observability.events_of("machine_registered") == []
        assert observability.logs[-1]["level"] == "ERROR"

    @pytest.mark.asyncio
    async def test_reregister_same_machine(self, registry, registered_flow) -> None:
        """Test that a machine can be registered again under its own slug."""
        await registry.register_machine(
            registered_flow.machine, registered_flow.state_list, registered_flow.transition_list
        )

    @pytest.mark.asyncio
    async def test_machine_in_group(self, registry, definition_store) -> None:
        """Test that a machine can reference a registered group."""
        group = await registry.add_group(WorkflowGroup(name="Sales", slug="sales"))
        flow = build_order_flow()
        machine = flow.machine.model_copy(update={"workflow_group_id": group.id})

        await registry.register_machine(machine, flow.state_list, flow.transition_list)

        machines = await definition_store.list_machines(workflow_group_id=group.id)
        assert [m.slug for m in machines] == ["order-flow"]

    @pytest.mark.asyncio
    async def test_add_group_validates(self, registry) -> None:
        """Test that a group with an invalid slug is refused."""
        with pytest.raises(DefinitionValidationError):
            await registry.add_group(WorkflowGroup(name="Sales", slug="S"))


class TestMachineRegistryDeletion:
    """Tests for delete_machine policies."""

    @pytest.mark.asyncio
    async def test_delete_unused_machine(self, registry, definition_store, registered_flow) -> None:
        """Test that a machine without history is deleted with its states and transitions."""
        purged = await registry.delete_machine("order-flow")

        assert purged == 0
        assert await definition_store.get_machine("order-flow") is None
        assert await definition_store.states_by_machine(registered_flow.machine.id) == []
        assert await definition_store.get_transition(registered_flow.transitions["submit"].id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_machine(self, registry) -> None:
        """Test that deleting an unknown machine raises MachineNotFoundError."""
        with pytest.raises(MachineNotFoundError):
            await registry.delete_machine("missing")

    @pytest.mark.asyncio
    async def test_restrict_refuses_machine_with_history(
        self, registry, engine, definition_store, registered_flow
    ) -> None:
        """Test that restrict keeps machines that have transition history."""
        await engine.apply_transition(order_request("submit"))

        with pytest.raises(MachineInUseError) as exc_info:
            await registry.delete_machine("order-flow")

        assert exc_info.value.details["entries"] == 1
        assert await definition_store.get_machine("order-flow") is not None

    @pytest.mark.asyncio
    async def test_cascade_purges_history(
        self, registry, engine, history_store, definition_store, registered_flow
    ) -> None:
        """Test that cascade removes the machine's history and the machine."""
        await engine.apply_transition(order_request("submit", entity_id=1))
        await engine.apply_transition(order_request("submit", entity_id=2))

        purged = await registry.delete_machine("order-flow", policy="cascade")

        assert purged == 2
        assert await history_store.machine_history(registered_flow.machine.id) == []
        assert await definition_store.get_machine(registered_flow.machine.id) is None
