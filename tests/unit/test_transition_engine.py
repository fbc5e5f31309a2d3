"""Tests for TransitionEngine component."""

import asyncio

import pytest

from workflowfsm.domain.components.transition_engine import TransitionEngine
from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.interfaces.definition_store import DefinitionStoreError
from workflowfsm.domain.interfaces.history_store import (
    AppendConflictError,
    HistoryStoreError,
)
from workflowfsm.domain.models.guard_result import GuardContext, GuardResult
from workflowfsm.domain.models.machine import Transition
from workflowfsm.domain.models.system_error import ErrorCategory, ErrorCode
from workflowfsm.domain.models.transition_event import (
    AfterTransitionEvent,
    TransitionTopic,
)
from workflowfsm.domain.models.transition_result import (
    PipelineStage,
    TransitionRequest,
)
from workflowfsm.infrastructure.state_store.memory_store import (
    InMemoryDefinitionStore,
    InMemoryHistoryStore,
)
from tests.fixtures.test_data import (
    CLERK,
    MANAGER,
    build_order_flow,
    order_request,
)


class FailingHistoryStore(InMemoryHistoryStore):
    """History store whose reads or appends can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False
        self.fail_appends = False
        self.conflict_appends = False

    async def latest_entry(self, entity_type, entity_id, machine_id):
        if self.fail_reads:
            raise HistoryStoreError("connection reset")
        return await super().latest_entry(entity_type, entity_id, machine_id)

    async def append_entry(self, entry):
        if self.fail_appends:
            raise HistoryStoreError("disk full")
        if self.conflict_appends:
            raise AppendConflictError(
                "moved",
                expected_previous_id=entry.previous_entry_id,
                actual_previous_id=99,
            )
        return await super().append_entry(entry)


class FailingDefinitionStore(InMemoryDefinitionStore):
    """Definition store whose machine lookups can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False

    async def get_machine(self, id_or_slug):
        if self.fail_reads:
            raise DefinitionStoreError("definitions unavailable")
        return await super().get_machine(id_or_slug)


class ExplodingGuard(Guard):
    name = "Exploding Guard"

    def validate_config(self, params: list[str]) -> list[str]:
        return []

    async def check(self, entity_id: str, actor_id: str, context: GuardContext) -> GuardResult:
        raise RuntimeError("boom")


async def _save(store, flow) -> None:
    await store.save_machine(flow.machine)
    for state in flow.state_list:
        await store.save_state(state)
    for transition in flow.transition_list:
        await store.save_transition(transition)


class TestTransitionEngineApply:
    """Tests for the apply_transition happy path."""

    @pytest.mark.asyncio
    async def test_first_transition_starts_from_initial_state(self, engine, registered_flow) -> None:
        """Test that an entity without history can take a transition out of the initial state."""
        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.success is True
        assert outcome.stage == PipelineStage.Committed
        assert outcome.code is None
        assert outcome.reason_code == "success"
        assert outcome.log_id == 1
        assert outcome.from_state is None
        assert outcome.to_state.slug == "submitted"
        assert outcome.log_entry.from_state_id is None
        assert outcome.log_entry.previous_entry_id is None
        assert outcome.log_entry.transition_id == registered_flow.transitions["submit"].id
        assert outcome.message == 'Successfully transitioned from "initial" to "Submitted"'

    @pytest.mark.asyncio
    async def test_integer_ids_are_normalized(self, engine, registered_flow) -> None:
        """Test that integer entity and actor ids are stored as strings."""
        outcome = await engine.apply_transition(order_request("submit", entity_id=7, actor_id=1))

        assert outcome.success is True
        assert outcome.log_entry.entity_id == "7"
        assert outcome.log_entry.actor_id == "1"

        state = await engine.current_state("order", 7, "order-flow")
        assert state.slug == "submitted"

    @pytest.mark.asyncio
    async def test_second_transition_links_previous_entry(self, engine, registered_flow) -> None:
        """Test that each entry records the entry it follows."""
        first = await engine.apply_transition(order_request("submit"))
        second = await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert second.success is True
        assert second.log_entry.previous_entry_id == first.log_id
        assert second.log_entry.from_state_id == registered_flow.states["submitted"].id
        assert second.from_state.slug == "submitted"
        assert second.guard_result is not None
        assert second.guard_result.allowed is True

    @pytest.mark.asyncio
    async def test_history_forms_unbroken_chain(self, engine, registered_flow) -> None:
        """Test that each entry starts where the previous ended and matches current_state."""
        steps = [
            lambda: engine.apply_transition(order_request("submit")),
            lambda: engine.force_state("order", 1, "order-flow", "draft", actor_id=MANAGER),
            lambda: engine.apply_transition(order_request("submit")),
            lambda: engine.apply_transition(order_request("approve", actor_id=MANAGER)),
        ]

        for step in steps:
            outcome = await step()
            assert outcome.success is True
            current = await engine.current_state("order", 1, "order-flow")
            newest = await engine.entity_history("order", 1, limit=1)
            assert current.id == newest[0].entry.to_state_id == outcome.to_state.id

        entries = [h.entry for h in reversed(await engine.entity_history("order", 1))]
        assert len(entries) == len(steps)
        assert entries[0].from_state_id is None
        assert entries[0].previous_entry_id is None
        for previous, entry in zip(entries, entries[1:]):
            assert entry.from_state_id == previous.to_state_id
            assert entry.previous_entry_id == previous.id
        assert current.slug == "approved"

    @pytest.mark.asyncio
    async def test_apply_accepts_transition_request_model(self, engine, registered_flow) -> None:
        """Test that apply_transition accepts a TransitionRequest addressed by transition id."""
        request = TransitionRequest(
            entity_type="order",
            entity_id=1,
            transition_id=registered_flow.transitions["submit"].id,
            actor_id=CLERK,
            comment="ready",
            metadata={"source": "api"},
        )

        outcome = await engine.apply_transition(request)

        assert outcome.success is True
        assert outcome.log_entry.comment == "ready"
        assert outcome.log_entry.metadata == {"source": "api"}

    @pytest.mark.asyncio
    async def test_commit_emits_observability_event(self, engine, registered_flow, observability) -> None:
        """Test that a committed transition emits transition_committed."""
        outcome = await engine.apply_transition(order_request("submit"))

        events = observability.events_of("transition_committed")
        assert len(events) == 1
        assert events[0]["payload"]["log_id"] == outcome.log_id
        assert events[0]["payload"]["entity_id"] == "1"


class TestTransitionEngineRejections:
    """Tests for requests the engine refuses."""

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, engine, registered_flow) -> None:
        """Test that missing required fields yield invalid_params."""
        outcome = await engine.apply_transition({"entity_type": "order", "machine": "order-flow"})

        assert outcome.success is False
        assert outcome.stage == PipelineStage.RejectedInvalidRequest
        assert outcome.code == ErrorCode.InvalidParams
        assert outcome.category == ErrorCategory.RequestError
        assert set(outcome.data["missing_fields"]) == {"entity_id", "actor_id", "transition_id"}

    @pytest.mark.asyncio
    async def test_malformed_fields_rejected(self, engine, registered_flow) -> None:
        """Test that wrongly typed fields yield invalid_params instead of raising."""
        outcome = await engine.apply_transition(order_request("submit", metadata="not-a-dict"))

        assert outcome.code == ErrorCode.InvalidParams
        assert "metadata" in outcome.data["invalid_fields"]

    @pytest.mark.asyncio
    async def test_unknown_machine_rejected(self, engine, registered_flow) -> None:
        """Test that an unknown machine slug yields machine_not_found."""
        request = order_request("submit")
        request["machine"] = "no-such-machine"

        outcome = await engine.apply_transition(request)

        assert outcome.code == ErrorCode.MachineNotFound
        assert outcome.stage == PipelineStage.RejectedInvalidRequest

    @pytest.mark.asyncio
    async def test_unknown_transition_rejected(self, engine, registered_flow) -> None:
        """Test that an unknown transition slug yields transition_not_found."""
        outcome = await engine.apply_transition(order_request("archive"))

        assert outcome.code == ErrorCode.TransitionNotFound
        assert outcome.machine.slug == "order-flow"

    @pytest.mark.asyncio
    async def test_transition_from_other_machine_rejected(
        self, engine, registry, registered_flow
    ) -> None:
        """Test that a transition id from another machine yields transition_machine_mismatch."""
        other = build_order_flow(slug="return-flow")
        await registry.register_machine(other.machine, other.state_list, other.transition_list)

        outcome = await engine.apply_transition(
            {
                "entity_type": "order",
                "entity_id": 1,
                "machine": "order-flow",
                "transition_id": other.transitions["submit"].id,
                "actor_id": CLERK,
            }
        )

        assert outcome.code == ErrorCode.TransitionMachineMismatch
        assert outcome.data["machine_id"] == registered_flow.machine.id

    @pytest.mark.asyncio
    async def test_inactive_machine_rejected(self, engine, definition_store) -> None:
        """Test that transitions on an inactive machine are refused."""
        flow = build_order_flow(is_active=False)
        await _save(definition_store, flow)

        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.code == ErrorCode.MachineInactive
        assert outcome.message == 'State machine "Order Flow" is inactive'

    @pytest.mark.asyncio
    async def test_state_mismatch_without_history(self, engine, registered_flow) -> None:
        """Test that a non-initial transition is refused for an entity with no history."""
        outcome = await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert outcome.success is False
        assert outcome.stage == PipelineStage.RejectedStateMismatch
        assert outcome.code == ErrorCode.StateMismatch
        assert outcome.category == ErrorCategory.DomainRejection
        assert outcome.data["current_state_id"] is None
        assert outcome.data["required_state_slug"] == "submitted"

    @pytest.mark.asyncio
    async def test_state_mismatch_after_final_state(self, engine, registered_flow) -> None:
        """Test that an entity in a final state cannot repeat a transition."""
        await engine.apply_transition(order_request("submit"))
        await engine.apply_transition(order_request("reject"))

        outcome = await engine.apply_transition(order_request("reject"))

        assert outcome.code == ErrorCode.StateMismatch
        assert outcome.data["current_state_slug"] == "rejected"
        assert outcome.message == (
            'Invalid transition. Current state is "Rejected" but transition requires "Submitted"'
        )

    @pytest.mark.asyncio
    async def test_guard_denial(self, engine, registered_flow) -> None:
        """Test that a guard denial carries the guard's reason."""
        await engine.apply_transition(order_request("submit"))

        outcome = await engine.apply_transition(order_request("approve", actor_id=CLERK))

        assert outcome.success is False
        assert outcome.stage == PipelineStage.RejectedByGuard
        assert outcome.code == ErrorCode.GuardFailed
        assert outcome.reason_code == "insufficient_role"
        assert outcome.guard_result.data["required_roles"] == ["manager"]
        assert outcome.message == (
            "User does not have required role. Required: manager. User has: clerk"
        )

    @pytest.mark.asyncio
    async def test_rejection_does_not_write_history(self, engine, registered_flow, history_store) -> None:
        """Test that rejected requests leave the ledger untouched."""
        await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert await history_store.history("order", "1") == []

    @pytest.mark.asyncio
    async def test_unknown_guard_type_fails_closed(self, engine, definition_store) -> None:
        """Test that a transition with an unknown guard type is refused."""
        flow = build_order_flow(approve_guard="TimeGuard:weekdays")
        await _save(definition_store, flow)
        await engine.apply_transition(order_request("submit"))

        outcome = await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert outcome.stage == PipelineStage.RejectedByGuard
        assert outcome.code == ErrorCode.UnknownGuardType
        assert outcome.category == ErrorCategory.ConfigurationError
        assert outcome.data["guard_config"] == "TimeGuard:weekdays"

    @pytest.mark.asyncio
    async def test_missing_callback_maps_to_no_callback_registered(
        self, engine, definition_store
    ) -> None:
        """Test that a CallbackGuard without a handler is refused with its own code."""
        flow = build_order_flow(approve_guard="CallbackGuard:check_budget")
        await _save(definition_store, flow)
        await engine.apply_transition(order_request("submit"))

        outcome = await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert outcome.code == ErrorCode.NoCallbackRegistered
        assert outcome.reason_code == "no_callback_registered"

    @pytest.mark.asyncio
    async def test_guard_exception_fails_closed(self, engine, guard_factory, definition_store) -> None:
        """Test that a guard raising an exception denies the transition."""
        guard_factory.register_guard_type("ExplodingGuard", ExplodingGuard)
        flow = build_order_flow(approve_guard="ExplodingGuard")
        await _save(definition_store, flow)
        await engine.apply_transition(order_request("submit"))

        outcome = await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert outcome.code == ErrorCode.GuardFailed
        assert outcome.reason_code == "guard_error"
        assert "boom" in outcome.message


class TestTransitionEngineInfrastructureFailures:
    """Tests for storage failures during the pipeline."""

    def _engine(self, guard_factory, event_bus, observability, definitions=None, history=None):
        return TransitionEngine(
            definition_store=definitions or InMemoryDefinitionStore(),
            history_store=history or InMemoryHistoryStore(),
            guard_factory=guard_factory,
            event_bus=event_bus,
            observability_manager=observability,
        )

    @pytest.mark.asyncio
    async def test_history_read_failure(self, guard_factory, event_bus, observability) -> None:
        """Test that a failing current-state read yields failed_lookup."""
        history = FailingHistoryStore()
        definitions = InMemoryDefinitionStore()
        await _save(definitions, build_order_flow())
        engine = self._engine(guard_factory, event_bus, observability, definitions, history)
        history.fail_reads = True

        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.stage == PipelineStage.FailedLookup
        assert outcome.code == ErrorCode.HistoryLookupFailed
        assert outcome.retryable is True

    @pytest.mark.asyncio
    async def test_definition_read_failure(self, guard_factory, event_bus, observability) -> None:
        """Test that a failing definition lookup yields definition_lookup_failed."""
        definitions = FailingDefinitionStore()
        await _save(definitions, build_order_flow())
        definitions.fail_reads = True
        engine = self._engine(guard_factory, event_bus, observability, definitions)

        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.stage == PipelineStage.FailedLookup
        assert outcome.code == ErrorCode.DefinitionLookupFailed
        assert outcome.category == ErrorCategory.InfrastructureFailure

    @pytest.mark.asyncio
    async def test_append_failure(self, guard_factory, event_bus, observability) -> None:
        """Test that a failing append yields failed_persist and no after_transition."""
        history = FailingHistoryStore()
        definitions = InMemoryDefinitionStore()
        await _save(definitions, build_order_flow())
        engine = self._engine(guard_factory, event_bus, observability, definitions, history)
        history.fail_appends = True

        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.success is False
        assert outcome.stage == PipelineStage.FailedPersist
        assert outcome.code == ErrorCode.LogAppendFailed
        assert outcome.reason_code == "log_failed"
        assert outcome.to_state.slug == "submitted"
        topics = [topic for topic, _ in event_bus.published]
        assert topics == [TransitionTopic.BeforeTransition, TransitionTopic.TransitionFailed]
        assert any(log["level"] == "ERROR" for log in observability.logs)

    @pytest.mark.asyncio
    async def test_append_conflict(self, guard_factory, event_bus, observability) -> None:
        """Test that a conditional-append conflict yields state_conflict."""
        history = FailingHistoryStore()
        definitions = InMemoryDefinitionStore()
        await _save(definitions, build_order_flow())
        engine = self._engine(guard_factory, event_bus, observability, definitions, history)
        history.conflict_appends = True

        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.stage == PipelineStage.RejectedStateMismatch
        assert outcome.code == ErrorCode.StateConflict
        assert outcome.data["actual_previous_entry_id"] == 99
        assert outcome.retryable is False


class TestTransitionEngineEvents:
    """Tests for before/after/failed event publication."""

    @pytest.mark.asyncio
    async def test_success_publishes_before_and_after(self, engine, registered_flow, event_bus) -> None:
        """Test that a committed transition publishes before then after."""
        outcome = await engine.apply_transition(order_request("submit"))

        topics = [topic for topic, _ in event_bus.published]
        assert topics == [TransitionTopic.BeforeTransition, TransitionTopic.AfterTransition]
        after = event_bus.published[1][1]
        assert isinstance(after, AfterTransitionEvent)
        assert after.log_id == outcome.log_id
        assert after.to_state.slug == "submitted"
        assert after.from_state is None

    @pytest.mark.asyncio
    async def test_rejection_publishes_failed_only(self, engine, registered_flow, event_bus) -> None:
        """Test that a rejection publishes transition_failed and nothing else."""
        await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        assert len(event_bus.published) == 1
        topic, event = event_bus.published[0]
        assert topic == TransitionTopic.TransitionFailed
        assert event.code == "state_mismatch"
        assert event.entity_id == "1"
        assert event.transition_id == registered_flow.transitions["approve"].id

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_change_outcome(
        self, engine, registered_flow, event_bus
    ) -> None:
        """Test that an exception in an after_transition subscriber is contained."""

        def broken(event):
            raise RuntimeError("listener bug")

        event_bus.subscribe(TransitionTopic.AfterTransition, broken)

        outcome = await engine.apply_transition(order_request("submit"))

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_after_subscriber_can_transition_same_entity(
        self, engine, registered_flow, event_bus
    ) -> None:
        """Test that the entity lock is released before after_transition subscribers run."""
        chained = []

        async def auto_reject(event):
            key = (event.entity_type, event.entity_id, event.machine_id)
            if event.to_state.slug == "submitted":
                assert engine.locks.is_locked(key) is False
                chained.append(
                    await engine.apply_transition(order_request("reject", entity_id=event.entity_id))
                )

        event_bus.subscribe(TransitionTopic.AfterTransition, auto_reject)

        outcome = await asyncio.wait_for(engine.apply_transition(order_request("submit")), timeout=2)

        assert outcome.success is True
        assert chained[0].success is True
        assert chained[0].log_entry.previous_entry_id == outcome.log_id
        assert (await engine.current_state("order", 1, "order-flow")).slug == "rejected"
        topics = [topic for topic, _ in event_bus.published]
        assert topics == [
            TransitionTopic.BeforeTransition,
            TransitionTopic.AfterTransition,
            TransitionTopic.BeforeTransition,
            TransitionTopic.AfterTransition,
        ]

    @pytest.mark.asyncio
    async def test_failed_subscriber_can_transition_same_entity(
        self, engine, registered_flow, event_bus
    ) -> None:
        """Test that a transition_failed subscriber may fall back to another transition."""
        await engine.apply_transition(order_request("submit"))
        fallback = []

        async def reject_when_denied(event):
            if event.reason_code == "insufficient_role":
                fallback.append(
                    await engine.apply_transition(order_request("reject", entity_id=event.entity_id))
                )

        event_bus.subscribe(TransitionTopic.TransitionFailed, reject_when_denied)

        denied = await asyncio.wait_for(
            engine.apply_transition(order_request("approve", actor_id=CLERK)), timeout=2
        )

        assert denied.reason_code == "insufficient_role"
        assert fallback[0].success is True
        assert (await engine.current_state("order", 1, "order-flow")).slug == "rejected"

    @pytest.mark.asyncio
    async def test_after_subscriber_can_follow_forced_state(
        self, engine, registered_flow, event_bus
    ) -> None:
        """Test that force_state also releases the lock before after_transition."""

        async def auto_approve(event):
            if event.transition is None:
                await engine.apply_transition(
                    order_request("approve", entity_id=event.entity_id, actor_id=MANAGER)
                )

        event_bus.subscribe(TransitionTopic.AfterTransition, auto_approve)

        forced = await asyncio.wait_for(
            engine.force_state("order", 1, "order-flow", "submitted", actor_id=MANAGER), timeout=2
        )

        assert forced.success is True
        assert (await engine.current_state("order", 1, "order-flow")).slug == "approved"

    @pytest.mark.asyncio
    async def test_can_transition_publishes_nothing(self, engine, registered_flow, event_bus) -> None:
        """Test that can_transition is side-effect free."""
        await engine.can_transition(order_request("submit"))
        await engine.can_transition(order_request("approve"))

        assert event_bus.published == []


class TestTransitionEngineCanTransition:
    """Tests for can_transition."""

    @pytest.mark.asyncio
    async def test_allowed_check(self, engine, registered_flow, history_store) -> None:
        """Test that an allowed check reports validated and writes nothing."""
        check = await engine.can_transition(order_request("submit"))

        assert check.allowed is True
        assert check.stage == PipelineStage.Validated
        assert check.to_state.slug == "submitted"
        assert await history_store.history("order", "1") == []

    @pytest.mark.asyncio
    async def test_denied_check_matches_apply(self, engine, registered_flow) -> None:
        """Test that can_transition and apply_transition reject alike."""
        await engine.apply_transition(order_request("submit"))

        check = await engine.can_transition(order_request("approve", actor_id=CLERK))
        outcome = await engine.apply_transition(order_request("approve", actor_id=CLERK))

        assert check.allowed is False
        assert (check.stage, check.code, check.reason_code) == (
            outcome.stage,
            outcome.code,
            outcome.reason_code,
        )


class TestTransitionEngineForceState:
    """Tests for force_state."""

    @pytest.mark.asyncio
    async def test_force_state_skips_guard_and_source_check(self, engine, registered_flow) -> None:
        """Test that force_state moves an entity anywhere without a guard."""
        outcome = await engine.force_state("order", 1, "order-flow", "approved", actor_id=CLERK)

        assert outcome.success is True
        assert outcome.log_entry.transition_id is None
        assert outcome.log_entry.is_forced is True
        assert outcome.to_state.slug == "approved"
        state = await engine.current_state("order", 1, "order-flow")
        assert state.slug == "approved"

    @pytest.mark.asyncio
    async def test_force_state_accepts_state_id(self, engine, registered_flow) -> None:
        """Test that the target may be given by id."""
        await engine.apply_transition(order_request("submit"))
        target = registered_flow.states["draft"].id

        outcome = await engine.force_state(
            "order", 1, registered_flow.machine.id, target, actor_id=MANAGER, comment="reopen"
        )

        assert outcome.success is True
        assert outcome.log_entry.from_state_id == registered_flow.states["submitted"].id
        assert outcome.log_entry.comment == "reopen"

    @pytest.mark.asyncio
    async def test_force_state_works_on_inactive_machine(self, engine, definition_store) -> None:
        """Test that administrative repair is possible on an inactive machine."""
        await _save(definition_store, build_order_flow(is_active=False))

        outcome = await engine.force_state("order", 1, "order-flow", "submitted", actor_id=MANAGER)

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_force_state_unknown_state(self, engine, registered_flow) -> None:
        """Test that an unknown target state is rejected."""
        outcome = await engine.force_state("order", 1, "order-flow", "archived", actor_id=MANAGER)

        assert outcome.code == ErrorCode.StateNotFound

    @pytest.mark.asyncio
    async def test_force_state_missing_params(self, engine, registered_flow) -> None:
        """Test that blank arguments are rejected with invalid_params."""
        outcome = await engine.force_state("", 1, "order-flow", "draft", actor_id=MANAGER)

        assert outcome.code == ErrorCode.InvalidParams
        assert outcome.data["missing_fields"] == ["entity_type"]


class TestTransitionEngineQueries:
    """Tests for available_transitions and the history helpers."""

    @pytest.mark.asyncio
    async def test_available_transitions_from_initial_state(self, engine, registered_flow) -> None:
        """Test that an entity with no history sees the initial state's transitions."""
        transitions = await engine.available_transitions("order", 1, "order-flow")

        assert [t.slug for t in transitions] == ["submit"]

    @pytest.mark.asyncio
    async def test_available_transitions_filtered_by_actor(self, engine, registered_flow) -> None:
        """Test that guarded transitions the actor cannot take are hidden."""
        await engine.apply_transition(order_request("submit"))

        everyone = await engine.available_transitions("order", 1, "order-flow")
        clerk = await engine.available_transitions("order", 1, "order-flow", actor_id=CLERK)
        manager = await engine.available_transitions("order", 1, "order-flow", actor_id=MANAGER)

        assert [t.slug for t in everyone] == ["approve", "reject"]
        assert [t.slug for t in clerk] == ["reject"]
        assert [t.slug for t in manager] == ["approve", "reject"]

    @pytest.mark.asyncio
    async def test_available_transitions_unknown_machine(self, engine) -> None:
        """Test that an unknown machine yields no transitions."""
        assert await engine.available_transitions("order", 1, "missing") == []

    @pytest.mark.asyncio
    async def test_parallel_transitions_between_same_states(self, engine, definition_store) -> None:
        """Test that two transitions between the same states are both offered."""
        flow = build_order_flow()
        override = Transition(
            machine_id=flow.machine.id,
            from_state_id=flow.states["submitted"].id,
            to_state_id=flow.states["approved"].id,
            label="Emergency approve",
            slug="emergency-approve",
            guard_config="CapabilityGuard:approve_orders",
            sort_order=5,
        )
        await _save(definition_store, flow)
        await definition_store.save_transition(override)
        await engine.apply_transition(order_request("submit"))

        manager = await engine.available_transitions("order", 1, "order-flow", actor_id=MANAGER)
        outcome = await engine.apply_transition(
            order_request("emergency-approve", actor_id=MANAGER)
        )

        assert [t.slug for t in manager] == ["approve", "reject", "emergency-approve"]
        assert outcome.success is True
        assert outcome.log_entry.transition_id == override.id

    @pytest.mark.asyncio
    async def test_entity_history_newest_first_with_labels(self, engine, registered_flow) -> None:
        """Test that entity_history is ordered newest first and enriched."""
        await engine.apply_transition(order_request("submit"))
        await engine.apply_transition(order_request("approve", actor_id=MANAGER))

        history = await engine.entity_history("order", 1)

        assert [h.to_state_slug for h in history] == ["approved", "submitted"]
        assert history[0].transition_label == "Approve"
        assert history[0].from_state_name == "Submitted"
        assert history[1].from_state_slug is None
        assert history[0].machine_slug == "order-flow"

    @pytest.mark.asyncio
    async def test_entity_history_limit(self, engine, registered_flow) -> None:
        """Test that the limit argument truncates history."""
        await engine.apply_transition(order_request("submit"))
        await engine.apply_transition(order_request("reject"))

        history = await engine.entity_history("order", 1, limit=1)

        assert len(history) == 1
        assert history[0].to_state_slug == "rejected"

    @pytest.mark.asyncio
    async def test_entity_history_is_complete_by_default(self, engine, registered_flow) -> None:
        """Test that only machine and actor history apply the default page size."""
        for i in range(60):
            target = "submitted" if i % 2 else "draft"
            await engine.force_state("order", 1, "order-flow", target, actor_id=MANAGER)

        assert len(await engine.entity_history("order", 1)) == 60
        assert len(await engine.entity_history("order", 1, limit=0)) == 60
        assert len(await engine.entity_history("order", 1, limit=5)) == 5
        assert len(await engine.machine_history("order-flow")) == 50
        assert len(await engine.actor_history(MANAGER)) == 50

    @pytest.mark.asyncio
    async def test_machine_and_actor_history(self, engine, registered_flow) -> None:
        """Test machine-wide and per-actor history queries."""
        await engine.apply_transition(order_request("submit", entity_id=1))
        await engine.apply_transition(order_request("submit", entity_id=2))
        await engine.apply_transition(order_request("approve", entity_id=2, actor_id=MANAGER))

        machine = await engine.machine_history("order-flow")
        manager = await engine.actor_history(MANAGER)

        assert len(machine) == 3
        assert [h.entry.entity_id for h in manager] == ["2"]

    @pytest.mark.asyncio
    async def test_machine_stats(self, engine, registered_flow) -> None:
        """Test that machine_stats counts entries and distinct entities."""
        await engine.apply_transition(order_request("submit", entity_id=1))
        await engine.apply_transition(order_request("submit", entity_id=2))
        await engine.apply_transition(order_request("reject", entity_id=2))

        stats = await engine.machine_stats("order-flow")

        assert stats.total_transitions == 3
        assert stats.unique_entities == 2
        assert await engine.machine_stats("missing") is None

    @pytest.mark.asyncio
    async def test_current_state_without_history(self, engine, registered_flow) -> None:
        """Test that an entity with no entries has no current state."""
        assert await engine.current_state("order", 99, "order-flow") is None
        assert await engine.current_entry("order", 99, "order-flow") is None

    @pytest.mark.asyncio
    async def test_history_query_propagates_store_error(
        self, guard_factory, event_bus, observability
    ) -> None:
        """Test that query helpers raise store errors instead of returning results."""
        history = FailingHistoryStore()
        definitions = InMemoryDefinitionStore()
        await _save(definitions, build_order_flow())
        engine = TransitionEngine(
            definition_store=definitions,
            history_store=history,
            guard_factory=guard_factory,
            event_bus=event_bus,
            observability_manager=observability,
        )
        history.fail_reads = True

        with pytest.raises(HistoryStoreError):
            await engine.current_state("order", 1, "order-flow")
