"""TransitionEngine component: validates, authorizes, executes and records transitions."""

from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from workflowfsm.domain.components.entity_locks import EntityLockTable, LockKey, LockTimeoutError
from workflowfsm.domain.guards.factory import GuardFactory
from workflowfsm.domain.interfaces.definition_store import DefinitionStore, DefinitionStoreError
from workflowfsm.domain.interfaces.event_bus import EventBus
from workflowfsm.domain.interfaces.history_store import (
    AppendConflictError,
    HistoryStore,
    HistoryStoreError,
)
from workflowfsm.domain.interfaces.observability_manager import ObservabilityManager
from workflowfsm.domain.models.guard_result import GuardContext, GuardResult
from workflowfsm.domain.models.machine import Machine, State, Transition
from workflowfsm.domain.models.system_error import ErrorCode, GuardConfigurationError
from workflowfsm.domain.models.transition_event import (
    AfterTransitionEvent,
    BeforeTransitionEvent,
    TransitionEvent,
    TransitionFailedEvent,
    TransitionTopic,
)
from workflowfsm.domain.models.transition_log import (
    HistoryEntry,
    MachineStats,
    TransitionLogEntry,
    normalize_identifier,
)
from workflowfsm.domain.models.transition_result import (
    PipelineStage,
    TransitionCheck,
    TransitionOutcome,
    TransitionRequest,
)


@dataclass(frozen=True)
class _Resolved:
    machine: Machine
    transition: Transition
    from_state: State
    to_state: State


class TransitionEngine:
    """Runs transition requests through validate, authorize and commit.

    Current state is never stored; it is the to_state of the entity's most
    recent log entry, read from the HistoryStore on every check. Applying a
    transition holds a per-(entity_type, entity_id, machine) lock from that
    read through the append, and the append itself names the entry it
    follows so a writer in another process cannot fork the history.

    Runtime outcomes are returned as TransitionCheck/TransitionOutcome
    results. Only the query helpers raise, and only for store failures.

    Example:
        ```python
        engine = TransitionEngine(
            definition_store=definitions,
            history_store=history,
            guard_factory=GuardFactory(authorization=provider),
            event_bus=InMemoryEventBus(),
            observability_manager=DefaultObservabilityManager(),
        )
        outcome = await engine.apply_transition(
            {
                "entity_type": "order",
                "entity_id": 1,
                "machine": "order-flow",
                "transition_slug": "submit",
                "actor_id": 42,
            }
        )
        if outcome.success:
            print(outcome.log_id)
        ```
    """

    def __init__(
        self,
        definition_store: DefinitionStore,
        history_store: HistoryStore,
        guard_factory: GuardFactory,
        event_bus: EventBus,
        observability_manager: ObservabilityManager,
        lock_timeout_seconds: float | None = None,
        history_default_limit: int = 50,
    ) -> None:
        """Initialize TransitionEngine with dependencies.

        Args:
            definition_store: Machine/state/transition catalog.
            history_store: Append-only transition ledger.
            guard_factory: Builds guards from transition guard configs.
            event_bus: Receives before/after/failed notifications.
            observability_manager: ObservabilityManager for events and logging.
            lock_timeout_seconds: Maximum wait for an entity lock; None waits
                indefinitely.
            history_default_limit: Entries returned by machine and actor history
                queries when no limit is given (0 = all). Entity history is
                always complete by default.
        """
        self._definitions = definition_store
        self._history = history_store
        self._guards = guard_factory
        self._event_bus = event_bus
        self._observability = observability_manager
        self._lock_timeout = lock_timeout_seconds
        self._history_default_limit = history_default_limit
        self._locks = EntityLockTable()

    @property
    def locks(self) -> EntityLockTable:
        return self._locks

    # ------------------------------------------------------------------
    # Transition pipeline
    # ------------------------------------------------------------------

    async def can_transition(self, request: TransitionRequest | dict[str, Any]) -> TransitionCheck:
        """Check whether a transition may be applied, without applying it.

        Args:
            request: TransitionRequest or a dict with the same keys.

        Returns:
            TransitionCheck with ``allowed=True`` and stage ``validated`` on
            success; otherwise the rejecting stage, code and diagnostics.
        """
        parsed, rejection = self._parse_request(request)
        if rejection is not None:
            return rejection

        resolved = await self._resolve(parsed)
        if isinstance(resolved, TransitionCheck):
            return resolved
        return await self._validate(parsed, resolved)

    async def apply_transition(
        self,
        request: TransitionRequest | dict[str, Any],
    ) -> TransitionOutcome:
        """Validate, authorize and record a transition.

        The current-state read, guard check, ``before_transition`` and log
        append for one entity in one machine run under a single lock. The lock
        is released before ``after_transition`` (on success) or
        ``transition_failed`` (on any rejection) is published, so those
        subscribers may apply follow-up transitions to the same entity.
        ``before_transition`` subscribers must not.

        Returns:
            TransitionOutcome carrying the appended log entry on success.
        """
        parsed, rejection = self._parse_request(request)
        if rejection is not None:
            return await self._fail(request, parsed, rejection)

        resolved = await self._resolve(parsed)
        if isinstance(resolved, TransitionCheck):
            return await self._fail(request, parsed, resolved)

        key: LockKey = (parsed.entity_type, parsed.entity_id, resolved.machine.id)
        try:
            async with self._locks.hold(key, self._lock_timeout):
                check = await self._validate(parsed, resolved)
                result = await self._append(parsed, check) if check.allowed else check
        except LockTimeoutError as e:
            check = self._reject(
                PipelineStage.FailedLookup,
                ErrorCode.LockTimeout,
                str(e),
                data={"timeout_seconds": e.timeout},
                resolved=resolved,
            )
            return await self._fail(request, parsed, check)

        if isinstance(result, TransitionCheck):
            return await self._fail(request, parsed, result)
        return await self._committed(parsed, check, result)

    async def force_state(
        self,
        entity_type: str,
        entity_id: str | int,
        machine: str,
        to_state: str,
        actor_id: str | int,
        comment: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionOutcome:
        """Move an entity to a state without a transition definition or guard.

        Administrative override for repairing entities. The entry is written
        with ``transition_id=None`` under the same lock and conditional append
        as a regular transition, and the same events are published.

        Args:
            entity_type: Type of entity.
            entity_id: Entity identifier.
            machine: Machine id or slug.
            to_state: Target state id or slug.
            actor_id: Administrator performing the override.
            comment: Optional comment for the log.
            metadata: Optional log metadata.
        """
        entity_id = normalize_identifier(entity_id)
        actor_id = normalize_identifier(actor_id)
        failure_context = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actor_id": actor_id,
        }

        missing = [
            name
            for name, value in (
                ("entity_type", entity_type),
                ("entity_id", entity_id),
                ("machine", machine),
                ("to_state", to_state),
                ("actor_id", actor_id),
            )
            if not value
        ]
        if missing:
            check = self._reject(
                PipelineStage.RejectedInvalidRequest,
                ErrorCode.InvalidParams,
                f"Missing required parameters: {', '.join(missing)}",
                data={"missing_fields": missing},
            )
            return await self._fail(failure_context, None, check)

        try:
            machine_def = await self._definitions.get_machine(machine)
            target = None
            if machine_def is not None:
                target = await self._find_state(machine_def.id, to_state)
        except DefinitionStoreError as e:
            check = self._reject(
                PipelineStage.FailedLookup,
                ErrorCode.DefinitionLookupFailed,
                f"Failed to load machine definition: {e}",
            )
            return await self._fail(failure_context, None, check)

        if machine_def is None:
            check = self._reject(
                PipelineStage.RejectedInvalidRequest,
                ErrorCode.MachineNotFound,
                "State machine not found",
                data={"machine": machine},
            )
            return await self._fail(failure_context, None, check)
        if target is None:
            check = self._reject(
                PipelineStage.RejectedInvalidRequest,
                ErrorCode.StateNotFound,
                "Target state not found",
                data={"to_state": to_state, "machine_id": machine_def.id},
                machine=machine_def,
            )
            return await self._fail(failure_context, None, check)

        forced_request = TransitionRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            machine=machine_def.id,
            actor_id=actor_id,
            comment=comment,
            metadata=metadata or {},
        )
        key: LockKey = (entity_type, entity_id, machine_def.id)
        try:
            async with self._locks.hold(key, self._lock_timeout):
                try:
                    latest = await self._history.latest_entry(entity_type, entity_id, machine_def.id)
                    current = await self._definitions.get_state(latest.to_state_id) if latest else None
                except (HistoryStoreError, DefinitionStoreError) as e:
                    check = self._reject(
                        PipelineStage.FailedLookup,
                        ErrorCode.HistoryLookupFailed,
                        f"Failed to read current state: {e}",
                        machine=machine_def,
                    )
                    result: TransitionLogEntry | TransitionCheck = check
                else:
                    check = TransitionCheck(
                        allowed=True,
                        stage=PipelineStage.Validated,
                        message="Forced state change",
                        machine=machine_def,
                        from_state=current,
                        to_state=target,
                        latest_entry=latest,
                    )
                    result = await self._append(forced_request, check)
        except LockTimeoutError as e:
            check = self._reject(
                PipelineStage.FailedLookup,
                ErrorCode.LockTimeout,
                str(e),
                data={"timeout_seconds": e.timeout},
                machine=machine_def,
            )
            return await self._fail(failure_context, None, check)

        if isinstance(result, TransitionCheck):
            return await self._fail(forced_request, forced_request, result)
        return await self._committed(forced_request, check, result)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def available_transitions(
        self,
        entity_type: str,
        entity_id: str | int,
        machine: str,
        actor_id: str | int | None = None,
        entity_data: dict[str, Any] | None = None,
    ) -> list[Transition]:
        """List transitions leaving the entity's current state.

        With no history the initial state's outgoing transitions are listed.
        When ``actor_id`` is given, guarded transitions whose guard denies the
        actor (or cannot be built) are left out; unguarded transitions are
        always included. Unknown machines yield an empty list.

        Raises:
            DefinitionStoreError: If definitions cannot be read.
            HistoryStoreError: If the current state cannot be read.
        """
        entity_id = normalize_identifier(entity_id)
        machine_def = await self._definitions.get_machine(machine)
        if machine_def is None:
            return []

        latest = await self._history.latest_entry(entity_type, entity_id, machine_def.id)
        if latest is not None:
            state_id = latest.to_state_id
        else:
            initial = next(
                (s for s in await self._definitions.states_by_machine(machine_def.id) if s.is_initial),
                None,
            )
            if initial is None:
                return []
            state_id = initial.id

        transitions = await self._definitions.transitions_from_state(machine_def.id, state_id)
        transitions = sorted(transitions, key=lambda t: (t.sort_order, t.label))
        if actor_id is None:
            return transitions

        actor_id = normalize_identifier(actor_id)
        allowed = []
        for transition in transitions:
            if not transition.is_guarded:
                allowed.append(transition)
                continue
            context = GuardContext(
                entity_type=entity_type,
                entity_data=entity_data,
                machine=machine_def,
                transition=transition,
            )
            result = await self._check_guard(transition, entity_id, actor_id, context)
            if isinstance(result, GuardResult) and result.allowed:
                allowed.append(transition)
        return allowed

    async def current_entry(
        self,
        entity_type: str,
        entity_id: str | int,
        machine: str,
    ) -> TransitionLogEntry | None:
        """Most recent log entry for the entity in a machine, or None."""
        machine_def = await self._definitions.get_machine(machine)
        if machine_def is None:
            return None
        return await self._history.latest_entry(
            entity_type, normalize_identifier(entity_id), machine_def.id
        )

    async def current_state(
        self,
        entity_type: str,
        entity_id: str | int,
        machine: str,
    ) -> State | None:
        """Derived current state: the to_state of the most recent entry.

        Returns None when the entity has no entry in this machine.
        """
        entry = await self.current_entry(entity_type, entity_id, machine)
        if entry is None:
            return None
        return await self._definitions.get_state(entry.to_state_id)

    async def entity_history(
        self,
        entity_type: str,
        entity_id: str | int,
        limit: int | None = None,
        machine: str | None = None,
    ) -> list[HistoryEntry]:
        """An entity's log entries, newest first, with display labels.

        The full history is returned unless ``limit`` is given (0 also means
        all); ``history_default_limit`` applies to machine and actor history
        only.
        """
        machine_id = None
        if machine is not None:
            machine_def = await self._definitions.get_machine(machine)
            if machine_def is None:
                return []
            machine_id = machine_def.id

        entries = await self._history.history(
            entity_type,
            normalize_identifier(entity_id),
            limit=limit or None,
            machine_id=machine_id,
        )
        return await self._enrich(entries)

    async def machine_history(self, machine: str, limit: int | None = None) -> list[HistoryEntry]:
        """Log entries of every entity in a machine, newest first."""
        machine_def = await self._definitions.get_machine(machine)
        if machine_def is None:
            return []
        entries = await self._history.machine_history(machine_def.id, limit=self._limit(limit))
        return await self._enrich(entries)

    async def actor_history(self, actor_id: str | int, limit: int | None = None) -> list[HistoryEntry]:
        """Log entries written by an actor, newest first."""
        entries = await self._history.actor_history(
            normalize_identifier(actor_id), limit=self._limit(limit)
        )
        return await self._enrich(entries)

    async def machine_stats(self, machine: str) -> MachineStats | None:
        """Transition and entity counts for a machine, or None if unknown."""
        machine_def = await self._definitions.get_machine(machine)
        if machine_def is None:
            return None
        return MachineStats(
            machine_id=machine_def.id,
            total_transitions=await self._history.count_machine_entries(machine_def.id),
            unique_entities=await self._history.count_machine_entities(machine_def.id),
        )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _parse_request(
        self,
        request: TransitionRequest | dict[str, Any],
    ) -> tuple[TransitionRequest | None, TransitionCheck | None]:
        if isinstance(request, TransitionRequest):
            parsed = request
        else:
            try:
                parsed = TransitionRequest.model_validate(request or {})
            except ValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
                return None, self._reject(
                    PipelineStage.RejectedInvalidRequest,
                    ErrorCode.InvalidParams,
                    f"Invalid parameters: {', '.join(fields) or 'request'}",
                    data={"invalid_fields": fields, "errors": e.errors(include_url=False)},
                )

        missing = parsed.missing_fields()
        if missing:
            return parsed, self._reject(
                PipelineStage.RejectedInvalidRequest,
                ErrorCode.InvalidParams,
                f"Missing required parameters: {', '.join(missing)}",
                data={"missing_fields": missing},
            )
        return parsed, None

    async def _resolve(self, request: TransitionRequest) -> _Resolved | TransitionCheck:
        """Load machine, transition and both endpoint states."""
        try:
            requested_machine = None
            if request.machine:
                requested_machine = await self._definitions.get_machine(request.machine)
                if requested_machine is None:
                    return self._reject(
                        PipelineStage.RejectedInvalidRequest,
                        ErrorCode.MachineNotFound,
                        "State machine not found",
                        data={"machine": request.machine},
                    )

            if request.transition_id:
                transition = await self._definitions.get_transition(request.transition_id)
            else:
                transition = await self._definitions.get_transition_by_slug(
                    requested_machine.id, request.transition_slug
                )
            if transition is None:
                return self._reject(
                    PipelineStage.RejectedInvalidRequest,
                    ErrorCode.TransitionNotFound,
                    "Transition not found",
                    data={
                        "transition_id": request.transition_id,
                        "transition_slug": request.transition_slug,
                    },
                    machine=requested_machine,
                )

            if requested_machine is not None and transition.machine_id != requested_machine.id:
                return self._reject(
                    PipelineStage.RejectedInvalidRequest,
                    ErrorCode.TransitionMachineMismatch,
                    "Transition does not belong to this machine",
                    data={
                        "transition_id": transition.id,
                        "transition_machine_id": transition.machine_id,
                        "machine_id": requested_machine.id,
                    },
                    machine=requested_machine,
                    transition=transition,
                )

            machine = requested_machine or await self._definitions.get_machine(transition.machine_id)
            if machine is None:
                return self._reject(
                    PipelineStage.RejectedInvalidRequest,
                    ErrorCode.MachineNotFound,
                    "State machine not found",
                    data={"machine": transition.machine_id},
                    transition=transition,
                )
            if not machine.is_active:
                return self._reject(
                    PipelineStage.RejectedInvalidRequest,
                    ErrorCode.MachineInactive,
                    f'State machine "{machine.name}" is inactive',
                    data={"machine_id": machine.id},
                    machine=machine,
                    transition=transition,
                )

            to_state = await self._definitions.get_state(transition.to_state_id)
            from_state = await self._definitions.get_state(transition.from_state_id)
        except DefinitionStoreError as e:
            return self._reject(
                PipelineStage.FailedLookup,
                ErrorCode.DefinitionLookupFailed,
                f"Failed to load machine definition: {e}",
            )

        for label, state, state_id in (
            ("Target", to_state, transition.to_state_id),
            ("Source", from_state, transition.from_state_id),
        ):
            if state is None or state.machine_id != machine.id:
                return self._reject(
                    PipelineStage.RejectedInvalidRequest,
                    ErrorCode.StateNotFound,
                    f"{label} state not found",
                    data={"state_id": state_id, "machine_id": machine.id},
                    machine=machine,
                    transition=transition,
                )

        return _Resolved(
            machine=machine,
            transition=transition,
            from_state=from_state,
            to_state=to_state,
        )

    async def _validate(self, request: TransitionRequest, resolved: _Resolved) -> TransitionCheck:
        """Derive the current state, compare it with the source state, run the guard."""
        machine, transition = resolved.machine, resolved.transition
        try:
            latest = await self._history.latest_entry(
                request.entity_type, request.entity_id, machine.id
            )
            current = await self._definitions.get_state(latest.to_state_id) if latest else None
        except (HistoryStoreError, DefinitionStoreError) as e:
            return self._reject(
                PipelineStage.FailedLookup,
                ErrorCode.HistoryLookupFailed,
                f"Failed to read current state: {e}",
                resolved=resolved,
            )

        current_state_id = latest.to_state_id if latest else None
        if current_state_id is None:
            in_required_state = resolved.from_state.is_initial
        else:
            in_required_state = current_state_id == transition.from_state_id

        if not in_required_state:
            current_name = current.name if current else (current_state_id or "none")
            return self._reject(
                PipelineStage.RejectedStateMismatch,
                ErrorCode.StateMismatch,
                f'Invalid transition. Current state is "{current_name}" but transition '
                f'requires "{resolved.from_state.name}"',
                data={
                    "current_state_id": current_state_id,
                    "current_state_slug": current.slug if current else None,
                    "required_state_id": transition.from_state_id,
                    "required_state_slug": resolved.from_state.slug,
                },
                resolved=resolved,
                from_state=current,
            )

        guard_result = None
        if transition.is_guarded:
            context = GuardContext(
                entity_type=request.entity_type,
                entity_data=request.entity_data,
                metadata=request.metadata,
                machine=machine,
                transition=transition,
            )
            outcome = await self._check_guard(
                transition, request.entity_id, request.actor_id, context
            )
            if isinstance(outcome, GuardConfigurationError):
                return self._reject(
                    PipelineStage.RejectedByGuard,
                    outcome.code,
                    outcome.message,
                    data={"guard_config": transition.guard_config, **outcome.details},
                    resolved=resolved,
                    from_state=current,
                )
            guard_result = outcome
            if not guard_result.allowed:
                code = (
                    ErrorCode.NoCallbackRegistered
                    if guard_result.reason_code == ErrorCode.NoCallbackRegistered.value
                    else ErrorCode.GuardFailed
                )
                return self._reject(
                    PipelineStage.RejectedByGuard,
                    code,
                    guard_result.message,
                    reason_code=guard_result.reason_code,
                    data={
                        "guard_config": transition.guard_config,
                        "guard_result": guard_result.model_dump(),
                    },
                    resolved=resolved,
                    from_state=current,
                    guard_result=guard_result,
                )

        return TransitionCheck(
            allowed=True,
            stage=PipelineStage.Validated,
            message="Transition is allowed",
            machine=machine,
            transition=transition,
            from_state=current,
            to_state=resolved.to_state,
            guard_result=guard_result,
            latest_entry=latest,
        )

    async def _check_guard(
        self,
        transition: Transition,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> GuardResult | GuardConfigurationError:
        """Build and run a transition's guard. Guard errors fail closed."""
        try:
            guard = self._guards.create(transition.guard_config)
        except GuardConfigurationError as e:
            await self._log(
                "WARNING",
                "Guard configuration error",
                {"transition_id": transition.id, "guard_config": transition.guard_config, "error": e.message},
            )
            return e

        try:
            return await guard.check(entity_id, actor_id, context)
        except Exception as e:
            await self._log(
                "ERROR",
                "Guard check raised",
                {"transition_id": transition.id, "guard_config": transition.guard_config, "error": str(e)},
            )
            return GuardResult.deny(
                f"Guard check failed: {e}",
                reason_code="guard_error",
                data={"exception": str(e)},
            )

    async def _append(
        self, request: TransitionRequest, check: TransitionCheck
    ) -> TransitionLogEntry | TransitionCheck:
        """Publish before_transition and append the entry.

        Runs under the entity lock. Returns the stored entry, or the rejected
        check when the append conflicts or fails.
        """
        latest = check.latest_entry
        transition = check.transition
        entry = TransitionLogEntry(
            machine_id=check.machine.id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            from_state_id=latest.to_state_id if latest else None,
            to_state_id=check.to_state.id,
            transition_id=transition.id if transition else None,
            actor_id=request.actor_id,
            comment=request.comment,
            metadata=request.metadata,
            previous_entry_id=latest.id if latest else None,
        )

        await self._publish(
            TransitionTopic.BeforeTransition,
            BeforeTransitionEvent(**self._event_fields(request, check)),
        )

        try:
            stored = await self._history.append_entry(entry)
        except AppendConflictError as e:
            return self._reject(
                PipelineStage.RejectedStateMismatch,
                ErrorCode.StateConflict,
                "Entity state changed while the transition was being applied",
                data={
                    "expected_previous_entry_id": e.expected_previous_id,
                    "actual_previous_entry_id": e.actual_previous_id,
                },
                check=check,
            )
        except HistoryStoreError as e:
            await self._log(
                "ERROR",
                "Failed to log transition",
                {
                    "entity_type": request.entity_type,
                    "entity_id": request.entity_id,
                    "machine_id": check.machine.id,
                    "error": str(e),
                },
            )
            return self._reject(
                PipelineStage.FailedPersist,
                ErrorCode.LogAppendFailed,
                "Failed to log transition",
                data={"error": str(e)},
                check=check,
            )
        return stored

    async def _committed(
        self, request: TransitionRequest, check: TransitionCheck, stored: TransitionLogEntry
    ) -> TransitionOutcome:
        """Publish after_transition for a stored entry, outside the entity lock."""
        transition = check.transition
        after = AfterTransitionEvent(**self._event_fields(request, check), log_id=stored.id)
        await self._publish(TransitionTopic.AfterTransition, after)

        from_name = check.from_state.name if check.from_state else "initial"
        await self._emit(
            "transition_committed",
            {
                "log_id": stored.id,
                "machine_id": stored.machine_id,
                "entity_type": stored.entity_type,
                "entity_id": stored.entity_id,
                "from_state_id": stored.from_state_id,
                "to_state_id": stored.to_state_id,
                "transition_id": stored.transition_id,
                "actor_id": stored.actor_id,
                "metadata": stored.metadata,
            },
        )
        return TransitionOutcome(
            success=True,
            stage=PipelineStage.Committed,
            message=f'Successfully transitioned from "{from_name}" to "{check.to_state.name}"',
            machine=check.machine,
            transition=transition,
            from_state=check.from_state,
            to_state=check.to_state,
            guard_result=check.guard_result,
            log_entry=stored,
        )

    async def _fail(
        self,
        raw_request: TransitionRequest | dict[str, Any] | None,
        request: TransitionRequest | None,
        check: TransitionCheck,
    ) -> TransitionOutcome:
        """Publish transition_failed and turn a rejected check into an outcome."""
        fields = self._request_fields(raw_request, request)
        await self._log(
            "ERROR" if check.retryable else "INFO",
            "Transition rejected",
            {**fields, "stage": check.stage.value, "code": check.code.value, "reason_code": check.reason_code},
        )
        await self._publish(
            TransitionTopic.TransitionFailed,
            TransitionFailedEvent(
                entity_type=fields.get("entity_type"),
                entity_id=fields.get("entity_id"),
                actor_id=fields.get("actor_id"),
                transition_id=check.transition.id if check.transition else fields.get("transition_id"),
                code=check.code.value,
                reason_code=check.reason_code,
                message=check.message,
            ),
        )
        return TransitionOutcome.from_check(check)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reject(
        stage: PipelineStage,
        code: ErrorCode,
        message: str,
        data: dict[str, Any] | None = None,
        reason_code: str | None = None,
        resolved: _Resolved | None = None,
        check: TransitionCheck | None = None,
        machine: Machine | None = None,
        transition: Transition | None = None,
        from_state: State | None = None,
        guard_result: GuardResult | None = None,
    ) -> TransitionCheck:
        if resolved is not None:
            machine = resolved.machine
            transition = resolved.transition
        to_state = resolved.to_state if resolved else None
        if check is not None:
            machine, transition = check.machine, check.transition
            from_state, to_state = check.from_state, check.to_state
            guard_result = check.guard_result
        return TransitionCheck(
            allowed=False,
            stage=stage,
            code=code,
            reason_code=reason_code or code.value,
            message=message,
            data=data or {},
            guard_result=guard_result,
            machine=machine,
            transition=transition,
            from_state=from_state,
            to_state=to_state,
        )

    @staticmethod
    def _event_fields(request: TransitionRequest, check: TransitionCheck) -> dict[str, Any]:
        return {
            "entity_type": request.entity_type,
            "entity_id": request.entity_id,
            "actor_id": request.actor_id,
            "machine_id": check.machine.id,
            "transition": check.transition,
            "from_state": check.from_state,
            "to_state": check.to_state,
            "comment": request.comment,
            "metadata": request.metadata,
            "entity_data": request.entity_data,
        }

    @staticmethod
    def _request_fields(
        raw_request: TransitionRequest | dict[str, Any] | None,
        request: TransitionRequest | None,
    ) -> dict[str, Any]:
        if request is not None:
            return {
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "actor_id": request.actor_id,
                "transition_id": request.transition_id,
            }
        if isinstance(raw_request, dict):
            fields = {}
            for name in ("entity_type", "entity_id", "actor_id", "transition_id"):
                value = normalize_identifier(raw_request.get(name))
                fields[name] = value if isinstance(value, str) else None
            return fields
        return {}

    async def _find_state(self, machine_id: str, id_or_slug: str) -> State | None:
        state = await self._definitions.get_state(id_or_slug)
        if state is not None and state.machine_id == machine_id:
            return state
        states = await self._definitions.states_by_machine(machine_id)
        return next((s for s in states if s.slug == id_or_slug), None)

    def _limit(self, limit: int | None) -> int | None:
        if limit is None:
            return self._history_default_limit or None
        return limit or None

    async def _enrich(self, entries: list[TransitionLogEntry]) -> list[HistoryEntry]:
        machines: dict[str, Machine | None] = {}
        states: dict[str, State | None] = {}
        transitions: dict[str, Transition | None] = {}

        async def state(state_id: str | None) -> State | None:
            if state_id is None:
                return None
            if state_id not in states:
                states[state_id] = await self._definitions.get_state(state_id)
            return states[state_id]

        enriched = []
        for entry in entries:
            if entry.machine_id not in machines:
                machines[entry.machine_id] = await self._definitions.get_machine(entry.machine_id)
            if entry.transition_id and entry.transition_id not in transitions:
                transitions[entry.transition_id] = await self._definitions.get_transition(
                    entry.transition_id
                )
            machine = machines[entry.machine_id]
            from_state = await state(entry.from_state_id)
            to_state = await state(entry.to_state_id)
            transition = transitions.get(entry.transition_id) if entry.transition_id else None
            enriched.append(
                HistoryEntry(
                    entry=entry,
                    machine_slug=machine.slug if machine else None,
                    from_state_slug=from_state.slug if from_state else None,
                    from_state_name=from_state.name if from_state else None,
                    to_state_slug=to_state.slug if to_state else None,
                    to_state_name=to_state.name if to_state else None,
                    transition_label=transition.label if transition else None,
                )
            )
        return enriched

    async def _publish(self, topic: TransitionTopic, event: TransitionEvent) -> None:
        try:
            await self._event_bus.publish(topic, event)
        except Exception as e:
            # Delivery problems never change a transition's outcome
            await self._log(
                "WARNING",
                f"Failed to publish {topic.value} event: {e}",
                {"entity_type": event.entity_type, "entity_id": event.entity_id},
            )

    async def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._observability.emit_event(event_type=event_type, payload=payload)
        except Exception as e:
            await self._log(
                "WARNING",
                f"Failed to emit {event_type} event: {e}",
                {"entity_id": payload.get("entity_id")},
            )

    async def _log(self, level: str, message: str, context: dict[str, Any] | None = None) -> None:
        await self._observability.log(level=level, message=message, context=context)
