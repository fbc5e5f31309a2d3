"""WorkflowFSM - main entry point wiring stores, guards, events and the engine."""

from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient

from workflowfsm.domain.components.machine_registry import DeletePolicy, MachineRegistry
from workflowfsm.domain.components.transition_engine import TransitionEngine
from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.guards.callback_registry import CallbackHandler, CallbackRegistry
from workflowfsm.domain.guards.factory import GuardFactory
from workflowfsm.domain.interfaces.authorization import AuthorizationProvider
from workflowfsm.domain.interfaces.definition_store import DefinitionStore
from workflowfsm.domain.interfaces.event_bus import EventBus, EventHandler
from workflowfsm.domain.interfaces.history_store import HistoryStore
from workflowfsm.domain.interfaces.observability_manager import ObservabilityManager
from workflowfsm.domain.models.machine import Machine, State, Transition, WorkflowGroup
from workflowfsm.domain.models.transition_event import TransitionTopic
from workflowfsm.domain.models.transition_log import (
    HistoryEntry,
    MachineStats,
    TransitionLogEntry,
)
from workflowfsm.domain.models.transition_result import (
    TransitionCheck,
    TransitionOutcome,
    TransitionRequest,
)
from workflowfsm.infrastructure.authorization.memory_provider import (
    InMemoryAuthorizationProvider,
)
from workflowfsm.infrastructure.config.settings import EngineSettings
from workflowfsm.infrastructure.events.memory_bus import InMemoryEventBus
from workflowfsm.infrastructure.observability.logger import DefaultObservabilityManager
from workflowfsm.infrastructure.state_store.caching_store import CachingDefinitionStore
from workflowfsm.infrastructure.state_store.memory_store import (
    InMemoryDefinitionStore,
    InMemoryHistoryStore,
)
from workflowfsm.infrastructure.state_store.mongo_store import (
    MongoDefinitionStore,
    MongoHistoryStore,
)


class WorkflowFSM:
    """Main entry point for the library.

    WorkflowFSM builds the default adapters from configuration and exposes
    the engine and registry operations behind one object. Every adapter can
    be replaced through the constructor.

    Example:
        ```python
        # In-memory stores
        fsm = WorkflowFSM()

        # With configuration
        fsm = WorkflowFSM(config={"lock_timeout_seconds": 5, "json_logs": False})

        # MongoDB stores (connects on entry)
        async with WorkflowFSM(config={"mongodb_url": "mongodb://localhost:27017"}) as fsm:
            await fsm.register_machine(machine, states, transitions)
            outcome = await fsm.apply_transition(
                {
                    "entity_type": "order",
                    "entity_id": 1,
                    "machine": "order-flow",
                    "transition_slug": "submit",
                    "actor_id": 42,
                }
            )
        ```
    """

    def __init__(
        self,
        definition_store: DefinitionStore | None = None,
        history_store: HistoryStore | None = None,
        authorization: AuthorizationProvider | None = None,
        event_bus: EventBus | None = None,
        observability_manager: ObservabilityManager | None = None,
        config: EngineSettings | dict[str, Any] | None = None,
    ) -> None:
        """Initialize WorkflowFSM with dependencies.

        Args:
            definition_store: Optional DefinitionStore. Defaults to MongoDB
                when ``mongodb_url`` is configured, in-memory otherwise.
            history_store: Optional HistoryStore, chosen the same way.
            authorization: Optional AuthorizationProvider. Defaults to an
                empty InMemoryAuthorizationProvider.
            event_bus: Optional EventBus. Defaults to InMemoryEventBus.
            observability_manager: Optional ObservabilityManager. Defaults to
                DefaultObservabilityManager.
            config: EngineSettings instance, dictionary of settings, or None
                to load from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        if config is None:
            self._config = EngineSettings()
        elif isinstance(config, dict):
            self._config = EngineSettings.from_dict(config)
        elif isinstance(config, EngineSettings):
            self._config = config
        else:
            raise ValueError(
                f"Invalid config type: {type(config)}. Expected EngineSettings, dict, or None"
            )

        if observability_manager is None:
            self._observability_manager: ObservabilityManager = DefaultObservabilityManager(
                log_level=self._config.log_level,
                json_format=self._config.json_logs,
                redact_fields=self._config.redact_fields,
            )
        else:
            self._observability_manager = observability_manager

        # Shared motor client, created only when a Mongo store is needed
        self._mongo_client: AsyncIOMotorClient | None = None

        if definition_store is None:
            definition_store = self._default_definition_store()
        self._base_definition_store = definition_store
        if self._config.definition_cache_ttl_seconds > 0:
            self._definition_store: DefinitionStore = CachingDefinitionStore(
                definition_store,
                ttl_seconds=self._config.definition_cache_ttl_seconds,
            )
        else:
            self._definition_store = definition_store

        if history_store is None:
            history_store = self._default_history_store()
        self._history_store = history_store

        self._authorization = authorization or InMemoryAuthorizationProvider()
        self._event_bus = event_bus or InMemoryEventBus()

        self._callbacks = CallbackRegistry()
        self._guard_factory = GuardFactory(
            authorization=self._authorization,
            callbacks=self._callbacks,
            observability_manager=self._observability_manager,
        )

        self._engine = TransitionEngine(
            definition_store=self._definition_store,
            history_store=self._history_store,
            guard_factory=self._guard_factory,
            event_bus=self._event_bus,
            observability_manager=self._observability_manager,
            lock_timeout_seconds=self._config.lock_timeout_seconds,
            history_default_limit=self._config.history_default_limit,
        )
        self._registry = MachineRegistry(
            definition_store=self._definition_store,
            history_store=self._history_store,
            guard_factory=self._guard_factory,
            observability_manager=self._observability_manager,
            delete_policy=self._config.machine_delete_policy,
        )

    def _shared_mongo_client(self) -> AsyncIOMotorClient:
        if self._mongo_client is None:
            self._mongo_client = AsyncIOMotorClient(
                self._config.mongodb_url,
                serverSelectionTimeoutMS=5000,
            )
        return self._mongo_client

    def _default_definition_store(self) -> DefinitionStore:
        if self._config.mongodb_url:
            return MongoDefinitionStore(
                client=self._shared_mongo_client(),
                database_name=self._config.mongodb_database,
            )
        return InMemoryDefinitionStore()

    def _default_history_store(self) -> HistoryStore:
        if self._config.mongodb_url:
            return MongoHistoryStore(
                client=self._shared_mongo_client(),
                database_name=self._config.mongodb_database,
            )
        return InMemoryHistoryStore()

    async def initialize(self) -> None:
        """Connect stores that need it (MongoDB). In-memory stores need nothing."""
        for store in (self._base_definition_store, self._history_store):
            if isinstance(store, (MongoDefinitionStore, MongoHistoryStore)):
                await store.initialize()

    async def close(self) -> None:
        """Release the shared MongoDB client, if one was created."""
        if self._mongo_client is not None:
            self._mongo_client.close()
            self._mongo_client = None

    async def __aenter__(self) -> "WorkflowFSM":
        """Async context manager entry.

        Returns:
            Self for use in async with statement.
        """
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def config(self) -> EngineSettings:
        return self._config

    @property
    def engine(self) -> TransitionEngine:
        """Get TransitionEngine instance."""
        return self._engine

    @property
    def registry(self) -> MachineRegistry:
        """Get MachineRegistry instance."""
        return self._registry

    @property
    def definition_store(self) -> DefinitionStore:
        return self._definition_store

    @property
    def history_store(self) -> HistoryStore:
        return self._history_store

    @property
    def authorization(self) -> AuthorizationProvider:
        return self._authorization

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def guard_factory(self) -> GuardFactory:
        return self._guard_factory

    @property
    def callbacks(self) -> CallbackRegistry:
        return self._callbacks

    @property
    def observability_manager(self) -> ObservabilityManager:
        return self._observability_manager

    # Extension points

    def register_guard_type(self, name: str, guard_class: type[Guard]) -> None:
        """Make a custom guard class available to guard configurations."""
        self._guard_factory.register_guard_type(name, guard_class)

    def register_callback(self, name: str, handler: CallbackHandler) -> None:
        """Register a handler for ``CallbackGuard:<name>``."""
        self._callbacks.register_handler(name, handler)

    def subscribe(self, topic: TransitionTopic, handler: EventHandler) -> None:
        """Subscribe a handler to before/after/failed transition events."""
        self._event_bus.subscribe(topic, handler)

    # Definitions

    async def add_group(self, group: WorkflowGroup) -> WorkflowGroup:
        return await self._registry.add_group(group)

    async def register_machine(
        self,
        machine: Machine,
        states: list[State],
        transitions: list[Transition],
    ) -> Machine:
        """Validate and store a machine definition.

        Raises:
            DefinitionValidationError: If the definition is invalid.
        """
        return await self._registry.register_machine(machine, states, transitions)

    async def delete_machine(self, machine: str, policy: DeletePolicy | None = None) -> int:
        return await self._registry.delete_machine(machine, policy)

    async def get_machine(self, machine: str) -> Machine | None:
        return await self._definition_store.get_machine(machine)

    async def list_machines(
        self,
        plugin_slug: str | None = None,
        workflow_group_id: str | None = None,
        active_only: bool = False,
    ) -> list[Machine]:
        return await self._definition_store.list_machines(
            plugin_slug=plugin_slug,
            workflow_group_id=workflow_group_id,
            active_only=active_only,
        )

    # Transitions

    async def can_transition(self, request: TransitionRequest | dict[str, Any]) -> TransitionCheck:
        return await self._engine.can_transition(request)

    async def apply_transition(
        self,
        request: TransitionRequest | dict[str, Any],
    ) -> TransitionOutcome:
        return await self._engine.apply_transition(request)

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
        return await self._engine.force_state(
            entity_type,
            entity_id,
            machine,
            to_state,
            actor_id,
            comment=comment,
            metadata=metadata,
        )

    async def available_transitions(
        self,
        entity_type: str,
        entity_id: str | int,
        machine: str,
        actor_id: str | int | None = None,
        entity_data: dict[str, Any] | None = None,
    ) -> list[Transition]:
        return await self._engine.available_transitions(
            entity_type, entity_id, machine, actor_id=actor_id, entity_data=entity_data
        )

    # Queries

    async def current_state(self, entity_type: str, entity_id: str | int, machine: str) -> State | None:
        return await self._engine.current_state(entity_type, entity_id, machine)

    async def current_entry(
        self,
        entity_type: str,
        entity_id: str | int,
        machine: str,
    ) -> TransitionLogEntry | None:
        return await self._engine.current_entry(entity_type, entity_id, machine)

    async def entity_history(
        self,
        entity_type: str,
        entity_id: str | int,
        limit: int | None = None,
        machine: str | None = None,
    ) -> list[HistoryEntry]:
        return await self._engine.entity_history(entity_type, entity_id, limit=limit, machine=machine)

    async def machine_history(self, machine: str, limit: int | None = None) -> list[HistoryEntry]:
        return await self._engine.machine_history(machine, limit=limit)

    async def actor_history(self, actor_id: str | int, limit: int | None = None) -> list[HistoryEntry]:
        return await self._engine.actor_history(actor_id, limit=limit)

    async def machine_stats(self, machine: str) -> MachineStats | None:
        return await self._engine.machine_stats(machine)
