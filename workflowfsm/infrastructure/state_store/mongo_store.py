"""MongoDB definition and history store implementations.

This module provides MongoDB-backed implementations of the DefinitionStore
and HistoryStore interfaces using motor (async MongoDB driver) and beanie
(Pydantic-based ODM).

Ledger ids come from a ``counters`` collection incremented atomically with
``find_one_and_update``. The conditional append relies on the unique
``unique_previous_entry`` index: a second entry claiming the same
predecessor is rejected by the server with a duplicate key error, which
surfaces as AppendConflictError.

Example:
    ```python
    from workflowfsm.infrastructure.state_store.mongo_store import (
        MongoDefinitionStore,
        MongoHistoryStore,
    )

    client = AsyncIOMotorClient("mongodb://localhost:27017")
    definitions = MongoDefinitionStore(client=client, database_name="workflows")
    history = MongoHistoryStore(client=client, database_name="workflows")
    await definitions.initialize()
    await history.initialize()
    ```
"""

import os

import structlog
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

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
from workflowfsm.infrastructure.state_store.mongo_models import (
    MachineDocument,
    StateDocument,
    TransitionDocument,
    TransitionLogDocument,
    WorkflowGroupDocument,
    initialize_beanie_models,
)

logger = structlog.get_logger(__name__)

COUNTERS_COLLECTION = "counters"
TRANSITION_LOG_SEQUENCE = "transition_logs"


class _MongoConnection:
    """Connection handling shared by the Mongo stores.

    A store either owns a motor client built from ``connection_url`` (or
    MONGODB_URL) or borrows one passed in as ``client``; only owned clients
    are closed by ``close``. ``initialize`` pings the server and registers
    the beanie documents once.
    """

    _error_class: type[Exception] = Exception

    def __init__(
        self,
        connection_url: str | None = None,
        database_name: str = "workflowfsm",
        client: AsyncIOMotorClient | None = None,
        max_pool_size: int = 100,
        min_pool_size: int = 0,
        connect_timeout_ms: int = 20000,
        server_selection_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the connection configuration.

        Args:
            connection_url: Connection string; MONGODB_URL when omitted.
            database_name: Name of the MongoDB database to use.
            client: Existing motor client to share between stores. When given,
                    connection_url and pool options are ignored.
            max_pool_size: Maximum number of connections in the pool.
            min_pool_size: Minimum number of connections in the pool.
            connect_timeout_ms: Connection timeout in milliseconds.
            server_selection_timeout_ms: How long to wait for a reachable server.
        """
        self._database_name = database_name
        self._initialized = False
        self._owns_client = client is None

        if client is not None:
            self._client: AsyncIOMotorClient | None = client
            return

        if connection_url is None:
            connection_url = os.getenv("MONGODB_URL")
            if connection_url is None:
                raise self._error_class(
                    "MongoDB connection URL not provided. Set MONGODB_URL environment "
                    "variable or pass connection_url parameter."
                )

        try:
            self._client = AsyncIOMotorClient(
                connection_url,
                maxPoolSize=max_pool_size,
                minPoolSize=min_pool_size,
                connectTimeoutMS=connect_timeout_ms,
                serverSelectionTimeoutMS=server_selection_timeout_ms,
            )
            logger.info(
                "MongoDB client created",
                database=database_name,
                max_pool_size=max_pool_size,
            )
        except (ConfigurationError, ValueError) as e:
            error_msg = f"Invalid MongoDB connection URL: {e}"
            logger.error("workflow_store_bad_url", error=error_msg)
            raise self._error_class(error_msg) from e

    @property
    def client(self) -> AsyncIOMotorClient | None:
        return self._client

    async def initialize(self) -> None:
        """Verify connectivity and initialize Beanie with all document models.

        Raises:
            DefinitionStoreError or HistoryStoreError: If the connection or
                health check fails.
        """
        if self._initialized:
            return

        if self._client is None:
            raise self._error_class("MongoDB client not initialized")

        try:
            await self._client.admin.command("ping")
            await initialize_beanie_models(self._client[self._database_name])
            self._initialized = True
            logger.info(
                "Workflow store ready",
                database=self._database_name,
            )
        except (ConnectionFailure, ServerSelectionTimeoutError, NetworkTimeout) as e:
            error_msg = f"Failed to connect to MongoDB: {e}"
            logger.error("workflow_store_unreachable", error=error_msg)
            raise self._error_class(error_msg) from e
        except OperationFailure as e:
            if e.code == 18 or "authentication" in str(e).lower():
                error_msg = f"MongoDB authentication failed: {e}"
                logger.error("workflow_store_auth_failed", error=error_msg)
                raise self._error_class(error_msg) from e
            raise
        except Exception as e:
            error_msg = f"Could not prepare database {self._database_name}: {e}"
            logger.error("workflow_store_init_failed", error=error_msg)
            raise self._error_class(error_msg) from e

    async def check_connection(self) -> bool:
        """Return True if a ping succeeds."""
        if self._client is None:
            return False

        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning("workflow_store_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the motor client if this store created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            logger.info("Workflow store client closed", database=self._database_name)
        self._initialized = False


class MongoDefinitionStore(_MongoConnection, DefinitionStore):
    """MongoDB implementation of DefinitionStore."""

    _error_class = DefinitionStoreError

    async def get_machine(self, id_or_slug: str) -> Machine | None:
        await self.initialize()
        try:
            doc = await MachineDocument.get(id_or_slug)
            if doc is None:
                doc = await MachineDocument.find_one({"slug": id_or_slug})
            return doc.to_domain_model() if doc else None
        except Exception as e:
            error_msg = f"Failed to get machine {id_or_slug}: {e}"
            logger.error("mongodb_get_machine_error", machine=id_or_slug, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def list_machines(
        self,
        plugin_slug: str | None = None,
        workflow_group_id: str | None = None,
        active_only: bool = False,
    ) -> list[Machine]:
        await self.initialize()
        query: dict = {}
        if plugin_slug is not None:
            query["plugin_slug"] = plugin_slug
        if workflow_group_id is not None:
            query["workflow_group_id"] = workflow_group_id
        if active_only:
            query["is_active"] = True
        try:
            docs = await MachineDocument.find(query).sort("+name").to_list()
            return [doc.to_domain_model() for doc in docs]
        except Exception as e:
            error_msg = f"Failed to list machines: {e}"
            logger.error("mongodb_list_machines_error", error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def get_transition(self, transition_id: str) -> Transition | None:
        await self.initialize()
        try:
            doc = await TransitionDocument.get(transition_id)
            return doc.to_domain_model() if doc else None
        except Exception as e:
            error_msg = f"Failed to get transition {transition_id}: {e}"
            logger.error("mongodb_get_transition_error", transition_id=transition_id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def get_transition_by_slug(self, machine_id: str, slug: str) -> Transition | None:
        await self.initialize()
        try:
            doc = await TransitionDocument.find_one({"machine_id": machine_id, "slug": slug})
            return doc.to_domain_model() if doc else None
        except Exception as e:
            error_msg = f"Failed to get transition {slug}: {e}"
            logger.error("mongodb_get_transition_error", slug=slug, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def get_state(self, state_id: str) -> State | None:
        await self.initialize()
        try:
            doc = await StateDocument.get(state_id)
            return doc.to_domain_model() if doc else None
        except Exception as e:
            error_msg = f"Failed to get state {state_id}: {e}"
            logger.error("mongodb_get_state_error", state_id=state_id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def states_by_machine(self, machine_id: str) -> list[State]:
        await self.initialize()
        try:
            docs = (
                await StateDocument.find({"machine_id": machine_id})
                .sort("+sort_order", "+name")
                .to_list()
            )
            return [doc.to_domain_model() for doc in docs]
        except Exception as e:
            error_msg = f"Failed to list states for {machine_id}: {e}"
            logger.error("mongodb_list_states_error", machine_id=machine_id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def transitions_by_machine(self, machine_id: str) -> list[Transition]:
        return await self._find_transitions({"machine_id": machine_id})

    async def transitions_from_state(self, machine_id: str, state_id: str) -> list[Transition]:
        return await self._find_transitions({"machine_id": machine_id, "from_state_id": state_id})

    async def _find_transitions(self, query: dict) -> list[Transition]:
        await self.initialize()
        try:
            docs = await TransitionDocument.find(query).sort("+sort_order", "+label").to_list()
            return [doc.to_domain_model() for doc in docs]
        except Exception as e:
            error_msg = f"Failed to list transitions: {e}"
            logger.error("mongodb_list_transitions_error", query=query, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def save_group(self, group: WorkflowGroup) -> None:
        await self.initialize()
        try:
            await WorkflowGroupDocument.from_domain_model(group).save()
        except DuplicateKeyError as e:
            raise DefinitionStoreError(f"Workflow group slug already exists: {group.slug}") from e
        except Exception as e:
            error_msg = f"Failed to save workflow group {group.id}: {e}"
            logger.error("mongodb_save_group_error", group_id=group.id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def get_group(self, id_or_slug: str) -> WorkflowGroup | None:
        await self.initialize()
        try:
            doc = await WorkflowGroupDocument.get(id_or_slug)
            if doc is None:
                doc = await WorkflowGroupDocument.find_one({"slug": id_or_slug})
            return doc.to_domain_model() if doc else None
        except Exception as e:
            raise DefinitionStoreError(f"Failed to get workflow group {id_or_slug}: {e}") from e

    async def list_groups(self) -> list[WorkflowGroup]:
        await self.initialize()
        try:
            docs = await WorkflowGroupDocument.find_all().sort("+sort_order", "+name").to_list()
            return [doc.to_domain_model() for doc in docs]
        except Exception as e:
            raise DefinitionStoreError(f"Failed to list workflow groups: {e}") from e

    async def save_machine(self, machine: Machine) -> None:
        await self.initialize()
        try:
            await MachineDocument.from_domain_model(machine).save()
        except DuplicateKeyError as e:
            raise DefinitionStoreError(f"Machine slug already exists: {machine.slug}") from e
        except Exception as e:
            error_msg = f"Failed to save machine {machine.id}: {e}"
            logger.error("mongodb_save_machine_error", machine_id=machine.id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def save_state(self, state: State) -> None:
        await self.initialize()
        try:
            await StateDocument.from_domain_model(state).save()
        except Exception as e:
            error_msg = f"Failed to save state {state.id}: {e}"
            logger.error("mongodb_save_state_error", state_id=state.id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def save_transition(self, transition: Transition) -> None:
        await self.initialize()
        try:
            await TransitionDocument.from_domain_model(transition).save()
        except Exception as e:
            error_msg = f"Failed to save transition {transition.id}: {e}"
            logger.error("mongodb_save_transition_error", transition_id=transition.id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e

    async def delete_machine(self, machine_id: str) -> bool:
        await self.initialize()
        try:
            doc = await MachineDocument.get(machine_id)
            if doc is None:
                return False
            await TransitionDocument.find({"machine_id": machine_id}).delete()
            await StateDocument.find({"machine_id": machine_id}).delete()
            await doc.delete()
            logger.info("mongodb_machine_deleted", machine_id=machine_id)
            return True
        except Exception as e:
            error_msg = f"Failed to delete machine {machine_id}: {e}"
            logger.error("mongodb_delete_machine_error", machine_id=machine_id, error=error_msg)
            raise DefinitionStoreError(error_msg) from e


class MongoHistoryStore(_MongoConnection, HistoryStore):
    """MongoDB implementation of HistoryStore.

    Entries are insert-only. See the module docstring for how ids are
    allocated and how concurrent appends are detected.
    """

    _error_class = HistoryStoreError

    async def _next_id(self) -> int:
        counters = self._client[self._database_name][COUNTERS_COLLECTION]
        doc = await counters.find_one_and_update(
            {"_id": TRANSITION_LOG_SEQUENCE},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    async def latest_entry(
        self,
        entity_type: str,
        entity_id: str,
        machine_id: str,
    ) -> TransitionLogEntry | None:
        await self.initialize()
        try:
            docs = (
                await TransitionLogDocument.find(
                    {
                        "entity_type": entity_type,
                        "entity_id": str(entity_id),
                        "machine_id": machine_id,
                    }
                )
                .sort("-_id")
                .limit(1)
                .to_list()
            )
            return docs[0].to_domain_model() if docs else None
        except Exception as e:
            error_msg = f"Failed to read latest entry for {entity_type}:{entity_id}: {e}"
            logger.error(
                "mongodb_latest_entry_error",
                entity_type=entity_type,
                entity_id=entity_id,
                error=error_msg,
            )
            raise HistoryStoreError(error_msg) from e

    async def append_entry(self, entry: TransitionLogEntry) -> TransitionLogEntry:
        await self.initialize()
        try:
            current = await self.latest_entry(entry.entity_type, entry.entity_id, entry.machine_id)
            current_id = current.id if current else None
            if current_id != entry.previous_entry_id:
                raise AppendConflictError(
                    f"Entity {entry.entity_type}:{entry.entity_id} moved since entry "
                    f"{entry.previous_entry_id} was read (latest is {current_id})",
                    expected_previous_id=entry.previous_entry_id,
                    actual_previous_id=current_id,
                )

            stored = entry.model_copy(update={"id": await self._next_id()})
            await TransitionLogDocument.from_domain_model(stored).insert()
            logger.info(
                "mongodb_transition_logged",
                log_id=stored.id,
                entity_type=stored.entity_type,
                entity_id=stored.entity_id,
            )
            return stored
        except AppendConflictError:
            raise
        except DuplicateKeyError as e:
            latest = await self.latest_entry(entry.entity_type, entry.entity_id, entry.machine_id)
            raise AppendConflictError(
                f"Entity {entry.entity_type}:{entry.entity_id} already has an entry "
                f"following {entry.previous_entry_id}",
                expected_previous_id=entry.previous_entry_id,
                actual_previous_id=latest.id if latest else None,
            ) from e
        except HistoryStoreError:
            raise
        except Exception as e:
            error_msg = f"Failed to append entry for {entry.entity_type}:{entry.entity_id}: {e}"
            logger.error(
                "mongodb_append_entry_error",
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                error=error_msg,
            )
            raise HistoryStoreError(error_msg) from e

    async def _find(self, query: dict, limit: int | None) -> list[TransitionLogEntry]:
        await self.initialize()
        try:
            cursor = TransitionLogDocument.find(query).sort("-_id")
            if limit is not None and limit > 0:
                cursor = cursor.limit(limit)
            return [doc.to_domain_model() for doc in await cursor.to_list()]
        except Exception as e:
            error_msg = f"Failed to query transition history: {e}"
            logger.error("mongodb_history_query_error", query=query, error=error_msg)
            raise HistoryStoreError(error_msg) from e

    async def history(
        self,
        entity_type: str,
        entity_id: str,
        limit: int | None = None,
        machine_id: str | None = None,
    ) -> list[TransitionLogEntry]:
        query = {"entity_type": entity_type, "entity_id": str(entity_id)}
        if machine_id is not None:
            query["machine_id"] = machine_id
        return await self._find(query, limit)

    async def machine_history(
        self,
        machine_id: str,
        limit: int | None = None,
    ) -> list[TransitionLogEntry]:
        return await self._find({"machine_id": machine_id}, limit)

    async def actor_history(
        self,
        actor_id: str,
        limit: int | None = None,
    ) -> list[TransitionLogEntry]:
        return await self._find({"actor_id": str(actor_id)}, limit)

    async def count_machine_entries(self, machine_id: str) -> int:
        await self.initialize()
        try:
            return await TransitionLogDocument.find({"machine_id": machine_id}).count()
        except Exception as e:
            raise HistoryStoreError(f"Failed to count entries for {machine_id}: {e}") from e

    async def count_machine_entities(self, machine_id: str) -> int:
        await self.initialize()
        try:
            result = await TransitionLogDocument.find({"machine_id": machine_id}).aggregate(
                [
                    {"$group": {"_id": {"type": "$entity_type", "id": "$entity_id"}}},
                    {"$count": "entities"},
                ]
            ).to_list()
            return int(result[0]["entities"]) if result else 0
        except Exception as e:
            raise HistoryStoreError(f"Failed to count entities for {machine_id}: {e}") from e

    async def purge_machine(self, machine_id: str) -> int:
        await self.initialize()
        try:
            result = await TransitionLogDocument.find({"machine_id": machine_id}).delete()
            deleted = result.deleted_count if result is not None else 0
            logger.info("mongodb_history_purged", machine_id=machine_id, deleted=deleted)
            return deleted
        except Exception as e:
            error_msg = f"Failed to purge history for {machine_id}: {e}"
            logger.error("mongodb_purge_history_error", machine_id=machine_id, error=error_msg)
            raise HistoryStoreError(error_msg) from e
