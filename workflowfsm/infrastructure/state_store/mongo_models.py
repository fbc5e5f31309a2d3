"""MongoDB document models using Beanie ODM.

Each document mirrors a domain model and converts with
``from_domain_model``/``to_domain_model``. Indexes back the lookups the
engine performs; the unique index on the transition log is what turns the
ledger's conditional append into a database-enforced guarantee.

Example:
    ```python
    from motor.motor_asyncio import AsyncIOMotorClient
    from workflowfsm.infrastructure.state_store.mongo_models import initialize_beanie_models

    client = AsyncIOMotorClient("mongodb://localhost:27017")
    await initialize_beanie_models(client["workflowfsm"])
    ```
"""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed, init_beanie
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import IndexModel

from workflowfsm.domain.models.machine import (
    Machine,
    State,
    StateKind,
    Transition,
    WorkflowGroup,
)
from workflowfsm.domain.models.transition_log import TransitionLogEntry


class WorkflowGroupDocument(Document):
    """Beanie document model for WorkflowGroup."""

    id: str
    name: str
    slug: Indexed(str, unique=True)  # type: ignore[valid-type]
    description: str | None = None
    sort_order: int = 0
    is_active: bool = True

    class Settings:
        """Beanie document settings."""

        name = "workflow_groups"

    @classmethod
    def from_domain_model(cls, group: WorkflowGroup) -> "WorkflowGroupDocument":
        return cls(**group.model_dump())

    def to_domain_model(self) -> WorkflowGroup:
        return WorkflowGroup(**self.model_dump(exclude={"revision_id"}))


class MachineDocument(Document):
    """Beanie document model for Machine.

    Indexes:
        - slug: Unique index (machines are addressed by slug)
        - plugin_slug: Index for listing a module's machines
        - workflow_group_id: Index for listing a group's machines
    """

    id: str
    name: str
    slug: Indexed(str, unique=True)  # type: ignore[valid-type]
    plugin_slug: Indexed(str)  # type: ignore[valid-type]
    entity_type: str
    description: str | None = None
    is_active: bool = True
    workflow_group_id: str | None = None
    created_at: datetime

    class Settings:
        """Beanie document settings."""

        name = "machines"
        indexes = [
            IndexModel([("workflow_group_id", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, machine: Machine) -> "MachineDocument":
        return cls(**machine.model_dump())

    def to_domain_model(self) -> Machine:
        return Machine(**self.model_dump(exclude={"revision_id"}))


class StateDocument(Document):
    """Beanie document model for State.

    Indexes:
        - machine_id + slug: Unique compound index (slugs unique per machine)
    """

    id: str
    machine_id: str
    slug: str
    name: str
    kind: str  # Store as string, convert to StateKind enum
    color: str | None = None
    sort_order: int = 0

    class Settings:
        """Beanie document settings."""

        name = "states"
        indexes = [
            IndexModel([("machine_id", 1), ("slug", 1)], unique=True),
            IndexModel([("machine_id", 1), ("sort_order", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, state: State) -> "StateDocument":
        return cls(**{**state.model_dump(), "kind": state.kind.value})

    def to_domain_model(self) -> State:
        data = self.model_dump(exclude={"revision_id"})
        data["kind"] = StateKind(self.kind)
        return State(**data)


class TransitionDocument(Document):
    """Beanie document model for Transition.

    Indexes:
        - machine_id + from_state_id: Outgoing transitions of a state
        - machine_id + slug: Slug lookup within a machine
    """

    id: str
    machine_id: str
    from_state_id: str
    to_state_id: str
    label: str
    slug: str | None = None
    guard_config: str | None = None
    metadata: dict[str, Any] = {}
    sort_order: int = 0

    class Settings:
        """Beanie document settings."""

        name = "transitions"
        indexes = [
            IndexModel([("machine_id", 1), ("from_state_id", 1), ("sort_order", 1)]),
            IndexModel([("machine_id", 1), ("slug", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, transition: Transition) -> "TransitionDocument":
        return cls(**transition.model_dump())

    def to_domain_model(self) -> Transition:
        return Transition(**self.model_dump(exclude={"revision_id"}))


class TransitionLogDocument(Document):
    """Beanie document model for TransitionLogEntry.

    ``id`` is an integer drawn from the ``counters`` collection, so sorting
    by ``_id`` gives ledger order.

    Indexes:
        - entity_type + entity_id + machine_id + previous_entry_id: Unique.
          At most one entry may follow any given entry (or the empty
          history), which makes concurrent appends from the same starting
          point collide.
        - entity_type + entity_id + machine_id + _id: Latest-entry lookup
        - machine_id + _id: Machine history
        - actor_id + _id: Actor history
    """

    id: int
    machine_id: str
    entity_type: str
    entity_id: str
    from_state_id: str | None = None
    to_state_id: str
    transition_id: str | None = None
    actor_id: str
    comment: str | None = None
    metadata: dict[str, Any] = {}
    previous_entry_id: int | None = None
    created_at: datetime

    class Settings:
        """Beanie document settings."""

        name = "transition_logs"
        indexes = [
            IndexModel(
                [
                    ("entity_type", 1),
                    ("entity_id", 1),
                    ("machine_id", 1),
                    ("previous_entry_id", 1),
                ],
                unique=True,
                name="unique_previous_entry",
            ),
            IndexModel([("entity_type", 1), ("entity_id", 1), ("machine_id", 1), ("_id", -1)]),
            IndexModel([("machine_id", 1), ("_id", -1)]),
            IndexModel([("actor_id", 1), ("_id", -1)]),
        ]

    @classmethod
    def from_domain_model(cls, entry: TransitionLogEntry) -> "TransitionLogDocument":
        return cls(**entry.model_dump())

    def to_domain_model(self) -> TransitionLogEntry:
        return TransitionLogEntry(**self.model_dump(exclude={"revision_id"}))


DOCUMENT_MODELS = [
    WorkflowGroupDocument,
    MachineDocument,
    StateDocument,
    TransitionDocument,
    TransitionLogDocument,
]


async def initialize_beanie_models(database: AsyncIOMotorDatabase) -> None:
    """Initialize Beanie with all document models and create their indexes."""
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
