"""Machine definition models: WorkflowGroup, Machine, State, Transition."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_id() -> str:
    return str(uuid.uuid4())


class StateKind(str, Enum):
    """Role of a state within its machine graph."""

    Initial = "initial"
    """Entry point of the machine. Exactly one per machine."""

    Normal = "normal"
    """Intermediate state."""

    Final = "final"
    """Terminal state. At least one per machine."""


class WorkflowGroup(BaseModel):
    """Organizational bucket for machines.

    Purely cosmetic grouping; the transition engine never reads it.
    """

    id: str = Field(default_factory=_new_id, description="Group identifier", min_length=1)
    name: str = Field(..., description="Display name", min_length=1)
    slug: str = Field(..., description="Unique slug", min_length=1)
    description: str | None = Field(default=None, description="Optional description")
    sort_order: int = Field(default=0, description="Display order")
    is_active: bool = Field(default=True, description="Whether the group is shown")

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        str_strip_whitespace=True,
    )


class Machine(BaseModel):
    """A named finite-state-machine definition owned by a registering module."""

    id: str = Field(default_factory=_new_id, description="Machine identifier", min_length=1)
    name: str = Field(..., description="Display name", min_length=1)
    slug: str = Field(..., description="Globally unique slug", min_length=1)
    plugin_slug: str = Field(..., description="Identifier of the owning module", min_length=1)
    entity_type: str = Field(
        ...,
        description="Kind of entity this machine governs (e.g. 'order')",
        min_length=1,
    )
    description: str | None = Field(default=None, description="Optional description")
    is_active: bool = Field(default=True, description="Inactive machines reject transitions")
    workflow_group_id: str | None = Field(
        default=None,
        description="Optional WorkflowGroup reference",
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Timestamp when the machine was registered",
    )

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    def __repr__(self) -> str:
        return f"Machine(id={self.id!r}, slug={self.slug!r}, entity_type={self.entity_type!r})"


class State(BaseModel):
    """One node of a machine graph. Slugs are unique within the machine."""

    id: str = Field(default_factory=_new_id, description="State identifier", min_length=1)
    machine_id: str = Field(..., description="Owning machine", min_length=1)
    slug: str = Field(..., description="Slug, unique within the machine", min_length=1)
    name: str = Field(..., description="Display name", min_length=1)
    kind: StateKind = Field(default=StateKind.Normal, description="initial, normal or final")
    color: str | None = Field(default=None, description="Display color")
    sort_order: int = Field(default=0, description="Display order")

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    @property
    def is_initial(self) -> bool:
        return self.kind == StateKind.Initial

    @property
    def is_final(self) -> bool:
        return self.kind == StateKind.Final


class Transition(BaseModel):
    """A directed, labeled, optionally guarded edge between two states.

    Transitions are addressed by id. Several transitions may connect the same
    ordered pair of states (e.g. a regular approval and an emergency override
    with different guards); callers pick one by id or slug.
    """

    id: str = Field(default_factory=_new_id, description="Transition identifier", min_length=1)
    machine_id: str = Field(..., description="Owning machine", min_length=1)
    from_state_id: str = Field(..., description="Source state", min_length=1)
    to_state_id: str = Field(..., description="Target state", min_length=1)
    label: str = Field(..., description="Human-readable label", min_length=1)
    slug: str | None = Field(
        default=None,
        description="Optional slug, unique within the machine when set",
    )
    guard_config: str | None = Field(
        default=None,
        description="Guard configuration string, e.g. 'RoleGuard:administrator,editor'",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form conditions/actions payload",
    )
    sort_order: int = Field(default=0, description="Display order")

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    @field_validator("guard_config", "slug")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat blank strings as unset."""
        if v is None or not v.strip():
            return None
        return v

    @property
    def is_guarded(self) -> bool:
        return self.guard_config is not None
