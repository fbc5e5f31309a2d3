"""TransitionLogEntry data model for the append-only transition ledger."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_identifier(value: Any) -> Any:
    """Accept integer entity/actor identifiers and store them as strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


class TransitionLogEntry(BaseModel):
    """One immutable record of an executed transition.

    The current state of an entity is the to_state of its most recent entry
    for a machine. "Most recent" is decided by ``id``, which the history store
    assigns from a strictly increasing sequence; ``created_at`` is advisory.

    ``previous_entry_id`` names the entry this one follows for the same
    (entity_type, entity_id, machine_id). Stores refuse an append whose
    previous_entry_id is not the current latest entry, which is what makes
    concurrent appends from a shared starting state collide instead of
    forking the trajectory.
    """

    id: int | None = Field(
        default=None,
        description="Store-assigned monotonic identifier (None until appended)",
        ge=1,
    )
    machine_id: str = Field(..., description="Machine the transition belongs to", min_length=1)
    entity_type: str = Field(..., description="Type of entity (e.g. 'order')", min_length=1)
    entity_id: str = Field(..., description="Entity identifier", min_length=1)
    from_state_id: str | None = Field(
        default=None,
        description="Previous state; None when the entity had no entry in this machine",
    )
    to_state_id: str = Field(..., description="New state", min_length=1)
    transition_id: str | None = Field(
        default=None,
        description="Applied transition; None for forced state changes",
    )
    actor_id: str = Field(..., description="Actor who performed the transition", min_length=1)
    comment: str | None = Field(default=None, description="Optional comment")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Optional structured metadata",
    )
    previous_entry_id: int | None = Field(
        default=None,
        description="Id of the entry this one follows for the same entity and machine",
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Timestamp when the entry was written",
    )

    model_config = ConfigDict(
        frozen=True,  # Immutable audit trail
        validate_assignment=True,
    )

    @field_validator("entity_id", "actor_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        return normalize_identifier(v)

    @property
    def is_forced(self) -> bool:
        """Whether the entry was written without a transition definition."""
        return self.transition_id is None

    def __repr__(self) -> str:
        return (
            f"TransitionLogEntry(id={self.id}, entity={self.entity_type}:{self.entity_id}, "
            f"from={self.from_state_id}, to={self.to_state_id})"
        )


class MachineStats(BaseModel):
    """Aggregate ledger counts for one machine."""

    machine_id: str = Field(..., description="Machine identifier")
    total_transitions: int = Field(default=0, description="Number of log entries", ge=0)
    unique_entities: int = Field(
        default=0,
        description="Distinct (entity_type, entity_id) pairs with at least one entry",
        ge=0,
    )

    model_config = ConfigDict(frozen=True)


class HistoryEntry(BaseModel):
    """A log entry enriched with human-readable labels for display."""

    entry: TransitionLogEntry = Field(..., description="The underlying log entry")
    machine_slug: str | None = Field(default=None, description="Slug of the machine")
    from_state_slug: str | None = Field(default=None, description="Slug of the previous state")
    from_state_name: str | None = Field(default=None, description="Name of the previous state")
    to_state_slug: str | None = Field(default=None, description="Slug of the new state")
    to_state_name: str | None = Field(default=None, description="Name of the new state")
    transition_label: str | None = Field(
        default=None,
        description="Label of the applied transition (None for forced entries)",
    )

    model_config = ConfigDict(frozen=True)
