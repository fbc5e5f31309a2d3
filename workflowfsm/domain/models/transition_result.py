"""Request and result models for the transition pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workflowfsm.domain.models.guard_result import GuardResult
from workflowfsm.domain.models.machine import Machine, State, Transition
from workflowfsm.domain.models.system_error import ErrorCategory, ErrorCode
from workflowfsm.domain.models.transition_log import TransitionLogEntry, normalize_identifier


class PipelineStage(str, Enum):
    """Where in the validate/authorize/commit pipeline a request ended."""

    Received = "received"
    Validated = "validated"
    Authorized = "authorized"
    Committed = "committed"

    RejectedInvalidRequest = "rejected_invalid_request"
    RejectedStateMismatch = "rejected_state_mismatch"
    RejectedByGuard = "rejected_by_guard"
    FailedLookup = "failed_lookup"
    FailedPersist = "failed_persist"


class TransitionRequest(BaseModel):
    """A request to check or apply a transition on one entity.

    The transition is addressed either by ``transition_id`` or by
    ``machine`` (id or slug) plus ``transition_slug``. Missing required
    fields are reported by the engine as an ``invalid_params`` result rather
    than raised, so every field here is optional at the model level.

    Example:
        ```python
        request = TransitionRequest(
            entity_type="order",
            entity_id=1,
            machine="order-flow",
            transition_slug="approve",
            actor_id=42,
            comment="Approved by manager",
        )
        ```
    """

    entity_type: str | None = Field(default=None, description="Type of entity")
    entity_id: str | None = Field(default=None, description="Entity identifier")
    transition_id: str | None = Field(default=None, description="Transition identifier")
    machine: str | None = Field(default=None, description="Machine id or slug")
    transition_slug: str | None = Field(default=None, description="Transition slug within machine")
    actor_id: str | None = Field(default=None, description="Actor performing the transition")
    comment: str | None = Field(default=None, description="Optional comment for the log")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Optional log metadata")
    entity_data: dict[str, Any] | None = Field(
        default=None,
        description="Entity snapshot for guards such as OwnerGuard",
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    @field_validator("entity_id", "actor_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        return normalize_identifier(v)

    def missing_fields(self) -> list[str]:
        """Names of required fields that are absent or blank."""
        missing = [
            name
            for name in ("entity_type", "entity_id", "actor_id")
            if not getattr(self, name)
        ]
        if not self.transition_id and not (self.machine and self.transition_slug):
            missing.append("transition_id")
        return missing


class _PipelineResult(BaseModel):
    """Fields shared by check and apply results."""

    stage: PipelineStage = Field(..., description="Pipeline stage the request reached")
    code: ErrorCode | None = Field(
        default=None,
        description="Error code when rejected, None on success",
    )
    reason_code: str = Field(
        default="success",
        description="Stable reason: the error code, or the guard's own reason on guard denial",
    )
    message: str = Field(default="", description="Human-readable message")
    data: dict[str, Any] = Field(default_factory=dict, description="Structured diagnostics")
    guard_result: GuardResult | None = Field(
        default=None,
        description="Guard outcome when a guard was evaluated",
    )
    machine: Machine | None = None
    transition: Transition | None = None
    from_state: State | None = Field(
        default=None,
        description="Derived current state before the transition (None when no history)",
    )
    to_state: State | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def category(self) -> ErrorCategory | None:
        return self.code.category if self.code else None

    @property
    def retryable(self) -> bool:
        return self.code.retryable if self.code else False


class TransitionCheck(_PipelineResult):
    """Result of ``can_transition``.

    On success it carries the resolved machine, transition and states plus
    the latest log entry observed while validating, so ``apply_transition``
    can append without querying again.
    """

    allowed: bool = Field(..., description="Whether the transition may be applied")
    latest_entry: TransitionLogEntry | None = Field(
        default=None,
        description="Most recent log entry observed during validation",
    )

    def __repr__(self) -> str:
        return (
            f"TransitionCheck(allowed={self.allowed}, stage={self.stage.value}, "
            f"reason_code={self.reason_code!r})"
        )


class TransitionOutcome(_PipelineResult):
    """Result of ``apply_transition`` and ``force_state``."""

    success: bool = Field(..., description="Whether the transition was committed")
    log_entry: TransitionLogEntry | None = Field(
        default=None,
        description="Appended log entry on success",
    )

    @property
    def log_id(self) -> int | None:
        return self.log_entry.id if self.log_entry else None

    @classmethod
    def from_check(cls, check: TransitionCheck) -> TransitionOutcome:
        """Carry a rejected check over verbatim."""
        return cls(
            success=False,
            stage=check.stage,
            code=check.code,
            reason_code=check.reason_code,
            message=check.message,
            data=check.data,
            guard_result=check.guard_result,
            machine=check.machine,
            transition=check.transition,
            from_state=check.from_state,
            to_state=check.to_state,
        )

    def __repr__(self) -> str:
        return (
            f"TransitionOutcome(success={self.success}, stage={self.stage.value}, "
            f"reason_code={self.reason_code!r}, log_id={self.log_id})"
        )
