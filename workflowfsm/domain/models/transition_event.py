"""Typed payloads published on the event bus around each transition."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from workflowfsm.domain.models.machine import State, Transition


class TransitionTopic(str, Enum):
    """Event bus topics."""

    BeforeTransition = "before_transition"
    """Published after validation succeeds, before the log entry is written."""

    AfterTransition = "after_transition"
    """Published once the log entry is committed. Never follows a failure."""

    TransitionFailed = "transition_failed"
    """Published when a request is rejected or the log write fails."""


class TransitionEvent(BaseModel):
    """Fields common to every transition event."""

    entity_type: str | None = Field(default=None, description="Type of entity")
    entity_id: str | None = Field(default=None, description="Entity identifier")
    actor_id: str | None = Field(default=None, description="Actor who requested the transition")
    occurred_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(frozen=True)


class BeforeTransitionEvent(TransitionEvent):
    """Payload for ``before_transition``."""

    machine_id: str
    transition: Transition | None = None
    from_state: State | None = None
    to_state: State
    comment: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    entity_data: dict[str, Any] | None = None


class AfterTransitionEvent(BeforeTransitionEvent):
    """Payload for ``after_transition``; adds the committed log entry id."""

    log_id: int


class TransitionFailedEvent(TransitionEvent):
    """Payload for ``transition_failed``."""

    transition_id: str | None = None
    code: str
    reason_code: str
    message: str
