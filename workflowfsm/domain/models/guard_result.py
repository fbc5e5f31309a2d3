"""GuardResult and GuardContext models for transition authorization."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr

from workflowfsm.domain.models.machine import Machine, Transition


class GuardResult(BaseModel):
    """Outcome of a guard check.

    Example:
        ```python
        result = GuardResult.deny(
            "User does not have required role. Required: manager. User has: editor",
            reason_code="insufficient_role",
            data={"required_roles": ["manager"], "actor_roles": ["editor"]},
        )
        if not result.allowed:
            print(result.reason_code)
        ```
    """

    allowed: bool = Field(..., description="Whether the actor may perform the transition")
    reason_code: str = Field(
        default="success",
        description="Stable machine-readable reason (e.g. 'insufficient_role')",
        min_length=1,
    )
    message: str = Field(default="", description="Human-readable explanation")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Guard-specific diagnostics (required vs held roles, owner field, ...)",
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def allow(cls, message: str = "Check passed", data: dict[str, Any] | None = None) -> GuardResult:
        return cls(allowed=True, reason_code="success", message=message, data=data or {})

    @classmethod
    def deny(
        cls,
        message: str,
        reason_code: str = "guard_failed",
        data: dict[str, Any] | None = None,
    ) -> GuardResult:
        return cls(allowed=False, reason_code=reason_code, message=message, data=data or {})


class CallbackResultPayload(BaseModel):
    """Strict shape a callback handler must return before its answer is trusted."""

    allowed: StrictBool
    message: StrictStr
    reason_code: StrictStr
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore", strict=True)


class GuardContext(BaseModel):
    """Context handed to guards alongside entity and actor ids."""

    entity_type: str | None = Field(default=None, description="Type of the entity")
    entity_data: dict[str, Any] | None = Field(
        default=None,
        description="Caller-supplied snapshot of the entity (owner fields, amounts, ...)",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Request metadata",
    )
    machine: Machine | None = Field(default=None, description="Machine being transitioned")
    transition: Transition | None = Field(default=None, description="Transition being checked")

    model_config = ConfigDict(frozen=True)
