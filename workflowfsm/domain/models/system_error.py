"""Error taxonomy for transition outcomes and definition-time failures."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories of transition failures."""

    RequestError = "request"
    """Caller or integration bug. Surfaced immediately, never retried."""

    DomainRejection = "domain"
    """Expected business outcome (state mismatch, guard denial)."""

    InfrastructureFailure = "infrastructure"
    """Storage or lookup failure. The only category worth retrying."""

    ConfigurationError = "configuration"
    """Broken machine or guard configuration."""


class ErrorCode(str, Enum):
    """Stable, machine-readable codes carried by every rejection."""

    InvalidParams = "invalid_params"
    MachineNotFound = "machine_not_found"
    MachineInactive = "machine_inactive"
    TransitionNotFound = "transition_not_found"
    TransitionMachineMismatch = "transition_machine_mismatch"
    StateNotFound = "state_not_found"

    StateMismatch = "state_mismatch"
    StateConflict = "state_conflict"
    GuardFailed = "guard_failed"

    LogAppendFailed = "log_failed"
    DefinitionLookupFailed = "definition_lookup_failed"
    HistoryLookupFailed = "history_lookup_failed"
    LockTimeout = "lock_timeout"

    UnknownGuardType = "unknown_guard_type"
    InvalidGuardConfig = "invalid_guard_config"
    NoCallbackRegistered = "no_callback_registered"

    @property
    def category(self) -> ErrorCategory:
        """Category this code belongs to."""
        return _CATEGORIES[self]

    @property
    def retryable(self) -> bool:
        """Only infrastructure failures are worth retrying."""
        return self.category == ErrorCategory.InfrastructureFailure


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.InvalidParams: ErrorCategory.RequestError,
    ErrorCode.MachineNotFound: ErrorCategory.RequestError,
    ErrorCode.MachineInactive: ErrorCategory.RequestError,
    ErrorCode.TransitionNotFound: ErrorCategory.RequestError,
    ErrorCode.TransitionMachineMismatch: ErrorCategory.RequestError,
    ErrorCode.StateNotFound: ErrorCategory.RequestError,
    ErrorCode.StateMismatch: ErrorCategory.DomainRejection,
    ErrorCode.StateConflict: ErrorCategory.DomainRejection,
    ErrorCode.GuardFailed: ErrorCategory.DomainRejection,
    ErrorCode.LogAppendFailed: ErrorCategory.InfrastructureFailure,
    ErrorCode.DefinitionLookupFailed: ErrorCategory.InfrastructureFailure,
    ErrorCode.HistoryLookupFailed: ErrorCategory.InfrastructureFailure,
    ErrorCode.LockTimeout: ErrorCategory.InfrastructureFailure,
    ErrorCode.UnknownGuardType: ErrorCategory.ConfigurationError,
    ErrorCode.InvalidGuardConfig: ErrorCategory.ConfigurationError,
    ErrorCode.NoCallbackRegistered: ErrorCategory.ConfigurationError,
}


class WorkflowError(Exception):
    """Base class for definition-time and store errors.

    Runtime transition outcomes are returned as results, not raised. These
    exceptions cover the cases where failing loudly is the point: bad guard
    configuration, invalid machine definitions, storage failures inside
    adapters.

    Example:
        ```python
        raise InvalidGuardConfigError(
            "Invalid guard configuration for RoleGuard: At least one role must be specified",
            details={"guard_type": "RoleGuard"},
        )
        ```
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r})"

    def __str__(self) -> str:
        return self.message


class GuardConfigurationError(WorkflowError):
    """Raised when a guard cannot be built from its configuration."""

    code: ErrorCode = ErrorCode.InvalidGuardConfig


class UnknownGuardTypeError(GuardConfigurationError):
    """Raised when a guard configuration names an unregistered guard type."""

    code = ErrorCode.UnknownGuardType


class InvalidGuardConfigError(GuardConfigurationError):
    """Raised when guard parameters fail validation."""

    code = ErrorCode.InvalidGuardConfig


class CallbackNotRegisteredError(WorkflowError):
    """Raised when a callback guard handler is invoked but none is registered."""


class DefinitionValidationError(WorkflowError):
    """Raised when a machine definition violates its structural invariants."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors})


class MachineNotFoundError(WorkflowError):
    """Raised when an administrative operation targets an unknown machine."""


class MachineInUseError(WorkflowError):
    """Raised when deleting a machine that still has history under the restrict policy."""
