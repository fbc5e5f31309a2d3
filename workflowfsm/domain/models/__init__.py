"""Domain models for workflowfsm."""

from workflowfsm.domain.models.guard_result import (
    CallbackResultPayload,
    GuardContext,
    GuardResult,
)
from workflowfsm.domain.models.machine import (
    Machine,
    State,
    StateKind,
    Transition,
    WorkflowGroup,
)
from workflowfsm.domain.models.system_error import (
    CallbackNotRegisteredError,
    DefinitionValidationError,
    ErrorCategory,
    ErrorCode,
    GuardConfigurationError,
    InvalidGuardConfigError,
    MachineInUseError,
    MachineNotFoundError,
    UnknownGuardTypeError,
    WorkflowError,
)
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

__all__ = [
    "WorkflowGroup",
    "Machine",
    "State",
    "StateKind",
    "Transition",
    "TransitionLogEntry",
    "HistoryEntry",
    "MachineStats",
    "normalize_identifier",
    "GuardResult",
    "GuardContext",
    "CallbackResultPayload",
    "TransitionRequest",
    "TransitionCheck",
    "TransitionOutcome",
    "PipelineStage",
    "TransitionTopic",
    "TransitionEvent",
    "BeforeTransitionEvent",
    "AfterTransitionEvent",
    "TransitionFailedEvent",
    "ErrorCategory",
    "ErrorCode",
    "WorkflowError",
    "GuardConfigurationError",
    "UnknownGuardTypeError",
    "InvalidGuardConfigError",
    "CallbackNotRegisteredError",
    "DefinitionValidationError",
    "MachineNotFoundError",
    "MachineInUseError",
]
