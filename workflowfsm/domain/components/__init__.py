"""Domain components."""

from workflowfsm.domain.components.entity_locks import EntityLockTable, LockTimeoutError
from workflowfsm.domain.components.machine_registry import MachineRegistry
from workflowfsm.domain.components.transition_engine import TransitionEngine

__all__ = [
    "EntityLockTable",
    "LockTimeoutError",
    "MachineRegistry",
    "TransitionEngine",
]
