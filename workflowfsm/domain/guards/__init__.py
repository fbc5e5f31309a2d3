"""Transition guards and the factory that builds them."""

from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.guards.callback import CallbackGuard
from workflowfsm.domain.guards.callback_registry import CallbackHandler, CallbackRegistry
from workflowfsm.domain.guards.capability import CapabilityGuard
from workflowfsm.domain.guards.factory import (
    BUILTIN_GUARD_TYPES,
    GuardFactory,
    parse_guard_config,
)
from workflowfsm.domain.guards.owner import OwnerGuard
from workflowfsm.domain.guards.role import RoleGuard

__all__ = [
    "Guard",
    "RoleGuard",
    "CapabilityGuard",
    "OwnerGuard",
    "CallbackGuard",
    "CallbackHandler",
    "CallbackRegistry",
    "GuardFactory",
    "BUILTIN_GUARD_TYPES",
    "parse_guard_config",
]
