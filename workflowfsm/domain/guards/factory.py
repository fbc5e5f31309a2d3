"""GuardFactory: builds configured guards from ``Type:param1,param2`` strings."""

from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.guards.callback import CallbackGuard
from workflowfsm.domain.guards.callback_registry import CallbackRegistry
from workflowfsm.domain.guards.capability import CapabilityGuard
from workflowfsm.domain.guards.owner import OwnerGuard
from workflowfsm.domain.guards.role import RoleGuard
from workflowfsm.domain.interfaces.authorization import AuthorizationProvider
from workflowfsm.domain.interfaces.observability_manager import ObservabilityManager
from workflowfsm.domain.models.system_error import (
    GuardConfigurationError,
    InvalidGuardConfigError,
    UnknownGuardTypeError,
)

BUILTIN_GUARD_TYPES: dict[str, type[Guard]] = {
    "RoleGuard": RoleGuard,
    "CapabilityGuard": CapabilityGuard,
    "OwnerGuard": OwnerGuard,
    "CallbackGuard": CallbackGuard,
}


def parse_guard_config(config: str) -> tuple[str, list[str]]:
    """Split a guard configuration string into its type and parameters.

    The type is everything before the first ``:``; the remainder is split on
    ``,``. Type and parameters are trimmed and empty parameters dropped, so
    ``" RoleGuard : a, ,b "`` parses to ``("RoleGuard", ["a", "b"])``.

    Raises:
        InvalidGuardConfigError: If the string is empty or names no type.
    """
    if config is None or not config.strip():
        raise InvalidGuardConfigError("Invalid guard configuration format: empty string")

    guard_type, _, remainder = config.strip().partition(":")
    guard_type = guard_type.strip()
    if not guard_type:
        raise InvalidGuardConfigError(
            f"Invalid guard configuration format: {config}",
            details={"config": config},
        )

    params = [param.strip() for param in remainder.split(",")] if remainder.strip() else []
    return guard_type, [param for param in params if param]


class GuardFactory:
    """Registry of guard types and builder of configured guard instances.

    Built guards are cached per configuration string; registering a guard
    type clears the cache.

    Example:
        ```python
        factory = GuardFactory(authorization=provider, callbacks=registry)
        guard = factory.create("RoleGuard:administrator,editor")
        result = await guard.check("17", "42", GuardContext(entity_type="order"))

        factory.validate("OwnerGuard:")
        # ['Invalid guard configuration for OwnerGuard: Owner field name must be specified']
        ```
    """

    def __init__(
        self,
        authorization: AuthorizationProvider | None = None,
        callbacks: CallbackRegistry | None = None,
        observability_manager: ObservabilityManager | None = None,
    ) -> None:
        self._authorization = authorization
        self._callbacks = callbacks if callbacks is not None else CallbackRegistry()
        self._observability = observability_manager
        self._guard_types: dict[str, type[Guard]] = dict(BUILTIN_GUARD_TYPES)
        self._cache: dict[str, Guard] = {}

    @property
    def callbacks(self) -> CallbackRegistry:
        return self._callbacks

    def register_guard_type(self, name: str, guard_class: type[Guard]) -> None:
        """Add or replace a guard type.

        Raises:
            ValueError: If the name is blank or the class is not a Guard.
        """
        if not name or not name.strip():
            raise ValueError("Guard type name cannot be empty")
        if ":" in name or "," in name:
            raise ValueError(f"Guard type name cannot contain ':' or ',': {name}")
        if not (isinstance(guard_class, type) and issubclass(guard_class, Guard)):
            raise ValueError(f"Guard class must subclass Guard: {guard_class!r}")
        self._guard_types[name.strip()] = guard_class
        self._cache.clear()

    def available_guard_types(self) -> list[str]:
        return list(self._guard_types)

    def guard_exists(self, guard_type: str) -> bool:
        return guard_type in self._guard_types

    def guard_info(self) -> dict[str, dict[str, str]]:
        """Name and description of every registered guard type."""
        return {
            guard_type: {
                "name": guard_class.name,
                "description": guard_class.description,
                "class": f"{guard_class.__module__}.{guard_class.__qualname__}",
            }
            for guard_type, guard_class in self._guard_types.items()
        }

    def create(self, config: str) -> Guard:
        """Build (or fetch from cache) the guard described by ``config``.

        Raises:
            UnknownGuardTypeError: If the type is not registered.
            InvalidGuardConfigError: If the string or its parameters are invalid.
        """
        key = config.strip() if config else ""
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        guard_type, params = parse_guard_config(config)
        guard_class = self._guard_types.get(guard_type)
        if guard_class is None:
            raise UnknownGuardTypeError(
                f"Unknown guard type: {guard_type}. "
                f"Available types: {', '.join(self._guard_types)}",
                details={
                    "guard_type": guard_type,
                    "available_types": self.available_guard_types(),
                },
            )

        guard = guard_class(
            authorization=self._authorization,
            callbacks=self._callbacks,
            observability_manager=self._observability,
        )
        errors = guard.validate_config(params)
        if errors:
            raise InvalidGuardConfigError(
                f"Invalid guard configuration for {guard_type}: {', '.join(errors)}",
                details={"guard_type": guard_type, "params": params, "errors": errors},
            )
        guard.configure(params)

        self._cache[key] = guard
        return guard

    def validate(self, config: str) -> list[str]:
        """Pre-flight check of a configuration string. Never raises.

        Besides construction errors, reports CallbackGuard names that have no
        registered handler yet.
        """
        try:
            guard = self.create(config)
        except GuardConfigurationError as e:
            return [e.message]

        if isinstance(guard, CallbackGuard) and not self._callbacks.has_handler(
            guard.callback_name
        ):
            return [f'No callback registered for "{guard.callback_name}"']
        return []

    def clear_cache(self) -> None:
        self._cache.clear()
