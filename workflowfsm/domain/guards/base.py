"""Guard contract shared by all transition guards."""

from abc import ABC, abstractmethod
from typing import Any

from workflowfsm.domain.guards.callback_registry import CallbackRegistry
from workflowfsm.domain.interfaces.authorization import AuthorizationProvider
from workflowfsm.domain.interfaces.observability_manager import ObservabilityManager
from workflowfsm.domain.models.guard_result import GuardContext, GuardResult
from workflowfsm.domain.models.system_error import GuardConfigurationError


class Guard(ABC):
    """Authorization check attached to a transition.

    A guard is built by the GuardFactory from a configuration string such as
    ``RoleGuard:manager,director``. The factory instantiates the class with
    its collaborators, validates the parameters with ``validate_config`` and
    then calls ``configure`` exactly once. A configured guard is immutable
    and may be shared between concurrent checks.

    Subclasses registered through ``GuardFactory.register_guard_type`` must
    accept the same keyword arguments as this constructor.

    Example:
        ```python
        class WeekdayGuard(Guard):
            name = "Weekday Guard"
            description = "Only allows transitions on weekdays"

            def validate_config(self, params: list[str]) -> list[str]:
                return []

            async def check(self, entity_id, actor_id, context):
                if datetime.utcnow().weekday() < 5:
                    return await self.success("It is a weekday")
                return await self.failure("Not on weekends", reason_code="weekend")

        factory.register_guard_type("WeekdayGuard", WeekdayGuard)
        ```
    """

    name: str = "Guard"
    description: str = ""

    def __init__(
        self,
        authorization: AuthorizationProvider | None = None,
        callbacks: CallbackRegistry | None = None,
        observability_manager: ObservabilityManager | None = None,
    ) -> None:
        self._authorization = authorization
        self._callbacks = callbacks
        self._observability = observability_manager
        self._params: tuple[str, ...] | None = None

    @property
    def params(self) -> tuple[str, ...]:
        """Configured parameters (empty before ``configure``)."""
        return self._params or ()

    @property
    def is_configured(self) -> bool:
        return self._params is not None

    def configure(self, params: list[str]) -> None:
        """Fix the guard's parameters. May be called only once.

        Raises:
            GuardConfigurationError: If the guard is already configured.
        """
        if self._params is not None:
            raise GuardConfigurationError(
                f"{self.name} is already configured",
                details={"params": list(self._params)},
            )
        self._params = tuple(params)

    @abstractmethod
    def validate_config(self, params: list[str]) -> list[str]:
        """Return every problem with ``params``; an empty list means valid."""
        pass

    @abstractmethod
    async def check(
        self,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> GuardResult:
        """Decide whether ``actor_id`` may perform the transition on ``entity_id``."""
        pass

    async def success(self, message: str = "", data: dict[str, Any] | None = None) -> GuardResult:
        result = GuardResult.allow(message or "Check passed", data)
        await self._record(result)
        return result

    async def failure(
        self,
        message: str,
        reason_code: str = "guard_failed",
        data: dict[str, Any] | None = None,
    ) -> GuardResult:
        result = GuardResult.deny(message, reason_code, data)
        await self._record(result)
        return result

    async def _record(self, result: GuardResult) -> None:
        if self._observability is None:
            return
        try:
            await self._observability.emit_event(
                event_type="guard_checked",
                payload={
                    "guard": self.name,
                    "params": list(self.params),
                    "allowed": result.allowed,
                    "reason_code": result.reason_code,
                    "message": result.message,
                    "data": result.data,
                },
            )
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit guard_checked event: {e}",
                context={"guard": self.name},
            )

    async def _actor_exists(self, actor_id: str) -> bool:
        if self._authorization is None:
            return False
        return await self._authorization.actor_exists(actor_id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(params={list(self.params)!r})"
