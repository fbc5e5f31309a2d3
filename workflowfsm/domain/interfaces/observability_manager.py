"""ObservabilityManager interface for diagnostic events and structured logs."""

from abc import ABC, abstractmethod
from typing import Any


class ObservabilityManager(ABC):
    """Abstract interface for engine diagnostics.

    Distinct from the EventBus: the event bus carries business notifications
    that hosts subscribe to, while the observability manager records what the
    engine did (guard evaluated, request rejected, store failed) for
    operators. A failing ``emit_event`` never fails a transition.
    """

    @abstractmethod
    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record a diagnostic event.

        Args:
            event_type: Event name, e.g. "transition_committed", "guard_denied",
                "machine_registered".
            payload: Event fields. May contain caller-supplied entity data.
            metadata: Optional request-scoped fields such as request_id.

        Raises:
            ObservabilityError: If the event could not be recorded.
        """
        pass

    @abstractmethod
    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Write a log line with structured context.

        Args:
            level: DEBUG, INFO, WARNING, ERROR or CRITICAL (case-insensitive).
            message: Human-readable message.
            context: Optional fields such as machine, entity and actor ids.

        Raises:
            ObservabilityError: If the line could not be written.
        """
        pass


class ObservabilityError(Exception):
    """Raised when a diagnostic event or log line cannot be recorded."""

    pass
