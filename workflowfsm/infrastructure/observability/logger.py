"""structlog-backed observability manager for the workflow engine."""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from workflowfsm.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)

DEFAULT_REDACT_FIELDS = frozenset({"password", "token", "secret", "api_key"})
REDACTED = "[REDACTED]"

# structlog uses "event" for the message itself
_RESERVED_KEYS = ("event",)


def sanitize_for_logging(data: Any, redact_fields: Iterable[str] = DEFAULT_REDACT_FIELDS) -> Any:
    """Sanitize data to remove sensitive information before logging.

    Entity data and request metadata are caller-supplied and may carry
    credentials. Values under any key in ``redact_fields`` (compared
    case-insensitively) are replaced, recursively through nested dicts and
    lists.

    Args:
        data: Data structure to sanitize (dict, list, or primitive).
        redact_fields: Keys whose values must not be logged.

    Returns:
        Sanitized data structure.
    """
    return _redact(data, {field.lower() for field in redact_fields})


def _redact(data: Any, keys: set[str]) -> Any:
    if isinstance(data, dict):
        return {k: REDACTED if str(k).lower() in keys else _redact(v, keys) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_redact(item, keys) for item in data]
    return data


def configure_structlog(log_level: str = "INFO", json_format: bool = True) -> None:
    """Route structlog through the stdlib logging module.

    JSON lines in production, colored console output in development. Context
    bound with ``structlog.contextvars.bind_contextvars`` (a request id, for
    example) is merged into every line.
    """
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s" if json_format else "%(asctime)s %(name)s %(levelname)s %(message)s",
    )


class DefaultObservabilityManager(ObservabilityManager):
    """Writes engine diagnostics as structlog lines under the "workflowfsm" logger.

    Diagnostic events become INFO lines named "Event emitted" carrying an
    ``event_type`` field. Payloads, metadata and log context are passed
    through ``sanitize_for_logging`` first.
    """

    def __init__(
        self,
        log_level: str = "INFO",
        json_format: bool = True,
        redact_fields: Iterable[str] = DEFAULT_REDACT_FIELDS,
    ) -> None:
        """Initialize DefaultObservabilityManager.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            json_format: JSON lines when True, console output when False.
            redact_fields: Keys redacted from event payloads and log context.
        """
        self._log_level = log_level
        self._json_format = json_format
        self._redact_fields = frozenset(redact_fields)
        configure_structlog(log_level, json_format)
        self._logger = structlog.get_logger("workflowfsm")

    @property
    def redact_fields(self) -> frozenset[str]:
        return self._redact_fields

    def _clean(self, data: dict[str, Any]) -> dict[str, Any]:
        cleaned = dict(sanitize_for_logging(data, self._redact_fields))
        for key in _RESERVED_KEYS:
            cleaned.pop(key, None)
        return cleaned

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit a diagnostic event as a structured log line.

        Raises:
            ObservabilityError: If event emission fails.
        """
        try:
            fields = self._clean(payload)
            if metadata:
                meta = self._clean(metadata)
                meta.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
                fields["metadata"] = meta
            self._logger.info("Event emitted", event_type=event_type, **fields)
        except Exception as e:
            raise ObservabilityError(f"Failed to emit event {event_type}: {e}") from e

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a message with structured context.

        Unknown levels are written at INFO.

        Raises:
            ObservabilityError: If logging fails.
        """
        try:
            write = getattr(self._logger, level.lower(), self._logger.info)
            write(message, **self._clean(context or {}))
        except Exception as e:
            raise ObservabilityError(f"Failed to log message: {e}") from e
