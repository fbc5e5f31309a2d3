"""Named handler registry used by CallbackGuard."""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Union

from workflowfsm.domain.models.guard_result import GuardContext
from workflowfsm.domain.models.system_error import CallbackNotRegisteredError
from workflowfsm.infrastructure.utils.validation import ValidationError, validate_callback_name

CallbackHandler = Callable[[str, str, GuardContext], Union[Any, Awaitable[Any]]]


class CallbackRegistry:
    """Maps callback names to host-supplied guard handlers.

    Handlers receive ``(entity_id, actor_id, context)`` and return either a
    GuardResult or a mapping with ``allowed``, ``message``, ``reason_code``
    and optional ``data``. Both plain functions and coroutine functions are
    accepted.

    Example:
        ```python
        registry = CallbackRegistry()

        async def within_budget(entity_id, actor_id, context):
            total = context.entity_data["total"]
            return {
                "allowed": total <= 10_000,
                "message": "Within budget" if total <= 10_000 else "Over budget",
                "reason_code": "success" if total <= 10_000 else "over_budget",
            }

        registry.register_handler("within_budget", within_budget)
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[str, CallbackHandler] = {}

    def register_handler(self, name: str, handler: CallbackHandler) -> None:
        """Register (or replace) the handler for ``name``.

        Raises:
            ValueError: If the name is malformed or the handler is not callable.
        """
        try:
            validate_callback_name(name)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        if not callable(handler):
            raise ValueError(f"Handler for callback '{name}' is not callable")
        self._handlers[name.strip()] = handler

    def unregister_handler(self, name: str) -> bool:
        """Remove a handler. Returns True if one was registered."""
        return self._handlers.pop(name.strip(), None) is not None

    def has_handler(self, name: str) -> bool:
        return name.strip() in self._handlers

    def handler_names(self) -> list[str]:
        return sorted(self._handlers)

    async def invoke(
        self,
        name: str,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> Any:
        """Call the handler registered for ``name`` and return its raw result.

        Raises:
            CallbackNotRegisteredError: If no handler is registered.
        """
        handler = self._handlers.get(name.strip())
        if handler is None:
            raise CallbackNotRegisteredError(
                f"No callback registered for '{name}'",
                details={"callback_name": name},
            )
        result = handler(entity_id, actor_id, context)
        if inspect.isawaitable(result):
            result = await result
        return result
