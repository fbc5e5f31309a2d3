"""CallbackGuard: delegates the decision to a host-registered handler."""

from pydantic import ValidationError

from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.models.guard_result import (
    CallbackResultPayload,
    GuardContext,
    GuardResult,
)
from workflowfsm.domain.models.system_error import CallbackNotRegisteredError
from workflowfsm.infrastructure.utils.validation import (
    ValidationError as NameValidationError,
)
from workflowfsm.infrastructure.utils.validation import validate_callback_name


class CallbackGuard(Guard):
    """Runs the handler registered under the configured callback name.

    Handler output is validated before it is trusted. Anything that is not a
    GuardResult or a mapping with a boolean ``allowed`` and string
    ``message``/``reason_code`` denies the transition with
    ``invalid_callback_result``; a handler that raises denies it with
    ``callback_error``.
    """

    name = "Callback Guard"
    description = "Executes custom validation logic through a registered handler"

    def validate_config(self, params: list[str]) -> list[str]:
        if not params:
            return ["Callback name must be specified"]
        errors = []
        if len(params) > 1:
            errors.append("Only one callback name should be specified")
        try:
            validate_callback_name(params[0])
        except NameValidationError as e:
            errors.append(e.message)
        return errors

    @property
    def callback_name(self) -> str:
        return self.params[0].strip() if self.params else ""

    async def check(
        self,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> GuardResult:
        callback_name = self.callback_name
        if self._callbacks is None or not self._callbacks.has_handler(callback_name):
            return await self.failure(
                f'No callback registered for "{callback_name}"',
                "no_callback_registered",
                {"callback_name": callback_name},
            )

        try:
            raw = await self._callbacks.invoke(callback_name, entity_id, actor_id, context)
        except CallbackNotRegisteredError:
            return await self.failure(
                f'No callback registered for "{callback_name}"',
                "no_callback_registered",
                {"callback_name": callback_name},
            )
        except Exception as e:
            return await self.failure(
                f'Callback "{callback_name}" raised an error: {e}',
                "callback_error",
                {"callback_name": callback_name, "error": str(e)},
            )

        if isinstance(raw, GuardResult):
            if raw.allowed:
                return await self.success(raw.message, raw.data)
            return await self.failure(raw.message, raw.reason_code, raw.data)

        try:
            payload = CallbackResultPayload.model_validate(raw)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in err['loc']) or 'result'}: {err['msg']}"
                for err in e.errors()
            ]
            return await self.failure(
                f"Invalid callback result: {', '.join(errors)}",
                "invalid_callback_result",
                {
                    "callback_name": callback_name,
                    "errors": errors,
                    "result": repr(raw),
                },
            )

        if payload.allowed:
            return await self.success(payload.message, payload.data)
        return await self.failure(
            payload.message,
            payload.reason_code or "callback_failed",
            payload.data,
        )
