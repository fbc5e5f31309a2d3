"""CapabilityGuard: actor must hold a named capability."""

from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.models.guard_result import GuardContext, GuardResult


class CapabilityGuard(Guard):
    """Allows the transition when the actor holds the configured capability.

    Several capabilities may be listed (``CapabilityGuard:edit_posts,publish_posts``);
    holding any one of them is enough.
    """

    name = "Capability Guard"
    description = "Checks if the actor has one of the required capabilities"

    def validate_config(self, params: list[str]) -> list[str]:
        if not params:
            return ["At least one capability must be specified"]
        errors = []
        for capability in params:
            if not isinstance(capability, str) or not capability.strip():
                errors.append("Capability name cannot be empty")
        return errors

    async def check(
        self,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> GuardResult:
        if not await self._actor_exists(actor_id):
            return await self.failure("Invalid user", "invalid_user", {"actor_id": actor_id})

        required = [capability.strip() for capability in self.params]
        for capability in required:
            if await self._authorization.actor_has_capability(actor_id, capability):
                return await self.success(
                    f"User has required capability: {capability}",
                    {
                        "required_capabilities": required,
                        "matched_capability": capability,
                        "actor_id": actor_id,
                    },
                )

        return await self.failure(
            f"User does not have required capability. Required: {', '.join(required)}",
            "insufficient_capability",
            {"required_capabilities": required, "actor_id": actor_id},
        )
