"""RoleGuard: actor must hold at least one of the configured roles."""

from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.models.guard_result import GuardContext, GuardResult


class RoleGuard(Guard):
    """Allows the transition when the actor holds any listed role.

    Configuration: ``RoleGuard:administrator,editor``.
    """

    name = "Role Guard"
    description = "Checks if the actor has one of the required roles"

    def validate_config(self, params: list[str]) -> list[str]:
        if not params:
            return ["At least one role must be specified"]
        return [
            f"Invalid role name: {role!r}"
            for role in params
            if not isinstance(role, str) or not role.strip()
        ]

    @property
    def required_roles(self) -> list[str]:
        return [role.strip() for role in self.params]

    async def check(
        self,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> GuardResult:
        if not await self._actor_exists(actor_id):
            return await self.failure("Invalid user", "invalid_user", {"actor_id": actor_id})

        actor_roles = await self._authorization.actor_roles(actor_id)
        required = self.required_roles
        matched = [role for role in required if role in actor_roles]
        if not matched:
            # actor_roles may not enumerate every role the backend recognizes
            for role in required:
                if await self._authorization.actor_has_role(actor_id, role):
                    matched.append(role)

        data = {
            "actor_roles": list(actor_roles),
            "required_roles": required,
        }
        if matched:
            return await self.success(
                f"User has required role: {', '.join(matched)}",
                {**data, "matched_roles": matched},
            )

        held = ", ".join(actor_roles) if actor_roles else "none"
        return await self.failure(
            f"User does not have required role. Required: {', '.join(required)}. "
            f"User has: {held}",
            "insufficient_role",
            data,
        )
