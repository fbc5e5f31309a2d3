"""OwnerGuard: actor must be the owner recorded on the entity."""

from workflowfsm.domain.guards.base import Guard
from workflowfsm.domain.models.guard_result import GuardContext, GuardResult


class OwnerGuard(Guard):
    """Compares a field of the caller-supplied entity data with the actor id.

    Configuration: ``OwnerGuard:created_by``. The comparison is on string
    form, so an owner stored as ``42`` matches actor ``"42"``.
    """

    name = "Owner Guard"
    description = "Checks if the actor is the owner of the entity"

    def validate_config(self, params: list[str]) -> list[str]:
        if not params:
            return ["Owner field name must be specified"]
        errors = []
        if len(params) > 1:
            errors.append("Only one owner field should be specified")
        if not isinstance(params[0], str) or not params[0].strip():
            errors.append("Owner field name cannot be empty")
        return errors

    @property
    def owner_field(self) -> str:
        return self.params[0].strip() if self.params else ""

    async def check(
        self,
        entity_id: str,
        actor_id: str,
        context: GuardContext,
    ) -> GuardResult:
        entity_data = context.entity_data
        if not entity_data:
            return await self.failure(
                "Entity data not provided in context",
                "missing_entity_data",
                {"entity_id": entity_id},
            )

        owner_field = self.owner_field
        owner_id = entity_data.get(owner_field)
        if owner_id is None:
            return await self.failure(
                f'Owner field "{owner_field}" not found in entity data',
                "owner_field_not_found",
                {
                    "owner_field": owner_field,
                    "entity_id": entity_id,
                    "available_fields": sorted(entity_data),
                },
            )

        data = {
            "actor_id": actor_id,
            "owner_id": str(owner_id),
            "owner_field": owner_field,
            "entity_id": entity_id,
        }
        if str(owner_id) == str(actor_id):
            return await self.success("User is the owner of this entity", data)
        return await self.failure("User is not the owner of this entity", "not_owner", data)
