"""Input validation utilities for definition identifiers."""

import re


class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize ValidationError.

        Args:
            message: Human-readable error message.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return error message with field name if available."""
        if self.field:
            return f"Validation error in field '{self.field}': {self.message}"
        return self.message


SLUG_PATTERN = re.compile(r"^[a-z0-9_-]+$")
CALLBACK_NAME_PATTERN = re.compile(r"^[a-z0-9_-]+$", re.IGNORECASE)

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 100
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
ENTITY_TYPE_MAX_LENGTH = 50


def validate_name(value: str, field: str = "name") -> None:
    """Validate a machine or group display name (3 to 100 characters).

    Raises:
        ValidationError: If validation fails.
    """
    if not value or not value.strip():
        raise ValidationError("Name is required", field=field)
    if len(value.strip()) < NAME_MIN_LENGTH:
        raise ValidationError(
            f"Name must be at least {NAME_MIN_LENGTH} characters", field=field
        )
    if len(value.strip()) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must not exceed {NAME_MAX_LENGTH} characters", field=field)


def validate_description(value: str | None, field: str = "description") -> None:
    """Validate an optional description (at most 500 characters)."""
    if value and len(value) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description must not exceed {DESCRIPTION_MAX_LENGTH} characters", field=field
        )


def validate_slug(value: str, field: str = "slug") -> None:
    """Validate a machine, group or module slug.

    Slugs are lowercase letters, digits, underscores and dashes, 3 to 100
    characters long.

    Raises:
        ValidationError: If validation fails.
    """
    if not value or not value.strip():
        raise ValidationError("Slug cannot be empty", field=field)

    value = value.strip()
    if len(value) < SLUG_MIN_LENGTH:
        raise ValidationError(
            f"Slug must be at least {SLUG_MIN_LENGTH} characters long",
            field=field,
        )
    if len(value) > SLUG_MAX_LENGTH:
        raise ValidationError(
            f"Slug must be at most {SLUG_MAX_LENGTH} characters long",
            field=field,
        )
    if not SLUG_PATTERN.match(value):
        raise ValidationError(
            "Slug can only contain lowercase letters, numbers, dashes, and underscores",
            field=field,
        )


def validate_state_slug(value: str, field: str = "state.slug") -> None:
    """Validate a state or transition slug (same charset, no minimum length)."""
    if not value or not value.strip():
        raise ValidationError("Slug cannot be empty", field=field)
    if len(value.strip()) > SLUG_MAX_LENGTH:
        raise ValidationError(
            f"Slug must be at most {SLUG_MAX_LENGTH} characters long",
            field=field,
        )
    if not SLUG_PATTERN.match(value.strip()):
        raise ValidationError(
            "Slug can only contain lowercase letters, numbers, dashes, and underscores",
            field=field,
        )


def validate_entity_type(value: str) -> None:
    """Validate an entity type name such as ``order`` or ``rfq``.

    Raises:
        ValidationError: If validation fails.
    """
    if not value or not value.strip():
        raise ValidationError("Entity type cannot be empty", field="entity_type")
    if len(value.strip()) > ENTITY_TYPE_MAX_LENGTH:
        raise ValidationError(
            f"Entity type must be at most {ENTITY_TYPE_MAX_LENGTH} characters long",
            field="entity_type",
        )
    if not SLUG_PATTERN.match(value.strip()):
        raise ValidationError(
            "Entity type can only contain lowercase letters, numbers, dashes, and underscores",
            field="entity_type",
        )


def validate_callback_name(value: str) -> None:
    """Validate a callback guard handler name.

    Raises:
        ValidationError: If validation fails.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Callback name cannot be empty", field="callback_name")
    if not CALLBACK_NAME_PATTERN.match(value.strip()):
        raise ValidationError(
            "Callback name can only contain letters, numbers, underscores, and dashes",
            field="callback_name",
        )
