"""Configuration settings using pydantic-settings."""

from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Configuration settings for the workflow engine.

    Settings can be loaded from environment variables or passed as a dictionary.
    Environment variables should be prefixed with 'WORKFLOWFSM_'
    (e.g., WORKFLOWFSM_LOCK_TIMEOUT_SECONDS=5).

    Example:
        ```python
        # From environment variables
        settings = EngineSettings()

        # From keyword arguments
        settings = EngineSettings(machine_delete_policy="cascade")

        # From dictionary
        settings = EngineSettings.from_dict({"log_level": "DEBUG", "json_logs": False})
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOWFSM_",
        case_sensitive=False,
        extra="ignore",
    )

    # Observability configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON; False switches to the console renderer",
    )
    redact_fields: list[str] = Field(
        default_factory=lambda: ["password", "token", "secret", "api_key"],
        description="Keys whose values are redacted from logged entity data and metadata",
    )

    # TransitionEngine configuration
    lock_timeout_seconds: float | None = Field(
        default=None,
        description="Maximum wait for the per-entity lock; None waits indefinitely",
        gt=0,
    )
    history_default_limit: int = Field(
        default=50,
        description="Default number of entries returned by machine and actor history (0 = all)",
        ge=0,
    )

    # DefinitionStore configuration
    definition_cache_ttl_seconds: float = Field(
        default=0,
        description="TTL of cached definition lookups in seconds; 0 disables caching",
        ge=0,
    )

    # MachineRegistry configuration
    machine_delete_policy: Literal["restrict", "cascade"] = Field(
        default="restrict",
        description="restrict refuses to delete machines with history; cascade purges it",
    )

    # MongoDB configuration
    mongodb_url: str | None = Field(
        default=None,
        description="MongoDB connection string; None keeps the in-memory stores",
    )
    mongodb_database: str = Field(
        default="workflowfsm",
        description="MongoDB database name",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "EngineSettings":
        """Create settings from a dictionary.

        Args:
            config: Dictionary with configuration values.

        Returns:
            EngineSettings instance.
        """
        return cls(**config)
