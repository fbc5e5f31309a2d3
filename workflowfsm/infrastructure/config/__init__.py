"""Configuration management."""

from workflowfsm.infrastructure.config.settings import EngineSettings

__all__ = ["EngineSettings"]
