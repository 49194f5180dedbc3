# config.py
# Runtime configuration, read from the environment (and a local .env file).
# Secrets are only ever read from the environment; nothing here persists them.

import os
from collections.abc import Mapping
from enum import Enum
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError


class ConfigError(Exception):
    """Raised when the environment holds an unusable configuration."""


class ProviderType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class Settings(BaseModel):
    """All knobs for the model clients and the agent loop bounds."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderType = ProviderType.OLLAMA

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"

    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_model: str = "claude-sonnet-4-6"

    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"

    max_retries: int = Field(default=2, ge=0)
    max_observations: int = Field(default=5, ge=0)
    max_plan_depth: int = Field(default=4, ge=1)
    step_delay: float = Field(default=0.3, ge=0)
    launch_delay: float = Field(default=1.5, ge=0)
    model_timeout: float = Field(default=60.0, gt=0)
    action_timeout: float = Field(default=15.0, gt=0)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @property
    def model_name(self) -> str:
        """Model identifier for the active provider."""
        match self.provider:
            case ProviderType.OPENAI:
                return self.openai_model
            case ProviderType.ANTHROPIC:
                return self.anthropic_model
            case ProviderType.OLLAMA:
                return self.ollama_model

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> "Settings":
        """
        Build settings from environment variables.

        When `environ` is omitted, .env is loaded first and os.environ is used.
        Keyword overrides (e.g. from CLI flags) win over the environment.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        values: dict[str, object] = {}
        for field_name, variable in _ENV_VARIABLES.items():
            raw = environ.get(variable)
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()
        values.update({key: value for key, value in overrides.items() if value is not None})

        try:
            return cls.model_validate(values)
        except PydanticValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc


_ENV_VARIABLES = {
    "provider": "ASSISTIVE_PROVIDER",
    "openai_api_key": "OPENAI_API_KEY",
    "openai_base_url": "OPENAI_BASE_URL",
    "openai_model": "OPENAI_MODEL",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "anthropic_base_url": "ANTHROPIC_BASE_URL",
    "anthropic_model": "ANTHROPIC_MODEL",
    "ollama_base_url": "OLLAMA_BASE_URL",
    "ollama_model": "OLLAMA_MODEL",
    "max_retries": "ASSISTIVE_MAX_RETRIES",
    "max_observations": "ASSISTIVE_MAX_OBSERVATIONS",
    "max_plan_depth": "ASSISTIVE_MAX_PLAN_DEPTH",
    "step_delay": "ASSISTIVE_STEP_DELAY",
    "launch_delay": "ASSISTIVE_LAUNCH_DELAY",
    "model_timeout": "ASSISTIVE_MODEL_TIMEOUT",
    "action_timeout": "ASSISTIVE_ACTION_TIMEOUT",
    "log_level": "ASSISTIVE_LOG_LEVEL",
}
