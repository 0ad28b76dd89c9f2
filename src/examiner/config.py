"""Configuration management for the examiner."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from examiner.errors import ModelNotConfiguredError

MODEL_NOT_CONFIGURED_ERROR = "Model not configured. Set EXAMINER_MODEL (e.g., 'openai:gpt-4o-mini')."


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXAMINER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Assessment service
    model: str | None = Field(default=None, description="Assessment model in provider:model form")
    api_key: str | None = Field(default=None, description="API key for the model provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    max_tokens: int = Field(default=1024, description="Maximum tokens per assessment reply")
    timeout_seconds: float = Field(default=30, description="Timeout for one assessment request in seconds")

    # Session engine
    variant: str = Field(default="a2", description="Exam variant name")
    duration_seconds: int | None = Field(default=None, description="Override of the variant's time limit")
    tick_seconds: float = Field(default=1.0, description="Clock tick interval in seconds")
    auto_listen: bool = Field(default=False, description="Start listening after each examiner line")

    # Storage and logging
    home: Path = Field(default=Path("~/.examiner"), description="Directory holding the progress profile")
    log_level: str = Field(default="INFO", description="Log level")

    def resolve_home(self) -> Path:
        return self.home.expanduser().resolve()

    def require_model(self) -> str:
        if not self.model or not self.model.strip():
            raise ModelNotConfiguredError(MODEL_NOT_CONFIGURED_ERROR)
        return self.model.strip()


def get_settings(**overrides: object) -> Settings:
    """Build settings from the environment, ``.env`` and explicit overrides."""
    values = {key: value for key, value in overrides.items() if value is not None}
    return Settings(**values)  # type: ignore[arg-type]
