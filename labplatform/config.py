"""Configuration with pydantic-settings.

All values are read from environment variables (or a local ``.env`` file).
``get_settings`` fails fast when a required variable such as DATABASE_URL is
missing.

Usage:
    from labplatform.config import get_settings

    settings = get_settings()
"""

from functools import lru_cache
import tempfile
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings, SettingsConfigDict


class BaseSettings(PydanticBaseSettings):
    """Base application settings.

    All fields here are optional with sensible defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    service_name: str = Field(
        default="labplatform",
        description="Service name for structured logging",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


def database_url_field(required: bool = True):
    """Database URL field definition."""
    if required:
        return Field(
            ...,
            description="Async SQLAlchemy connection URL",
            examples=["postgresql+asyncpg://user:pass@db:5432/labplatform"],
        )
    return Field(
        default=None,
        description="Async SQLAlchemy connection URL (optional)",
    )


class Settings(BaseSettings):
    """Provisioning pipeline settings."""

    database_url: str = database_url_field()

    # External tools
    terraform_binary: str = Field(default="terraform", description="Terraform executable")
    terragrunt_binary: str = Field(default="terragrunt", description="Terragrunt executable")
    git_binary: str = Field(default="git", description="Git executable")

    # Working directories
    terraform_work_dir: str = Field(
        default="/tmp/terraform",
        description="Root of per-request Terraform working directories",
    )
    git_work_dir: str = Field(
        default_factory=tempfile.gettempdir,
        description="Parent directory for ephemeral config-store clones",
    )

    # Config store
    git_commit_author_name: str = Field(default="labplatform", description="Commit author name")
    git_commit_author_email: str = Field(
        default="labplatform@localhost",
        description="Commit author email",
    )
    gitops_required: bool = Field(
        default=False,
        description="Fail provisioning when the pending config commit fails",
    )

    # Provisioning
    stage_timeout_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for each Terraform stage (None = wait indefinitely)",
    )
    max_concurrent_provisioning: int = Field(
        default=4,
        ge=1,
        description="Max provisioning runs executing at the same time",
    )

    # Notifications
    notification_webhook_url: str | None = Field(
        default=None,
        description="Webhook receiving notification events (logging sink when unset)",
    )
    notification_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Webhook request timeout in seconds",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Raises ValidationError on first call if required env vars are missing.
    """
    return Settings()
