"""Configuration management for Ticketforge.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Environment variables (TICKETFORGE_* prefix)
2. TOML configuration file, or keyword arguments passed to the
   TicketforgeConfig constructor
3. Default values defined in this module

Example TOML configuration:
    [orchestrator]
    task_timeout_seconds = 45
    auto_process_tickets = true

Example environment variable override:
    TICKETFORGE_DATABASE__URL="sqlite+aiosqlite:////var/lib/ticketforge/tickets.db"
    TICKETFORGE_ORCHESTRATOR__TASK_TIMEOUT_SECONDS=60
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_TASK_TIMEOUT_SECONDS = 30.0


class DatabaseConfig(BaseSettings):
    """Ticket database connection configuration.

    Attributes:
        url: SQLAlchemy database URL with an async driver
        echo: Enable SQL query logging
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKETFORGE_DATABASE__",
        extra="forbid",
    )

    url: str = Field(
        default="sqlite+aiosqlite:///.ticketforge/tickets.db",
        description="Ticket database connection URL",
    )
    echo: bool = Field(default=False)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKETFORGE_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=50, ge=1, le=1000)
    retention_count: int = Field(default=10, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class OrchestratorConfig(BaseSettings):
    """Task queue scheduler configuration.

    ``task_timeout_seconds`` is deliberately not range-checked here: the
    scheduler replaces non-positive values with the default and logs a
    warning instead of failing initialization.

    Attributes:
        task_timeout_seconds: Idle seconds before a picked task is escalated
        auto_process_tickets: When False, new ai_to_human tickets wait for
            human approval in ``pending`` status
        watchdog_interval_seconds: Seconds between background stall checks
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKETFORGE_ORCHESTRATOR__",
        extra="forbid",
    )

    task_timeout_seconds: float = Field(default=DEFAULT_TASK_TIMEOUT_SECONDS)
    auto_process_tickets: bool = Field(default=False)
    watchdog_interval_seconds: int = Field(default=10, ge=1, le=3600)


class LLMConfig(BaseSettings):
    """Language model service configuration.

    Attributes:
        url: Base URL of an OpenAI-compatible chat completions server
        model: Model name sent with every request
        timeout_seconds: Request timeout in seconds
        max_tokens: Maximum tokens to generate per reply
        temperature: Default sampling temperature
        max_retries: Retry attempts for transient failures
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKETFORGE_LLM__",
        extra="forbid",
    )

    url: str = Field(default="http://127.0.0.1:1234")
    model: str = Field(default="ministral-3-14b-reasoning")
    timeout_seconds: int = Field(default=60, ge=1, le=900)
    max_tokens: int = Field(default=2048, ge=1, le=65536)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_retries: int = Field(default=2, ge=0, le=10)


class TicketforgeConfig(BaseSettings):
    """Root configuration for Ticketforge.

    Aggregates all subsystem configurations. Environment variable format for
    nested config:
        TICKETFORGE_<SECTION>__<KEY>=value
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKETFORGE_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Let environment variables override TOML values passed as kwargs."""
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: Path | None = None) -> TicketforgeConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./ticketforge.toml (current directory)
    3. ~/.config/ticketforge/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        TicketforgeConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path = config_path
    else:
        search_paths = [
            Path.cwd() / "ticketforge.toml",
            Path.home() / ".config" / "ticketforge" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    if selected_path is not None:
        with open(selected_path, "rb") as f:
            toml_data = tomli.load(f)

    try:
        return TicketforgeConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(
                f"Invalid configuration in {selected_path}: {e}"
            ) from e
        else:
            raise ValueError(f"Invalid configuration: {e}") from e
