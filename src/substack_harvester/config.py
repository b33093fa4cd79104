"""Configuration with 4-layer resolution: defaults -> YAML -> env -> CLI.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``SUBSTACK_HARVESTER_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class FetchSettings(BaseModel):
    """Per-request retry and transport configuration."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(
        default=1.0, ge=0.0, description="Backoff base; attempt i waits base * 2**i."
    )
    timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Per-request timeout in seconds."
    )
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )


class ProxySettings(BaseModel):
    """Rotating proxy configuration."""

    enabled: bool = False
    urls: list[str] = Field(default_factory=list)


class CollectorSettings(BaseModel):
    """Pagination and fan-out limits for the three collection strategies."""

    latest_batch_size: int = Field(default=10, gt=0)
    latest_page_size: int = Field(default=10, gt=0)
    popular_batch_size: int = Field(default=10, gt=0)
    popular_page_size: int = Field(default=13, gt=0)
    popular_offset_step: int = Field(
        default=12, gt=0, description="Offset advance per page (overlaps by one)."
    )
    popular_max_posts: int = Field(default=50, gt=0)
    popular_top_n: int = Field(default=10, gt=0)
    search_batch_size: int = Field(default=50, gt=0)
    min_subscribers: int = Field(default=5000, ge=0)
    enrich_concurrency: int = Field(
        default=13, gt=0, description="Concurrent newsletter fetches per page."
    )


class OutputSettings(BaseModel):
    """Snapshot artifact output configuration."""

    directory: Path = Path(".")


class LoadSettings(BaseModel):
    """Downstream PostgREST (Supabase) load configuration."""

    url: str | None = None
    key: SecretStr | None = None
    publications_table: str = "users"
    posts_table: str = "posts"
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (4-layer resolution)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Top-level application settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``config.yaml`` or ``--config`` path)
        3. Environment variables (prefixed ``SUBSTACK_HARVESTER_``)
        4. CLI overrides (applied programmatically after loading)
    """

    model_config = SettingsConfigDict(
        env_prefix="SUBSTACK_HARVESTER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    collector: CollectorSettings = Field(default_factory=CollectorSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    database: LoadSettings = Field(default_factory=LoadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings (CLI) > env_settings > dotenv (.env) > yaml > defaults
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "config.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and CLI overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value CLI overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            return cls(**overrides)
        finally:
            cls._config_path_override = None


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message."""
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
