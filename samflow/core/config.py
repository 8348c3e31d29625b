"""
Samflow Configuration Management

Settings for the engine, scheduler, builder and storage with:
- Environment-based configuration
- Type-safe settings with Pydantic
- Per-component sub-configurations
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineConfig(BaseModel):
    """Configuration for the workflow executor."""
    backoff_base: float = Field(default=1.0, gt=0)
    backoff_max: float = Field(default=30.0, gt=0)
    backoff_jitter: float = Field(default=0.2, ge=0, lt=1)
    record_retry_attempts: bool = True
    strict_variables: bool = False

    @model_validator(mode="after")
    def check_backoff(self) -> "EngineConfig":
        if self.backoff_max < self.backoff_base:
            raise ValueError("backoff_max must be >= backoff_base")
        return self


class SchedulerConfig(BaseModel):
    """Configuration for trigger monitoring."""
    tick_interval: float = Field(default=1.0, gt=0)
    process_poll_interval: float = Field(default=2.0, gt=0)
    watch_recursive: bool = True


class BuilderConfig(BaseModel):
    """Configuration for workflow building and validation."""
    max_timeout: float = 3600.0
    max_retry_count: int = 10
    long_timeout_warning: float = 300.0
    high_retry_warning: int = 5
    max_steps_warning: int = 50

    # Completion service
    completion_url: str = "https://api.openai.com/v1/chat/completions"
    completion_model: str = "gpt-4o-mini"
    completion_api_key: Optional[str] = None
    completion_timeout: float = 60.0


class StorageConfig(BaseModel):
    """Configuration for workflow and history storage."""
    backend: Literal["memory", "json"] = "memory"
    data_dir: Path = Field(default=Path("./data/workflows"))
    history_limit: int = Field(default=1000, gt=0)

    @field_validator("data_dir", mode="before")
    @classmethod
    def ensure_path(cls, v: Any) -> Path:
        """Ensure value is converted to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""
    level: LogLevel = LogLevel.INFO
    format: Literal["console", "json"] = "console"


class SamflowConfig(BaseSettings):
    """
    Main Samflow Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with SAMFLOW_
    (e.g., SAMFLOW_ENGINE__BACKOFF_MAX=10).
    """

    host: str = "127.0.0.1"
    port: int = 8080

    engine: EngineConfig = Field(default_factory=EngineConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    builder: BuilderConfig = Field(default_factory=BuilderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "SAMFLOW_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def from_file(cls, config_path: Path) -> "SamflowConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


# Process-wide default used by the CLI and HTTP entry points
_config: Optional[SamflowConfig] = None


def get_config() -> SamflowConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = SamflowConfig()
    return _config


def set_config(config: SamflowConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset configuration to defaults."""
    global _config
    _config = None
