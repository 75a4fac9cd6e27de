"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Dict, List

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.exceptions import ConfigError, ValidationError
from .domain.models import WEEKDAY_NAMES, WeeklyTemplate, Window


def _default_schedule() -> Dict[str, List[str]]:
    # Weekday evenings, 5pm to 8pm
    return {day: ["17:00-20:00"] for day in WEEKDAY_NAMES[:5]}


class DefaultsConfig(BaseModel):
    """Default settings for slot queries."""
    slot_duration_minutes: int = 30
    lookahead_days: int = 7

    @field_validator("slot_duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure slot duration is a positive multiple of 5 minutes."""
        if value <= 0 or value % 5:
            raise ValueError(f"slot_duration_minutes must be a positive multiple of 5, got {value}")
        return value

    @field_validator("lookahead_days")
    @classmethod
    def validate_lookahead(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("lookahead_days must be greater than zero")
        return value


class RetryConfig(BaseModel):
    """Bounded retry of read-only store calls."""
    attempts: int = 3
    backoff_seconds: float = 0.1

    @field_validator("attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("attempts must be at least 1")
        return value

    @field_validator("backoff_seconds")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("backoff_seconds must not be negative")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "America/New_York"
    database_url: str = "sqlite:///coachslots.db"
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    schedule: Dict[str, List[str]] = Field(default_factory=_default_schedule)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    log_level: str = "WARNING"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except (ValueError, LookupError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        """Normalise weekday names and reject unknown days."""
        normalized: Dict[str, List[str]] = {}
        for day, windows in value.items():
            key = day.strip().lower()
            if key not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown weekday in schedule: '{day}'")
            if key in normalized:
                raise ValueError(f"Weekday listed twice in schedule: '{day}'")
            normalized[key] = list(windows or [])
        return normalized

    @model_validator(mode="after")
    def validate_template(self) -> "AppConfig":
        """Ensure the schedule builds a valid weekly template."""
        try:
            self.build_template()
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        return self

    def build_template(self) -> WeeklyTemplate:
        """Build the weekly availability template from the schedule."""
        return WeeklyTemplate(
            windows={
                WEEKDAY_NAMES.index(day): tuple(Window.parse(text) for text in windows)
                for day, windows in self.schedule.items()
            },
            timezone=self.timezone,
        )

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigError: If the file is not valid YAML or not a mapping
            pydantic.ValidationError: If values are invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path


def load_config(config_path: Path | None = None) -> AppConfig:
    """
    Load the config file if one exists, otherwise fall back to defaults.
    """
    path = config_path or get_default_config_path()
    if config_path is None and not path.exists():
        return AppConfig()
    return AppConfig.load_from_yaml(path)
