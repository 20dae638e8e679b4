"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import time
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.business_hours import validate_break, validate_breaks_do_not_overlap
from .domain.models import BusinessHours, DayHours, BreakTime, WEEKDAY_NAMES, parse_time_of_day


def _validate_time_string(value: str) -> str:
    try:
        parse_time_of_day(value)
    except ValueError as exc:
        raise ValueError(f"Expected a time in HH:MM format, got {value!r}") from exc
    return value


class BackendConfig(BaseModel):
    """Connection settings for the hosted booking backend."""
    url: str
    bookings_table: str = "bookings"
    tenants_table: str = "tenants"
    timeout_seconds: int = 30

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Backend url must start with http:// or https://, got {value!r}")
        return value.rstrip("/")


class SchedulingConfig(BaseModel):
    """Grid and edit settings for the agenda."""
    granularity_minutes: int = 15
    min_duration_minutes: int = 15
    max_duration_minutes: int = 480
    grid_margin_minutes: int = 60
    grid_start: str = "07:00"
    grid_end: str = "22:00"
    max_visible_columns: int = 3

    @field_validator("granularity_minutes")
    @classmethod
    def validate_granularity(cls, value: int) -> int:
        """Rows must tile an hour exactly."""
        if value <= 0 or 60 % value != 0:
            raise ValueError(f"granularity_minutes must divide 60, got {value}")
        return value

    @field_validator("min_duration_minutes", "max_duration_minutes", "max_visible_columns")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be greater than zero")
        return value

    @field_validator("grid_start", "grid_end")
    @classmethod
    def validate_grid_time(cls, value: str) -> str:
        return _validate_time_string(value)

    @model_validator(mode="after")
    def validate_ranges(self) -> "SchedulingConfig":
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError("min_duration_minutes must not exceed max_duration_minutes")
        if parse_time_of_day(self.grid_start) >= parse_time_of_day(self.grid_end):
            raise ValueError("grid_start must be earlier than grid_end")
        return self

    def get_grid_start(self) -> time:
        return parse_time_of_day(self.grid_start)

    def get_grid_end(self) -> time:
        return parse_time_of_day(self.grid_end)

    def grid_options(self) -> dict:
        """Keyword arguments for the slot grid generator."""
        return {
            "margin_minutes": self.grid_margin_minutes,
            "lower_bound": self.get_grid_start(),
            "upper_bound": self.get_grid_end(),
        }

    def controller_options(self) -> dict:
        """Keyword arguments for the edit controller."""
        return {
            "increment_minutes": self.granularity_minutes,
            "min_duration_minutes": self.min_duration_minutes,
            "max_duration_minutes": self.max_duration_minutes,
        }


class BreakConfig(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _validate_time_string(value)


class DayHoursConfig(BaseModel):
    """Opening hours of one weekday in the local override."""
    open: str = "09:00"
    close: str = "18:00"
    closed: bool = False
    breaks: List[BreakConfig] = Field(default_factory=list)

    @field_validator("open", "close")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _validate_time_string(value)

    @model_validator(mode="after")
    def validate_order(self) -> "DayHoursConfig":
        """Ensure an open day opens before it closes and its breaks fit inside."""
        if not self.closed and parse_time_of_day(self.open) >= parse_time_of_day(self.close):
            raise ValueError(f"open ({self.open}) must be earlier than close ({self.close})")
        if not self.closed:
            day = self.to_day_hours()
            for break_time in day.breaks:
                validate_break(break_time, day.open, day.close)
            validate_breaks_do_not_overlap(day.breaks)
        return self

    def to_day_hours(self) -> DayHours:
        return DayHours(
            open=parse_time_of_day(self.open),
            close=parse_time_of_day(self.close),
            closed=self.closed,
            breaks=tuple(
                BreakTime(start=parse_time_of_day(b.start), end=parse_time_of_day(b.end))
                for b in self.breaks
            ),
        )


class AppConfig(BaseModel):
    """Application configuration."""
    backend: BackendConfig
    tenant_id: str
    timezone: str = "Europe/Amsterdam"
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    business_hours: Optional[Dict[str, DayHoursConfig]] = None

    @field_validator("business_hours")
    @classmethod
    def validate_business_hours(
        cls, value: Optional[Dict[str, DayHoursConfig]]
    ) -> Optional[Dict[str, DayHoursConfig]]:
        """Only weekday names are accepted as keys of the local override."""
        if value is None:
            return value
        normalized: Dict[str, DayHoursConfig] = {}
        for key, day in value.items():
            name = key.strip().lower()
            if name not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown weekday in business_hours: {key!r}")
            normalized[name] = day
        return normalized

    def get_business_hours(self) -> Optional[BusinessHours]:
        """
        Business hours from the local override, or None to use the backend's.

        Weekdays missing from the override keep the default hours.
        """
        if self.business_hours is None:
            return None
        days = list(BusinessHours().days)
        for name, day in self.business_hours.items():
            days[WEEKDAY_NAMES.index(name)] = day.to_day_hours()
        return BusinessHours(days=tuple(days))

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
            ValueError: If config is invalid
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
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    config_path = Path.cwd() / "config.yaml"

    if not config_path.exists():
        # Fall back to the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
