"""Configuration management for HystiQ."""

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from hystiq.core.entities import SystemMode
from hystiq.core.exceptions import ConfigurationError


class _Section(BaseModel):
    """Accepts both snake_case and the camelCase keys of existing YAML files."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class TemperatureThresholds(_Section):
    """Hysteresis band and outdoor operating range for one mode."""

    indoor_min: float = Field(ge=-50, le=60)
    indoor_max: float = Field(ge=-50, le=60)
    outdoor_min: float = Field(ge=-50, le=60)
    outdoor_max: float = Field(ge=-50, le=60)

    @model_validator(mode="after")
    def _check_ordering(self) -> "TemperatureThresholds":
        if self.indoor_min >= self.indoor_max:
            raise ValueError("indoor_min must be less than indoor_max")
        if self.outdoor_min >= self.outdoor_max:
            raise ValueError("outdoor_min must be less than outdoor_max")
        return self

    @property
    def band_width(self) -> float:
        return self.indoor_max - self.indoor_min


class DefrostOptions(_Section):
    temperature_threshold: float
    period_seconds: int = Field(gt=0)
    duration_seconds: int = Field(gt=0)


class HeatingOptions(_Section):
    temperature: float = Field(ge=10, le=35)
    preset_mode: str = "comfort"
    temperature_thresholds: TemperatureThresholds
    defrost: DefrostOptions | None = None


class CoolingOptions(_Section):
    temperature: float = Field(ge=15, le=35)
    preset_mode: str = "comfort"
    temperature_thresholds: TemperatureThresholds


class ActiveHours(_Section):
    """Daily operating window. Inclusive on both ends, wraps past midnight if start > end."""

    start: int = Field(ge=0, le=23)
    start_weekday: int = Field(ge=0, le=23)
    end: int = Field(ge=0, le=23)


class HvacEntityConfig(_Section):
    """A single controllable indoor unit."""

    entity_id: str
    enabled: bool = True
    defrost: bool = False
    temperature_correction: float = 0.0
    temperature_sensor: str | None = None

    @field_validator("entity_id")
    @classmethod
    def _check_entity_id(cls, value: str) -> str:
        if "." not in value:
            raise ValueError('entity_id must be in format "domain.entity"')
        return value

    @property
    def room_sensor(self) -> str:
        """Sensor reporting this unit's own room temperature."""
        if self.temperature_sensor:
            return self.temperature_sensor
        object_id = self.entity_id.split(".", 1)[1]
        return f"sensor.{object_id}_temperature"


class HVACOptions(_Section):
    temp_sensor: str
    outdoor_sensor: str
    system_mode: SystemMode = SystemMode.AUTO
    hvac_entities: list[HvacEntityConfig] = Field(default_factory=list)
    heating: HeatingOptions
    cooling: CoolingOptions
    active_hours: ActiveHours | None = None
    evaluation_cache_ms: int = Field(default=100, ge=0, le=5000)
    state_check_interval_seconds: int = Field(default=300, ge=0)

    @field_validator("temp_sensor", "outdoor_sensor")
    @classmethod
    def _check_sensor(cls, value: str) -> str:
        if not value.startswith("sensor."):
            raise ValueError("temperature sensors must be sensor entities")
        return value

    @property
    def enabled_entities(self) -> list[HvacEntityConfig]:
        return [e for e in self.hvac_entities if e.enabled]


class AppOptions(_Section):
    log_level: LogLevel = LogLevel.INFO


_ROOT_ALIASES = {"appOptions": "app_options", "hvacOptions": "hvac_options"}


class HystiqSettings(BaseSettings):
    """Main configuration for HystiQ."""

    model_config = SettingsConfigDict(
        env_prefix="HYSTIQ_", env_nested_delimiter="__", extra="ignore"
    )

    app_options: AppOptions = Field(default_factory=AppOptions)
    hvac_options: HVACOptions

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HystiqSettings":
        """Build settings from a raw mapping, raising ConfigurationError on bad input."""
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")
        normalized = {_ROOT_ALIASES.get(k, k): v for k, v in data.items()}
        try:
            return cls(**normalized)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid configuration at {location or '<root>'}: {first.get('msg')}",
                field=location or None,
            ) from e

    @classmethod
    def from_yaml(cls, path: Path) -> "HystiqSettings":
        """Load configuration from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        return cls.from_dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for internal use."""
        return self.model_dump(mode="json")
