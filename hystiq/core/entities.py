"""Core entities and common types for HystiQ."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SystemMode(str, Enum):
    AUTO = "auto"
    HEAT_ONLY = "heat_only"
    COOL_ONLY = "cool_only"
    OFF = "off"


class HVACMode(str, Enum):
    HEAT = "heat"
    COOL = "cool"
    OFF = "off"
    AUTO = "auto"


class HVACState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    HEATING = "heating"
    COOLING = "cooling"
    DEFROSTING = "defrosting"


class ReasonCode(str, Enum):
    """Why an evaluation came out the way it did, in precedence order."""

    TURN_OFF = "turn_off"
    DEFROST_REQUIRED = "defrost_required"
    HEATING_REQUIRED = "heating_required"
    COOLING_REQUIRED = "cooling_required"
    NO_ACTION_NEEDED = "no_action_needed"


OPERATING_STATES = frozenset({HVACState.HEATING, HVACState.COOLING, HVACState.DEFROSTING})


def heat_allowed(mode: SystemMode) -> bool:
    return mode in (SystemMode.AUTO, SystemMode.HEAT_ONLY)


def cool_allowed(mode: SystemMode) -> bool:
    return mode in (SystemMode.AUTO, SystemMode.COOL_ONLY)


class ManualOverride(BaseModel):
    """An operator directive. It stays in force until explicitly cleared."""

    mode: HVACMode
    temperature: float | None = None
    preset: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class OperatingContext(BaseModel):
    indoor_temp: float | None = None
    outdoor_temp: float | None = None
    current_hour: int = Field(default=0, ge=0, le=23)
    is_weekday: bool = True
    system_mode: SystemMode = SystemMode.AUTO
    manual_override: ManualOverride | None = None
    last_defrost: datetime | None = None

    @property
    def has_temperatures(self) -> bool:
        return self.indoor_temp is not None and self.outdoor_temp is not None


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Outcome of a single evaluation. Never persisted."""

    should_heat: bool
    should_cool: bool
    needs_defrost: bool
    should_turn_off: bool
    reason_code: ReasonCode
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "should_heat": self.should_heat,
            "should_cool": self.should_cool,
            "needs_defrost": self.needs_defrost,
            "should_turn_off": self.should_turn_off,
            "reason_code": self.reason_code.value,
            "details": self.details,
        }


class HVACStatus(BaseModel):
    current_state: HVACState
    context: OperatingContext
    can_heat: bool
    can_cool: bool
    system_mode: SystemMode
    last_update: datetime = Field(default_factory=lambda: datetime.now(UTC))
