"""Shared fixtures for HystiQ unit tests."""

import copy
from datetime import UTC, datetime, timedelta

import pytest

from hystiq.config import HVACOptions
from hystiq.core.exceptions import HVACOperationError

BASE_CONFIG = {
    "temp_sensor": "sensor.indoor_temperature",
    "outdoor_sensor": "sensor.outdoor_temperature",
    "system_mode": "auto",
    "hvac_entities": [
        {"entity_id": "climate.living_room", "enabled": True, "defrost": True},
        {"entity_id": "climate.bedroom", "enabled": True, "temperature_correction": -0.5},
        {
            "entity_id": "climate.office",
            "enabled": True,
            "temperature_sensor": "sensor.office_temp",
        },
        {"entity_id": "climate.guest", "enabled": False},
    ],
    "heating": {
        "temperature": 21.0,
        "preset_mode": "comfort",
        "temperature_thresholds": {
            "indoor_min": 19.7,
            "indoor_max": 20.2,
            "outdoor_min": -10.0,
            "outdoor_max": 15.0,
        },
    },
    "cooling": {
        "temperature": 24.0,
        "preset_mode": "windFree",
        "temperature_thresholds": {
            "indoor_min": 23.0,
            "indoor_max": 25.0,
            "outdoor_min": 10.0,
            "outdoor_max": 45.0,
        },
    },
    "evaluation_cache_ms": 100,
    "state_check_interval_seconds": 0,
}

DEFROST = {"temperature_threshold": 0.0, "period_seconds": 7200, "duration_seconds": 300}


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeTransport:
    """In-memory transport recording every command."""

    def __init__(self, sensors: dict[str, float] | None = None, failing: tuple[str, ...] = ()):
        self.sensors = dict(sensors or {})
        self.failing = set(failing)
        self.commands: list[tuple] = []

    async def read_sensor(self, entity_id: str) -> float:
        if entity_id not in self.sensors:
            raise HVACOperationError(f"{entity_id} unavailable", entity_id=entity_id)
        return self.sensors[entity_id]

    async def issue_command(self, entity_id, mode, target_temp=None, preset=None) -> bool:
        self.commands.append((entity_id, mode, target_temp, preset))
        if entity_id in self.failing:
            raise HVACOperationError("unit unreachable", entity_id=entity_id)
        return True

    def commands_for(self, entity_id: str) -> list[tuple]:
        return [c for c in self.commands if c[0] == entity_id]


@pytest.fixture
def hvac_config():
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def make_options(hvac_config):
    """Build HVACOptions from the base config with top-level overrides."""

    def _make(defrost: bool = False, **overrides) -> HVACOptions:
        data = {**hvac_config, **overrides}
        if defrost:
            data["heating"] = {**data["heating"], "defrost": dict(DEFROST)}
        return HVACOptions.model_validate(data)

    return _make


@pytest.fixture
def options(make_options):
    return make_options()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def transport():
    return FakeTransport(
        sensors={
            "sensor.indoor_temperature": 21.0,
            "sensor.outdoor_temperature": 5.0,
        }
    )
