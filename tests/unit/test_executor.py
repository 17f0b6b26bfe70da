"""Tests for multi-unit execution."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from hystiq.core.entities import HVACMode, ManualOverride, OperatingContext
from hystiq.core.executor import ActionType, HVACExecutor


@pytest.fixture
def context():
    return OperatingContext(indoor_temp=19.0, outdoor_temp=5.0)


class TestHeating:
    def test_all_enabled_units_receive_heat(self, options, transport, context):
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.HEAT, context))

        assert [r.entity_id for r in report.results] == [
            "climate.living_room",
            "climate.bedroom",
            "climate.office",
        ]
        assert report.all_succeeded
        assert transport.commands_for("climate.guest") == []

    def test_per_unit_correction(self, options, transport, context):
        asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.HEAT, context))

        assert transport.commands_for("climate.living_room") == [
            ("climate.living_room", HVACMode.HEAT, 21.0, "comfort")
        ]
        assert transport.commands_for("climate.bedroom") == [
            ("climate.bedroom", HVACMode.HEAT, 20.5, "comfort")
        ]

    def test_override_target_and_preset(self, options, transport):
        context = OperatingContext(
            manual_override=ManualOverride(mode=HVACMode.HEAT, temperature=22.0, preset="boost")
        )
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.HEAT, context))

        assert transport.commands_for("climate.bedroom")[0][2:] == (21.5, "boost")
        assert report.results[0].target_temp == 22.0

    def test_failing_unit_does_not_stop_others(self, options, make_transport, context):
        transport = make_transport(failing=("climate.bedroom",))
        executor = HVACExecutor(options, transport)
        report = asyncio.run(executor.execute_mode(HVACMode.HEAT, context))

        assert len(transport.commands) == 3
        assert [r.entity_id for r in report.failed] == ["climate.bedroom"]
        assert len(report.succeeded) == 2
        assert not report.all_succeeded
        assert "unreachable" in report.failed[0].message
        assert executor.stats["commands_failed"] == 1

    def test_rejected_command_is_failure(self, options, context):
        transport = AsyncMock()
        transport.issue_command.side_effect = lambda entity_id, *args: entity_id != "climate.office"
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.HEAT, context))

        assert [r.entity_id for r in report.failed] == ["climate.office"]
        assert report.failed[0].message == "command rejected"


class TestCooling:
    def test_individual_decisions_per_room(self, options, make_transport, context):
        transport = make_transport(
            sensors={
                "sensor.living_room_temperature": 26.0,
                "sensor.bedroom_temperature": 22.0,
                "sensor.office_temp": 24.0,
            }
        )
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.COOL, context))

        actions = {r.entity_id: r.action for r in report.results}
        assert actions == {
            "climate.living_room": ActionType.COOL,
            "climate.bedroom": ActionType.OFF,
            "climate.office": ActionType.UNCHANGED,
        }
        assert transport.commands_for("climate.living_room") == [
            ("climate.living_room", HVACMode.COOL, 24.0, "windFree")
        ]
        assert transport.commands_for("climate.bedroom") == [
            ("climate.bedroom", HVACMode.OFF, None, None)
        ]
        assert transport.commands_for("climate.office") == []
        assert report.all_succeeded

    def test_sensor_read_failure_is_isolated(self, options, make_transport, context):
        transport = make_transport(sensors={"sensor.living_room_temperature": 26.0})
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.COOL, context))

        assert [r.entity_id for r in report.succeeded] == ["climate.living_room"]
        assert {r.entity_id for r in report.failed} == {"climate.bedroom", "climate.office"}
        assert all("sensor read failed" in r.message for r in report.failed)

    def test_heat_override_temperature_not_used_for_cooling(self, options, make_transport):
        transport = make_transport(sensors={"sensor.living_room_temperature": 26.0})
        context = OperatingContext(
            manual_override=ManualOverride(mode=HVACMode.HEAT, temperature=28.0)
        )
        asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.COOL, context))

        assert transport.commands_for("climate.living_room")[0][2] == 24.0


class TestOff:
    def test_off_goes_to_every_enabled_unit(self, options, transport, context):
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.OFF, context))

        assert {c[1] for c in transport.commands} == {HVACMode.OFF}
        assert len(transport.commands) == 3
        assert all(r.action == ActionType.OFF for r in report.results)

    def test_no_enabled_units(self, make_options, transport, context):
        options = make_options(hvac_entities=[{"entity_id": "climate.guest", "enabled": False}])
        report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.OFF, context))

        assert report.results == []
        assert report.all_succeeded
        assert transport.commands == []

    def test_auto_is_not_executable(self, options, transport, context):
        with pytest.raises(ValueError):
            asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.AUTO, context))


def test_report_as_dict(options, transport, context):
    report = asyncio.run(HVACExecutor(options, transport).execute_mode(HVACMode.HEAT, context))
    data = report.as_dict()
    assert data["mode"] == "heat"
    assert data["units"][1] == {
        "entity_id": "climate.bedroom",
        "action": "heat",
        "success": True,
        "target_temp": 20.5,
        "message": "ok",
    }
