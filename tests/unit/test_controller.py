"""Tests for the asyncio controller."""

import asyncio
import logging

import pytest

from hystiq.core.controller import HVACController, parse_temperature
from hystiq.core.entities import HVACMode, HVACState
from hystiq.core.exceptions import StateError


@pytest.fixture
def controller(options, transport, clock):
    return HVACController(options, transport, clock=clock)


@pytest.fixture
def defrost_controller(make_options, make_transport, clock):
    transport = make_transport(
        sensors={"sensor.indoor_temperature": 19.0, "sensor.outdoor_temperature": -5.0}
    )
    return HVACController(make_options(defrost=True), transport, clock=clock)


class TestParseTemperature:
    def test_numbers_and_strings(self):
        assert parse_temperature(21) == 21.0
        assert parse_temperature("20.5") == 20.5
        assert parse_temperature(" 19.75 ") == 19.75

    def test_unusable_values(self):
        for value in (None, "unavailable", "unknown", "", "warm", True):
            assert parse_temperature(value) is None


class TestLifecycle:
    def test_start_reads_initial_sensors(self, controller):
        async def scenario():
            await controller.start()
            status = controller.get_status()
            await controller.stop()
            return status

        status = asyncio.run(scenario())
        assert status["running"]
        assert status["current_state"] == "idle"
        assert status["context"]["indoor_temp"] == 21.0
        assert status["context"]["outdoor_temp"] == 5.0
        assert status["hysteresis_health"]["status"] == "INSUFFICIENT_DATA"
        assert not controller.running

    def test_unreadable_sensors_at_startup(self, options, make_transport, clock):
        controller = HVACController(options, make_transport(), clock=clock)

        async def scenario():
            await controller.start()
            await controller.stop()

        asyncio.run(scenario())
        assert controller.machine.context.indoor_temp is None

    def test_double_start_raises(self, controller):
        async def scenario():
            await controller.start()
            try:
                with pytest.raises(StateError):
                    await controller.start()
            finally:
                await controller.stop()

        asyncio.run(scenario())

    def test_calls_after_stop_raise(self, controller):
        async def scenario():
            await controller.start()
            await controller.stop()
            with pytest.raises(StateError):
                await controller.trigger_evaluation()
            with pytest.raises(StateError):
                controller.notify_sensor_change("sensor.indoor_temperature", "19.0")

        asyncio.run(scenario())


class TestCommands:
    def test_send_condition_starts_heating(self, controller, transport):
        async def scenario():
            await controller.start()
            t = await controller.send_condition(indoor=19.0, outdoor=5.0)
            await controller.stop()
            return t

        t = asyncio.run(scenario())
        assert t.state == HVACState.HEATING
        heat = [c for c in transport.commands if c[1] == HVACMode.HEAT]
        assert len(heat) == 3

    def test_unit_failures_keep_state(self, options, make_transport, clock):
        transport = make_transport(
            sensors={"sensor.indoor_temperature": 19.0, "sensor.outdoor_temperature": 5.0},
            failing=("climate.living_room", "climate.bedroom", "climate.office"),
        )
        controller = HVACController(options, transport, clock=clock)

        async def scenario():
            await controller.start()
            await controller.stop()

        asyncio.run(scenario())
        assert controller.machine.current_state == HVACState.HEATING
        assert len(controller.executor.last_report.failed) == 3

    def test_override_errors_reach_caller(self, make_options, transport, clock):
        controller = HVACController(make_options(system_mode="heat_only"), transport, clock=clock)

        async def scenario():
            await controller.start()
            try:
                with pytest.raises(StateError):
                    await controller.manual_override("cool")
                with pytest.raises(StateError):
                    await controller.manual_override("turbo")
                return await controller.manual_override(HVACMode.HEAT, target_temp=22.5)
            finally:
                await controller.stop()

        t = asyncio.run(scenario())
        assert t.state == HVACState.HEATING
        assert transport.commands_for("climate.living_room")[-1][2] == 22.5

    def test_turn_off(self, controller, transport):
        async def scenario():
            await controller.start()
            await controller.manual_override("heat")
            t = await controller.turn_off()
            await controller.stop()
            return t

        t = asyncio.run(scenario())
        assert t.state == HVACState.IDLE
        assert transport.commands[-1][1] == HVACMode.OFF
        assert [c.to_state for c in controller.cycling.history] == ["heat", "off"]


class TestSensorFeed:
    def test_notification_triggers_evaluation(self, controller):
        async def scenario():
            await controller.start()
            controller.notify_sensor_change("sensor.indoor_temperature", "19.0")
            await asyncio.sleep(0)
            await controller.trigger_evaluation()
            state = controller.machine.current_state
            await controller.stop()
            return state

        assert asyncio.run(scenario()) == HVACState.HEATING
        assert controller.machine.context.indoor_temp == 19.0

    def test_unavailable_and_unrelated_values_ignored(self, controller):
        async def scenario():
            await controller.start()
            controller.notify_sensor_change("sensor.indoor_temperature", "unavailable")
            controller.notify_sensor_change("sensor.something_else", "12.0")
            await asyncio.sleep(0)
            await controller.trigger_evaluation()
            await controller.stop()

        asyncio.run(scenario())
        assert controller.machine.context.indoor_temp == 21.0
        assert controller.machine.current_state == HVACState.IDLE

    def test_notification_from_other_thread(self, controller):
        async def scenario():
            await controller.start()
            await asyncio.to_thread(
                controller.notify_sensor_change, "sensor.outdoor_temperature", 30.0
            )
            await asyncio.sleep(0)
            await controller.trigger_evaluation()
            await controller.stop()

        asyncio.run(scenario())
        assert controller.machine.context.outdoor_temp == 30.0


class TestPeriodicCheck:
    def test_periodic_check_logs_cycling_health(self, controller, caplog):
        async def scenario():
            await controller.start()
            with caplog.at_level(logging.INFO, logger="hystiq.analysis.cycling_detector"):
                await controller._periodic_check()
            await controller.stop()

        asyncio.run(scenario())
        messages = [r.getMessage() for r in caplog.records]
        assert any("Hysteresis health: INSUFFICIENT_DATA" in m for m in messages)

    def test_periodic_check_after_stop_is_skipped(self, controller, caplog):
        async def scenario():
            await controller.start()
            await controller.stop()
            with caplog.at_level(logging.WARNING):
                await controller._periodic_check()

        asyncio.run(scenario())
        assert "Periodic evaluation skipped" in caplog.text
        assert "Hysteresis health" not in caplog.text


class TestDefrostTimer:
    def test_timer_cancelled_by_off(self, defrost_controller):
        async def scenario():
            await defrost_controller.start()
            t = await defrost_controller.trigger_evaluation()
            assert t.state == HVACState.DEFROSTING
            timer = defrost_controller._defrost_timer
            assert timer is not None and not timer.done()

            await defrost_controller.turn_off()
            await asyncio.sleep(0)
            cancelled = timer.cancelled()
            await defrost_controller.stop()
            return cancelled

        assert asyncio.run(scenario())
        assert defrost_controller.machine.current_state == HVACState.IDLE

    def test_timer_cancelled_by_cool_override(self, defrost_controller):
        async def scenario():
            await defrost_controller.start()
            await defrost_controller.trigger_evaluation()
            timer = defrost_controller._defrost_timer
            assert timer is not None and not timer.done()

            t = await defrost_controller.manual_override("cool")
            await asyncio.sleep(0)
            cancelled = timer.cancelled()
            await defrost_controller.stop()
            return t, cancelled

        t, cancelled = asyncio.run(scenario())
        assert t.state == HVACState.COOLING
        assert cancelled
        assert defrost_controller._defrost_timer is None

    def test_heat_override_keeps_timer(self, defrost_controller):
        async def scenario():
            await defrost_controller.start()
            await defrost_controller.trigger_evaluation()
            timer = defrost_controller._defrost_timer

            t = await defrost_controller.manual_override("heat", target_temp=22.0)
            pending = defrost_controller._defrost_timer is timer and not timer.done()
            await defrost_controller.stop()
            return t, pending

        t, pending = asyncio.run(scenario())
        assert t.state == HVACState.DEFROSTING
        assert pending

    def test_timer_completes_defrost(self, defrost_controller, clock):
        controller = defrost_controller

        async def scenario():
            await controller.start()
            await controller.trigger_evaluation()
            assert controller.machine.current_state == HVACState.DEFROSTING
            controller._schedule_defrost_complete(0.01, controller.machine.state_entry)
            await asyncio.sleep(0.05)
            t = await controller.trigger_evaluation()
            await controller.stop()
            return t

        t = asyncio.run(scenario())
        assert t.state == HVACState.HEATING
        assert controller.evaluator.last_defrost == clock.now

    def test_stale_timer_is_ignored(self, defrost_controller):
        async def scenario():
            await defrost_controller.start()
            await defrost_controller.trigger_evaluation()
            stale_entry = defrost_controller.machine.state_entry - 1
            defrost_controller._schedule_defrost_complete(0.01, stale_entry)
            await asyncio.sleep(0.05)
            state = defrost_controller.machine.current_state
            await defrost_controller.stop()
            return state

        assert asyncio.run(scenario()) == HVACState.DEFROSTING
