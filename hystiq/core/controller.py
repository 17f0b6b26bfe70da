"""Service surface tying the state machine to units and sensors.

All state-machine mutations run on one worker task that drains an
``asyncio.Queue``. Public coroutines enqueue an event together with a future
and wait for the resulting transition, so caller errors (``StateError``)
surface at the call site while sensor notifications stay fire-and-forget.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from hystiq.analysis.cycling_detector import CyclingDetector
from hystiq.config import HVACOptions
from hystiq.core.entities import HVACMode, HVACState
from hystiq.core.evaluator import Clock, Evaluator
from hystiq.core.exceptions import StateError
from hystiq.core.executor import HVACExecutor
from hystiq.core.state_machine import (
    AutoEvaluate,
    CancelDefrostTimer,
    DefrostComplete,
    Event,
    ExecuteMode,
    HVACStateMachine,
    ModeChange,
    Off,
    ScheduleDefrostComplete,
    Transition,
    UpdateConditions,
)
from hystiq.core.transport import HVACTransport

logger = logging.getLogger(__name__)

UNAVAILABLE_STATES = frozenset({"unavailable", "unknown", "none", ""})

_CYCLE_MODES = {
    HVACState.IDLE: "off",
    HVACState.HEATING: "heat",
    HVACState.COOLING: "cool",
    HVACState.DEFROSTING: "defrost",
}


def parse_temperature(value: Any) -> float | None:
    """Parse a sensor state, returning None for unavailable or garbage values."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.lower() in UNAVAILABLE_STATES:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HVACController:
    """Runs the decision engine against a transport."""

    def __init__(self, options: HVACOptions, transport: HVACTransport, clock: Clock | None = None):
        self.options = options
        self.transport = transport
        self._clock = clock or _utcnow
        self.evaluator = Evaluator(options, clock=self._clock)
        self.machine = HVACStateMachine(options, self.evaluator)
        self.executor = HVACExecutor(options, transport)
        self.cycling = CyclingDetector()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self._periodic: asyncio.Task | None = None
        self._defrost_timer: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Start the state machine, the mailbox worker and the periodic check.

        The initial indoor and outdoor readings are evaluated before this
        returns. Unreadable sensors are logged and left unset.

        Raises:
            StateError: If the controller is already running.
        """
        self.machine.start()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="hystiq-worker")
        logger.info(
            f"HVAC controller started with {len(self.options.enabled_entities)} enabled unit(s)"
        )

        await self._read_initial_sensors()

        interval = self.options.state_check_interval_seconds
        if interval > 0:
            self._periodic = asyncio.create_task(
                self._periodic_evaluation(interval), name="hystiq-periodic"
            )

    async def stop(self):
        tasks = [t for t in (self._periodic, self._defrost_timer, self._worker) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if future is not None and not future.done():
                    future.cancel()

        self._periodic = self._defrost_timer = self._worker = None
        self._loop = None
        self.machine.stop()
        logger.info("HVAC controller stopped")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def notify_sensor_change(self, entity_id: str, value: Any):
        """Feed a sensor update. Safe to call from any thread."""
        if self._loop is None:
            raise StateError(
                "Controller is not running", state=self.machine.current_state.value
            )
        self._loop.call_soon_threadsafe(self._on_sensor_change, entity_id, value)

    async def send_condition(
        self,
        indoor: float | None = None,
        outdoor: float | None = None,
        hour: int | None = None,
        is_weekday: bool | None = None,
    ) -> Transition:
        data = self._time_data()
        data.update({"indoor_temp": indoor, "outdoor_temp": outdoor})
        if hour is not None:
            data["current_hour"] = hour
        if is_weekday is not None:
            data["is_weekday"] = is_weekday
        return await self._submit(UpdateConditions(data=data, source="api"))

    async def manual_override(
        self, mode: HVACMode | str, target_temp: float | None = None, preset: str | None = None
    ) -> Transition:
        """Apply a manual mode request and wait for the resulting transition.

        Args:
            mode: heat, cool, off or auto (auto clears the override).
            target_temp: Optional target temperature for heat or cool.
            preset: Optional preset mode for heat or cool.

        Returns:
            The transition the request produced.

        Raises:
            StateError: If the mode is unknown, not allowed in the current
                system mode, or the controller is not running.
        """
        try:
            mode = HVACMode(mode)
        except ValueError as e:
            raise StateError(f"Unknown HVAC mode {mode!r}") from e
        logger.info(f"Manual override requested: {mode.value} (target={target_temp})")
        return await self._submit(ModeChange(mode, target_temp, preset))

    async def trigger_evaluation(self) -> Transition:
        return await self._submit(AutoEvaluate())

    async def turn_off(self) -> Transition:
        return await self._submit(Off())

    def get_status(self) -> dict[str, Any]:
        status = self.machine.get_status().model_dump(mode="json")
        status["running"] = self.running
        status["hysteresis_health"] = self.cycling.hysteresis_health(self._clock()).as_dict()
        report = self.executor.last_report
        status["last_execution"] = report.as_dict() if report else None
        return status

    # ------------------------------------------------------------------
    # Mailbox
    # ------------------------------------------------------------------

    async def _submit(self, event: Event) -> Transition:
        if not self.running:
            raise StateError(
                f"Cannot handle {type(event).__name__}: controller is not running",
                state=self.machine.current_state.value,
            )
        future = self._loop.create_future()
        await self._queue.put((event, future))
        return await future

    def _enqueue(self, event: Event):
        if self._queue is None:
            logger.debug(f"Dropping {type(event).__name__}: controller is stopped")
            return
        self._queue.put_nowait((event, None))

    async def _run(self):
        while True:
            event, future = await self._queue.get()
            try:
                transition = await self._handle(event)
            except asyncio.CancelledError:
                if future is not None and not future.done():
                    future.cancel()
                raise
            except Exception as e:
                if future is not None and not future.done():
                    future.set_exception(e)
                else:
                    logger.error(f"Error handling {type(event).__name__}: {e}")
            else:
                if future is not None and not future.done():
                    future.set_result(transition)
            finally:
                self._queue.task_done()

    async def _handle(self, event: Event) -> Transition:
        previous = self.machine.current_state
        transition = self.machine.send(event)

        if transition.changed and _CYCLE_MODES[previous] != _CYCLE_MODES[transition.state]:
            self.cycling.record_state_change(
                _CYCLE_MODES[previous],
                _CYCLE_MODES[transition.state],
                transition.context.indoor_temp,
                self._clock(),
            )

        for effect in transition.effects:
            if isinstance(effect, CancelDefrostTimer):
                self._cancel_defrost_timer()
            elif isinstance(effect, ScheduleDefrostComplete):
                self._schedule_defrost_complete(effect.delay_seconds, self.machine.state_entry)
            elif isinstance(effect, ExecuteMode):
                await self.executor.execute_mode(effect.mode, transition.context)
        return transition

    # ------------------------------------------------------------------
    # Timers and sensors
    # ------------------------------------------------------------------

    def _schedule_defrost_complete(self, delay: float, entry: int):
        self._cancel_defrost_timer()
        self._defrost_timer = asyncio.create_task(
            self._defrost_countdown(delay, entry), name="hystiq-defrost"
        )
        logger.debug(f"Defrost completion scheduled in {delay}s (entry {entry})")

    async def _defrost_countdown(self, delay: float, entry: int):
        await asyncio.sleep(delay)
        self._enqueue(DefrostComplete(entry))

    def _cancel_defrost_timer(self):
        timer = self._defrost_timer
        self._defrost_timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
            logger.debug("Pending defrost completion cancelled")

    def _time_data(self) -> dict[str, Any]:
        local = self._clock().astimezone()
        return {"current_hour": local.hour, "is_weekday": local.weekday() < 5}

    def _on_sensor_change(self, entity_id: str, value: Any):
        if entity_id == self.options.temp_sensor:
            key = "indoor_temp"
        elif entity_id == self.options.outdoor_sensor:
            key = "outdoor_temp"
        else:
            logger.debug(f"Ignoring update from unrelated entity {entity_id}")
            return

        temperature = parse_temperature(value)
        if temperature is None:
            logger.warning(f"Ignoring unusable value {value!r} from {entity_id}")
            return

        data = self._time_data()
        data[key] = temperature
        self._enqueue(UpdateConditions(data=data, source=entity_id))

    async def _read_initial_sensors(self):
        data = self._time_data()
        for key, entity_id in (
            ("indoor_temp", self.options.temp_sensor),
            ("outdoor_temp", self.options.outdoor_sensor),
        ):
            try:
                value = await self.transport.read_sensor(entity_id)
            except Exception as e:
                logger.warning(f"Initial read of {entity_id} failed: {e}")
                continue
            temperature = parse_temperature(value)
            if temperature is None:
                logger.warning(f"Initial value {value!r} of {entity_id} is unusable")
                continue
            data[key] = temperature

        await self._submit(UpdateConditions(data=data, source="startup"))

    async def _periodic_evaluation(self, interval: int):
        while True:
            await asyncio.sleep(interval)
            await self._periodic_check()

    async def _periodic_check(self):
        """Refresh the time of day, re-evaluate and report cycling health."""
        try:
            await self._submit(UpdateConditions(data=self._time_data(), source="periodic"))
        except StateError as e:
            logger.warning(f"Periodic evaluation skipped: {e}")
            return
        self.cycling.log_health(self._clock())
