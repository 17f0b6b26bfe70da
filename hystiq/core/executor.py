"""Execution layer: fans a mode out to every enabled indoor unit.

Heating is applied globally (one target plus per-unit correction). Cooling is
decided per unit from each room's own sensor. A failing unit never aborts the
batch and never changes the logical state already committed by the state
machine.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hystiq.config import HvacEntityConfig, HVACOptions
from hystiq.core.entities import HVACMode, OperatingContext
from hystiq.core.transport import HVACTransport

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """What was done to a single unit."""

    HEAT = "heat"
    COOL = "cool"
    OFF = "off"
    UNCHANGED = "unchanged"


@dataclass
class UnitResult:
    """Result of commanding one unit."""

    entity_id: str
    action: ActionType
    success: bool
    target_temp: float | None = None
    message: str = ""


@dataclass
class ExecutionReport:
    mode: HVACMode
    results: list[UnitResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> list[UnitResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[UnitResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "timestamp": self.timestamp.isoformat(),
            "units": [
                {
                    "entity_id": r.entity_id,
                    "action": r.action.value,
                    "success": r.success,
                    "target_temp": r.target_temp,
                    "message": r.message,
                }
                for r in self.results
            ],
        }


class HVACExecutor:
    """Sends mode commands to the configured climate entities."""

    def __init__(self, options: HVACOptions, transport: HVACTransport):
        self.options = options
        self.transport = transport
        self.last_report: ExecutionReport | None = None
        self.stats = {"executions": 0, "commands_sent": 0, "commands_failed": 0}

    async def execute_mode(self, mode: HVACMode, context: OperatingContext) -> ExecutionReport:
        """Send one mode to every enabled unit.

        Heat and off go to all units. Cool lets each unit decide from its own
        room sensor. Unit failures are logged and recorded, never raised.

        Args:
            mode: heat, cool or off.
            context: Operating context; a matching manual override supplies the
                target temperature and preset.

        Returns:
            ExecutionReport with one UnitResult per enabled unit.

        Raises:
            ValueError: If mode is auto.
        """
        mode = HVACMode(mode)
        units = self.options.enabled_entities
        report = ExecutionReport(mode)
        if not units:
            logger.warning(f"No enabled HVAC entities to receive {mode.value}")
            self.last_report = report
            return report

        if mode == HVACMode.HEAT:
            target, preset = self._targets(mode, context)
            coros = [
                self._command(u, ActionType.HEAT, target + u.temperature_correction, preset)
                for u in units
            ]
        elif mode == HVACMode.COOL:
            target, preset = self._targets(mode, context)
            coros = [self._cool_unit(u, target, preset) for u in units]
        elif mode == HVACMode.OFF:
            coros = [self._command(u, ActionType.OFF) for u in units]
        else:
            raise ValueError(f"Mode {mode.value} cannot be executed on units")

        outcomes = await asyncio.gather(*coros, return_exceptions=True)
        for unit, outcome in zip(units, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(f"Unexpected error commanding {unit.entity_id}: {outcome!r}")
                outcome = UnitResult(unit.entity_id, ActionType(mode.value), False, None, str(outcome))
            report.results.append(outcome)

        self.stats["executions"] += 1
        self.last_report = report
        if report.all_succeeded:
            logger.info(f"Executed {mode.value} on {len(report.results)} unit(s)")
        else:
            failed = ", ".join(r.entity_id for r in report.failed)
            logger.warning(
                f"Executed {mode.value}: {len(report.succeeded)} succeeded, "
                f"{len(report.failed)} failed ({failed})"
            )
        return report

    def _targets(self, mode: HVACMode, context: OperatingContext) -> tuple[float, str]:
        section = self.options.heating if mode == HVACMode.HEAT else self.options.cooling
        target = section.temperature
        preset = section.preset_mode
        override = context.manual_override
        if override is not None and override.mode == mode:
            if override.temperature is not None:
                target = override.temperature
            if override.preset:
                preset = override.preset
        return target, preset

    async def _cool_unit(
        self, unit: HvacEntityConfig, target: float, preset: str
    ) -> UnitResult:
        sensor = unit.room_sensor
        try:
            room_temp = await self.transport.read_sensor(sensor)
        except Exception as e:
            logger.error(f"Cannot read {sensor} for {unit.entity_id}: {e}")
            self.stats["commands_failed"] += 1
            return UnitResult(unit.entity_id, ActionType.COOL, False, None, f"sensor read failed: {e}")

        thresholds = self.options.cooling.temperature_thresholds
        if room_temp > thresholds.indoor_max:
            return await self._command(
                unit, ActionType.COOL, target + unit.temperature_correction, preset
            )
        if room_temp < thresholds.indoor_min:
            return await self._command(unit, ActionType.OFF)
        return UnitResult(
            unit.entity_id, ActionType.UNCHANGED, True, None, f"room at {room_temp}°C within band"
        )

    async def _command(
        self,
        unit: HvacEntityConfig,
        action: ActionType,
        target_temp: float | None = None,
        preset: str | None = None,
    ) -> UnitResult:
        self.stats["commands_sent"] += 1
        try:
            ok = await self.transport.issue_command(
                unit.entity_id, HVACMode(action.value), target_temp, preset
            )
        except Exception as e:
            logger.error(f"{action.value} command failed for {unit.entity_id}: {e}")
            self.stats["commands_failed"] += 1
            return UnitResult(unit.entity_id, action, False, target_temp, str(e))

        if not ok:
            logger.error(f"{unit.entity_id} rejected {action.value} command")
            self.stats["commands_failed"] += 1
            return UnitResult(unit.entity_id, action, False, target_temp, "command rejected")

        logger.debug(f"{unit.entity_id}: {action.value} target={target_temp} preset={preset}")
        return UnitResult(unit.entity_id, action, True, target_temp, "ok")
