"""Evaluation engine deciding between heat, cool, defrost and turn-off.

The engine is a pure function of the operating context plus a single piece
of internal state: the timestamp of the last defrost start, which only
``start_defrost`` mutates. Results are memoized for a short time so bursts of
sensor notifications with identical conditions do not recompute.
"""

import json
import logging
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from hystiq.config import HVACOptions
from hystiq.core.entities import (
    EvaluationResult,
    HVACMode,
    HVACState,
    OperatingContext,
    ReasonCode,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EvaluationCache:
    """Time-bounded memo of evaluation results keyed by canonical input."""

    def __init__(self, ttl_ms: int, clock: Clock, max_entries: int = 128):
        self.ttl = timedelta(milliseconds=ttl_ms)
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, tuple[datetime, EvaluationResult]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(context: OperatingContext, active_state: HVACState | None) -> str:
        payload = context.model_dump(mode="json")
        payload["active_state"] = active_state.value if active_state else None
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def get(self, key: str) -> EvaluationResult | None:
        if self.ttl <= timedelta(0):
            return None
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, result = entry
        age = self._clock() - stored_at
        # A negative age means the clock moved backwards; treat as stale.
        if age < timedelta(0) or age >= self.ttl:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return result

    def put(self, key: str, result: EvaluationResult):
        if self.ttl <= timedelta(0):
            return
        self._entries[key] = (self._clock(), result)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class Evaluator:
    """Maps operating conditions to an EvaluationResult.

    Heating and cooling each have a hysteresis band ``[indoor_min, indoor_max]``.
    A cycle starts outside the band and is only reported complete once the
    opposite edge is reached, so readings strictly inside the band never
    flip a running cycle off.
    """

    def __init__(self, options: HVACOptions, clock: Clock | None = None):
        self.options = options
        self._clock = clock or _utcnow
        self._last_defrost: datetime | None = None
        self.cache = EvaluationCache(options.evaluation_cache_ms, self._clock)

    @property
    def last_defrost(self) -> datetime | None:
        return self._last_defrost

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(
        self, context: OperatingContext, active_state: HVACState | None = None
    ) -> EvaluationResult:
        """Evaluate the current conditions against the configured bands.

        Missing temperatures never raise; they yield an all-false
        ``no_action_needed`` result. Results are memoized for
        ``evaluation_cache_ms``.

        Args:
            context: Operating context to evaluate.
            active_state: Operating state the units are currently in, or None
                when no automatic cycle is running. Decides whether a band edge
                completes a heating or cooling cycle.

        Returns:
            EvaluationResult with the decision flags and the reason code.
        """
        key = EvaluationCache.make_key(context, active_state)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Evaluation cache hit: {cached.reason_code.value}")
            return cached

        result = self._evaluate(context, active_state)
        self.cache.put(key, result)
        logger.debug(
            f"Evaluated indoor={context.indoor_temp} outdoor={context.outdoor_temp} "
            f"hour={context.current_hour} -> {result.reason_code.value}"
        )
        return result

    def start_defrost(self) -> datetime:
        """Record the start of a defrost cycle and drop memoized results."""
        self._last_defrost = self._clock()
        self.cache.clear()
        defrost = self.options.heating.defrost
        duration = defrost.duration_seconds if defrost else 0
        logger.info(
            f"Defrost cycle started at {self._last_defrost.isoformat()} "
            f"(duration {duration}s)"
        )
        return self._last_defrost

    def is_active_hour(self, hour: int, is_weekday: bool) -> bool:
        active_hours = self.options.active_hours
        if active_hours is None:
            return True
        start = active_hours.start_weekday if is_weekday else active_hours.start
        if start <= active_hours.end:
            return start <= hour <= active_hours.end
        # start > end is an overnight window, e.g. 22..6, not an empty one.
        return hour >= start or hour <= active_hours.end

    def within_outdoor_range(self, mode: HVACMode, outdoor: float) -> bool:
        thresholds = self._thresholds(mode)
        return thresholds.outdoor_min <= outdoor <= thresholds.outdoor_max

    def can_sustain(self, mode: HVACMode, context: OperatingContext) -> bool:
        """Whether a running heat/cool cycle may continue under current conditions."""
        if not context.has_temperatures:
            return False
        return self.within_outdoor_range(mode, context.outdoor_temp) and self.is_active_hour(
            context.current_hour, context.is_weekday
        )

    # ------------------------------------------------------------------
    # Internal evaluation
    # ------------------------------------------------------------------

    def _thresholds(self, mode: HVACMode):
        if mode == HVACMode.HEAT:
            return self.options.heating.temperature_thresholds
        return self.options.cooling.temperature_thresholds

    def _evaluate(
        self, context: OperatingContext, active_state: HVACState | None
    ) -> EvaluationResult:
        details: dict[str, Any] = {
            "indoor_temp": context.indoor_temp,
            "outdoor_temp": context.outdoor_temp,
            "current_hour": context.current_hour,
            "is_weekday": context.is_weekday,
        }
        if not context.has_temperatures:
            details["missing"] = [
                name
                for name, value in (
                    ("indoor_temp", context.indoor_temp),
                    ("outdoor_temp", context.outdoor_temp),
                )
                if value is None
            ]
            return EvaluationResult(False, False, False, False, ReasonCode.NO_ACTION_NEEDED, details)

        indoor = context.indoor_temp
        outdoor = context.outdoor_temp
        active = self.is_active_hour(context.current_hour, context.is_weekday)
        heating = self.options.heating
        cooling = self.options.cooling
        heat_t = heating.temperature_thresholds
        cool_t = cooling.temperature_thresholds

        should_heat = (
            indoor < heat_t.indoor_max
            and self.within_outdoor_range(HVACMode.HEAT, outdoor)
            and active
            and indoor < heat_t.indoor_min
        )
        should_cool = (
            indoor > cool_t.indoor_min
            and self.within_outdoor_range(HVACMode.COOL, outdoor)
            and active
            and indoor > cool_t.indoor_max
        )
        needs_defrost = self._needs_defrost(outdoor, details)

        heating_active = active_state in (HVACState.HEATING, HVACState.DEFROSTING)
        cooling_active = active_state == HVACState.COOLING
        turn_off_cause = None
        if not active:
            turn_off_cause = "outside_active_hours"
        elif heating_active and indoor >= heat_t.indoor_max:
            turn_off_cause = "heating_complete"
        elif cooling_active and indoor <= cool_t.indoor_min:
            turn_off_cause = "cooling_complete"
        should_turn_off = turn_off_cause is not None

        if should_turn_off:
            reason = ReasonCode.TURN_OFF
            details["turn_off_cause"] = turn_off_cause
        elif needs_defrost:
            reason = ReasonCode.DEFROST_REQUIRED
        elif should_heat:
            reason = ReasonCode.HEATING_REQUIRED
            details["target_temp"] = heating.temperature
        elif should_cool:
            reason = ReasonCode.COOLING_REQUIRED
            details["target_temp"] = cooling.temperature
        else:
            reason = ReasonCode.NO_ACTION_NEEDED

        details["heating_thresholds"] = heat_t.model_dump()
        details["cooling_thresholds"] = cool_t.model_dump()
        if self.options.active_hours is not None:
            details["active_hours"] = self.options.active_hours.model_dump()
        details["within_active_hours"] = active

        return EvaluationResult(
            should_heat=should_heat,
            should_cool=should_cool,
            needs_defrost=needs_defrost,
            should_turn_off=should_turn_off,
            reason_code=reason,
            details=details,
        )

    def _needs_defrost(self, outdoor: float, details: dict[str, Any]) -> bool:
        defrost = self.options.heating.defrost
        if defrost is None:
            return False
        if outdoor > defrost.temperature_threshold:
            return False
        if self._last_defrost is not None:
            elapsed = (self._clock() - self._last_defrost).total_seconds()
            if elapsed < defrost.period_seconds:
                details["defrost_remaining_seconds"] = round(defrost.period_seconds - elapsed)
                return False
        return True
