"""Detect short-cycling from the state machine's own transition history."""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    HEALTHY = "HEALTHY"
    INFO = "INFO"


@dataclass
class StateChange:
    timestamp: datetime
    from_state: str
    to_state: str
    temperature: float | None = None


@dataclass
class CycleEvent:
    """A single heating cycle (heat -> off)."""

    start_time: pd.Timestamp
    end_time: pd.Timestamp
    duration_minutes: float
    start_temp: float | None = None
    end_temp: float | None = None
    short_cycle_minutes: float = 15.0

    @property
    def is_short_cycle(self) -> bool:
        return self.duration_minutes < self.short_cycle_minutes


@dataclass
class HysteresisHealth:
    status: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "message": self.message, "details": self.details}


class CyclingDetector:
    """Watch heat/off transitions for patterns that indicate short-cycling.

    States are recorded as the unit-level modes (``heat``, ``cool``, ``off``,
    ``defrost``). A heat -> off -> heat sequence completed within
    ``rapid_cycle_threshold_minutes`` is reported as rapid cycling.
    """

    CRITICAL_MINUTES = 15
    WARNING_MINUTES = 30
    STABLE_MINUTES = 120
    HEALTH_WINDOW = timedelta(hours=24)

    def __init__(self, rapid_cycle_threshold_minutes: float = 15, max_history: int = 100):
        """Initialize the CyclingDetector.

        Args:
            rapid_cycle_threshold_minutes: A heat -> off -> heat sequence faster
                than this is reported as rapid cycling.
            max_history: Number of state changes kept in memory.
        """
        self.rapid_cycle_threshold_minutes = rapid_cycle_threshold_minutes
        self.max_history = max_history
        self._changes: deque[StateChange] = deque(maxlen=max_history)
        self.rapid_cycle_count = 0

    @property
    def history(self) -> list[StateChange]:
        return list(self._changes)

    def record_state_change(
        self,
        from_state: str,
        to_state: str,
        temperature: float | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """Record a transition. Returns True if it completed a rapid cycle."""
        self._changes.append(
            StateChange(timestamp or datetime.now(UTC), from_state, to_state, temperature)
        )
        return self.detect_rapid_cycling()

    def detect_rapid_cycling(self) -> bool:
        if len(self._changes) < 3:
            return False
        first, middle, last = list(self._changes)[-3:]
        if (first.to_state, middle.to_state, last.to_state) != ("heat", "off", "heat"):
            return False

        minutes = (last.timestamp - first.timestamp).total_seconds() / 60.0
        if minutes >= self.rapid_cycle_threshold_minutes:
            return False

        self.rapid_cycle_count += 1
        severity = "CRITICAL" if minutes < 5 else "WARNING"
        temps = " -> ".join(f"{c.temperature}°C" for c in (first, middle, last))
        logger.warning(
            f"Rapid cycling detected ({severity}): heat -> off -> heat in {minutes:.1f} min "
            f"(threshold {self.rapid_cycle_threshold_minutes} min), temperatures {temps}"
        )
        return True

    def _frame(self) -> pd.DataFrame:
        if not self._changes:
            return pd.DataFrame(columns=["from_state", "to_state", "temperature"])
        df = pd.DataFrame(
            [
                {
                    "timestamp": c.timestamp,
                    "from_state": c.from_state,
                    "to_state": c.to_state,
                    "temperature": c.temperature,
                }
                for c in self._changes
            ]
        )
        return df.set_index(pd.DatetimeIndex(df.pop("timestamp")))

    def detect_cycles(self) -> list[CycleEvent]:
        """Pair each heat start with the next off to form heating cycles."""
        df = self._frame()
        if len(df) < 2:
            return []

        on_times = df.index[df["to_state"] == "heat"]
        off_times = df.index[df["to_state"] == "off"]

        cycles = []
        for on_time in on_times:
            future_offs = off_times[off_times > on_time]
            if future_offs.empty:
                continue
            off_time = future_offs[0]
            duration = (off_time - on_time).total_seconds() / 60.0
            cycles.append(
                CycleEvent(
                    start_time=on_time,
                    end_time=off_time,
                    duration_minutes=duration,
                    start_temp=_temp_at(df, on_time),
                    end_temp=_temp_at(df, off_time),
                    short_cycle_minutes=self.rapid_cycle_threshold_minutes,
                )
            )
        return cycles

    def hysteresis_health(self, now: datetime | None = None) -> HysteresisHealth:
        """Rate the average interval between heating starts over the last 24 h."""
        if len(self._changes) < 2:
            return HysteresisHealth(
                HealthStatus.INSUFFICIENT_DATA, "Need more state changes to analyze"
            )

        now = now or datetime.now(UTC)
        df = self._frame()
        recent = df[df.index > pd.Timestamp(now - self.HEALTH_WINDOW)]
        heat_starts = recent.index[recent["to_state"] == "heat"]

        avg_minutes = None
        if len(heat_starts) > 1:
            intervals = heat_starts.to_series().diff().dropna().dt.total_seconds() / 60.0
            avg_minutes = float(np.mean(intervals.to_numpy()))

        if avg_minutes is None:
            status, message = HealthStatus.HEALTHY, "Normal cycling behavior detected"
        elif avg_minutes < self.CRITICAL_MINUTES:
            status, message = HealthStatus.CRITICAL, "Rapid cycling detected"
        elif avg_minutes < self.WARNING_MINUTES:
            status, message = HealthStatus.WARNING, "Frequent cycling, check hysteresis bands"
        elif avg_minutes > self.STABLE_MINUTES:
            status, message = HealthStatus.INFO, "Excellent cycling stability"
        else:
            status, message = HealthStatus.HEALTHY, "Normal cycling behavior detected"

        return HysteresisHealth(
            status,
            message,
            {
                "cycles_last_24h": len(heat_starts),
                "average_cycle_minutes": round(avg_minutes, 1) if avg_minutes is not None else None,
                "last_state_change": self._changes[-1].timestamp.isoformat(),
                "rapid_cycle_threshold_minutes": self.rapid_cycle_threshold_minutes,
            },
        )

    def log_health(self, now: datetime | None = None) -> HysteresisHealth:
        health = self.hysteresis_health(now)
        level = {
            HealthStatus.CRITICAL: logging.ERROR,
            HealthStatus.WARNING: logging.WARNING,
        }.get(health.status, logging.INFO)
        logger.log(level, f"Hysteresis health: {health.status.value} - {health.message}")
        return health


def _temp_at(df: pd.DataFrame, ts: pd.Timestamp) -> float | None:
    value = df.loc[ts, "temperature"]
    if isinstance(value, pd.Series):
        value = value.iloc[0]
    if value is None or pd.isna(value):
        return None
    return float(value)
