"""Orchestration state machine.

Transitions are computed by the pure ``transition`` function: it takes the
current state, an event and the operating context and returns the next state,
the updated context and a list of effects. It performs no I/O; the caller
applies effects (unit commands, defrost timers) after committing the state.
``HVACStateMachine`` owns the authoritative state and context and must only be
driven from a single writer.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from hystiq.config import HVACOptions
from hystiq.core.entities import (
    OPERATING_STATES,
    EvaluationResult,
    HVACMode,
    HVACState,
    HVACStatus,
    ManualOverride,
    OperatingContext,
    SystemMode,
    cool_allowed,
    heat_allowed,
)
from hystiq.core.evaluator import Clock, Evaluator
from hystiq.core.exceptions import StateError

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ModeChange:
    mode: HVACMode
    temperature: float | None = None
    preset: str | None = None


@dataclass(frozen=True)
class ManualOverrideEvent:
    mode: HVACMode
    temperature: float | None = None
    preset: str | None = None


@dataclass(frozen=True)
class AutoEvaluate:
    pass


@dataclass(frozen=True)
class UpdateConditions:
    """Merge new readings into the context.

    With a ``source`` (the entity that reported) an evaluation follows
    immediately.
    """

    data: dict[str, Any] = field(default_factory=dict)
    source: str | None = None


@dataclass(frozen=True)
class DefrostNeeded:
    pass


@dataclass(frozen=True)
class DefrostComplete:
    entry: int | None = None


@dataclass(frozen=True)
class Off:
    pass


Event = (
    ModeChange
    | ManualOverrideEvent
    | AutoEvaluate
    | UpdateConditions
    | DefrostNeeded
    | DefrostComplete
    | Off
)


# ----------------------------------------------------------------------
# Effects
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ExecuteMode:
    mode: HVACMode


@dataclass(frozen=True)
class StartDefrost:
    pass


@dataclass(frozen=True)
class ScheduleDefrostComplete:
    delay_seconds: float


@dataclass(frozen=True)
class CancelDefrostTimer:
    pass


Effect = ExecuteMode | StartDefrost | ScheduleDefrostComplete | CancelDefrostTimer


@dataclass
class Transition:
    """Result of feeding one event into the machine."""

    state: HVACState
    context: OperatingContext
    effects: list[Effect] = field(default_factory=list)
    path: list[HVACState] = field(default_factory=list)
    result: EvaluationResult | None = None

    @property
    def source(self) -> HVACState:
        return self.path[0] if self.path else self.state

    @property
    def changed(self) -> bool:
        return self.source != self.state


_CONTEXT_FIELDS = ("indoor_temp", "outdoor_temp", "current_hour", "is_weekday", "system_mode")


def _check_mode_allowed(mode: HVACMode, context: OperatingContext, state: HVACState):
    system_mode = context.system_mode
    if mode == HVACMode.HEAT and not heat_allowed(system_mode):
        raise StateError(
            f"Heating is not allowed in system mode {system_mode.value}", state=state.value
        )
    if mode == HVACMode.COOL and not cool_allowed(system_mode):
        raise StateError(
            f"Cooling is not allowed in system mode {system_mode.value}", state=state.value
        )


def _record_override(
    context: OperatingContext,
    mode: HVACMode,
    temperature: float | None,
    preset: str | None,
    now: datetime,
) -> OperatingContext:
    if mode == HVACMode.AUTO:
        return context.model_copy(update={"manual_override": None})
    override = ManualOverride(mode=mode, temperature=temperature, preset=preset, timestamp=now)
    return context.model_copy(update={"manual_override": override})


def _effects(
    origin: HVACState,
    target: HVACState,
    evaluator: Evaluator,
    reexecute: HVACMode | None = None,
) -> list[Effect]:
    effects: list[Effect] = []
    if origin == HVACState.DEFROSTING and target != HVACState.DEFROSTING:
        effects.append(CancelDefrostTimer())

    if target == HVACState.HEATING:
        if origin != HVACState.HEATING or reexecute == HVACMode.HEAT:
            effects.append(ExecuteMode(HVACMode.HEAT))
    elif target == HVACState.COOLING:
        # The per-unit cooling strategy re-decides on every pass.
        effects.append(ExecuteMode(HVACMode.COOL))
    elif target == HVACState.DEFROSTING:
        if origin != HVACState.DEFROSTING:
            defrost = evaluator.options.heating.defrost
            effects.append(StartDefrost())
            effects.append(ScheduleDefrostComplete(defrost.duration_seconds if defrost else 0))
    elif target == HVACState.IDLE:
        if origin in OPERATING_STATES or reexecute == HVACMode.OFF:
            effects.append(ExecuteMode(HVACMode.OFF))
    return effects


def _guard_chain(
    origin: HVACState,
    context: OperatingContext,
    evaluator: Evaluator,
    full_chain: bool = True,
) -> tuple[HVACState, OperatingContext, EvaluationResult]:
    """Run one evaluation from ``evaluating`` and pick the next state.

    The first matching rule wins: manual off, turn-off, manual heat, manual
    cool, automatic heat, automatic cool, holding a running cycle, idle.
    """
    override = context.manual_override
    active_cycle = origin if origin in OPERATING_STATES and override is None else None
    result = evaluator.evaluate(context, active_cycle)
    # Automatic decisions, including holding a cycle, only run in auto mode.
    automatic = context.system_mode == SystemMode.AUTO

    if override is not None and override.mode == HVACMode.OFF:
        return HVACState.IDLE, context, result
    if result.should_turn_off:
        return HVACState.IDLE, context.model_copy(update={"manual_override": None}), result
    if not full_chain:
        return origin, context, result

    if override is not None and override.mode == HVACMode.HEAT:
        target = HVACState.HEATING
    elif override is not None and override.mode == HVACMode.COOL:
        target = HVACState.COOLING
    elif automatic and result.should_heat:
        target = HVACState.HEATING
    elif automatic and result.should_cool:
        target = HVACState.COOLING
    elif (
        origin == HVACState.HEATING
        and automatic
        and evaluator.can_sustain(HVACMode.HEAT, context)
    ):
        target = HVACState.HEATING
    elif (
        origin == HVACState.COOLING
        and automatic
        and evaluator.can_sustain(HVACMode.COOL, context)
    ):
        target = HVACState.COOLING
    else:
        target = HVACState.IDLE

    if target == HVACState.HEATING and origin in (HVACState.HEATING, HVACState.DEFROSTING):
        if origin == HVACState.DEFROSTING or result.needs_defrost:
            target = HVACState.DEFROSTING
    return target, context, result


def _evaluate(
    origin: HVACState,
    context: OperatingContext,
    evaluator: Evaluator,
    reexecute: HVACMode | None = None,
) -> Transition:
    # Defrosting only yields to manual off and turn-off on automatic passes.
    full_chain = origin != HVACState.DEFROSTING or reexecute is not None
    target, context, result = _guard_chain(origin, context, evaluator, full_chain)
    return Transition(
        state=target,
        context=context,
        effects=_effects(origin, target, evaluator, reexecute),
        path=[origin, HVACState.EVALUATING, target],
        result=result,
    )


def _unchanged(state: HVACState, context: OperatingContext) -> Transition:
    return Transition(state=state, context=context, path=[state])


def transition(
    state: HVACState,
    event: Event,
    context: OperatingContext,
    evaluator: Evaluator,
    entry: int | None = None,
) -> Transition:
    """Compute the next state for ``event`` without side effects.

    ``entry`` is the current state-entry counter; it is used to discard
    defrost timers that belong to an earlier visit of ``defrosting``.
    Raises StateError for mode requests the system mode does not allow.
    """
    if isinstance(event, UpdateConditions):
        updates = {
            key: value
            for key, value in event.data.items()
            if key in _CONTEXT_FIELDS and value is not None
        }
        merged = OperatingContext.model_validate({**context.model_dump(), **updates})
        if event.source is None:
            return _unchanged(state, merged)
        return _evaluate(state, merged, evaluator)

    if isinstance(event, AutoEvaluate):
        return _evaluate(state, context, evaluator)

    if isinstance(event, ModeChange) and state == HVACState.IDLE:
        _check_mode_allowed(event.mode, context, state)
        context = _record_override(
            context, event.mode, event.temperature, event.preset, evaluator.now()
        )
        if event.mode == HVACMode.AUTO:
            return _evaluate(state, context, evaluator)
        target = {
            HVACMode.HEAT: HVACState.HEATING,
            HVACMode.COOL: HVACState.COOLING,
            HVACMode.OFF: HVACState.IDLE,
        }[event.mode]
        return Transition(
            state=target,
            context=context,
            effects=_effects(state, target, evaluator, reexecute=event.mode),
            path=[state, target],
        )

    if isinstance(event, (ModeChange, ManualOverrideEvent)):
        _check_mode_allowed(event.mode, context, state)
        context = _record_override(
            context, event.mode, event.temperature, event.preset, evaluator.now()
        )
        return _evaluate(state, context, evaluator, reexecute=event.mode)

    if isinstance(event, DefrostNeeded):
        if state != HVACState.HEATING:
            return _unchanged(state, context)
        result = evaluator.evaluate(context, state)
        if not result.needs_defrost:
            return Transition(state=state, context=context, path=[state], result=result)
        return Transition(
            state=HVACState.DEFROSTING,
            context=context,
            effects=_effects(state, HVACState.DEFROSTING, evaluator),
            path=[state, HVACState.DEFROSTING],
            result=result,
        )

    if isinstance(event, DefrostComplete):
        if state != HVACState.DEFROSTING:
            return _unchanged(state, context)
        if event.entry is not None and entry is not None and event.entry != entry:
            logger.debug(f"Ignoring stale defrost completion for entry {event.entry}")
            return _unchanged(state, context)
        return Transition(
            state=HVACState.HEATING,
            context=context,
            effects=_effects(state, HVACState.HEATING, evaluator),
            path=[state, HVACState.HEATING],
        )

    if isinstance(event, Off):
        context = context.model_copy(update={"manual_override": None})
        if state not in OPERATING_STATES:
            return _unchanged(state, context)
        return Transition(
            state=HVACState.IDLE,
            context=context,
            effects=_effects(state, HVACState.IDLE, evaluator),
            path=[state, HVACState.IDLE],
        )

    raise StateError(f"Unknown event {event!r}", state=state.value)


class HVACStateMachine:
    """Holds the authoritative state and context.

    All mutation goes through ``send``; callers apply the returned effects.
    """

    def __init__(
        self,
        options: HVACOptions,
        evaluator: Evaluator | None = None,
        clock: Clock | None = None,
    ):
        self.options = options
        self.evaluator = evaluator or Evaluator(options, clock=clock)
        self._state = HVACState.IDLE
        self._context = OperatingContext(system_mode=options.system_mode)
        self._state_entry = 0
        self._running = False
        self._last_update = self.evaluator.now()
        self.last_result: EvaluationResult | None = None

    @property
    def current_state(self) -> HVACState:
        return self._state

    @property
    def context(self) -> OperatingContext:
        return self._context

    @property
    def state_entry(self) -> int:
        return self._state_entry

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        if self._running:
            raise StateError("State machine is already running", state=self._state.value)
        self._running = True
        logger.info(f"State machine started in {self._state.value}")

    def stop(self):
        if not self._running:
            return
        self._running = False
        logger.info(f"State machine stopped in {self._state.value}")

    def send(self, event: Event) -> Transition:
        if not self._running:
            raise StateError(
                f"Cannot handle {type(event).__name__}: state machine is stopped",
                state=self._state.value,
            )
        result = transition(self._state, event, self._context, self.evaluator, self._state_entry)

        context = result.context
        for effect in result.effects:
            if isinstance(effect, StartDefrost):
                started = self.evaluator.start_defrost()
                context = context.model_copy(update={"last_defrost": started})
        if context is not result.context:
            result = replace(result, context=context)

        previous = self._state
        self._state = result.state
        self._context = result.context
        self._last_update = self.evaluator.now()
        if result.result is not None:
            self.last_result = result.result

        if result.state != previous:
            self._state_entry += 1
            reason = result.result.reason_code.value if result.result else type(event).__name__
            logger.info(f"State transition: {previous.value} -> {result.state.value} ({reason})")
        return result

    def update_conditions(
        self,
        indoor_temp: float | None = None,
        outdoor_temp: float | None = None,
        current_hour: int | None = None,
        is_weekday: bool | None = None,
        system_mode: SystemMode | None = None,
        source: str | None = None,
    ) -> Transition:
        data = {
            "indoor_temp": indoor_temp,
            "outdoor_temp": outdoor_temp,
            "current_hour": current_hour,
            "is_weekday": is_weekday,
            "system_mode": system_mode,
        }
        return self.send(UpdateConditions(data=data, source=source))

    def evaluate_conditions(self) -> Transition:
        return self.send(AutoEvaluate())

    def manual_override(
        self, mode: HVACMode | str, temperature: float | None = None, preset: str | None = None
    ) -> Transition:
        mode = HVACMode(mode)
        if self._state == HVACState.IDLE:
            return self.send(ModeChange(mode, temperature, preset))
        return self.send(ManualOverrideEvent(mode, temperature, preset))

    def get_status(self) -> HVACStatus:
        return HVACStatus(
            current_state=self._state,
            context=self._context,
            can_heat=heat_allowed(self._context.system_mode),
            can_cool=cool_allowed(self._context.system_mode),
            system_mode=self._context.system_mode,
            last_update=self._last_update,
        )
