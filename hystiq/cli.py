"""Command line entry point for checking configurations and replaying readings."""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from hystiq.config import HystiqSettings, LogLevel
from hystiq.core.entities import HVACState, OperatingContext
from hystiq.core.evaluator import Evaluator
from hystiq.core.exceptions import ConfigurationError, StateError
from hystiq.core.state_machine import ExecuteMode, HVACStateMachine

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hystiq",
        description="Anti-cycling HVAC decision engine",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Override appOptions.logLevel from the configuration file",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Load a configuration file and summarize it")
    validate.add_argument("config", type=Path, help="Path to YAML configuration")

    evaluate = subparsers.add_parser("evaluate", help="Run a single evaluation and print it as JSON")
    evaluate.add_argument("config", type=Path, help="Path to YAML configuration")
    evaluate.add_argument("--indoor", type=float, required=True, help="Indoor temperature (°C)")
    evaluate.add_argument("--outdoor", type=float, required=True, help="Outdoor temperature (°C)")
    evaluate.add_argument("--hour", type=int, help="Hour of day 0-23 (default: now)")
    evaluate.add_argument("--weekend", action="store_true", help="Evaluate as a weekend day")
    evaluate.add_argument(
        "--state",
        choices=[s.value for s in HVACState if s != HVACState.EVALUATING],
        default=HVACState.IDLE.value,
        help="State the unit is currently in (default: idle)",
    )

    simulate = subparsers.add_parser(
        "simulate", help="Feed a sequence of indoor readings through the state machine"
    )
    simulate.add_argument("config", type=Path, help="Path to YAML configuration")
    simulate.add_argument(
        "--indoor", type=float, nargs="+", required=True, metavar="T", help="Indoor readings (°C)"
    )
    simulate.add_argument("--outdoor", type=float, required=True, help="Outdoor temperature (°C)")
    simulate.add_argument("--hour", type=int, help="Hour of day 0-23 (default: now)")
    simulate.add_argument("--weekend", action="store_true", help="Simulate a weekend day")
    return parser


def cmd_validate(args, settings: HystiqSettings) -> int:
    hvac = settings.hvac_options
    heat = hvac.heating.temperature_thresholds
    cool = hvac.cooling.temperature_thresholds
    print(f"Configuration OK: {args.config}")
    print(f"  System mode:   {hvac.system_mode.value}")
    print(f"  Sensors:       indoor={hvac.temp_sensor} outdoor={hvac.outdoor_sensor}")
    print(f"  Units:         {len(hvac.enabled_entities)} enabled / {len(hvac.hvac_entities)} total")
    print(
        f"  Heating band:  {heat.indoor_min}-{heat.indoor_max}°C "
        f"(outdoor {heat.outdoor_min}..{heat.outdoor_max}°C), target {hvac.heating.temperature}°C"
    )
    print(
        f"  Cooling band:  {cool.indoor_min}-{cool.indoor_max}°C "
        f"(outdoor {cool.outdoor_min}..{cool.outdoor_max}°C), target {hvac.cooling.temperature}°C"
    )
    if hvac.heating.defrost:
        d = hvac.heating.defrost
        print(
            f"  Defrost:       below {d.temperature_threshold}°C, every {d.period_seconds}s "
            f"for {d.duration_seconds}s"
        )
    if hvac.active_hours:
        a = hvac.active_hours
        print(f"  Active hours:  {a.start_weekday}/{a.start}-{a.end} (weekday/weekend start)")
    return 0


def _hour(args) -> int:
    return args.hour if args.hour is not None else datetime.now().hour


def cmd_evaluate(args, settings: HystiqSettings) -> int:
    hvac = settings.hvac_options
    context = OperatingContext(
        indoor_temp=args.indoor,
        outdoor_temp=args.outdoor,
        current_hour=_hour(args),
        is_weekday=not args.weekend,
        system_mode=hvac.system_mode,
    )
    state = HVACState(args.state)
    result = Evaluator(hvac).evaluate(context, state if state != HVACState.IDLE else None)
    print(json.dumps(result.as_dict(), indent=2))
    return 0


def cmd_simulate(args, settings: HystiqSettings) -> int:
    machine = HVACStateMachine(settings.hvac_options)
    machine.start()
    hour = _hour(args)
    for step, indoor in enumerate(args.indoor, start=1):
        transition = machine.update_conditions(
            indoor_temp=indoor,
            outdoor_temp=args.outdoor,
            current_hour=hour,
            is_weekday=not args.weekend,
            source="simulate",
        )
        reason = transition.result.reason_code.value if transition.result else "-"
        actions = [
            f"execute:{e.mode.value}" if isinstance(e, ExecuteMode) else type(e).__name__
            for e in transition.effects
        ]
        print(
            f"{step:>3}  indoor={indoor:5.1f}  {transition.state.value:<10}  {reason:<17}  "
            f"{', '.join(actions) or '-'}"
        )
    machine.stop()
    return 0


COMMANDS = {
    "validate": cmd_validate,
    "evaluate": cmd_evaluate,
    "simulate": cmd_simulate,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = HystiqSettings.from_yaml(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    level = args.log_level or settings.app_options.log_level.value
    logging.basicConfig(
        level=level.upper(), format="%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    )

    if getattr(args, "hour", None) is not None and not 0 <= args.hour <= 23:
        parser.error("--hour must be between 0 and 23")

    try:
        return COMMANDS[args.command](args, settings)
    except StateError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
