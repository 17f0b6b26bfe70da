"""HystiQ - anti-cycling HVAC decision engine."""

from hystiq.analysis.cycling_detector import CyclingDetector, HealthStatus
from hystiq.config import HVACOptions, HystiqSettings
from hystiq.core.controller import HVACController
from hystiq.core.entities import (
    EvaluationResult,
    HVACMode,
    HVACState,
    ManualOverride,
    OperatingContext,
    ReasonCode,
    SystemMode,
)
from hystiq.core.evaluator import Evaluator
from hystiq.core.exceptions import ConfigurationError, HVACOperationError, HystiqError, StateError
from hystiq.core.executor import ExecutionReport, HVACExecutor
from hystiq.core.state_machine import HVACStateMachine, transition

__version__ = "0.3.0"

__all__ = [
    "ConfigurationError",
    "CyclingDetector",
    "EvaluationResult",
    "Evaluator",
    "ExecutionReport",
    "HVACController",
    "HVACExecutor",
    "HVACMode",
    "HVACOperationError",
    "HVACOptions",
    "HVACState",
    "HVACStateMachine",
    "HealthStatus",
    "HystiqError",
    "HystiqSettings",
    "ManualOverride",
    "OperatingContext",
    "ReasonCode",
    "StateError",
    "SystemMode",
    "transition",
    "__version__",
]
