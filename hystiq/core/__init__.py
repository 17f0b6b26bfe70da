"""Core modules for HystiQ."""

from hystiq.core.entities import (
    EvaluationResult,
    HVACMode,
    HVACState,
    ManualOverride,
    OperatingContext,
    ReasonCode,
    SystemMode,
)
from hystiq.core.exceptions import ConfigurationError, HVACOperationError, HystiqError, StateError

__all__ = [
    "ConfigurationError",
    "EvaluationResult",
    "HVACMode",
    "HVACOperationError",
    "HVACState",
    "HystiqError",
    "ManualOverride",
    "OperatingContext",
    "ReasonCode",
    "StateError",
    "SystemMode",
]
