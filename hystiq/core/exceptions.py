"""Exception hierarchy for HystiQ."""


class HystiqError(Exception):
    """Base exception for all HystiQ errors."""


class ConfigurationError(HystiqError):
    """Raised when configuration cannot be loaded or fails validation."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class StateError(HystiqError):
    """Raised for operations the state machine cannot accept in its current state.

    Covers events sent to a stopped machine, double starts and overrides that
    conflict with the configured system mode.
    """

    def __init__(self, message: str, state: str | None = None):
        super().__init__(message)
        self.state = state


class HVACOperationError(HystiqError):
    """A command to a single HVAC unit failed."""

    def __init__(self, message: str, entity_id: str | None = None):
        super().__init__(message)
        self.entity_id = entity_id
