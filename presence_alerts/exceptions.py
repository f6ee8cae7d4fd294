"""
Exception hierarchy for the presence alert engine.
"""
from typing import Any, Optional


class PresenceAlertsError(Exception):
    """Base class for all engine errors."""


class ValidationError(PresenceAlertsError):
    """Raw telemetry could not be turned into a PresenceEvent."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class MissingFieldError(ValidationError):
    """A required telemetry field is absent."""

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}", field=field)


class InvalidEnumError(ValidationError):
    """A field holds a value outside its recognized set."""

    def __init__(self, field: str, value: Any):
        super().__init__(f"Invalid value for {field}: {value!r}", field=field)
        self.value = value


class InvalidFieldError(ValidationError):
    """A field is present but has the wrong type or range."""


class PersistenceError(PresenceAlertsError):
    """The store could not complete a read or write."""


class NotifyError(PresenceAlertsError):
    """A notification or broadcast could not be delivered."""
