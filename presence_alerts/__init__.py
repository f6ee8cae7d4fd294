"""Presence Alerts - occupancy pattern detection and alert lifecycle engine."""

__version__ = "1.0.0"

# Lazy imports keep `import presence_alerts` free of side effects
__all__ = [
    'settings',
    'AlertEngine',
    'Dispatcher',
    'PresenceAlertService',
    'Alert',
    'AlertKind',
    'AlertStatus',
    'PresenceEvent',
    'validate_event',
]


def __getattr__(name):
    """Lazy import of modules."""
    if name == 'settings':
        from .config import settings
        return settings
    elif name == 'AlertEngine':
        from .engine import AlertEngine
        return AlertEngine
    elif name == 'Dispatcher':
        from .dispatcher import Dispatcher
        return Dispatcher
    elif name == 'PresenceAlertService':
        from .service import PresenceAlertService
        return PresenceAlertService
    elif name in ('Alert', 'AlertKind', 'AlertStatus', 'PresenceEvent'):
        from . import models
        return getattr(models, name)
    elif name == 'validate_event':
        from .validation import validate_event
        return validate_event
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
