"""
Data model for presence telemetry and alerts.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class EventKind(Enum):
    """Kinds of telemetry messages a sensor emits."""
    ENTER = "ENTER"
    EXIT = "EXIT"
    HEARTBEAT = "HEARTBEAT"


class AlertKind(Enum):
    """Anomaly conditions the engine can raise."""
    MAX_OCCUPANCY = "MAX_OCCUPANCY"
    IDLE_ROOM = "IDLE_ROOM"
    ABNORMAL_PRESENCE = "ABNORMAL_PRESENCE"
    TIME_PATTERN = "TIME_PATTERN"


class AlertStatus(Enum):
    """Alert lifecycle. RESOLVED and IGNORED are terminal."""
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"

    @property
    def is_terminal(self) -> bool:
        return self is not AlertStatus.ACTIVE


@dataclass(frozen=True)
class PresenceEvent:
    """One validated occupancy reading from a device."""
    device_id: str
    occupancy: int
    event_kind: EventKind
    timestamp: datetime
    sensor_id: int = 1
    signal_strength: Optional[int] = None
    uptime: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'device_id': self.device_id,
            'occupancy': self.occupancy,
            'event_kind': self.event_kind.value,
            'timestamp': self.timestamp.isoformat(),
            'sensor_id': self.sensor_id,
            'signal_strength': self.signal_strength,
            'uptime': self.uptime,
        }


@dataclass(frozen=True)
class AlertIntent:
    """
    A detector's request to raise an alert.

    Attributes:
        kind: Alert kind to raise
        device_id: Device the alert belongs to
        title: Short operator-facing title
        description: Human readable description
        occupancy: Occupancy observed when the condition fired
        triggered_at: Event timestamp that fired the condition
        extra: Kind-specific structured payload
        single_active: When True, the engine suppresses the intent if an
            ACTIVE alert of the same kind already exists for the device
        weekday: Additional dedup key for time-pattern alerts
    """
    kind: AlertKind
    device_id: str
    title: str
    description: str
    occupancy: int
    triggered_at: datetime
    extra: Dict[str, Any] = field(default_factory=dict)
    single_active: bool = False
    weekday: Optional[int] = None


@dataclass
class Alert:
    """Alert record as persisted by the store."""
    kind: AlertKind
    device_id: str
    title: str
    description: str
    occupancy_at_trigger: int
    triggered_at: datetime
    extra: Dict[str, Any] = field(default_factory=dict)
    status: AlertStatus = AlertStatus.ACTIVE
    notified: bool = False
    notified_at: Optional[datetime] = None
    id: Optional[str] = None

    @classmethod
    def from_intent(cls, intent: AlertIntent) -> 'Alert':
        return cls(
            kind=intent.kind,
            device_id=intent.device_id,
            title=intent.title,
            description=intent.description,
            occupancy_at_trigger=intent.occupancy,
            triggered_at=intent.triggered_at,
            extra=dict(intent.extra),
        )

    def copy(self, **changes) -> 'Alert':
        """Detached copy, optionally with some fields replaced."""
        return replace(self, extra=dict(self.extra), **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert alert to a JSON-friendly dictionary."""
        return {
            'id': self.id,
            'kind': self.kind.value,
            'status': self.status.value,
            'title': self.title,
            'description': self.description,
            'occupancy_at_trigger': self.occupancy_at_trigger,
            'device_id': self.device_id,
            'triggered_at': self.triggered_at.isoformat(),
            'extra': _jsonable(self.extra),
            'notified': self.notified,
            'notified_at': self.notified_at.isoformat() if self.notified_at else None,
        }


def _jsonable(extra: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in extra.items()
    }
