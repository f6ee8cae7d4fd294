"""
Occupancy pattern detectors.

Detectors are pure decision functions: they read an event and the device's
timeline state and return what should happen. They never touch the store,
notifiers or broadcaster, and they never mutate state themselves; the
engine applies ``state_updates`` after carrying out the result.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from .config import EngineConfig
from .models import AlertIntent, AlertKind, PresenceEvent
from .state import DeviceTimelineState


class DetectorAction(Enum):
    NO_ACTION = "no_action"
    RAISE = "raise"
    CLEAR_ACTIVE = "clear_active"


@dataclass(frozen=True)
class DetectorResult:
    """
    Outcome of one detector on one event.

    Attributes:
        action: What the engine should do
        intent: Alert to raise when action is RAISE
        clear_kind: Alert kind to auto-resolve when action is CLEAR_ACTIVE
        state_updates: Timeline fields to advance. For RAISE they are only
            applied when the alert is actually persisted.
    """
    action: DetectorAction = DetectorAction.NO_ACTION
    intent: Optional[AlertIntent] = None
    clear_kind: Optional[AlertKind] = None
    state_updates: Dict[str, datetime] = field(default_factory=dict)

    @classmethod
    def no_action(cls, **state_updates: datetime) -> 'DetectorResult':
        return cls(state_updates=state_updates)

    @classmethod
    def raise_alert(cls, intent: AlertIntent, **state_updates: datetime) -> 'DetectorResult':
        return cls(action=DetectorAction.RAISE, intent=intent, state_updates=state_updates)

    @classmethod
    def clear_active(cls, kind: AlertKind, **state_updates: datetime) -> 'DetectorResult':
        return cls(action=DetectorAction.CLEAR_ACTIVE, clear_kind=kind, state_updates=state_updates)


NO_ACTION = DetectorResult()


class Detector(ABC):
    """Base class for detectors."""

    kind: AlertKind

    def __init__(self, config: EngineConfig):
        self.config = config

    @abstractmethod
    def detect(self, event: PresenceEvent, state: DeviceTimelineState) -> DetectorResult:
        """Decide what the event means for this detector's alert kind."""


def _format_duration(delta: timedelta) -> str:
    minutes = delta.total_seconds() / 60
    if minutes >= 60:
        return f"{minutes / 60:g} hours"
    return f"{minutes:g} minutes"


class MaxOccupancyDetector(Detector):
    """
    Raises when a room holds more people than allowed.

    Re-triggering is debounced by a cooldown window, not by the existence
    of an ACTIVE alert, so several ACTIVE alerts of this kind can coexist
    for a room that stays over the limit.
    """

    kind = AlertKind.MAX_OCCUPANCY

    def detect(self, event: PresenceEvent, state: DeviceTimelineState) -> DetectorResult:
        limit = self.config.max_occupancy
        if event.occupancy <= limit:
            return NO_ACTION

        last = state.last_max_occupancy_alert_at
        if last is not None and event.timestamp - last <= self.config.max_occupancy_cooldown:
            return NO_ACTION

        intent = AlertIntent(
            kind=self.kind,
            device_id=event.device_id,
            title="Maximum occupancy exceeded",
            description=(f"Room reached {event.occupancy} people, "
                         f"exceeding the limit of {limit}"),
            occupancy=event.occupancy,
            triggered_at=event.timestamp,
            extra={'limit': limit, 'exceeded_by': event.occupancy - limit},
        )
        return DetectorResult.raise_alert(intent, last_max_occupancy_alert_at=event.timestamp)


class IdleRoomDetector(Detector):
    """Raises when a room has been empty for longer than the idle timeout."""

    kind = AlertKind.IDLE_ROOM

    def detect(self, event: PresenceEvent, state: DeviceTimelineState) -> DetectorResult:
        last_reset = state.last_idle_alert_reset_at
        if last_reset is not None and event.timestamp < last_reset:
            # stale event, a newer reading already moved the window
            return NO_ACTION

        if event.occupancy > 0:
            return DetectorResult.clear_active(self.kind, last_idle_alert_reset_at=event.timestamp)

        if last_reset is None:
            return DetectorResult.no_action(last_idle_alert_reset_at=event.timestamp)

        idle_for = event.timestamp - last_reset
        if idle_for <= self.config.idle_timeout:
            return NO_ACTION

        intent = AlertIntent(
            kind=self.kind,
            device_id=event.device_id,
            title="Idle room detected",
            description=f"Room has been empty for more than {_format_duration(self.config.idle_timeout)}",
            occupancy=event.occupancy,
            triggered_at=event.timestamp,
            extra={
                'idle_minutes': round(idle_for.total_seconds() / 60, 1),
                'last_activity': last_reset,
            },
            single_active=True,
        )
        return DetectorResult.raise_alert(intent, last_idle_alert_reset_at=event.timestamp)


class AnomalousPresenceDetector(Detector):
    """Raises when a single person has stayed alone in a room for too long."""

    kind = AlertKind.ABNORMAL_PRESENCE

    def detect(self, event: PresenceEvent, state: DeviceTimelineState) -> DetectorResult:
        last_reset = state.last_anomaly_alert_reset_at
        if last_reset is not None and event.timestamp < last_reset:
            return NO_ACTION

        if event.occupancy != 1:
            return DetectorResult.clear_active(self.kind, last_anomaly_alert_reset_at=event.timestamp)

        if last_reset is None:
            return DetectorResult.no_action(last_anomaly_alert_reset_at=event.timestamp)

        alone_for = event.timestamp - last_reset
        if alone_for <= self.config.anomaly_timeout:
            return NO_ACTION

        intent = AlertIntent(
            kind=self.kind,
            device_id=event.device_id,
            title="Abnormal presence detected",
            description=(f"One person has been alone in the room for more than "
                         f"{_format_duration(self.config.anomaly_timeout)}"),
            occupancy=event.occupancy,
            triggered_at=event.timestamp,
            extra={
                'duration_hours': round(alone_for.total_seconds() / 3600, 2),
                'started_at': last_reset,
            },
            single_active=True,
        )
        return DetectorResult.raise_alert(intent, last_anomaly_alert_reset_at=event.timestamp)


class TimePatternDetector(Detector):
    """
    Raises when a room is empty during business hours.

    Dedup is per (device, weekday): one ACTIVE alert per weekday value.
    """

    kind = AlertKind.TIME_PATTERN

    def __init__(self, config: EngineConfig):
        super().__init__(config)
        self._tz = ZoneInfo(config.timezone)

    def is_business_time(self, timestamp: datetime) -> bool:
        local = timestamp.astimezone(self._tz)
        start, end = self.config.business_hours
        return start <= local.hour <= end and local.isoweekday() in self.config.business_days

    def detect(self, event: PresenceEvent, state: DeviceTimelineState) -> DetectorResult:
        if event.occupancy != 0 or not self.is_business_time(event.timestamp):
            return NO_ACTION

        local = event.timestamp.astimezone(self._tz)
        weekday = local.isoweekday()
        intent = AlertIntent(
            kind=self.kind,
            device_id=event.device_id,
            title="Unusual time pattern",
            description=f"Room empty during business hours ({local.hour}h, {local.strftime('%A')})",
            occupancy=event.occupancy,
            triggered_at=event.timestamp,
            extra={'hour': local.hour, 'weekday': weekday, 'business_hours': True},
            single_active=True,
            weekday=weekday,
        )
        return DetectorResult.raise_alert(intent)


def default_detectors(config: EngineConfig) -> List[Detector]:
    """The four detectors every engine runs, in a fixed order."""
    return [
        MaxOccupancyDetector(config),
        IdleRoomDetector(config),
        AnomalousPresenceDetector(config),
        TimePatternDetector(config),
    ]
