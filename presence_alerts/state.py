"""
Per-device timeline state used for cooldown and hysteresis math.

State lives only in memory: a process restart starts every device's
windows from scratch.
"""
import threading
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class DeviceTimelineState:
    """
    Mutable timestamps for one device.

    Each device lane is the only writer of its state object, so no locking
    happens here.

    Attributes:
        device_id: Device this state belongs to
        last_max_occupancy_alert_at: When the last MAX_OCCUPANCY alert was raised
        last_idle_alert_reset_at: Last non-zero observation or idle alert
        last_anomaly_alert_reset_at: Last observation with occupancy != 1 or anomaly alert
    """
    device_id: str
    last_max_occupancy_alert_at: Optional[datetime] = None
    last_idle_alert_reset_at: Optional[datetime] = None
    last_anomaly_alert_reset_at: Optional[datetime] = None

    def advance(self, name: str, timestamp: datetime) -> bool:
        """
        Move a timestamp field forward.

        An older timestamp never replaces a newer one, so out-of-order
        events cannot rewind a window.

        Returns:
            True if the field changed
        """
        if name == 'device_id' or name not in _TIMESTAMP_FIELDS:
            raise AttributeError(f"Unknown timeline field: {name}")
        current = getattr(self, name)
        if current is not None and current >= timestamp:
            return False
        setattr(self, name, timestamp)
        return True

    def to_dict(self) -> Dict[str, Optional[str]]:
        data = {'device_id': self.device_id}
        for name in _TIMESTAMP_FIELDS:
            value = getattr(self, name)
            data[name] = value.isoformat() if value else None
        return data


_TIMESTAMP_FIELDS = tuple(f.name for f in fields(DeviceTimelineState) if f.name != 'device_id')


class StateRegistry:
    """Creates each device's state exactly once, safe under concurrent first access."""

    def __init__(self) -> None:
        self._states: Dict[str, DeviceTimelineState] = {}
        self._lock = threading.Lock()

    def get(self, device_id: str) -> DeviceTimelineState:
        state = self._states.get(device_id)
        if state is not None:
            return state
        with self._lock:
            state = self._states.get(device_id)
            if state is None:
                state = DeviceTimelineState(device_id=device_id)
                self._states[device_id] = state
            return state

    def devices(self) -> List[str]:
        with self._lock:
            return list(self._states)

    def __len__(self) -> int:
        return len(self._states)
