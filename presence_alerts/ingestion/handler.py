from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from loguru import logger

from ..broadcast import TOPIC_STATUS, Broadcaster
from ..dispatcher import Dispatcher
from ..exceptions import ValidationError
from ..metrics import EVENTS_REJECTED
from ..models import PresenceEvent, utc_now
from ..validation import validate_event


class PresenceIngestor:
    """Validates raw telemetry and hands good events to the dispatcher."""

    def __init__(self,
                 dispatcher: Dispatcher,
                 broadcaster: Optional[Broadcaster] = None,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.dispatcher = dispatcher
        self.broadcaster = broadcaster
        self.clock = clock or utc_now
        self.accepted = 0
        self.rejected = 0

    def on_event(self, raw: Mapping[str, Any]) -> Optional[PresenceEvent]:
        try:
            event = validate_event(raw, clock=self.clock)
        except ValidationError as e:
            self.rejected += 1
            EVENTS_REJECTED.labels(reason=type(e).__name__).inc()
            logger.warning(f"Dropping invalid presence payload: {e} ({raw!r})")
            return None

        if not self.dispatcher.submit(event):
            return None
        self.accepted += 1
        logger.debug(f"Presence event accepted: {event.device_id} {event.event_kind.value} "
                     f"occupancy={event.occupancy}")
        return event

    def on_status(self, raw: Mapping[str, Any]) -> None:
        if self.broadcaster is None:
            return
        device_id = raw.get('device_id') if isinstance(raw, Mapping) else None
        if not device_id:
            logger.warning(f"Dropping status payload without device_id: {raw!r}")
            return
        payload: Dict[str, Any] = {
            'device_id': device_id,
            'status': raw.get('status'),
            'occupancy': raw.get('occupancy', raw.get('contador')),
            'signal_strength': raw.get('signal_strength', raw.get('wifi_rssi')),
            'uptime': raw.get('uptime'),
            'timestamp': self.clock().isoformat(),
        }
        logger.debug(f"Status from {device_id}: {payload}")
        try:
            self.broadcaster.publish(TOPIC_STATUS, payload)
        except Exception as e:
            logger.error(f"Status broadcast failed for {device_id}: {e}")
