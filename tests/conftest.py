import threading
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from presence_alerts.config import EngineConfig
from presence_alerts.engine import AlertEngine
from presence_alerts.exceptions import NotifyError
from presence_alerts.models import EventKind, PresenceEvent
from presence_alerts.notifiers.base import Notifier
from presence_alerts.store import InMemoryAlertStore

# Saturday 03:00 UTC: outside business hours, so time-pattern alerts stay quiet
T0 = datetime(2024, 1, 6, 3, 0, tzinfo=timezone.utc)
# Monday 10:00 UTC
MONDAY_10 = datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)


def make_event(occupancy, at=T0, device_id="D1", kind=EventKind.HEARTBEAT):
    return PresenceEvent(device_id=device_id, occupancy=occupancy, event_kind=kind, timestamp=at)


def minutes(n):
    return timedelta(minutes=n)


class RecordingBroadcaster:
    def __init__(self):
        self.messages = []
        self._lock = threading.Lock()

    def publish(self, topic, payload):
        with self._lock:
            self.messages.append((topic, payload))

    def topic(self, name) -> List[dict]:
        return [payload for topic, payload in self.messages if topic == name]


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def notify(self, alert):
        self.calls.append(alert)
        if self.fail:
            raise NotifyError("smtp down")


@pytest.fixture
def config():
    """Create config for testing."""
    return EngineConfig()


@pytest.fixture
def store():
    """Create store for testing."""
    return InMemoryAlertStore()


@pytest.fixture
def broadcaster():
    """Create broadcaster for testing."""
    return RecordingBroadcaster()


@pytest.fixture
def engine(store, broadcaster, config):
    """Create engine for testing."""
    return AlertEngine(store=store, broadcaster=broadcaster, config=config)
