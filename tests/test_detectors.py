"""
Tests for the pure detectors. State is built directly, no store involved.
"""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import MONDAY_10, T0, make_event, minutes
from presence_alerts.config import EngineConfig
from presence_alerts.detectors import (
    AnomalousPresenceDetector,
    DetectorAction,
    IdleRoomDetector,
    MaxOccupancyDetector,
    TimePatternDetector,
    default_detectors,
)
from presence_alerts.models import AlertKind
from presence_alerts.state import DeviceTimelineState


@pytest.fixture
def state():
    """Create state for testing."""
    return DeviceTimelineState(device_id="D1")


class TestMaxOccupancyDetector:
    """Tests for MaxOccupancyDetector."""

    @pytest.fixture
    def detector(self, config):
        """Create detector for testing."""
        return MaxOccupancyDetector(config)

    def test_at_limit_does_nothing(self, detector, state):
        """Test at limit does nothing."""
        assert detector.detect(make_event(5), state).action is DetectorAction.NO_ACTION

    def test_over_limit_raises(self, detector, state):
        """Test over limit raises."""
        result = detector.detect(make_event(6), state)
        assert result.action is DetectorAction.RAISE
        assert result.intent.kind is AlertKind.MAX_OCCUPANCY
        assert result.intent.extra == {'limit': 5, 'exceeded_by': 1}
        assert result.intent.single_active is False
        assert result.state_updates == {'last_max_occupancy_alert_at': T0}

    def test_cooldown_suppresses(self, detector, state):
        """Test cooldown suppresses."""
        state.last_max_occupancy_alert_at = T0
        assert detector.detect(make_event(7, T0 + minutes(1)), state).action is DetectorAction.NO_ACTION
        assert detector.detect(make_event(7, T0 + minutes(5)), state).action is DetectorAction.NO_ACTION

    def test_after_cooldown_raises_again(self, detector, state):
        """Test after cooldown raises again."""
        state.last_max_occupancy_alert_at = T0
        assert detector.detect(make_event(7, T0 + minutes(6)), state).action is DetectorAction.RAISE

    def test_older_event_never_triggers(self, detector, state):
        """Test older event never triggers."""
        state.last_max_occupancy_alert_at = T0
        assert detector.detect(make_event(9, T0 - minutes(30)), state).action is DetectorAction.NO_ACTION

    def test_detector_does_not_mutate_state(self, detector, state):
        """Test detector does not mutate state."""
        detector.detect(make_event(6), state)
        assert state.last_max_occupancy_alert_at is None


class TestIdleRoomDetector:
    """Tests for IdleRoomDetector."""

    @pytest.fixture
    def detector(self, config):
        """Create detector for testing."""
        return IdleRoomDetector(config)

    def test_first_empty_reading_starts_the_clock(self, detector, state):
        """Test first empty reading starts the clock."""
        result = detector.detect(make_event(0), state)
        assert result.action is DetectorAction.NO_ACTION
        assert result.state_updates == {'last_idle_alert_reset_at': T0}

    def test_empty_before_timeout(self, detector, state):
        """Test empty before timeout."""
        state.last_idle_alert_reset_at = T0
        assert detector.detect(make_event(0, T0 + minutes(29)), state).action is DetectorAction.NO_ACTION

    def test_empty_past_timeout_raises(self, detector, state):
        """Test empty past timeout raises."""
        state.last_idle_alert_reset_at = T0
        result = detector.detect(make_event(0, T0 + minutes(45)), state)
        assert result.action is DetectorAction.RAISE
        assert result.intent.single_active is True
        assert result.intent.extra == {'idle_minutes': 45.0, 'last_activity': T0}
        assert result.state_updates == {'last_idle_alert_reset_at': T0 + minutes(45)}

    def test_occupied_clears(self, detector, state):
        """Test occupied clears."""
        state.last_idle_alert_reset_at = T0
        result = detector.detect(make_event(2, T0 + minutes(40)), state)
        assert result.action is DetectorAction.CLEAR_ACTIVE
        assert result.clear_kind is AlertKind.IDLE_ROOM
        assert result.state_updates == {'last_idle_alert_reset_at': T0 + minutes(40)}

    def test_stale_occupied_reading_is_ignored(self, detector, state):
        """Test stale occupied reading is ignored."""
        state.last_idle_alert_reset_at = T0 + minutes(40)
        assert detector.detect(make_event(2, T0), state).action is DetectorAction.NO_ACTION

    def test_custom_timeout(self, state):
        """Test custom timeout."""
        detector = IdleRoomDetector(EngineConfig(idle_timeout=timedelta(minutes=5)))
        state.last_idle_alert_reset_at = T0
        assert detector.detect(make_event(0, T0 + minutes(5)), state).action is DetectorAction.NO_ACTION
        assert detector.detect(make_event(0, T0 + minutes(6)), state).action is DetectorAction.RAISE


class TestAnomalousPresenceDetector:
    """Tests for AnomalousPresenceDetector."""

    @pytest.fixture
    def detector(self, config):
        """Create detector for testing."""
        return AnomalousPresenceDetector(config)

    def test_single_person_starts_the_clock(self, detector, state):
        """Test single person starts the clock."""
        result = detector.detect(make_event(1), state)
        assert result.action is DetectorAction.NO_ACTION
        assert result.state_updates == {'last_anomaly_alert_reset_at': T0}

    def test_single_person_past_timeout_raises(self, detector, state):
        """Test single person past timeout raises."""
        state.last_anomaly_alert_reset_at = T0
        result = detector.detect(make_event(1, T0 + timedelta(hours=2, minutes=1)), state)
        assert result.action is DetectorAction.RAISE
        assert result.intent.kind is AlertKind.ABNORMAL_PRESENCE
        assert result.intent.extra['started_at'] == T0
        assert result.intent.extra['duration_hours'] == pytest.approx(2.02, abs=0.01)

    def test_exactly_at_timeout_does_nothing(self, detector, state):
        """Test exactly at timeout does nothing."""
        state.last_anomaly_alert_reset_at = T0
        result = detector.detect(make_event(1, T0 + timedelta(hours=2)), state)
        assert result.action is DetectorAction.NO_ACTION

    @pytest.mark.parametrize('occupancy', [0, 2, 8])
    def test_other_counts_clear(self, detector, state, occupancy):
        """Test other counts clear."""
        state.last_anomaly_alert_reset_at = T0
        result = detector.detect(make_event(occupancy, T0 + minutes(10)), state)
        assert result.action is DetectorAction.CLEAR_ACTIVE
        assert result.clear_kind is AlertKind.ABNORMAL_PRESENCE


class TestTimePatternDetector:
    """Tests for TimePatternDetector."""

    @pytest.fixture
    def detector(self, config):
        """Create detector for testing."""
        return TimePatternDetector(config)

    def test_empty_room_in_business_hours(self, detector, state):
        """Test empty room in business hours."""
        result = detector.detect(make_event(0, MONDAY_10), state)
        assert result.action is DetectorAction.RAISE
        assert result.intent.weekday == 1
        assert result.intent.extra == {'hour': 10, 'weekday': 1, 'business_hours': True}
        assert result.state_updates == {}

    def test_occupied_room_in_business_hours(self, detector, state):
        """Test occupied room in business hours."""
        assert detector.detect(make_event(1, MONDAY_10), state).action is DetectorAction.NO_ACTION

    @pytest.mark.parametrize('at, expected', [
        (datetime(2024, 1, 8, 7, 59, tzinfo=timezone.utc), False),
        (datetime(2024, 1, 8, 8, 0, tzinfo=timezone.utc), True),
        (datetime(2024, 1, 8, 18, 59, tzinfo=timezone.utc), True),
        (datetime(2024, 1, 8, 19, 0, tzinfo=timezone.utc), False),
        (datetime(2024, 1, 12, 12, 0, tzinfo=timezone.utc), True),
        (datetime(2024, 1, 13, 12, 0, tzinfo=timezone.utc), False),
        (datetime(2024, 1, 14, 12, 0, tzinfo=timezone.utc), False),
    ])
    def test_business_window(self, detector, at, expected):
        """Test business window."""
        assert detector.is_business_time(at) is expected

    def test_window_uses_configured_timezone(self, state):
        """Test window uses configured timezone."""
        detector = TimePatternDetector(EngineConfig(timezone="America/Sao_Paulo"))
        # 12:00 UTC is 09:00 in Sao Paulo, 22:00 UTC is 19:00
        assert detector.detect(make_event(0, datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)), state).intent.extra['hour'] == 9
        assert detector.detect(make_event(0, datetime(2024, 1, 8, 22, 0, tzinfo=timezone.utc)), state).action is DetectorAction.NO_ACTION


def test_all_detectors_may_fire_on_one_event(config):
    """An empty Monday room past every timeout triggers several detectors at once."""
    state = DeviceTimelineState(device_id="D1",
                                last_idle_alert_reset_at=MONDAY_10 - timedelta(hours=1),
                                last_anomaly_alert_reset_at=MONDAY_10 - timedelta(hours=1))
    actions = {d.kind: d.detect(make_event(0, MONDAY_10), state).action for d in default_detectors(config)}
    assert actions == {
        AlertKind.MAX_OCCUPANCY: DetectorAction.NO_ACTION,
        AlertKind.IDLE_ROOM: DetectorAction.RAISE,
        AlertKind.ABNORMAL_PRESENCE: DetectorAction.CLEAR_ACTIVE,
        AlertKind.TIME_PATTERN: DetectorAction.RAISE,
    }
