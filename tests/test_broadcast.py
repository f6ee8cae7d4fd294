"""
Tests for the in-process broadcaster.
"""
import pytest

from presence_alerts.broadcast import TOPIC_ALERT, TOPIC_PRESENCE, EventBroadcaster


def test_topic_filtering():
    """Test topic filtering."""
    bus = EventBroadcaster()
    everything, alerts_only = [], []
    bus.subscribe(lambda topic, payload: everything.append(topic))
    bus.subscribe(lambda topic, payload: alerts_only.append(payload), topic=TOPIC_ALERT)

    bus.publish(TOPIC_PRESENCE, {'device_id': 'D1'})
    bus.publish(TOPIC_ALERT, {'id': 'a1'})

    assert everything == [TOPIC_PRESENCE, TOPIC_ALERT]
    assert alerts_only == [{'id': 'a1'}]


def test_failing_listener_isolated():
    """Test failing listener isolated."""
    bus = EventBroadcaster()
    received = []

    def broken(topic, payload):
        raise RuntimeError("socket closed")

    bus.subscribe(broken)
    bus.subscribe(lambda topic, payload: received.append(payload))
    bus.publish(TOPIC_ALERT, {'id': 'a1'})

    assert received == [{'id': 'a1'}]


def test_unsubscribe():
    """Test unsubscribe."""
    bus = EventBroadcaster()
    received = []

    def listener(topic, payload):
        received.append(payload)

    bus.subscribe(listener)
    bus.unsubscribe(listener)
    bus.publish(TOPIC_ALERT, {'id': 'a1'})
    assert received == []


def test_unknown_topic():
    """Test unknown topic."""
    with pytest.raises(ValueError):
        EventBroadcaster().subscribe(lambda t, p: None, topic="video")
