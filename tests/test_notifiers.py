"""
Tests for notification delivery.
"""
import smtplib
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from conftest import T0, RecordingNotifier
from presence_alerts.exceptions import NotifyError
from presence_alerts.models import Alert, AlertKind
from presence_alerts.notifiers import (
    CompositeNotifier,
    EmailNotifier,
    NotificationDispatcher,
    WebhookNotifier,
)


def make_alert(kind=AlertKind.MAX_OCCUPANCY):
    return Alert(
        id="a1",
        kind=kind,
        device_id="D1",
        title="Maximum occupancy exceeded",
        description="Room reached 6 people, exceeding the limit of 5",
        occupancy_at_trigger=6,
        triggered_at=T0,
        extra={'limit': 5, 'exceeded_by': 1},
    )


class TestEmailNotifier:
    """Tests for EmailNotifier."""

    @pytest.fixture
    def notifier(self):
        """Create notifier for testing."""
        return EmailNotifier(
            smtp_host="smtp.example.com",
            sender="alerts@example.com",
            admin_email="admin@example.com",
            manager_email="manager@example.com",
            username="user",
            password="secret",
        )

    @pytest.mark.parametrize('kind, recipient', [
        (AlertKind.MAX_OCCUPANCY, "admin@example.com"),
        (AlertKind.ABNORMAL_PRESENCE, "admin@example.com"),
        (AlertKind.IDLE_ROOM, "manager@example.com"),
        (AlertKind.TIME_PATTERN, "manager@example.com"),
    ])
    def test_recipient_routing(self, notifier, kind, recipient):
        """Test recipient routing."""
        assert notifier.recipient_for(make_alert(kind)) == recipient

    def test_manager_falls_back_to_admin(self):
        """Test manager falls back to admin."""
        notifier = EmailNotifier(smtp_host="smtp.example.com", admin_email="admin@example.com")
        assert notifier.recipient_for(make_alert(AlertKind.IDLE_ROOM)) == "admin@example.com"

    def test_sends_message(self, notifier):
        """Test sends message."""
        with patch('presence_alerts.notifiers.smtp.smtplib.SMTP') as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            notifier.notify(make_alert())

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")
        msg = server.send_message.call_args[0][0]
        assert msg['To'] == "admin@example.com"
        assert msg['Subject'] == "Alert: Maximum occupancy in room"

    def test_no_login_without_credentials(self):
        """Test no login without credentials."""
        notifier = EmailNotifier(smtp_host="smtp.example.com", admin_email="admin@example.com")
        with patch('presence_alerts.notifiers.smtp.smtplib.SMTP') as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            notifier.notify(make_alert())
        server.login.assert_not_called()

    def test_smtp_failure(self, notifier):
        """Test SMTP failure."""
        with patch('presence_alerts.notifiers.smtp.smtplib.SMTP',
                   side_effect=smtplib.SMTPConnectError(421, "busy")):
            with pytest.raises(NotifyError):
                notifier.notify(make_alert())

    def test_missing_recipient(self):
        """Test missing recipient."""
        notifier = EmailNotifier(smtp_host="smtp.example.com")
        with pytest.raises(NotifyError):
            notifier.notify(make_alert())

    def test_message_bodies(self, notifier):
        """Test message bodies."""
        msg = notifier.build_message(make_alert(), "admin@example.com")
        parts = [part.get_content_type() for part in msg.get_payload()]
        assert parts == ['text/plain', 'text/html']


class TestWebhookNotifier:
    """Tests for WebhookNotifier."""

    def test_posts_alert_json(self):
        """Test posts alert json."""
        notifier = WebhookNotifier(["http://hook"], timeout_seconds=2.0)
        with patch('presence_alerts.notifiers.webhook.requests.post',
                   return_value=Mock(ok=True, status_code=200)) as post:
            notifier.notify(make_alert())
        post.assert_called_once_with("http://hook", json=make_alert().to_dict(), timeout=2.0)

    def test_http_error(self):
        """Test HTTP error status."""
        notifier = WebhookNotifier(["http://hook"])
        with patch('presence_alerts.notifiers.webhook.requests.post',
                   return_value=Mock(ok=False, status_code=500)):
            with pytest.raises(NotifyError):
                notifier.notify(make_alert())

    def test_connection_error(self):
        """Test connection error."""
        notifier = WebhookNotifier(["http://hook"])
        with patch('presence_alerts.notifiers.webhook.requests.post',
                   side_effect=requests.ConnectionError("refused")):
            with pytest.raises(NotifyError):
                notifier.notify(make_alert())

    def test_partial_failure_is_success(self):
        """Test partial failure is success."""
        notifier = WebhookNotifier(["http://a", "http://b"])
        responses = [Mock(ok=False, status_code=502), Mock(ok=True, status_code=200)]
        with patch('presence_alerts.notifiers.webhook.requests.post', side_effect=responses):
            notifier.notify(make_alert())


class TestCompositeNotifier:
    """Tests for CompositeNotifier."""

    def test_one_success_is_enough(self):
        """Test one success is enough."""
        good, bad = RecordingNotifier(), RecordingNotifier(fail=True)
        CompositeNotifier([bad, good]).notify(make_alert())
        assert len(good.calls) == 1
        assert len(bad.calls) == 1

    def test_all_fail(self):
        """Test composite fails when every notifier fails."""
        with pytest.raises(NotifyError):
            CompositeNotifier([RecordingNotifier(fail=True), RecordingNotifier(fail=True)]).notify(make_alert())

    def test_empty(self):
        """Test composite with no notifiers."""
        with pytest.raises(NotifyError):
            CompositeNotifier([]).notify(make_alert())


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    def test_delivers_in_background(self):
        """Test delivers in background."""
        notifier = RecordingNotifier()
        on_delivered = MagicMock()
        dispatcher = NotificationDispatcher(notifier, on_delivered=on_delivered)
        dispatcher.start()
        assert dispatcher.enqueue(make_alert()) is True
        dispatcher.stop()

        assert [a.id for a in notifier.calls] == ["a1"]
        assert on_delivered.call_args[0][0] == "a1"
        assert dispatcher.delivered == 1

    def test_failure_counted_not_recorded(self):
        """Test failure counted not recorded."""
        on_delivered = MagicMock()
        dispatcher = NotificationDispatcher(RecordingNotifier(fail=True), on_delivered=on_delivered)
        assert dispatcher.deliver(make_alert()) is False
        on_delivered.assert_not_called()
        assert dispatcher.failed == 1

    def test_full_queue_drops(self):
        """Test full queue drops."""
        dispatcher = NotificationDispatcher(RecordingNotifier(), maxsize=1)
        assert dispatcher.enqueue(make_alert()) is True
        assert dispatcher.enqueue(make_alert()) is False
        assert dispatcher.dropped == 1
