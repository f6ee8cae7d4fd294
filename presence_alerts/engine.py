"""
Alert engine: runs detectors over presence events and carries out their decisions.
Handles dedup against active alerts, persistence, auto-resolution,
notification hand-off and broadcasting.
"""
import threading
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from .broadcast import TOPIC_ALERT, TOPIC_PRESENCE, Broadcaster
from .config import EngineConfig
from .detectors import Detector, DetectorAction, DetectorResult, default_detectors
from .exceptions import PersistenceError
from .metrics import (
    ALERTS_AUTO_RESOLVED,
    ALERTS_RAISED,
    ALERTS_SUPPRESSED,
    EVENTS_PROCESSED,
    OCCUPANCY,
)
from .models import Alert, AlertIntent, AlertKind, AlertStatus, PresenceEvent
from .notifiers.dispatcher import NotificationDispatcher
from .state import DeviceTimelineState, StateRegistry
from .store import AlertFilter, AlertStore


class AlertEngine:
    """
    Turns presence events into alerts.

    ``process`` must be called by at most one thread at a time per device;
    the Dispatcher guarantees that. Different devices may be processed
    concurrently.
    """

    def __init__(self,
                 store: AlertStore,
                 broadcaster: Optional[Broadcaster] = None,
                 notifications: Optional[NotificationDispatcher] = None,
                 config: Optional[EngineConfig] = None,
                 detectors: Optional[Sequence[Detector]] = None,
                 registry: Optional[StateRegistry] = None):
        """
        Initialize alert engine.

        Args:
            store: Persistence for events and alerts
            broadcaster: Real-time fan-out to dashboards
            notifications: Background delivery of alert notifications
            config: Detector thresholds
            detectors: Override the default detector set
            registry: Per-device timeline state
        """
        self.store = store
        self.broadcaster = broadcaster
        self.notifications = notifications
        self.config = config or EngineConfig()
        self.detectors: List[Detector] = list(detectors) if detectors is not None \
            else default_detectors(self.config)
        self.registry = registry or StateRegistry()

        self._stats_lock = threading.Lock()
        self._stats: Dict[str, int] = {
            'events_processed': 0,
            'alerts_raised': 0,
            'alerts_suppressed': 0,
            'alerts_auto_resolved': 0,
            'persistence_failures': 0,
        }

        logger.info(f"Alert engine initialized with {len(self.detectors)} detectors, "
                    f"max occupancy {self.config.max_occupancy}")

    def process(self, event: PresenceEvent) -> List[Alert]:
        """
        Run every detector on one event and apply the outcome.

        Args:
            event: Validated presence event

        Returns:
            Alerts created for this event
        """
        state = self.registry.get(event.device_id)
        results = [detector.detect(event, state) for detector in self.detectors]

        for result in results:
            if result.action is DetectorAction.CLEAR_ACTIVE:
                self._auto_resolve(event.device_id, result.clear_kind)

        created: List[Alert] = []
        applied: List[DetectorResult] = []
        for result in results:
            if result.action is DetectorAction.RAISE:
                alert = self._raise(result.intent)
                if alert is None:
                    continue
                created.append(alert)
            applied.append(result)

        self._apply_state(state, applied)
        self._record_event(event)
        self._count('events_processed')
        return created

    def _raise(self, intent: AlertIntent) -> Optional[Alert]:
        if intent.single_active:
            try:
                existing = self.store.find_active_alert(intent.device_id, intent.kind, intent.weekday)
            except PersistenceError as e:
                self._count('persistence_failures')
                logger.error(f"Could not check active {intent.kind.value} alerts for "
                             f"{intent.device_id}, dropping alert: {e}")
                return None
            if existing is not None:
                self._count('alerts_suppressed')
                ALERTS_SUPPRESSED.labels(kind=intent.kind.value).inc()
                logger.debug(f"Alert suppressed (active {intent.kind.value} alert {existing.id} "
                             f"exists for {intent.device_id})")
                return None

        alert = Alert.from_intent(intent)
        try:
            alert.id = self.store.save_alert(alert)
        except PersistenceError as e:
            self._count('persistence_failures')
            logger.error(f"Failed to persist {intent.kind.value} alert for {intent.device_id}: {e}")
            return None

        self._count('alerts_raised')
        ALERTS_RAISED.labels(kind=alert.kind.value).inc()
        logger.info(f"Alert raised: {alert.kind.value} on {alert.device_id} - {alert.description}")

        # listeners only ever see alerts the store already has
        self._publish(TOPIC_ALERT, {**alert.to_dict(), 'action': 'raised'})
        if self.notifications is not None:
            self.notifications.enqueue(alert)
        return alert

    def _auto_resolve(self, device_id: str, kind: AlertKind) -> int:
        try:
            count = self.store.bulk_update_status(
                AlertFilter(device_id=device_id, kind=kind), AlertStatus.RESOLVED
            )
        except PersistenceError as e:
            self._count('persistence_failures')
            logger.error(f"Failed to auto-resolve {kind.value} alerts for {device_id}: {e}")
            return 0

        if count:
            self._count('alerts_auto_resolved', count)
            ALERTS_AUTO_RESOLVED.labels(kind=kind.value).inc(count)
            logger.info(f"Auto-resolved {count} {kind.value} alert(s) for {device_id}")
            self._publish(TOPIC_ALERT, {
                'action': 'resolved',
                'device_id': device_id,
                'kind': kind.value,
                'count': count,
                'automatic': True,
            })
        return count

    @staticmethod
    def _apply_state(state: DeviceTimelineState, results: Sequence[DetectorResult]) -> None:
        for result in results:
            for name, timestamp in result.state_updates.items():
                state.advance(name, timestamp)

    def _record_event(self, event: PresenceEvent) -> None:
        try:
            self.store.save_event(event)
        except PersistenceError as e:
            self._count('persistence_failures')
            logger.error(f"Failed to persist presence event from {event.device_id}: {e}")

        EVENTS_PROCESSED.labels(device_id=event.device_id).inc()
        OCCUPANCY.labels(device_id=event.device_id).set(event.occupancy)
        self._publish(TOPIC_PRESENCE, {
            'device_id': event.device_id,
            'occupancy': event.occupancy,
            'event_kind': event.event_kind.value,
            'timestamp': event.timestamp.isoformat(),
        })

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.broadcaster is None:
            return
        try:
            self.broadcaster.publish(topic, payload)
        except Exception as e:
            logger.error(f"Broadcast on {topic} failed: {e}")

    def resolve(self, alert_id: str) -> Optional[Alert]:
        """Mark an alert RESOLVED. Already-terminal alerts are left untouched."""
        return self._transition(alert_id, AlertStatus.RESOLVED)

    def ignore(self, alert_id: str) -> Optional[Alert]:
        """Mark an alert IGNORED. Already-terminal alerts are left untouched."""
        return self._transition(alert_id, AlertStatus.IGNORED)

    def _transition(self, alert_id: str, status: AlertStatus) -> Optional[Alert]:
        try:
            current = self.store.get_alert(alert_id)
            if current is None:
                logger.debug(f"Alert {alert_id} not found; nothing to mark {status.value}")
                return None
            if current.status.is_terminal:
                logger.debug(f"Alert {alert_id} already {current.status.value}")
                return current
            updated = self.store.update_status(alert_id, status)
        except PersistenceError as e:
            self._count('persistence_failures')
            logger.error(f"Failed to mark alert {alert_id} {status.value}: {e}")
            raise
        if updated is not None and updated.status is status:
            logger.info(f"Alert {alert_id} marked {status.value}")
            self._publish(TOPIC_ALERT, {**updated.to_dict(), 'action': status.value.lower()})
        return updated

    def bulk_resolve(self, alert_filter: AlertFilter) -> int:
        """
        Resolve every ACTIVE alert matching the filter.

        Returns:
            Number of alerts that changed status
        """
        try:
            count = self.store.bulk_update_status(alert_filter, AlertStatus.RESOLVED)
        except PersistenceError as e:
            self._count('persistence_failures')
            logger.error(f"Bulk resolve failed: {e}")
            raise
        if count:
            logger.info(f"Bulk-resolved {count} alert(s)")
            self._publish(TOPIC_ALERT, {
                'action': 'resolved',
                'device_id': alert_filter.device_id,
                'kind': alert_filter.kind.value if alert_filter.kind else None,
                'count': count,
                'automatic': False,
            })
        return count

    def delete_alert(self, alert_id: str) -> Optional[Alert]:
        """
        Permanently remove an alert, whatever its status.

        Returns:
            The removed alert, or None if it did not exist

        Raises:
            PersistenceError: the store could not delete it
        """
        try:
            alert = self.store.delete_alert(alert_id)
        except PersistenceError as e:
            self._count('persistence_failures')
            logger.error(f"Failed to delete alert {alert_id}: {e}")
            raise
        if alert is None:
            logger.debug(f"Alert {alert_id} not found; nothing to delete")
            return None
        logger.info(f"Alert {alert_id} deleted")
        self._publish(TOPIC_ALERT, {**alert.to_dict(), 'action': 'deleted'})
        return alert

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def get_stats(self) -> Dict[str, int]:
        """Get engine statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        stats['tracked_devices'] = len(self.registry)
        return stats
