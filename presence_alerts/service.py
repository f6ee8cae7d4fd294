from typing import Any, Dict, List, Optional

from loguru import logger

from .broadcast import EventBroadcaster
from .config import Settings
from .dispatcher import Dispatcher
from .engine import AlertEngine
from .ingestion import MqttIngestion, PresenceIngestor
from .notifiers import (
    CompositeNotifier,
    EmailNotifier,
    NotificationDispatcher,
    Notifier,
    WebhookNotifier,
)
from .store import AlertStore, create_store


def build_notifier(config: Settings) -> Optional[Notifier]:
    notifiers: List[Notifier] = []
    if config.enable_email:
        if config.email_smtp_host:
            notifiers.append(EmailNotifier(
                smtp_host=config.email_smtp_host,
                smtp_port=config.email_smtp_port,
                sender=config.email_from,
                admin_email=config.admin_email,
                manager_email=config.manager_email,
                username=config.email_username,
                password=config.email_password,
                timeout=config.notify_timeout_seconds,
            ))
        else:
            logger.warning("Email notifications enabled but no SMTP host configured")
    if config.enable_webhook:
        if config.webhook_urls:
            notifiers.append(WebhookNotifier(config.webhook_urls, config.notify_timeout_seconds))
        else:
            logger.warning("Webhook notifications enabled but no URLs configured")

    if not notifiers:
        return None
    if len(notifiers) == 1:
        return notifiers[0]
    return CompositeNotifier(notifiers)


class PresenceAlertService:
    def __init__(self,
                 config: Settings,
                 store: Optional[AlertStore] = None,
                 notifier: Optional[Notifier] = None) -> None:
        self.config = config
        self.store = store or create_store(config)
        self.broadcaster = EventBroadcaster()

        notifier = notifier or build_notifier(config)
        self.notifications: Optional[NotificationDispatcher] = None
        if notifier is not None:
            self.notifications = NotificationDispatcher(
                notifier,
                on_delivered=self.store.mark_notified,
                maxsize=config.notify_queue_size,
            )

        self.engine = AlertEngine(
            store=self.store,
            broadcaster=self.broadcaster,
            notifications=self.notifications,
            config=config.engine_config(),
        )
        self.dispatcher = Dispatcher(self.engine.process)
        self.ingestor = PresenceIngestor(self.dispatcher, self.broadcaster)

        self.mqtt: Optional[MqttIngestion] = None
        if config.mqtt_broker:
            self.mqtt = MqttIngestion(
                self.ingestor,
                broker=config.mqtt_broker,
                port=config.mqtt_port,
                username=config.mqtt_username,
                password=config.mqtt_password,
                topics=config.mqtt_topics,
            )
        self._running = False

    def start(self) -> None:
        if self._running:
            return
        logger.info("Starting presence alert service")
        if self.notifications is not None:
            self.notifications.start()
        if self.mqtt is not None:
            self.mqtt.start()
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping presence alert service")
        if self.mqtt is not None:
            self.mqtt.stop()
        self.dispatcher.shutdown(timeout=30)
        if self.notifications is not None:
            self.notifications.stop()
        self.store.close()
        self._running = False
        logger.info(f"Alert statistics: {self.engine.get_stats()}")

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self.engine.get_stats())
        stats['events_accepted'] = self.ingestor.accepted
        stats['events_rejected'] = self.ingestor.rejected
        stats['lanes'] = self.dispatcher.lane_count
        stats['events_pending'] = sum(self.dispatcher.pending().values())
        if self.notifications is not None:
            stats['notifications_delivered'] = self.notifications.delivered
            stats['notifications_failed'] = self.notifications.failed
            stats['notifications_dropped'] = self.notifications.dropped
        if self.mqtt is not None:
            stats['mqtt_connected'] = self.mqtt.connected
        return stats
