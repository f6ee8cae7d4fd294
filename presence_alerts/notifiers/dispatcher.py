import queue
import threading
from typing import Callable, Optional

from loguru import logger

from ..exceptions import NotifyError
from ..metrics import NOTIFICATION_FAILURES
from ..models import Alert, utc_now
from .base import Notifier

_STOP = object()


class NotificationDispatcher:
    """
    Delivers alerts on a background thread so lanes never wait on SMTP or HTTP.

    ``on_delivered`` is called with (alert_id, delivered_at) after a
    successful delivery; failed deliveries are logged and not retried.
    """

    def __init__(self,
                 notifier: Notifier,
                 on_delivered: Optional[Callable] = None,
                 maxsize: int = 500) -> None:
        self.notifier = notifier
        self.on_delivered = on_delivered
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="notifications", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Deliver whatever is queued, then stop the worker."""
        if not self._thread:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)
        self._thread = None

    def enqueue(self, alert: Alert) -> bool:
        try:
            self._queue.put_nowait(alert)
            return True
        except queue.Full:
            self.dropped += 1
            logger.warning(f"Notification queue full; dropping alert {alert.id}")
            return False

    def deliver(self, alert: Alert) -> bool:
        try:
            self.notifier.notify(alert)
        except NotifyError as e:
            self.failed += 1
            NOTIFICATION_FAILURES.inc()
            logger.error(f"Notification failed for alert {alert.id}: {e}")
            return False

        self.delivered += 1
        if self.on_delivered is not None:
            try:
                self.on_delivered(alert.id, utc_now())
            except Exception as e:
                logger.error(f"Failed to record notification for alert {alert.id}: {e}")
        return True

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.deliver(item)
            except Exception:
                logger.exception("Unexpected error in notification worker")
            finally:
                self._queue.task_done()
