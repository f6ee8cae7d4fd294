"""
Per-device processing lanes.

Each device gets its own queue and worker thread, created on first use and
kept for the device's lifetime. Events for one device are handled one at a
time in submission order; different devices run concurrently.
"""
import queue
import threading
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .models import PresenceEvent

_STOP = object()

EventHandler = Callable[[PresenceEvent], Any]


class DeviceLane:
    """Sequential worker for one device."""

    def __init__(self, device_id: str, handler: EventHandler) -> None:
        self.device_id = device_id
        self.handler = handler
        self.queue: queue.Queue = queue.Queue()
        self.processed = 0
        self.failed = 0
        self.thread = threading.Thread(target=self._run, name=f"lane-{device_id}", daemon=True)

    def start(self) -> None:
        self.thread.start()

    def _run(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is _STOP:
                    return
                self.handler(item)
                self.processed += 1
            except Exception:
                self.failed += 1
                logger.exception(f"Error processing event for device {self.device_id}")
            finally:
                self.queue.task_done()


class Dispatcher:
    """Ingestion-facing entry point that fans events out to device lanes."""

    def __init__(self, handler: EventHandler) -> None:
        self.handler = handler
        self._lanes: Dict[str, DeviceLane] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, event: PresenceEvent) -> bool:
        """
        Queue an event on its device's lane. Never blocks.

        Returns:
            False if the dispatcher is shutting down and the event was dropped
        """
        lane = self._lane_for(event.device_id)
        if lane is None:
            logger.warning(f"Dispatcher stopped; dropping event from {event.device_id}")
            return False
        lane.queue.put_nowait(event)
        return True

    def _lane_for(self, device_id: str) -> Optional[DeviceLane]:
        with self._lock:
            if self._closed:
                return None
            lane = self._lanes.get(device_id)
            if lane is None:
                lane = DeviceLane(device_id, self.handler)
                lane.start()
                self._lanes[device_id] = lane
                logger.debug(f"Started lane for device {device_id}")
            return lane

    def drain(self) -> None:
        """Block until every event submitted so far has been handled."""
        with self._lock:
            lanes = list(self._lanes.values())
        for lane in lanes:
            lane.queue.join()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting events, finish everything already queued, stop the lanes.

        Args:
            timeout: Per-lane join timeout (None waits indefinitely)
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            lanes = list(self._lanes.values())

        logger.info(f"Draining {len(lanes)} device lane(s)")
        for lane in lanes:
            lane.queue.put(_STOP)
        for lane in lanes:
            lane.thread.join(timeout=timeout)
            if lane.thread.is_alive():
                logger.warning(f"Lane for {lane.device_id} did not stop within {timeout}s")

    @property
    def lane_count(self) -> int:
        return len(self._lanes)

    def pending(self) -> Dict[str, int]:
        with self._lock:
            return {device_id: lane.queue.qsize() for device_id, lane in self._lanes.items()}
