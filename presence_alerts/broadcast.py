"""
Real-time fan-out of presence, alert and status updates to listeners.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

TOPIC_PRESENCE = "presence"
TOPIC_ALERT = "alert"
TOPIC_STATUS = "status"
TOPICS = (TOPIC_PRESENCE, TOPIC_ALERT, TOPIC_STATUS)

Listener = Callable[[str, Dict[str, Any]], None]


class Broadcaster(ABC):
    """Anything that can push a payload to connected dashboards."""

    @abstractmethod
    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        ...


class EventBroadcaster(Broadcaster):
    """
    Synchronous in-process broadcaster.

    Listeners are called in subscription order and wrapped in try/except so
    one failing listener cannot affect the others or the caller.
    """

    def __init__(self) -> None:
        self._listeners: List[Tuple[Optional[str], Listener]] = []

    def subscribe(self, listener: Listener, topic: Optional[str] = None) -> None:
        """
        Subscribe to updates.

        Args:
            listener: Callable receiving (topic, payload)
            topic: Only deliver this topic (None = every topic)
        """
        if topic is not None and topic not in TOPICS:
            raise ValueError(f"Unknown topic: {topic}")
        self._listeners.append((topic, listener))
        logger.debug(f"Subscribed {getattr(listener, '__name__', listener)} to {topic or 'all topics'}")

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [(t, l) for t, l in self._listeners if l != listener]

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        for wanted, listener in list(self._listeners):
            if wanted is not None and wanted != topic:
                continue
            try:
                listener(topic, payload)
            except Exception as e:
                logger.error(
                    f"Error in broadcast listener {getattr(listener, '__name__', listener)} "
                    f"for topic {topic}: {e}"
                )
