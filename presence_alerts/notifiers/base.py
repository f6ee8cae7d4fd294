from abc import ABC, abstractmethod
from typing import List, Sequence

from loguru import logger

from ..exceptions import NotifyError
from ..models import Alert


class Notifier(ABC):
    """Delivers a finished alert to people."""

    @abstractmethod
    def notify(self, alert: Alert) -> None:
        """
        Deliver an alert.

        Raises:
            NotifyError: delivery failed
        """


class CompositeNotifier(Notifier):
    """Sends through every child notifier; succeeds if at least one does."""

    def __init__(self, notifiers: Sequence[Notifier]):
        self.notifiers: List[Notifier] = list(notifiers)

    def notify(self, alert: Alert) -> None:
        if not self.notifiers:
            raise NotifyError("No notifiers configured")
        errors = []
        for notifier in self.notifiers:
            try:
                notifier.notify(alert)
            except NotifyError as e:
                logger.warning(f"{type(notifier).__name__} failed for alert {alert.id}: {e}")
                errors.append(str(e))
        if len(errors) == len(self.notifiers):
            raise NotifyError("; ".join(errors))
