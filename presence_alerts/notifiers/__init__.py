from .base import CompositeNotifier, Notifier
from .dispatcher import NotificationDispatcher
from .smtp import EmailNotifier
from .webhook import WebhookNotifier

__all__ = [
    'CompositeNotifier',
    'EmailNotifier',
    'NotificationDispatcher',
    'Notifier',
    'WebhookNotifier',
]
