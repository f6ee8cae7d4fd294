from typing import Sequence

import requests
from loguru import logger

from ..exceptions import NotifyError
from ..models import Alert
from .base import Notifier


class WebhookNotifier(Notifier):
    """POSTs the alert as JSON to each configured URL."""

    def __init__(self, urls: Sequence[str], timeout_seconds: float = 5.0) -> None:
        self.urls = list(urls)
        self.timeout_seconds = timeout_seconds

    def notify(self, alert: Alert) -> None:
        payload = alert.to_dict()
        failures = []
        for url in self.urls:
            try:
                response = requests.post(url, json=payload, timeout=self.timeout_seconds)
            except requests.RequestException as e:
                failures.append(f"{url}: {e}")
                continue
            if not response.ok:
                failures.append(f"{url}: status {response.status_code}")
                continue
            logger.info(f"Webhook sent successfully for alert {alert.id} to {url}")

        if failures and len(failures) == len(self.urls):
            raise NotifyError("Webhook failed: " + "; ".join(failures))
        for failure in failures:
            logger.warning(f"Webhook failed: {failure}")
