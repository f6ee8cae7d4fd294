"""
Prometheus metrics for the presence alert engine.
"""
from prometheus_client import Counter, Gauge

EVENTS_PROCESSED = Counter('presence_events_processed_total', 'Total presence events processed', ['device_id'])
EVENTS_REJECTED = Counter('presence_events_rejected_total', 'Telemetry payloads rejected by validation', ['reason'])
ALERTS_RAISED = Counter('alerts_raised_total', 'Total alerts raised', ['kind'])
ALERTS_SUPPRESSED = Counter('alerts_suppressed_total', 'Alerts suppressed by an existing active alert', ['kind'])
ALERTS_AUTO_RESOLVED = Counter('alerts_auto_resolved_total', 'Alerts resolved by the engine', ['kind'])
NOTIFICATION_FAILURES = Counter('notification_failures_total', 'Failed alert notifications')
OCCUPANCY = Gauge('room_occupancy', 'Last reported occupancy', ['device_id'])
