"""
Alert and event persistence.

The engine only needs a handful of operations; two implementations are
provided, an in-memory store for tests and single-process deployments and
a SQLite store for durable history.
"""
import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence

from loguru import logger

from .config import Settings, ensure_parent_dir
from .exceptions import PersistenceError
from .models import Alert, AlertKind, AlertStatus, EventKind, PresenceEvent


@dataclass(frozen=True)
class AlertFilter:
    """Selects alerts by any combination of fields. Empty filter matches all."""
    ids: Optional[Sequence[str]] = None
    device_id: Optional[str] = None
    kind: Optional[AlertKind] = None
    status: Optional[AlertStatus] = None
    weekday: Optional[int] = None

    def matches(self, alert: Alert) -> bool:
        if self.ids is not None and alert.id not in self.ids:
            return False
        if self.device_id is not None and alert.device_id != self.device_id:
            return False
        if self.kind is not None and alert.kind is not self.kind:
            return False
        if self.status is not None and alert.status is not self.status:
            return False
        if self.weekday is not None and alert.extra.get('weekday') != self.weekday:
            return False
        return True


class AlertStore(ABC):
    """Persistence operations used by the engine and the operator API."""

    @abstractmethod
    def save_event(self, event: PresenceEvent) -> None:
        ...

    @abstractmethod
    def save_alert(self, alert: Alert) -> str:
        """Persist a new alert and return its id."""

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[Alert]:
        ...

    @abstractmethod
    def find_active_alert(self, device_id: str, kind: AlertKind,
                          weekday: Optional[int] = None) -> Optional[Alert]:
        ...

    @abstractmethod
    def update_status(self, alert_id: str, status: AlertStatus) -> Optional[Alert]:
        """
        Move an ACTIVE alert to ``status``.

        Returns:
            The alert after the call, unchanged if it was already terminal,
            or None if no such alert exists
        """

    @abstractmethod
    def bulk_update_status(self, alert_filter: AlertFilter, status: AlertStatus) -> int:
        """Move every ACTIVE alert matching the filter; return how many moved."""

    @abstractmethod
    def delete_alert(self, alert_id: str) -> Optional[Alert]:
        """Remove an alert in any status; return it, or None if it did not exist."""

    @abstractmethod
    def mark_notified(self, alert_id: str, notified_at: datetime) -> None:
        ...

    @abstractmethod
    def list_alerts(self, alert_filter: Optional[AlertFilter] = None,
                    limit: int = 100) -> List[Alert]:
        """Newest first."""

    @abstractmethod
    def list_events(self, device_id: Optional[str] = None, limit: int = 100) -> List[PresenceEvent]:
        """Newest first."""

    def close(self) -> None:
        pass


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryAlertStore(AlertStore):
    def __init__(self, max_events: int = 10_000) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._events: Deque[PresenceEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def save_event(self, event: PresenceEvent) -> None:
        with self._lock:
            self._events.append(event)

    def save_alert(self, alert: Alert) -> str:
        with self._lock:
            alert_id = alert.id or _new_id()
            self._alerts[alert_id] = alert.copy(id=alert_id)
        return alert_id

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.copy() if alert else None

    def find_active_alert(self, device_id: str, kind: AlertKind,
                          weekday: Optional[int] = None) -> Optional[Alert]:
        wanted = AlertFilter(device_id=device_id, kind=kind,
                             status=AlertStatus.ACTIVE, weekday=weekday)
        with self._lock:
            for alert in self._alerts.values():
                if wanted.matches(alert):
                    return alert.copy()
        return None

    def update_status(self, alert_id: str, status: AlertStatus) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            if alert.status is AlertStatus.ACTIVE:
                alert.status = status
            return alert.copy()

    def bulk_update_status(self, alert_filter: AlertFilter, status: AlertStatus) -> int:
        count = 0
        with self._lock:
            for alert in self._alerts.values():
                if alert.status is AlertStatus.ACTIVE and alert_filter.matches(alert):
                    alert.status = status
                    count += 1
        return count

    def delete_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            return self._alerts.pop(alert_id, None)

    def mark_notified(self, alert_id: str, notified_at: datetime) -> None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is not None:
                alert.notified = True
                alert.notified_at = notified_at

    def list_alerts(self, alert_filter: Optional[AlertFilter] = None,
                    limit: int = 100) -> List[Alert]:
        alert_filter = alert_filter or AlertFilter()
        with self._lock:
            items = [a.copy() for a in self._alerts.values() if alert_filter.matches(a)]
        items.sort(key=lambda a: a.triggered_at, reverse=True)
        return items[:limit]

    def list_events(self, device_id: Optional[str] = None, limit: int = 100) -> List[PresenceEvent]:
        with self._lock:
            items = [e for e in self._events if device_id is None or e.device_id == device_id]
        return list(reversed(items))[:limit]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS presence_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id TEXT NOT NULL,
    occupancy INTEGER NOT NULL,
    event_kind TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    sensor_id INTEGER NOT NULL,
    signal_strength INTEGER,
    uptime INTEGER
);
CREATE INDEX IF NOT EXISTS idx_events_device_ts ON presence_events (device_id, timestamp);
CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    occupancy_at_trigger INTEGER NOT NULL,
    device_id TEXT NOT NULL,
    triggered_at TEXT NOT NULL,
    weekday INTEGER,
    extra TEXT NOT NULL,
    notified INTEGER NOT NULL DEFAULT 0,
    notified_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_alerts_device_kind_status ON alerts (device_id, kind, status);
"""


def _encode_extra(extra: Dict) -> str:
    return json.dumps(extra, default=lambda v: v.isoformat() if isinstance(v, datetime) else str(v))


class SqliteAlertStore(AlertStore):
    """
    SQLite-backed store.

    One connection is shared by all lanes and guarded by a lock; every
    sqlite3 failure surfaces as PersistenceError.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            ensure_parent_dir(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open alert database {db_path}: {e}") from e
        logger.info(f"SQLite alert store ready at {db_path}")

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        try:
            with self._lock, self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error: {e}") from e

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error: {e}") from e

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> Alert:
        extra = json.loads(row['extra'])
        return Alert(
            id=row['id'],
            kind=AlertKind(row['kind']),
            status=AlertStatus(row['status']),
            title=row['title'],
            description=row['description'],
            occupancy_at_trigger=row['occupancy_at_trigger'],
            device_id=row['device_id'],
            triggered_at=datetime.fromisoformat(row['triggered_at']),
            extra=extra,
            notified=bool(row['notified']),
            notified_at=datetime.fromisoformat(row['notified_at']) if row['notified_at'] else None,
        )

    @staticmethod
    def _where(alert_filter: AlertFilter):
        clauses, params = [], []
        if alert_filter.ids is not None:
            if not alert_filter.ids:
                return "WHERE 0", []
            clauses.append(f"id IN ({','.join('?' * len(alert_filter.ids))})")
            params.extend(alert_filter.ids)
        if alert_filter.device_id is not None:
            clauses.append("device_id = ?")
            params.append(alert_filter.device_id)
        if alert_filter.kind is not None:
            clauses.append("kind = ?")
            params.append(alert_filter.kind.value)
        if alert_filter.status is not None:
            clauses.append("status = ?")
            params.append(alert_filter.status.value)
        if alert_filter.weekday is not None:
            clauses.append("weekday = ?")
            params.append(alert_filter.weekday)
        if not clauses:
            return "", []
        return "WHERE " + " AND ".join(clauses), params

    def save_event(self, event: PresenceEvent) -> None:
        self._execute(
            "INSERT INTO presence_events (device_id, occupancy, event_kind, timestamp, "
            "sensor_id, signal_strength, uptime) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (event.device_id, event.occupancy, event.event_kind.value,
             event.timestamp.isoformat(), event.sensor_id, event.signal_strength, event.uptime),
        )

    def save_alert(self, alert: Alert) -> str:
        alert_id = alert.id or _new_id()
        self._execute(
            "INSERT INTO alerts (id, kind, status, title, description, occupancy_at_trigger, "
            "device_id, triggered_at, weekday, extra, notified, notified_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (alert_id, alert.kind.value, alert.status.value, alert.title, alert.description,
             alert.occupancy_at_trigger, alert.device_id, alert.triggered_at.isoformat(),
             alert.extra.get('weekday'), _encode_extra(alert.extra), int(alert.notified),
             alert.notified_at.isoformat() if alert.notified_at else None),
        )
        return alert_id

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        rows = self._query("SELECT * FROM alerts WHERE id = ?", (alert_id,))
        return self._row_to_alert(rows[0]) if rows else None

    def find_active_alert(self, device_id: str, kind: AlertKind,
                          weekday: Optional[int] = None) -> Optional[Alert]:
        where, params = self._where(AlertFilter(device_id=device_id, kind=kind,
                                                status=AlertStatus.ACTIVE, weekday=weekday))
        rows = self._query(f"SELECT * FROM alerts {where} LIMIT 1", params)
        return self._row_to_alert(rows[0]) if rows else None

    def update_status(self, alert_id: str, status: AlertStatus) -> Optional[Alert]:
        self._execute(
            "UPDATE alerts SET status = ? WHERE id = ? AND status = ?",
            (status.value, alert_id, AlertStatus.ACTIVE.value),
        )
        return self.get_alert(alert_id)

    def bulk_update_status(self, alert_filter: AlertFilter, status: AlertStatus) -> int:
        where, params = self._where(alert_filter)
        active_clause = "status = ?"
        where = f"{where} AND {active_clause}" if where else f"WHERE {active_clause}"
        cursor = self._execute(f"UPDATE alerts SET status = ? {where}",
                               [status.value, *params, AlertStatus.ACTIVE.value])
        return cursor.rowcount

    def delete_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self.get_alert(alert_id)
        if alert is None:
            return None
        cursor = self._execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
        return alert if cursor.rowcount else None

    def mark_notified(self, alert_id: str, notified_at: datetime) -> None:
        self._execute("UPDATE alerts SET notified = 1, notified_at = ? WHERE id = ?",
                      (notified_at.isoformat(), alert_id))

    def list_alerts(self, alert_filter: Optional[AlertFilter] = None,
                    limit: int = 100) -> List[Alert]:
        where, params = self._where(alert_filter or AlertFilter())
        rows = self._query(f"SELECT * FROM alerts {where} ORDER BY triggered_at DESC LIMIT ?",
                           [*params, limit])
        return [self._row_to_alert(row) for row in rows]

    def list_events(self, device_id: Optional[str] = None, limit: int = 100) -> List[PresenceEvent]:
        if device_id is None:
            rows = self._query("SELECT * FROM presence_events ORDER BY id DESC LIMIT ?", (limit,))
        else:
            rows = self._query(
                "SELECT * FROM presence_events WHERE device_id = ? ORDER BY id DESC LIMIT ?",
                (device_id, limit),
            )
        return [
            PresenceEvent(
                device_id=row['device_id'],
                occupancy=row['occupancy'],
                event_kind=EventKind(row['event_kind']),
                timestamp=datetime.fromisoformat(row['timestamp']),
                sensor_id=row['sensor_id'],
                signal_strength=row['signal_strength'],
                uptime=row['uptime'],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_store(config: Settings) -> AlertStore:
    """Pick a store implementation from settings."""
    if config.db_type == "sqlite":
        return SqliteAlertStore(config.db_path)
    if config.db_type == "memory":
        return InMemoryAlertStore(max_events=config.event_buffer_size)
    raise ValueError(f"Unknown db_type: {config.db_type}")
