"""
Normalization of raw telemetry payloads into PresenceEvent values.

Devices publish either the English field names or the field names used by
older firmware revisions (``contador``, ``evento``, ``sensor``, ``wifi_rssi``).
Both are accepted.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .exceptions import InvalidEnumError, InvalidFieldError, MissingFieldError
from .models import EventKind, PresenceEvent, utc_now

FIELD_ALIASES = {
    'device_id': ('device_id',),
    'occupancy': ('occupancy', 'contador'),
    'event_kind': ('event_kind', 'evento', 'event'),
    'timestamp': ('timestamp',),
    'sensor_id': ('sensor_id', 'sensor'),
    'signal_strength': ('signal_strength', 'wifi_rssi'),
    'uptime': ('uptime',),
}

EVENT_KIND_ALIASES = {
    'ENTER': EventKind.ENTER,
    'ENTRADA': EventKind.ENTER,
    'EXIT': EventKind.EXIT,
    'SAIDA': EventKind.EXIT,
    'HEARTBEAT': EventKind.HEARTBEAT,
}

VALID_SENSORS = (1, 2)


def _lookup(raw: Mapping[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _parse_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidFieldError(f"{name} must be an integer, got {value!r}", field=name)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise InvalidFieldError(f"{name} must be an integer, got {value!r}", field=name)


def _from_epoch_ms(value: float) -> datetime:
    # fromtimestamp rejects NaN, infinity and values past the platform time_t range
    try:
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as exc:
        raise InvalidFieldError(f"Timestamp out of range: {value!r}", field='timestamp') from exc


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a telemetry timestamp.

    Args:
        value: Epoch milliseconds, ISO-8601 string or datetime

    Returns:
        Timezone-aware datetime (naive inputs are taken as UTC)
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise InvalidFieldError(f"Unparsable timestamp: {value!r}", field='timestamp')
    elif isinstance(value, (int, float)):
        parsed = _from_epoch_ms(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            try:
                millis = int(text)
            except ValueError as exc:
                raise InvalidFieldError(f"Unparsable timestamp: {value!r}", field='timestamp') from exc
            parsed = _from_epoch_ms(millis)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
            except ValueError as exc:
                raise InvalidFieldError(f"Unparsable timestamp: {value!r}", field='timestamp') from exc
    else:
        raise InvalidFieldError(f"Unparsable timestamp: {value!r}", field='timestamp')

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_event(raw: Mapping[str, Any],
                   clock: Optional[Callable[[], datetime]] = None) -> PresenceEvent:
    """
    Validate a raw telemetry payload.

    Args:
        raw: Decoded telemetry message
        clock: Source of ingestion time, used when the payload has no timestamp

    Returns:
        Validated PresenceEvent

    Raises:
        MissingFieldError: device_id, occupancy or event_kind is absent
        InvalidEnumError: event_kind is not a recognized value
        InvalidFieldError: a field has the wrong type or range
    """
    if not isinstance(raw, Mapping):
        raise InvalidFieldError(f"Payload must be an object, got {type(raw).__name__}")

    device_id = _lookup(raw, 'device_id')
    if device_id is None or (isinstance(device_id, str) and not device_id.strip()):
        raise MissingFieldError('device_id')
    device_id = str(device_id).strip()

    occupancy_raw = _lookup(raw, 'occupancy')
    if occupancy_raw is None:
        raise MissingFieldError('occupancy')
    occupancy = _parse_int('occupancy', occupancy_raw)
    if occupancy < 0:
        raise InvalidFieldError(f"occupancy must be >= 0, got {occupancy}", field='occupancy')

    kind_raw = _lookup(raw, 'event_kind')
    if kind_raw is None:
        raise MissingFieldError('event_kind')
    event_kind = EVENT_KIND_ALIASES.get(str(kind_raw).strip().upper())
    if event_kind is None:
        raise InvalidEnumError('event_kind', kind_raw)

    sensor_raw = _lookup(raw, 'sensor_id')
    sensor_id = 1 if sensor_raw is None else _parse_int('sensor_id', sensor_raw)
    if sensor_id not in VALID_SENSORS:
        raise InvalidFieldError(f"sensor_id must be 1 or 2, got {sensor_id}", field='sensor_id')

    timestamp_raw = _lookup(raw, 'timestamp')
    if timestamp_raw is None:
        timestamp = (clock or utc_now)()
    else:
        timestamp = parse_timestamp(timestamp_raw)

    signal_raw = _lookup(raw, 'signal_strength')
    uptime_raw = _lookup(raw, 'uptime')

    return PresenceEvent(
        device_id=device_id,
        occupancy=occupancy,
        event_kind=event_kind,
        timestamp=timestamp,
        sensor_id=sensor_id,
        signal_strength=None if signal_raw is None else _parse_int('signal_strength', signal_raw),
        uptime=None if uptime_raw is None else _parse_int('uptime', uptime_raw),
    )
