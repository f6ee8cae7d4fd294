"""
MQTT transport for device telemetry and outbound device commands.
"""
import json
import time
from typing import Any, List, Optional, Sequence, cast

import paho.mqtt.client as mqtt
from loguru import logger

from .handler import PresenceIngestor

DEFAULT_TOPICS = ('sala/presenca', 'sala/status', 'sala/+/presenca', 'sala/+/status')


def _parse_broker(raw_broker: str, default_port: int) -> tuple:
    value = raw_broker.strip()
    if not value:
        raise ValueError("Broker value is empty")
    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]
    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port)
    return value, default_port


def decode_payload(payload: bytes) -> dict:
    """Decode a JSON object payload; raises ValueError for anything else."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("MQTT payload is not a JSON object")
    return parsed


class MqttIngestion:
    """Threaded paho-mqtt client feeding telemetry into a PresenceIngestor."""

    def __init__(self,
                 ingestor: PresenceIngestor,
                 broker: str,
                 port: int = 1883,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 topics: Sequence[str] = DEFAULT_TOPICS,
                 keepalive: int = 60) -> None:
        self.ingestor = ingestor
        self.host, self.port = _parse_broker(broker, port)
        self.username = username
        self.password = password
        self.topics: List[str] = list(topics)
        self.keepalive = keepalive
        self._client: Optional[mqtt.Client] = None
        self.connected = False

    def start(self) -> None:
        """Connect and start the network loop thread."""
        self.stop()
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=f"presence_alerts_{int(time.time() * 1000)}",
            clean_session=True,
        )
        if self.username:
            client.username_pw_set(self.username, self.password)
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect

        logger.info(f"Connecting to MQTT broker {self.host}:{self.port}")
        client.connect_async(self.host, self.port, keepalive=self.keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self.connected = False
            logger.info("Disconnected from MQTT")

    def _on_connect(self, client: mqtt.Client, _userdata: Any, _flags: Any,
                    reason_code: Any, _properties: Any) -> None:
        if reason_code.is_failure:
            logger.warning(f"MQTT connect failed: {reason_code}")
            return
        self.connected = True
        logger.info("Connected to MQTT broker")
        for topic in self.topics:
            client.subscribe(topic)
            logger.info(f"Subscribed to topic: {topic}")

    def _on_disconnect(self, _client: mqtt.Client, _userdata: Any, _flags: Any,
                       reason_code: Any, _properties: Any) -> None:
        self.connected = False
        logger.warning(f"MQTT connection closed: {reason_code}")

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        self.handle_message(msg.topic, msg.payload)

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Route one message by topic suffix."""
        try:
            data = decode_payload(payload)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Undecodable MQTT payload on {topic}: {e}")
            return

        try:
            if topic.endswith('/presenca') or topic.endswith('/presence'):
                self.ingestor.on_event(data)
            elif topic.endswith('/status'):
                self.ingestor.on_status(data)
            else:
                logger.debug(f"Ignoring message on unhandled topic {topic}")
        except Exception:
            # exceptions must not reach the paho network thread
            logger.exception(f"Error handling MQTT message on {topic}")

    def send_command(self, device_id: str, command: str, **data: Any) -> bool:
        """
        Publish a command to a device.

        Returns:
            False if not connected or the publish could not be queued
        """
        if self._client is None or not self.connected:
            logger.error("MQTT not connected; cannot send command")
            return False
        message = {'command': command, 'timestamp': int(time.time() * 1000), **data}
        info = self._client.publish(f"sala/{device_id}/comando", json.dumps(message))
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to send {command} to {device_id}: rc={info.rc}")
            return False
        logger.info(f"Command sent to {device_id}: {command}")
        return True

    def send_alert(self, device_id: str, alert_kind: str, message: str) -> bool:
        return self.send_command(device_id, 'ALERTA', tipo=alert_kind, mensagem=message)

    def send_config(self, device_id: str, config: dict) -> bool:
        return self.send_command(device_id, 'CONFIG', **config)
