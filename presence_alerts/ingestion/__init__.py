from .handler import PresenceIngestor
from .mqtt import MqttIngestion

__all__ = ['MqttIngestion', 'PresenceIngestor']
