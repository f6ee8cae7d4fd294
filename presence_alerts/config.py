"""
Configuration management for the presence alert engine.
"""
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Tuple

import yaml
from loguru import logger
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class EngineConfig:
    """Thresholds consumed by the detectors."""
    max_occupancy: int = 5
    max_occupancy_cooldown: timedelta = timedelta(minutes=5)
    idle_timeout: timedelta = timedelta(minutes=30)
    anomaly_timeout: timedelta = timedelta(hours=2)
    business_hours: Tuple[int, int] = (8, 18)
    business_days: Tuple[int, ...] = (1, 2, 3, 4, 5)
    timezone: str = "UTC"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix='PRESENCE_', env_file='.env', env_file_encoding='utf-8', extra='ignore'
    )

    # Application Settings
    app_name: str = Field(default="Presence Alert Engine")
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    # Detection thresholds
    max_occupancy: int = Field(default=5, ge=0)
    max_occupancy_cooldown_ms: int = Field(default=300_000, gt=0)
    idle_timeout_ms: int = Field(default=1_800_000, gt=0)
    anomaly_timeout_ms: int = Field(default=7_200_000, gt=0)
    business_hours_start: int = Field(default=8, ge=0, le=23)
    business_hours_end: int = Field(default=18, ge=0, le=23)
    business_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    timezone: str = Field(default="UTC")

    # Store
    db_type: str = Field(default="memory")
    db_path: str = Field(default="data/presence_alerts.db")
    event_buffer_size: int = Field(default=10_000, gt=0)

    # Notifications
    enable_email: bool = Field(default=False)
    email_smtp_host: Optional[str] = Field(default=None)
    email_smtp_port: int = Field(default=587)
    email_username: Optional[str] = Field(default=None)
    email_password: Optional[str] = Field(default=None)
    email_from: Optional[str] = Field(default=None)
    admin_email: Optional[str] = Field(default=None)
    manager_email: Optional[str] = Field(default=None)
    enable_webhook: bool = Field(default=False)
    webhook_urls: List[str] = Field(default_factory=list)
    notify_timeout_seconds: float = Field(default=5.0, gt=0)
    notify_queue_size: int = Field(default=500, gt=0)

    # MQTT ingestion
    mqtt_broker: Optional[str] = Field(default=None)
    mqtt_port: int = Field(default=1883)
    mqtt_username: Optional[str] = Field(default=None)
    mqtt_password: Optional[str] = Field(default=None)
    mqtt_topics: List[str] = Field(
        default_factory=lambda: ['sala/presenca', 'sala/status', 'sala/+/presenca', 'sala/+/status']
    )

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)

    # Monitoring
    enable_metrics: bool = Field(default=False)
    metrics_port: int = Field(default=9100)

    @model_validator(mode='after')
    def _check_business_window(self) -> 'Settings':
        if self.business_hours_start > self.business_hours_end:
            raise ValueError("business_hours_start must not be after business_hours_end")
        bad_days = [day for day in self.business_days if day < 1 or day > 7]
        if bad_days:
            raise ValueError(f"business_days must be ISO weekdays (1-7), got {bad_days}")
        return self

    def engine_config(self) -> EngineConfig:
        """Build the detector thresholds from these settings."""
        return EngineConfig(
            max_occupancy=self.max_occupancy,
            max_occupancy_cooldown=timedelta(milliseconds=self.max_occupancy_cooldown_ms),
            idle_timeout=timedelta(milliseconds=self.idle_timeout_ms),
            anomaly_timeout=timedelta(milliseconds=self.anomaly_timeout_ms),
            business_hours=(self.business_hours_start, self.business_hours_end),
            business_days=tuple(self.business_days),
            timezone=self.timezone,
        )


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings from the environment, overridden by an optional YAML file.

    Args:
        config_path: Path to a YAML file with settings keys

    Returns:
        Settings instance
    """
    if not config_path:
        return Settings()

    try:
        with open(config_path, 'r') as f:
            overrides = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
    except (FileNotFoundError, PermissionError) as e:
        logger.error(f"Failed to load config file: {e}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config YAML: {e}")
        raise

    if not isinstance(overrides, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return Settings(**overrides)


def ensure_parent_dir(path: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
