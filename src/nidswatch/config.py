"""
Configuration management for NIDS Watch.

Handles loading, validation, and access to daemon configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/nidswatch/nidswatch.yaml")
DEFAULT_DB_PATH = Path("data/alerts.db")


@dataclass
class DaemonConfig:
    """Daemon general settings."""

    log_level: str = "info"
    log_file: str | None = None


@dataclass
class DatabaseConfig:
    """Database settings."""

    path: str | None = None
    wal_mode: bool = True
    busy_timeout: int = 5000

    def __post_init__(self) -> None:
        # Environment overrides the built-in default, never an explicit path
        if self.path is None:
            self.path = os.environ.get("DATABASE_FILE", str(DEFAULT_DB_PATH))


@dataclass
class SensorConfig:
    """External sensor process settings."""

    enabled: bool = True
    executable: str = "../sensor/build/nids_sensor"
    device: str | None = None
    auto_restart: bool = True
    restart_delay: float = 3.0
    max_restarts: int | None = None
    shutdown_grace: float = 5.0

    def __post_init__(self) -> None:
        if self.device is None:
            self.device = os.environ.get("SENSOR_DEVICE_ID", "5")
        self.device = str(self.device)


@dataclass
class APIConfig:
    """API server settings."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int | None = None
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self) -> None:
        if self.port is None:
            self.port = int(os.environ.get("PORT", "3000"))


@dataclass
class NidsWatchConfig:
    """Main configuration container."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sensor: SensorConfig = field(default_factory=SensorConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NidsWatchConfig:
        """Create configuration from dictionary."""
        return cls(
            daemon=DaemonConfig(**data.get("daemon", {})),
            database=DatabaseConfig(**data.get("database", {})),
            sensor=SensorConfig(**data.get("sensor", {})),
            api=APIConfig(**data.get("api", {})),
        )


def load_config(path: str | Path | None = None) -> NidsWatchConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        NidsWatchConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        candidates = [
            DEFAULT_CONFIG_PATH,
            Path("config/nidswatch.yaml"),
            Path("nidswatch.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return NidsWatchConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return NidsWatchConfig.from_dict(data)


def validate_config(config: NidsWatchConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.daemon.log_level not in valid_log_levels:
        errors.append(f"Invalid log_level: {config.daemon.log_level}")

    if not config.database.path:
        errors.append("Database path must not be empty")
    if config.database.busy_timeout < 0:
        errors.append(f"Invalid busy_timeout: {config.database.busy_timeout}")

    if config.sensor.enabled and not config.sensor.executable:
        errors.append("Sensor executable required when sensor is enabled")
    if config.sensor.restart_delay < 0:
        errors.append(f"Invalid restart_delay: {config.sensor.restart_delay}")
    if config.sensor.max_restarts is not None and config.sensor.max_restarts < 0:
        errors.append(f"Invalid max_restarts: {config.sensor.max_restarts}")
    if config.sensor.shutdown_grace <= 0:
        errors.append(f"Invalid shutdown_grace: {config.sensor.shutdown_grace}")

    if not (1 <= config.api.port <= 65535):
        errors.append(f"Invalid API port: {config.api.port}")

    return errors
