"""
Pytest configuration and shared fixtures for NIDS Watch tests.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

from nidswatch.ingest.ingestor import AlertIngestor
from nidswatch.rules.audit import RuleAuditEngine
from nidswatch.store.database import EventStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir: Path) -> Generator[EventStore, None, None]:
    """Create a test event store."""
    db = EventStore(temp_dir / "test_alerts.db")
    yield db
    db.close()


@pytest.fixture
def ingestor(store: EventStore) -> AlertIngestor:
    """Alert ingestor bound to the test store."""
    return AlertIngestor(store)


@pytest.fixture
def engine(store: EventStore) -> RuleAuditEngine:
    """Rule audit engine bound to the test store."""
    return RuleAuditEngine(store)


@pytest.fixture
def sample_config(temp_dir: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "nidswatch.yaml"
    config_data = {
        "daemon": {
            "log_level": "debug",
        },
        "database": {
            "path": str(temp_dir / "test.db"),
        },
        "sensor": {
            "executable": "/opt/nids/nids_sensor",
            "device": 2,
            "restart_delay": 0.5,
            "max_restarts": 10,
        },
        "api": {
            "enabled": True,
            "port": 8080,
        },
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def sample_event() -> dict:
    """Sample sensor event as emitted on stdout."""
    return {
        "time": "2024-03-01 12:30:45",
        "src_ip": "192.168.1.23",
        "dst_ip": "10.0.0.5",
        "proto": "TCP",
        "severity": "medium",
        "desc": "Connection to uncommon port 4444",
        "host": "sensor-01",
    }
