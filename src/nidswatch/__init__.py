"""
NIDS Watch - alert ingestion and rule audit core for a network sensor.

Supervises an external packet-sniffing sensor process, persists the alerts
it emits, queues notifications for high-severity events, and keeps an
auditable diff trail of detection-rule edits.
"""

__version__ = "0.1.0"
__author__ = "NIDS Watch Contributors"

from nidswatch.config import NidsWatchConfig, load_config

__all__ = ["NidsWatchConfig", "load_config", "__version__"]
