"""
Event Store.

Durable, transactional persistence for alerts, rules, audit entries and
queued notifications.
"""

from nidswatch.store.database import EventStore, create_store
from nidswatch.store.models import (
    Alert,
    AuditAction,
    AuditLog,
    Base,
    NotificationEvent,
    NotificationQueueEntry,
    NotificationStatus,
    Rule,
    Severity,
)
from nidswatch.store.schemas import (
    AlertEvent,
    RuleCreate,
    RulePatch,
    normalize_timestamp,
)

__all__ = [
    # Database
    "EventStore",
    "create_store",
    # Models
    "Alert",
    "AuditAction",
    "AuditLog",
    "Base",
    "NotificationEvent",
    "NotificationQueueEntry",
    "NotificationStatus",
    "Rule",
    "Severity",
    # Schemas
    "AlertEvent",
    "RuleCreate",
    "RulePatch",
    "normalize_timestamp",
]
