"""
Event store models.

SQLAlchemy ORM models for alerts, rules, audit entries and the
notification queue.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


def utc_now() -> datetime:
    """Get current UTC time as a naive datetime (the stored representation)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Severity(str, Enum):
    """Alert severity labels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def normalize(cls, value: Any) -> str:
        """Lower-case a raw severity value, defaulting to medium."""
        if value is None or value == "":
            return cls.MEDIUM.value
        return str(value).lower()

    @classmethod
    def requires_notification(cls, value: Any) -> bool:
        """Check whether a raw severity value triggers an alert notification."""
        return cls.normalize(value) in (cls.HIGH.value, cls.CRITICAL.value)


class NotificationEvent(str, Enum):
    """Notification queue event types."""

    ALERT_HIGH = "alert.high"
    RULE_CHANGED = "rule.changed"
    RULE_DELETED = "rule.deleted"


class NotificationStatus(str, Enum):
    """Notification delivery states (owned by the external notifier)."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AuditAction(str, Enum):
    """Audit log action tags."""

    RULE_CREATE = "rule.create"
    RULE_UPDATE = "rule.update"
    RULE_DELETE = "rule.delete"


class Rule(Base):
    """
    Named detection pattern.

    Created, updated and deleted only through the rule audit engine.
    """

    __tablename__ = "rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(256), nullable=False)
    owner_id = Column(Integer, nullable=True)
    pattern = Column(Text, nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    notify_on_change = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "pattern": self.pattern,
            "enabled": self.enabled,
            "notify_on_change": self.notify_on_change,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Alert(Base):
    """
    Observed security event.

    Written once by the alert ingestor, never updated in place.
    """

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime, default=utc_now, nullable=False)
    src_ip = Column(String(64), nullable=False)
    dst_ip = Column(String(64), nullable=False)
    proto = Column(String(32), nullable=True)
    rule = Column(String(256), nullable=True)
    rule_id = Column(
        Integer,
        ForeignKey("rules.id", ondelete="SET NULL"),
        nullable=True,
    )
    severity = Column(String(32), default="medium", nullable=False)
    description = Column("desc", Text, nullable=True)
    payload_ref = Column(String(512), nullable=True)
    host = Column(String(256), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "ts": _iso(self.ts),
            "src_ip": self.src_ip,
            "dst_ip": self.dst_ip,
            "proto": self.proto,
            "rule": self.rule,
            "rule_id": self.rule_id,
            "severity": self.severity,
            "desc": self.description,
            "payload_ref": self.payload_ref,
            "host": self.host,
            "created_at": _iso(self.created_at),
        }


class AuditLog(Base):
    """
    Rule change record.

    Append-only: one row per mutating rule operation.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, nullable=True)
    action = Column(String(32), nullable=False)
    target_type = Column(String(32), nullable=False)
    target_id = Column(Integer, nullable=True)
    diff = Column(JSON, nullable=False, default=list)
    meta = Column("metadata", JSON, nullable=True)
    ts = Column(DateTime, default=utc_now, nullable=False, index=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "diff": self.diff,
            "metadata": self.meta,
            "ts": _iso(self.ts),
        }


class NotificationQueueEntry(Base):
    """
    Pending or processed notification.

    This package only ever inserts pending rows; delivery state belongs
    to the external notifier.
    """

    __tablename__ = "notification_queue"
    __table_args__ = (
        Index("idx_notification_status", "status", "next_run_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    recipients = Column(JSON, nullable=True)
    status = Column(String(16), default=NotificationStatus.PENDING.value, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    next_run_at = Column(DateTime, default=utc_now, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    sent_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "payload": self.payload,
            "recipients": self.recipients,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "next_run_at": _iso(self.next_run_at),
            "created_at": _iso(self.created_at),
            "sent_at": _iso(self.sent_at),
        }


# SQL for append-only audit trail (executed after create_all)
APPEND_ONLY_TRIGGERS = (
    """
CREATE TRIGGER IF NOT EXISTS no_delete_audit_logs
BEFORE DELETE ON audit_logs
BEGIN
    SELECT RAISE(ABORT, 'Deletion not permitted on audit log');
END;
""",
    """
CREATE TRIGGER IF NOT EXISTS no_update_audit_logs
BEFORE UPDATE ON audit_logs
BEGIN
    SELECT RAISE(ABORT, 'Updates not permitted on audit log');
END;
""",
)
