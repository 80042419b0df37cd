"""
Event Store Operations.

Provides the transactional persistence layer shared by the alert ingestor
and the rule audit engine. Every logical operation runs inside exactly one
session, so multi-row writes (alert + notification, rule + audit +
notification) commit or roll back together.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event, func, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from nidswatch.errors import StoreError
from nidswatch.store.models import (
    APPEND_ONLY_TRIGGERS,
    Alert,
    AuditLog,
    Base,
    NotificationEvent,
    NotificationQueueEntry,
    NotificationStatus,
    Rule,
    utc_now,
)


logger = logging.getLogger(__name__)


# Enable SQLite foreign keys so rule deletion nulls alerts.rule_id
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key support for SQLite."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class EventStore:
    """
    Durable store for alerts, rules, audit entries and notifications.

    Owns the SQLAlchemy engine. Callers open one session per logical
    operation and must not hold it beyond that operation.
    """

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
    ) -> None:
        """
        Initialize the event store.

        Args:
            db_path: Path to SQLite database file
            wal_mode: Enable WAL mode for concurrent readers
            busy_timeout: Milliseconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            pool_pre_ping=True,
            connect_args={
                "timeout": busy_timeout / 1000.0,
                "check_same_thread": False,
            },
        )
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

        self._init_schema()

        if wal_mode:
            with self.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.commit()

    def _init_schema(self) -> None:
        """Create tables, indexes and the append-only audit triggers."""
        try:
            Base.metadata.create_all(self.engine)
            with self.engine.connect() as conn:
                for statement in APPEND_ONLY_TRIGGERS:
                    conn.execute(text(statement))
                conn.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize schema: {e}") from e

        logger.info("Database schema initialized: %s", self.db_path)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Open a transactional session.

        Commits when the block exits normally. Any SQLAlchemy failure rolls
        the whole transaction back and surfaces as StoreError; other
        exceptions roll back and propagate unchanged.

        Yields:
            SQLAlchemy Session object
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Writes (called inside an open session)
    # =========================================================================

    @staticmethod
    def enqueue_notification(
        session: Session,
        event_type: NotificationEvent | str,
        payload: dict[str, Any],
        recipients: list[str] | None = None,
    ) -> NotificationQueueEntry:
        """
        Append a pending notification to the queue.

        Args:
            session: Open session of the enclosing operation
            event_type: Notification event tag
            payload: Event-specific JSON payload
            recipients: Explicit recipients, or None for notifier-side resolution

        Returns:
            The flushed queue entry
        """
        if isinstance(event_type, NotificationEvent):
            event_type = event_type.value

        now = utc_now()
        entry = NotificationQueueEntry(
            event_type=event_type,
            payload=payload,
            recipients=recipients,
            status=NotificationStatus.PENDING.value,
            attempts=0,
            next_run_at=now,
            created_at=now,
        )
        session.add(entry)
        session.flush()
        return entry

    @staticmethod
    def append_audit(
        session: Session,
        action: str,
        target_type: str,
        target_id: int | None,
        diff: list[dict[str, Any]],
        actor_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        """
        Append an audit entry.

        Args:
            session: Open session of the enclosing operation
            action: Action tag, e.g. rule.update
            target_type: Kind of record changed
            target_id: Identifier of the record changed
            diff: Ordered field-level changes
            actor_id: Caller-supplied actor reference
            metadata: Caller context, stored verbatim

        Returns:
            The flushed audit entry
        """
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            diff=diff,
            meta=metadata,
            ts=utc_now(),
        )
        session.add(entry)
        session.flush()
        return entry

    # =========================================================================
    # Alert Queries
    # =========================================================================

    def get_alert(self, alert_id: int) -> Alert | None:
        """Get a single alert by ID."""
        with self.session() as session:
            return session.get(Alert, alert_id)

    def recent_alerts(self, limit: int = 200) -> list[Alert]:
        """
        Get the most recently created alerts.

        Args:
            limit: Maximum number of results

        Returns:
            Alerts, newest first
        """
        with self.session() as session:
            return (
                session.query(Alert)
                .order_by(Alert.created_at.desc(), Alert.id.desc())
                .limit(limit)
                .all()
            )

    def count_alerts(self, severity: str | None = None) -> int:
        """Count alerts, optionally by stored severity."""
        with self.session() as session:
            query = session.query(func.count(Alert.id))
            if severity is not None:
                query = query.filter(Alert.severity == severity)
            return query.scalar()

    # =========================================================================
    # Rule Queries
    # =========================================================================

    def get_rule(self, rule_id: int) -> Rule | None:
        """Get a single rule by ID."""
        with self.session() as session:
            return session.get(Rule, rule_id)

    def list_rules(self) -> list[Rule]:
        """List rules, most recently changed first."""
        with self.session() as session:
            return (
                session.query(Rule)
                .order_by(Rule.updated_at.desc(), Rule.created_at.desc())
                .all()
            )

    # =========================================================================
    # Audit & Notification Queries
    # =========================================================================

    def list_audit(
        self,
        target_type: str | None = None,
        target_id: int | None = None,
        limit: int | None = 500,
    ) -> list[AuditLog]:
        """
        Query audit entries.

        Args:
            target_type: Filter by target kind
            target_id: Filter by target identifier
            limit: Maximum results

        Returns:
            Audit entries, newest first
        """
        with self.session() as session:
            query = session.query(AuditLog)
            if target_type is not None:
                query = query.filter(AuditLog.target_type == target_type)
            if target_id is not None:
                query = query.filter(AuditLog.target_id == target_id)
            query = query.order_by(AuditLog.ts.desc(), AuditLog.id.desc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def pending_notifications(self, limit: int = 200) -> list[NotificationQueueEntry]:
        """Get pending notifications, newest first."""
        with self.session() as session:
            return (
                session.query(NotificationQueueEntry)
                .filter(NotificationQueueEntry.status == NotificationStatus.PENDING.value)
                .order_by(
                    NotificationQueueEntry.created_at.desc(),
                    NotificationQueueEntry.id.desc(),
                )
                .limit(limit)
                .all()
            )

    def count_notifications(self, event_type: NotificationEvent | str | None = None) -> int:
        """Count queued notifications, optionally by event type."""
        if isinstance(event_type, NotificationEvent):
            event_type = event_type.value

        with self.session() as session:
            query = session.query(func.count(NotificationQueueEntry.id))
            if event_type is not None:
                query = query.filter(NotificationQueueEntry.event_type == event_type)
            return query.scalar()

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with row counts and recent activity
        """
        with self.session() as session:
            last_24h = utc_now() - timedelta(hours=24)

            severity_counts = dict(
                session.query(Alert.severity, func.count(Alert.id))
                .group_by(Alert.severity)
                .all()
            )

            return {
                "total_alerts": session.query(func.count(Alert.id)).scalar(),
                "alerts_last_24h": session.query(func.count(Alert.id))
                .filter(Alert.created_at >= last_24h)
                .scalar(),
                "severities": severity_counts,
                "total_rules": session.query(func.count(Rule.id)).scalar(),
                "audit_entries": session.query(func.count(AuditLog.id)).scalar(),
                "pending_notifications": session.query(
                    func.count(NotificationQueueEntry.id)
                )
                .filter(NotificationQueueEntry.status == NotificationStatus.PENDING.value)
                .scalar(),
                "database_size_bytes": self.db_path.stat().st_size
                if self.db_path.exists()
                else 0,
            }

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()


def create_store(db_path: str | Path, **kwargs: Any) -> EventStore:
    """
    Create and initialize an event store.

    Args:
        db_path: Path for database file

    Returns:
        Initialized EventStore
    """
    return EventStore(db_path, **kwargs)
