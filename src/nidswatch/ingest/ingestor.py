"""
Alert Ingestor.

Validates one decoded sensor event, persists it, and applies the
severity-based notification policy in the same transaction.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import pydantic

from nidswatch.errors import DecodeError, ValidationError
from nidswatch.store.database import EventStore
from nidswatch.store.models import Alert, NotificationEvent, utc_now
from nidswatch.store.schemas import AlertEvent


logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("src_ip", "dst_ip")


def decode_line(line: str | bytes) -> dict[str, Any]:
    """
    Decode one framed sensor line into an event object.

    Args:
        line: Raw text of a single line

    Returns:
        Decoded JSON object

    Raises:
        DecodeError: If the line is not a JSON object
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON: {e.msg}", raw_line=line) from e
    if not isinstance(data, dict):
        raise DecodeError(
            f"Expected JSON object, got {type(data).__name__}", raw_line=line
        )
    return data


def validate_event(raw: Mapping[str, Any]) -> AlertEvent:
    """
    Validate a decoded event.

    Raises:
        ValidationError: If src_ip/dst_ip are missing or any field is malformed
    """
    try:
        return AlertEvent.model_validate(dict(raw))
    except pydantic.ValidationError as e:
        failed = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
        if failed & set(REQUIRED_FIELDS):
            raise ValidationError("src_ip and dst_ip are required") from e
        raise ValidationError(f"Invalid alert event: {e}") from e


class AlertIngestor:
    """
    Writes alerts and queues high-severity notifications.

    Each ingest is one transaction: the alert row and, when the severity
    qualifies, exactly one alert.high queue entry.
    """

    def __init__(self, store: EventStore) -> None:
        self.store = store
        self.ingested = 0
        self.enqueued = 0

    def ingest(self, raw_event: Mapping[str, Any] | str | bytes) -> int:
        """
        Ingest one event.

        Args:
            raw_event: Decoded event object, or its JSON text

        Returns:
            Identifier of the new alert

        Raises:
            DecodeError: If JSON text does not decode to an object
            ValidationError: If required fields are missing (nothing is written)
            StoreError: If persistence fails (nothing is written)
        """
        if isinstance(raw_event, (str, bytes)):
            raw_event = decode_line(raw_event)
        if not isinstance(raw_event, Mapping):
            raise ValidationError("src_ip and dst_ip are required")

        event = validate_event(raw_event)

        with self.store.session() as session:
            now = utc_now()
            alert = Alert(
                ts=event.ts or now,
                src_ip=event.src_ip,
                dst_ip=event.dst_ip,
                proto=event.proto,
                rule=event.rule,
                rule_id=event.rule_id,
                severity=event.severity,
                description=event.description,
                payload_ref=event.payload_ref,
                host=event.host,
                created_at=now,
            )
            session.add(alert)
            session.flush()
            alert_id = alert.id

            notified = False
            if event.notifies:
                self.store.enqueue_notification(
                    session,
                    NotificationEvent.ALERT_HIGH,
                    payload={
                        "alert_id": alert_id,
                        "src_ip": event.src_ip,
                        "dst_ip": event.dst_ip,
                        "proto": event.proto,
                        "rule": event.rule,
                        "desc": event.description,
                    },
                )
                notified = True

        self.ingested += 1
        logger.info(
            "alert_ingested id=%s src=%s dst=%s severity=%s",
            alert_id, event.src_ip, event.dst_ip, event.severity,
        )
        if notified:
            self.enqueued += 1
            logger.info("notification_enqueued alert_id=%s", alert_id)

        return alert_id
