"""
Pydantic schemas for the HTTP surface.

Response models mirror the stored rows; request bodies for alerts and
rules are accepted as raw JSON objects and validated by the core.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AlertResponse(BaseModel):
    """Stored alert."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    ts: datetime
    src_ip: str
    dst_ip: str
    proto: str | None = None
    rule: str | None = None
    rule_id: int | None = None
    severity: str
    desc: str | None = Field(None, validation_alias="description")
    payload_ref: str | None = None
    host: str | None = None
    created_at: datetime


class AlertCreated(BaseModel):
    """Result of a successful ingest."""

    status: str = "ok"
    id: int


class RuleResponse(BaseModel):
    """Stored rule."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    owner_id: int | None = None
    pattern: str
    enabled: bool
    notify_on_change: bool
    created_at: datetime
    updated_at: datetime


class AuditLogResponse(BaseModel):
    """Stored audit entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: int | None = None
    action: str
    target_type: str
    target_id: int | None = None
    diff: list[dict[str, Any]]
    metadata: dict[str, Any] | None = Field(None, validation_alias="meta")
    ts: datetime


class NotificationResponse(BaseModel):
    """Queued notification."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    payload: dict[str, Any]
    recipients: list[str] | None = None
    status: str
    attempts: int
    last_error: str | None = None
    next_run_at: datetime
    created_at: datetime
    sent_at: datetime | None = None


class StatusResponse(BaseModel):
    """Store and sensor status."""

    database: dict[str, Any]
    sensor: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
