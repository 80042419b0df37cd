"""
Pydantic schemas for store input.

Validates sensor events and rule mutations before anything touches the
database.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from nidswatch.store.models import Severity


def normalize_timestamp(value: Any) -> datetime | None:
    """
    Convert a sensor timestamp to the stored representation.

    Accepts an ISO-8601 string (offset-less values are taken as UTC, a space
    separator is allowed) or Unix epoch seconds as int/float. Returns a naive
    UTC datetime so that equivalent inputs store identically.

    Raises:
        ValueError: If the value is neither form.
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")

    if isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValueError(f"Timestamp out of range: {value!r}") from None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _optional_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        raise ValueError("must be a scalar value")
    return str(value)


class AlertEvent(BaseModel):
    """One decoded sensor event."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    src_ip: str = Field(..., min_length=1)
    dst_ip: str = Field(..., min_length=1)
    proto: str | None = None
    rule: str | None = None
    rule_id: int | None = None
    severity: str = Severity.MEDIUM.value
    description: str | None = Field(
        None, validation_alias=AliasChoices("desc", "description")
    )
    payload_ref: str | None = None
    host: str | None = None
    ts: datetime | None = Field(
        None, validation_alias=AliasChoices("ts", "time", "timestamp")
    )

    @field_validator("src_ip", "dst_ip", mode="before")
    @classmethod
    def require_address(cls, v: Any) -> Any:
        """Reject missing or blank addresses."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("address must be a non-empty string")
        return v

    @field_validator("proto", "rule", "payload_ref", "host", "description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        """Treat empty values as absent and stringify scalars."""
        return _optional_text(v)

    @field_validator("severity", mode="before")
    @classmethod
    def default_severity(cls, v: Any) -> str:
        """Keep severity as provided, defaulting to medium."""
        if v is None or v == "":
            return Severity.MEDIUM.value
        return str(v)

    @field_validator("rule_id", mode="before")
    @classmethod
    def empty_rule_id(cls, v: Any) -> Any:
        """Falsy rule references mean no rule."""
        return v or None

    @field_validator("ts", mode="before")
    @classmethod
    def parse_ts(cls, v: Any) -> datetime | None:
        """Accept ISO-8601 strings and epoch seconds."""
        return normalize_timestamp(v)

    @property
    def notifies(self) -> bool:
        """Whether this event's severity warrants an alert notification."""
        return Severity.requires_notification(self.severity)


class RuleCreate(BaseModel):
    """Schema for creating a rule."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=256)
    pattern: str = Field(..., min_length=1)
    owner_id: int | None = None
    enabled: bool = False
    notify_on_change: bool = False

    @field_validator("enabled", "notify_on_change", mode="before")
    @classmethod
    def truthy(cls, v: Any) -> bool:
        """Any truthy value enables the flag."""
        return bool(v)


class RulePatch(BaseModel):
    """
    Schema for a partial rule update.

    Unset (None) fields keep their prior values. Boolean flags are only
    applied when they arrive as real booleans; anything else is ignored.
    """

    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(None, min_length=1, max_length=256)
    pattern: str | None = Field(None, min_length=1)
    owner_id: int | None = None
    enabled: Any = None
    notify_on_change: Any = None

    def changes(self) -> dict[str, Any]:
        """Return the fields this patch actually sets."""
        result: dict[str, Any] = {}
        for key in ("name", "owner_id", "pattern"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        for key in ("enabled", "notify_on_change"):
            value = getattr(self, key)
            if isinstance(value, bool):
                result[key] = value
        return result
