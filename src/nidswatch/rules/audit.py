"""
Rule Audit Engine.

Applies rule mutations and records an audit entry (and, where policy says
so, a change notification) in the same transaction as the mutation.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping

import pydantic

from nidswatch.errors import NotFoundError, ValidationError
from nidswatch.store.database import EventStore
from nidswatch.store.models import AuditAction, NotificationEvent, Rule, utc_now
from nidswatch.store.schemas import RuleCreate, RulePatch


logger = logging.getLogger(__name__)

TARGET_TYPE = "rule"

# Bookkeeping columns that change on every write and are not part of a diff
_UNDIFFED_FIELDS = ("created_at", "updated_at")


def _as_text(value: Any) -> str:
    """Textual form used for change detection."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def compute_diff(
    old: Mapping[str, Any] | None,
    new: Mapping[str, Any] | None,
) -> list[dict[str, Any]]:
    """
    Compute field-level differences between two record images.

    Fields are compared by their textual form, so True and "true" count as
    equal while 1 and True do not. Missing fields compare as null.

    Args:
        old: Pre-image (or None)
        new: Post-image (or None)

    Returns:
        One {field, old, new} record per changed field, pre-image fields first
    """
    old = old or {}
    new = new or {}

    keys = list(old.keys())
    keys.extend(k for k in new.keys() if k not in old)

    diffs: list[dict[str, Any]] = []
    for key in keys:
        before = old.get(key)
        after = new.get(key)
        if _as_text(before) != _as_text(after):
            diffs.append({"field": key, "old": before, "new": after})
    return diffs


def rule_image(rule: Rule) -> dict[str, Any]:
    """Snapshot of a rule's user-visible fields for diffing."""
    data = rule.to_dict()
    for key in _UNDIFFED_FIELDS:
        data.pop(key, None)
    return data


def _validate(schema: type[pydantic.BaseModel], data: Any) -> Any:
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(dict(data or {}))
    except pydantic.ValidationError as e:
        if schema is RuleCreate:
            raise ValidationError("name & pattern required") from e
        raise ValidationError(f"Invalid rule update: {e}") from e


def _check_actor(actor_id: Any) -> int | None:
    """Actor references are integers or absent."""
    if actor_id is None:
        return None
    if isinstance(actor_id, bool) or not isinstance(actor_id, int):
        raise ValidationError("actor_id must be an integer")
    return actor_id


class RuleAuditEngine:
    """
    Create, update and delete rules with an auditable diff trail.

    Every operation is one transaction spanning the rule row, its audit
    entry and any notification it triggers.
    """

    def __init__(self, store: EventStore) -> None:
        self.store = store

    def create(
        self,
        rule: RuleCreate | Mapping[str, Any],
        actor_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Rule:
        """
        Create a rule.

        Args:
            rule: Rule fields; name and pattern are required
            actor_id: Caller-supplied actor reference
            metadata: Caller context stored with the audit entry

        Returns:
            The created rule

        Raises:
            ValidationError: If name or pattern is missing, or actor_id is not an integer
        """
        data = _validate(RuleCreate, rule)
        actor_id = _check_actor(actor_id)

        with self.store.session() as session:
            now = utc_now()
            row = Rule(
                name=data.name,
                owner_id=data.owner_id,
                pattern=data.pattern,
                enabled=data.enabled,
                notify_on_change=data.notify_on_change,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()

            self.store.append_audit(
                session,
                action=AuditAction.RULE_CREATE.value,
                target_type=TARGET_TYPE,
                target_id=row.id,
                diff=[
                    {
                        "field": "create",
                        "old": None,
                        "new": {"name": data.name, "pattern": data.pattern},
                    }
                ],
                actor_id=actor_id,
                metadata=metadata,
            )

        logger.info("rule_created id=%s name=%s", row.id, row.name)
        return row

    def update(
        self,
        rule_id: int,
        patch: RulePatch | Mapping[str, Any],
        actor_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Rule:
        """
        Apply a partial update to a rule.

        Unset fields keep their prior values. A rule.changed notification is
        queued when either the old or the new version has notify_on_change.

        Args:
            rule_id: Rule to update
            patch: Fields to change
            actor_id: Caller-supplied actor reference
            metadata: Caller context stored with the audit entry

        Returns:
            The updated rule

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If the patch or actor_id is malformed
        """
        changes = _validate(RulePatch, patch).changes()
        actor_id = _check_actor(actor_id)

        with self.store.session() as session:
            row = session.get(Rule, rule_id)
            if row is None:
                raise NotFoundError(
                    f"Rule not found: {rule_id}", target_type=TARGET_TYPE, target_id=rule_id
                )

            before = rule_image(row)
            notify_before = bool(row.notify_on_change)

            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = max(utc_now(), row.updated_at + timedelta(microseconds=1))
            session.flush()

            after = rule_image(row)
            diffs = compute_diff(before, after)

            self.store.append_audit(
                session,
                action=AuditAction.RULE_UPDATE.value,
                target_type=TARGET_TYPE,
                target_id=rule_id,
                diff=diffs,
                actor_id=actor_id,
                metadata=metadata,
            )

            notified = notify_before or bool(row.notify_on_change)
            if notified:
                self.store.enqueue_notification(
                    session,
                    NotificationEvent.RULE_CHANGED,
                    payload={"rule_id": rule_id, "rule_name": row.name, "diffs": diffs},
                )

        logger.info(
            "rule_updated id=%s changes=%d notified=%s", rule_id, len(diffs), notified
        )
        return row

    def delete(
        self,
        rule_id: int,
        actor_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Delete a rule.

        Alerts referencing the rule keep their rows with rule_id nulled.
        A rule.deleted notification is always queued, whatever the rule's
        notify_on_change flag.

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If actor_id is not an integer
        """
        actor_id = _check_actor(actor_id)

        with self.store.session() as session:
            row = session.get(Rule, rule_id)
            if row is None:
                raise NotFoundError(
                    f"Rule not found: {rule_id}", target_type=TARGET_TYPE, target_id=rule_id
                )

            prior = row.to_dict()
            session.delete(row)
            session.flush()

            self.store.append_audit(
                session,
                action=AuditAction.RULE_DELETE.value,
                target_type=TARGET_TYPE,
                target_id=rule_id,
                diff=[{"field": "delete", "old": prior, "new": None}],
                actor_id=actor_id,
                metadata=metadata,
            )
            self.store.enqueue_notification(
                session,
                NotificationEvent.RULE_DELETED,
                payload={"rule_id": rule_id, "rule_name": prior["name"], "deleted": True},
            )

        logger.info("rule_deleted id=%s name=%s", rule_id, prior["name"])
