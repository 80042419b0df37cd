"""
REST API routes for NIDS Watch.

Thin adapters from HTTP requests to the alert ingestor and the rule audit
engine. Error responses come from the exception handlers registered in
create_app().
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status

from nidswatch.api.schemas import (
    AlertCreated,
    AlertResponse,
    AuditLogResponse,
    ErrorResponse,
    NotificationResponse,
    RuleResponse,
    StatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Dependencies
# ============================================================================


class ServiceDependencies:
    """
    Container for service dependencies.

    Set by configure_services() after app creation.
    """

    store = None  # EventStore instance
    ingestor = None  # AlertIngestor instance
    rules = None  # RuleAuditEngine instance
    supervisor = None  # SensorSupervisor instance


deps = ServiceDependencies()


def _require(service: Any, name: str) -> Any:
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return service


def _caller_context(request: Request) -> dict[str, Any]:
    return {"ip": request.client.host if request.client else None}


def _actor(payload: dict[str, Any] | None) -> Any:
    if not payload:
        return None
    return payload.get("actor_id")


# ============================================================================
# Alerts
# ============================================================================


@router.get("/alerts", response_model=list[AlertResponse], tags=["Alerts"])
async def list_alerts() -> list[AlertResponse]:
    """Most recent alerts, newest first."""
    store = _require(deps.store, "Database")
    return [AlertResponse.model_validate(a) for a in store.recent_alerts(limit=200)]


@router.post(
    "/alerts",
    response_model=AlertCreated,
    status_code=status.HTTP_201_CREATED,
    tags=["Alerts"],
    responses={400: {"model": ErrorResponse}},
)
async def create_alert(payload: dict[str, Any] = Body(...)) -> AlertCreated:
    """Ingest one alert event."""
    ingestor = _require(deps.ingestor, "Ingestor")
    alert_id = ingestor.ingest(payload)
    return AlertCreated(id=alert_id)


# ============================================================================
# Notifications
# ============================================================================


@router.get(
    "/notifications/pending",
    response_model=list[NotificationResponse],
    tags=["Notifications"],
)
async def pending_notifications() -> list[NotificationResponse]:
    """Pending notification queue entries, newest first."""
    store = _require(deps.store, "Database")
    return [
        NotificationResponse.model_validate(n)
        for n in store.pending_notifications(limit=200)
    ]


# ============================================================================
# Rules
# ============================================================================


@router.get("/rules", response_model=list[RuleResponse], tags=["Rules"])
async def list_rules() -> list[RuleResponse]:
    """All rules, most recently changed first."""
    store = _require(deps.store, "Database")
    return [RuleResponse.model_validate(r) for r in store.list_rules()]


@router.post(
    "/rules",
    response_model=RuleResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Rules"],
    responses={400: {"model": ErrorResponse}},
)
async def create_rule(
    request: Request,
    payload: dict[str, Any] = Body(...),
) -> RuleResponse:
    """Create a rule and record the creation in the audit log."""
    rules = _require(deps.rules, "Rule engine")
    rule = rules.create(
        payload, actor_id=_actor(payload), metadata=_caller_context(request)
    )
    return RuleResponse.model_validate(rule)


@router.put(
    "/rules/{rule_id}",
    response_model=RuleResponse,
    tags=["Rules"],
    responses={404: {"model": ErrorResponse}},
)
async def update_rule(
    request: Request,
    rule_id: int,
    payload: dict[str, Any] | None = Body(default=None),
) -> RuleResponse:
    """Apply a partial update to a rule."""
    rules = _require(deps.rules, "Rule engine")
    rule = rules.update(
        rule_id, payload or {}, actor_id=_actor(payload), metadata=_caller_context(request)
    )
    return RuleResponse.model_validate(rule)


@router.delete(
    "/rules/{rule_id}",
    tags=["Rules"],
    responses={404: {"model": ErrorResponse}},
)
async def delete_rule(
    request: Request,
    rule_id: int,
    payload: dict[str, Any] | None = Body(default=None),
) -> dict[str, str]:
    """Delete a rule."""
    rules = _require(deps.rules, "Rule engine")
    rules.delete(rule_id, actor_id=_actor(payload), metadata=_caller_context(request))
    return {"status": "deleted"}


# ============================================================================
# Audit
# ============================================================================


@router.get("/audit", response_model=list[AuditLogResponse], tags=["Audit"])
async def list_audit() -> list[AuditLogResponse]:
    """Most recent audit entries across all rules."""
    store = _require(deps.store, "Database")
    return [AuditLogResponse.model_validate(e) for e in store.list_audit(limit=500)]


@router.get(
    "/rules/{rule_id}/audit",
    response_model=list[AuditLogResponse],
    tags=["Audit"],
)
async def rule_audit(rule_id: int) -> list[AuditLogResponse]:
    """Audit history of one rule, newest first."""
    store = _require(deps.store, "Database")
    return [
        AuditLogResponse.model_validate(e)
        for e in store.list_audit(target_type="rule", target_id=rule_id, limit=None)
    ]


# ============================================================================
# Status
# ============================================================================


@router.get("/status", response_model=StatusResponse, tags=["Health"])
async def service_status() -> StatusResponse:
    """Store statistics and sensor supervisor state."""
    store = _require(deps.store, "Database")
    sensor = deps.supervisor.get_statistics() if deps.supervisor else None
    return StatusResponse(database=store.get_statistics(), sensor=sensor)
