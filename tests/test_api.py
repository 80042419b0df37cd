"""
Tests for the HTTP API.

Uses the FastAPI TestClient against a real event store.
"""

from __future__ import annotations

from typing import Generator

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from nidswatch.api import configure_services, create_app
from nidswatch.ingest.ingestor import AlertIngestor
from nidswatch.rules.audit import RuleAuditEngine
from nidswatch.store.database import EventStore


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def client(
    store: EventStore, ingestor: AlertIngestor, engine: RuleAuditEngine
) -> Generator[TestClient, None, None]:
    """Test client wired to a temporary store."""
    configure_services(store=store, ingestor=ingestor, rules=engine)
    yield TestClient(create_app(debug=True))
    configure_services()


@pytest.fixture
def unconfigured_client() -> TestClient:
    configure_services()
    return TestClient(create_app())


# ============================================================================
# Health
# ============================================================================


class TestHealth:
    """Tests for liveness and status endpoints."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ok": True}

    def test_status(self, client: TestClient) -> None:
        response = client.get("/api/status")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["database"]["total_alerts"] == 0
        assert data["sensor"] is None

    def test_unconfigured_services(self, unconfigured_client: TestClient) -> None:
        response = unconfigured_client.get("/api/alerts")
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


# ============================================================================
# Alerts
# ============================================================================


class TestAlertEndpoints:
    """Tests for /api/alerts."""

    def test_create_alert(self, client: TestClient, store: EventStore) -> None:
        response = client.post(
            "/api/alerts",
            json={"src_ip": "10.0.0.1", "dst_ip": "10.0.0.2", "severity": "critical"},
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["status"] == "ok"
        assert store.get_alert(body["id"]) is not None
        assert store.count_notifications() == 1

    def test_create_alert_missing_address(self, client: TestClient, store: EventStore) -> None:
        response = client.post("/api/alerts", json={"dst_ip": "10.0.0.2"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "src_ip and dst_ip are required"}
        assert store.count_alerts() == 0

    @pytest.mark.parametrize("ts", ["1e400", "1e20", "-1e20"])
    def test_out_of_range_timestamp(self, client: TestClient, store: EventStore, ts: str) -> None:
        response = client.post(
            "/api/alerts",
            content=f'{{"src_ip": "a", "dst_ip": "b", "ts": {ts}}}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert store.count_alerts() == 0

    def test_unknown_rule_is_internal_error(self, client: TestClient) -> None:
        response = client.post(
            "/api/alerts", json={"src_ip": "a", "dst_ip": "b", "rule_id": 12345}
        )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "internal_error"}

    def test_list_alerts(self, client: TestClient) -> None:
        client.post(
            "/api/alerts",
            json={"src_ip": "a", "dst_ip": "b", "description": "first"},
        )
        client.post("/api/alerts", json={"src_ip": "c", "dst_ip": "d", "desc": "second"})

        response = client.get("/api/alerts")

        assert response.status_code == status.HTTP_200_OK
        alerts = response.json()
        assert [a["desc"] for a in alerts] == ["second", "first"]
        assert alerts[0]["severity"] == "medium"


# ============================================================================
# Rules
# ============================================================================


class TestRuleEndpoints:
    """Tests for /api/rules."""

    def test_create_rule(self, client: TestClient) -> None:
        response = client.post(
            "/api/rules",
            json={"name": "icmp-flood", "pattern": "icmp", "notify_on_change": True},
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["name"] == "icmp-flood"
        assert data["notify_on_change"] is True
        assert data["enabled"] is False

    def test_create_rule_missing_pattern(self, client: TestClient) -> None:
        response = client.post("/api/rules", json={"name": "x"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "name & pattern required"}

    def test_update_rule(self, client: TestClient, store: EventStore) -> None:
        rule_id = client.post(
            "/api/rules",
            json={"name": "r", "pattern": "old", "notify_on_change": True},
        ).json()["id"]

        response = client.put(f"/api/rules/{rule_id}", json={"pattern": "new", "actor_id": 4})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["pattern"] == "new"
        latest = store.list_audit(target_type="rule", target_id=rule_id)[0]
        assert latest.actor_id == 4
        assert latest.meta["ip"] == "testclient"
        assert store.count_notifications() == 1

    def test_non_integer_actor_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/rules", json={"name": "r", "pattern": "p", "actor_id": "alice"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "actor_id must be an integer"}

        audit = client.get("/api/audit")
        assert audit.status_code == status.HTTP_200_OK
        assert audit.json() == []

    def test_update_missing_rule(self, client: TestClient) -> None:
        response = client.put("/api/rules/999", json={"pattern": "x"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "not_found"}

    def test_delete_rule(self, client: TestClient, store: EventStore) -> None:
        rule_id = client.post("/api/rules", json={"name": "r", "pattern": "p"}).json()["id"]

        response = client.delete(f"/api/rules/{rule_id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "deleted"}
        assert store.get_rule(rule_id) is None
        assert store.count_notifications() == 1

    def test_delete_missing_rule(self, client: TestClient) -> None:
        response = client.delete("/api/rules/999")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_rules_most_recent_first(self, client: TestClient) -> None:
        first = client.post("/api/rules", json={"name": "first", "pattern": "p"}).json()
        client.post("/api/rules", json={"name": "second", "pattern": "p"})
        client.put(f"/api/rules/{first['id']}", json={"pattern": "q"})

        names = [r["name"] for r in client.get("/api/rules").json()]
        assert names == ["first", "second"]


# ============================================================================
# Audit & Notifications
# ============================================================================


class TestAuditEndpoints:
    """Tests for audit and notification listings."""

    def test_rule_audit_history(self, client: TestClient) -> None:
        rule_id = client.post("/api/rules", json={"name": "r", "pattern": "a"}).json()["id"]
        client.put(f"/api/rules/{rule_id}", json={"pattern": "b"})

        response = client.get(f"/api/rules/{rule_id}/audit")

        assert response.status_code == status.HTTP_200_OK
        entries = response.json()
        assert [e["action"] for e in entries] == ["rule.update", "rule.create"]
        assert entries[0]["diff"] == [{"field": "pattern", "old": "a", "new": "b"}]
        assert entries[0]["metadata"] == {"ip": "testclient"}

    def test_global_audit(self, client: TestClient) -> None:
        client.post("/api/rules", json={"name": "r1", "pattern": "a"})
        client.post("/api/rules", json={"name": "r2", "pattern": "b"})

        entries = client.get("/api/audit").json()
        assert len(entries) == 2

    def test_pending_notifications(self, client: TestClient) -> None:
        client.post("/api/alerts", json={"src_ip": "a", "dst_ip": "b", "severity": "high"})

        entries = client.get("/api/notifications/pending").json()

        assert len(entries) == 1
        assert entries[0]["event_type"] == "alert.high"
        assert entries[0]["status"] == "pending"
