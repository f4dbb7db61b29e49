"""
Tests for the webhook application.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from alert_workitem_receiver.app import FingerprintLocks, create_app
from alert_workitem_receiver.backend import BackendError
from alert_workitem_receiver.config import Config

CONFIG_YAML = """
azure_devops:
  organization_url: https://dev.azure.com/acme
defaults:
  project: TestProject
  item_type: Bug
receivers:
  - name: team-a
"""


def _payload(**overrides):
    payload = {
        "version": "4",
        "groupKey": '{}:{alertname="TestAlert"}',
        "truncatedAlerts": 0,
        "status": "firing",
        "receiver": "team-a",
        "groupLabels": {"alertname": "TestAlert"},
        "commonLabels": {"alertname": "TestAlert", "severity": "critical"},
        "commonAnnotations": {"description": "Test alert description"},
        "externalURL": "http://alertmanager:9093",
        "alerts": [
            {
                "status": "firing",
                "labels": {"alertname": "TestAlert", "severity": "critical"},
                "annotations": {"description": "Test alert description"},
                "startsAt": "2025-01-01T00:00:00Z",
                "endsAt": "0001-01-01T00:00:00Z",
                "generatorURL": "http://prometheus:9090/graph",
                "fingerprint": "abc123",
            }
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client(backend):
    app = create_app(Config.from_yaml_string(CONFIG_YAML), backend)
    with TestClient(app) as test_client:
        yield test_client


class TestWebhook:
    """Test the HTTP endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_alert_creates_work_item(self, client, backend):
        response = client.post("/alert", json=_payload())

        assert response.status_code == 200
        assert response.json() == {
            "status": "success",
            "receiver": "team-a",
            "fingerprint": "abc123",
            "work_item_id": 1,
        }
        assert backend.work_items[1].title == "[FIRING:1] TestAlert"
        assert backend.work_items[1].tags == "Fingerprint:abc123"

    def test_resolved_alert_updates_work_item(self, client, backend):
        client.post("/alert", json=_payload())
        resolved = _payload(status="resolved")
        resolved["alerts"][0]["status"] = "resolved"

        response = client.post("/alert", json=resolved)

        assert response.status_code == 200
        assert len(backend.create_calls) == 1
        assert len(backend.update_calls) == 1
        assert backend.work_items[1].title == "[RESOLVED] TestAlert"

    def test_unknown_receiver(self, client, backend):
        response = client.post("/alert", json=_payload(receiver="nobody"))

        assert response.status_code == 404
        assert backend.query_calls == []

    def test_payload_without_alerts(self, client):
        response = client.post("/alert", json=_payload(alerts=[]))

        assert response.status_code == 422

    def test_payload_without_fingerprint(self, client, backend):
        payload = _payload()
        payload["alerts"][0]["fingerprint"] = ""

        response = client.post("/alert", json=payload)

        assert response.status_code == 422
        assert backend.query_calls == []

    def test_backend_failure(self, client, backend):
        backend.fail["create"] = BackendError("forbidden", status_code=403)

        response = client.post("/alert", json=_payload())

        assert response.status_code == 500
        assert response.json()["detail"]["stage"] == "write"


class TestFingerprintLocks:
    """Test per-fingerprint serialization."""

    @pytest.mark.asyncio
    async def test_same_fingerprint_is_serialized(self):
        locks = FingerprintLocks()
        events = []

        async def deliver(name):
            async with locks.hold("fp"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(deliver("a"), deliver("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_fingerprints_run_concurrently(self):
        locks = FingerprintLocks()
        events = []

        async def deliver(fingerprint):
            async with locks.hold(fingerprint):
                events.append(f"{fingerprint}-start")
                await asyncio.sleep(0.01)
                events.append(f"{fingerprint}-end")

        await asyncio.gather(deliver("x"), deliver("y"))

        assert events[:2] == ["x-start", "y-start"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = FingerprintLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("fp"):
                raise RuntimeError("boom")

        assert len(locks) == 0
