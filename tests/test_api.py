"""Tests for Courier REST API."""

import json

import pytest
from conftest import ScriptedEndpoint
from fastapi import FastAPI
from fastapi.testclient import TestClient

from courier.api import create_app, router
from courier.inbound import InMemorySubmissionSink
from courier.webhooks import verify_signature
from courier.webhooks.signing import SIGNATURE_HEADER


@pytest.fixture
def endpoint():
    return ScriptedEndpoint([200])


@pytest.fixture
def sink():
    return InMemorySubmissionSink()


@pytest.fixture
def service(make_service, endpoint, sink):
    return make_service(endpoint, sink=sink)


@pytest.fixture
def client(service):
    """Test client with the lifespan running, so background chains can execute."""
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def _create_webhook(client, **overrides):
    body = {
        "url": "https://example.com/hooks/crm",
        "events": ["record_submitted"],
        "account_id": "acct_1",
    }
    body.update(overrides)
    response = client.post("/api/v1/webhooks", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _drain(client, service):
    client.portal.call(service.dispatcher.drain)


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["active_chains"] == 0
        assert "version" in data

    def test_service_not_initialized(self):
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        response = TestClient(app).get("/api/v1/health")
        assert response.status_code == 503


class TestWebhookEndpoints:
    """Tests for /webhooks CRUD."""

    def test_create_returns_secret_once(self, client):
        created = _create_webhook(client)
        assert created["id"].startswith("whk_")
        assert created["secret"]
        assert created["has_secret"] is True

        fetched = client.get(f"/api/v1/webhooks/{created['id']}").json()
        assert fetched["secret"] is None
        listed = client.get("/api/v1/webhooks", params={"account_id": "acct_1"}).json()
        assert [w["id"] for w in listed] == [created["id"]]

    def test_create_missing_field(self, client):
        response = client.post("/api/v1/webhooks", json={"events": ["record_submitted"]})
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "url"

    def test_create_invalid_url(self, client):
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "ftp://x", "events": ["record_submitted"], "account_id": "a"},
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["field"] == "url"

    def test_create_without_scope(self, client):
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "https://example.com/h", "events": ["record_submitted"]},
        )
        assert response.status_code == 400

    def test_update_and_delete(self, client):
        created = _create_webhook(client)
        response = client.patch(f"/api/v1/webhooks/{created['id']}", json={"enabled": False})
        assert response.status_code == 200
        assert response.json()["enabled"] is False

        assert client.delete(f"/api/v1/webhooks/{created['id']}").status_code == 204
        assert client.get(f"/api/v1/webhooks/{created['id']}").status_code == 404
        assert client.delete(f"/api/v1/webhooks/{created['id']}").status_code == 404

    def test_rotate_secret(self, client):
        created = _create_webhook(client)
        rotated = client.post(f"/api/v1/webhooks/{created['id']}/rotate-secret").json()
        assert rotated["secret"] and rotated["secret"] != created["secret"]

    def test_unknown_webhook(self, client):
        response = client.get("/api/v1/webhooks/whk_missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestEventsAndLogs:
    """Tests for /events, /webhooks/logs, resend and test."""

    def test_trigger_delivers_signed_request(self, client, service, endpoint):
        created = _create_webhook(client)
        response = client.post(
            "/api/v1/events",
            json={
                "event_type": "record_submitted",
                "payload": {"recordTypeId": "rt_1", "data": {"f_email": "a@example.com"}},
                "record_id": "rec_1",
                "account_id": "acct_1",
            },
        )
        assert response.status_code == 202
        assert response.json()["scheduled"] == 1
        _drain(client, service)

        request = endpoint.requests[0]
        assert verify_signature(
            request.content, created["secret"], request.headers[SIGNATURE_HEADER]
        )
        assert json.loads(request.content)["eventType"] == "record_submitted"

        logs = client.get("/api/v1/webhooks/logs", params={"webhook_id": created["id"]}).json()
        assert logs["count"] == 1
        assert logs["logs"][0]["outcome"] == "succeeded"
        assert logs["logs"][0]["chain_id"] == response.json()["chain_ids"][0]

    def test_trigger_unknown_event(self, client):
        response = client.post("/api/v1/events", json={"event_type": "form_viewed"})
        assert response.status_code == 400

    def test_trigger_without_match(self, client):
        response = client.post(
            "/api/v1/events",
            json={"event_type": "record_deleted", "account_id": "acct_404"},
        )
        assert response.status_code == 202
        assert response.json() == {
            "event_type": "record_deleted",
            "chain_ids": [],
            "scheduled": 0,
        }

    def test_resend(self, client, service, endpoint):
        created = _create_webhook(client)
        client.post(
            "/api/v1/events",
            json={"event_type": "record_submitted", "payload": {"n": 1}, "account_id": "acct_1"},
        )
        _drain(client, service)
        [log] = client.get("/api/v1/webhooks/logs").json()["logs"]

        response = client.post(
            f"/api/v1/webhooks/{created['id']}/resend", json={"log_id": log["id"]}
        )
        assert response.status_code == 200
        resent = response.json()
        assert resent["kind"] == "resend"
        assert resent["resent_from"] == log["id"]
        assert endpoint.requests[0].content == endpoint.requests[1].content

    def test_resend_unknown_log(self, client):
        created = _create_webhook(client)
        response = client.post(
            f"/api/v1/webhooks/{created['id']}/resend", json={"log_id": "dlv_missing"}
        )
        assert response.status_code == 404

    def test_send_test(self, client, endpoint):
        created = _create_webhook(client)
        response = client.post(f"/api/v1/webhooks/{created['id']}/test")
        assert response.status_code == 200
        assert response.json()["is_test"] is True
        assert len(endpoint.requests) == 1

        assert client.get("/api/v1/webhooks/logs").json()["count"] == 0
        with_tests = client.get("/api/v1/webhooks/logs", params={"include_tests": "true"}).json()
        assert with_tests["count"] == 1

    def test_send_simulated_test(self, client, endpoint):
        created = _create_webhook(client)
        response = client.post(
            f"/api/v1/webhooks/{created['id']}/test",
            json={"sample_payload": {"simulate": "failure"}},
        )
        assert response.status_code == 200
        assert response.json()["outcome"] == "exhausted"
        assert endpoint.requests == []

    def test_send_test_disabled(self, client):
        created = _create_webhook(client, enabled=False)
        response = client.post(f"/api/v1/webhooks/{created['id']}/test")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"


class TestInboundEndpoints:
    """Tests for inbound mappings and the public inbound endpoint."""

    def _create_mapping(self, client, **overrides):
        body = {
            "target_record_type_id": "rt_contact",
            "mapping_rules": {"email_address": "f_email"},
        }
        body.update(overrides)
        response = client.post("/api/v1/inbound-mappings", json=body)
        assert response.status_code == 201, response.text
        return response.json()

    def test_receive(self, client, sink):
        mapping = self._create_mapping(client)
        response = client.post(
            f"/webhook/inbound/{mapping['id']}",
            content=json.dumps({"email_address": "a@example.com", "junk": 1}),
            headers={"X-Inbound-Secret": mapping["secret"]},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["submissionId"] == sink.submissions[0][0]
        assert sink.submissions[0][2] == {"f_email": "a@example.com"}

    def test_receive_bad_secret(self, client, sink):
        mapping = self._create_mapping(client)
        response = client.post(
            f"/webhook/inbound/{mapping['id']}",
            content="{}",
            headers={"X-Inbound-Secret": "wrong"},
        )
        assert response.status_code == 401
        assert sink.submissions == []

    def test_receive_unknown_and_disabled(self, client):
        assert client.post("/webhook/inbound/inb_missing", content="{}").status_code == 404
        mapping = self._create_mapping(client, enabled=False, require_secret=False)
        assert client.post(f"/webhook/inbound/{mapping['id']}", content="{}").status_code == 403

    def test_receive_malformed_body(self, client):
        mapping = self._create_mapping(client, require_secret=False)
        response = client.post(f"/webhook/inbound/{mapping['id']}", content="[1,2]")
        assert response.status_code == 400

    def test_mapping_crud(self, client):
        mapping = self._create_mapping(client)
        assert client.get(f"/api/v1/inbound-mappings/{mapping['id']}").json()["secret"] is None
        listed = client.get(
            "/api/v1/inbound-mappings", params={"target_record_type_id": "rt_contact"}
        ).json()
        assert [m["id"] for m in listed] == [mapping["id"]]

        patched = client.patch(
            f"/api/v1/inbound-mappings/{mapping['id']}",
            json={"mapping_rules": {"mail": "f_email"}},
        ).json()
        assert patched["mapping_rules"] == {"mail": "f_email"}

        rotated = client.post(f"/api/v1/inbound-mappings/{mapping['id']}/rotate-secret").json()
        assert rotated["secret"] != mapping["secret"]

        assert client.delete(f"/api/v1/inbound-mappings/{mapping['id']}").status_code == 204
        assert client.get(f"/api/v1/inbound-mappings/{mapping['id']}").status_code == 404

    def test_mapping_requires_rules(self, client):
        response = client.post(
            "/api/v1/inbound-mappings",
            json={"target_record_type_id": "rt_1", "mapping_rules": {}},
        )
        assert response.status_code == 400
