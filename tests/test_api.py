"""
Tests for the FastAPI endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from visaflow.api.dependencies import Services
from visaflow.main import app
from visaflow.workflows.document_validation import (
    TEMPLATE_ID,
    register_document_validation_workflow,
)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def start_instance(client, file_id="file-1", file_name="plan.pdf", definition_id=TEMPLATE_ID):
    return client.post("/instances", json={
        "workflow_definition_id": definition_id,
        "document": {"fileId": file_id, "fileName": file_name, "uploadedBy": "user-1"},
    })


# ============================================================
# Root Endpoints
# ============================================================

class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["name"] == "VisaFlow"
        assert "endpoints" in data
        assert data["default_workflow"] == TEMPLATE_ID

    def test_health(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["workflows_count"] == 1
        assert data["instances_count"] == 0


# ============================================================
# Workflow Endpoints
# ============================================================

class TestWorkflowEndpoints:
    """Tests for workflow definition endpoints."""

    def test_list_workflows(self, client):
        """Test the built-in workflow is listed."""
        response = client.get("/workflows")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 1
        assert data["workflows"][0]["id"] == TEMPLATE_ID

    def test_get_workflow(self, client):
        """Test a definition is returned in camelCase."""
        response = client.get(f"/workflows/{TEMPLATE_ID}")
        assert response.status_code == 200

        data = response.json()
        assert data["isActive"] is True
        assert data["settings"]["autoStartOnUpload"] is False
        assert len(data["statuses"]) == 8

    def test_get_unknown_workflow(self, client):
        """Test a missing definition is a 404."""
        response = client.get("/workflows/nonexistent")
        assert response.status_code == 404
        assert response.json()["error"] == "DefinitionNotFound"

    def test_validate_workflow(self, client):
        """Test the validation report of the built-in workflow."""
        response = client.get(f"/workflows/{TEMPLATE_ID}/validate")
        assert response.status_code == 200

        data = response.json()
        assert data["valid"] is True
        assert data["mermaid_diagram"].startswith("graph TD")

    def test_save_draft_workflow(self, client):
        """Test an incomplete definition is saved with its problems."""
        response = client.post("/workflows", json={
            "id": "draft",
            "name": "Draft",
            "statuses": [{"id": "pending", "name": "Pending", "isDefault": True}],
            "nodes": [{"id": "end", "type": "end", "data": {"label": "End"}}],
            "edges": [],
        })
        assert response.status_code == 201

        data = response.json()
        assert data["id"] == "draft"
        assert "Workflow must have a start node" in data["validation_errors"]
        assert client.get("/workflows/draft").status_code == 200

        # Starting it is refused
        response = start_instance(client, definition_id="draft")
        assert response.status_code == 422
        assert response.json()["error"] == "DefinitionInvalid"


# ============================================================
# Instance Endpoints
# ============================================================

class TestInstanceEndpoints:
    """Tests for instance and review endpoints."""

    def test_start_instance(self, client):
        """Test starting the built-in workflow on a document."""
        response = start_instance(client)
        assert response.status_code == 201

        data = response.json()
        assert data["phase"] == "blocked"
        assert data["instance"]["currentNodeId"] == "review"
        assert data["instance"]["currentStatusId"] == "pending"
        assert data["instance"]["history"][0]["action"] == "Workflow démarré"

    def test_start_unknown_workflow(self, client):
        """Test starting a missing definition is a 404."""
        response = start_instance(client, definition_id="nonexistent")
        assert response.status_code == 404

    def test_approve(self, client):
        """Test a VSO completes the workflow on the approved branch."""
        instance_id = start_instance(client).json()["instance"]["id"]

        response = client.post(f"/instances/{instance_id}/reviews", json={
            "reviewerId": "reviewer-1",
            "reviewerName": "Bob",
            "decision": "vso",
        })
        assert response.status_code == 200

        data = response.json()
        assert data["phase"] == "completed"
        assert data["instance"]["currentNodeId"] == "end_approved"
        assert data["instance"]["currentStatusId"] == "approved"
        assert data["instance"]["completedAt"] is not None

    def test_reject(self, client):
        """Test a refusal ends on the rejected branch."""
        instance_id = start_instance(client).json()["instance"]["id"]

        response = client.post(f"/instances/{instance_id}/reviews", json={
            "reviewer_id": "reviewer-1",
            "decision": "refused",
            "comment": "Wrong revision",
        })

        data = response.json()
        assert data["instance"]["currentNodeId"] == "end_rejected"
        assert data["instance"]["currentStatusId"] == "rejected"

    def test_review_unknown_instance(self, client):
        """Test reviewing a missing instance is a 404."""
        response = client.post("/instances/nonexistent-id/reviews", json={
            "reviewerId": "reviewer-1",
            "decision": "approved",
        })
        assert response.status_code == 404
        assert response.json()["error"] == "InstanceNotFound"

    def test_invalid_decision(self, client):
        """Test an unknown decision is rejected by validation."""
        instance_id = start_instance(client).json()["instance"]["id"]

        response = client.post(f"/instances/{instance_id}/reviews", json={
            "reviewerId": "reviewer-1",
            "decision": "maybe",
        })
        assert response.status_code == 422

    def test_get_and_list_instances(self, client):
        """Test reading instances back."""
        instance_id = start_instance(client).json()["instance"]["id"]
        start_instance(client, file_id="file-2", file_name="coupe.pdf")

        response = client.get(f"/instances/{instance_id}")
        assert response.status_code == 200
        assert response.json()["instance"]["id"] == instance_id

        response = client.get("/instances", params={"workflow_definition_id": TEMPLATE_ID})
        assert response.json()["total"] == 2

        assert client.get("/instances/nonexistent").status_code == 404


# ============================================================
# Watcher Endpoints
# ============================================================

class TestWatcherEndpoints:
    """Tests for folder watcher endpoints."""

    def test_watcher_lifecycle(self, client):
        """Test starting, listing and stopping a watcher."""
        response = client.post("/watchers", json={
            "folder_id": "inbox",
            "workflow_definition_id": TEMPLATE_ID,
            "poll_interval": 3600,
            "file_extensions": ["pdf"],
        })
        assert response.status_code == 201
        watcher_id = response.json()["id"]
        assert response.json()["file_extensions"] == ["pdf"]

        response = client.get("/watchers")
        assert response.json()["total"] == 1

        assert client.delete(f"/watchers/{watcher_id}").status_code == 200
        assert client.delete(f"/watchers/{watcher_id}").status_code == 404
        assert client.get("/watchers").json()["total"] == 0

    def test_watcher_unknown_workflow(self, client):
        """Test a watcher needs an existing workflow."""
        response = client.post("/watchers", json={
            "folder_id": "inbox",
            "workflow_definition_id": "nonexistent",
        })
        assert response.status_code == 404


# ============================================================
# WebSocket Tests
# ============================================================

class TestEventStream:
    """Tests for the event WebSocket."""

    def test_stream_engine_events(self, client):
        """Test engine events reach a subscribed client."""
        with client.websocket_connect("/ws/events?types=started") as websocket:
            assert websocket.receive_json()["type"] == "subscribed"

            start_instance(client)

            event = websocket.receive_json()
            assert event["type"] == "started"
            assert event["source"] == "engine"
            assert event["data"]["document_name"] == "plan.pdf"

    def test_ping(self, client):
        """Test the keep-alive message."""
        with client.websocket_connect("/ws/events") as websocket:
            websocket.receive_json()
            websocket.send_json({"action": "ping"})
            assert websocket.receive_json() == {"type": "pong"}


# ============================================================
# Async Tests (for async endpoints)
# ============================================================

@pytest.mark.asyncio
async def test_review_flow_async():
    """Test the start and review flow with the async client."""
    services = Services.create()
    await register_document_validation_workflow(services.store)
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post("/instances", json={
            "workflow_definition_id": TEMPLATE_ID,
            "document": {"fileId": "file-1", "fileName": "plan.pdf"},
        })
        assert response.status_code == 201
        instance_id = response.json()["instance"]["id"]

        response = await ac.post(f"/instances/{instance_id}/reviews", json={
            "reviewerId": "reviewer-1",
            "decision": "vao",
        })
        assert response.status_code == 200
        assert response.json()["instance"]["currentNodeId"] == "end_commented"

    await services.close()
