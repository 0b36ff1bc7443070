"""Tests for the REST API."""

import uuid

import pytest
from fastapi.testclient import TestClient

from closureflow.config import get_testing_config
from closureflow.factory import create_app

API = "/api/v1"


@pytest.fixture
def client(database, make_executor):
    executor = make_executor({"http://actions.test/fail": [500]})
    app = create_app(get_testing_config(), database=database, action_executor=executor)
    return TestClient(app)


def create_node(client, title, node_type="Task"):
    response = client.post(f"{API}/nodes", json={"title": title, "type": node_type})
    assert response.status_code == 201
    return response.json()["id"]


def link(client, ancestor, descendant):
    return client.post(f"{API}/nodes/relationships", json={"ancestor_id": ancestor, "descendant_id": descendant})


def create_workflow_with_task(client, action):
    start = create_node(client, "Start", "Start")
    work = create_node(client, "Work")
    end = create_node(client, "End", "End")
    assert link(client, start, work).status_code == 201
    assert link(client, work, end).status_code == 201

    task = client.post(f"{API}/tasks", json={"title": "call", "method": "POST", "action": action})
    assert task.status_code == 201
    attach = client.post(f"{API}/nodes/{work}/tasks", json={"task_id": task.json()["id"], "order": 0})
    assert attach.status_code == 201

    workflow_id = client.post(f"{API}/workflows", json={"name": "api"}).json()["id"]
    binding = client.post(f"{API}/workflows/{workflow_id}/starting-nodes", json={"node_id": start})
    assert binding.status_code == 201
    return workflow_id, start, work, end


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers


class TestNodeEndpoints:
    """Node and relationship routes."""

    def test_create_and_get_node(self, client):
        node_id = create_node(client, "Fetch")
        response = client.get(f"{API}/nodes/{node_id}")
        assert response.status_code == 200
        assert response.json()["title"] == "Fetch"
        assert response.json()["type"] == "Task"

    def test_invalid_node_type(self, client):
        response = client.post(f"{API}/nodes", json={"title": "x", "type": "Decision"})
        assert response.status_code == 422

    def test_missing_node_is_404(self, client):
        response = client.get(f"{API}/nodes/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_malformed_id_is_400(self, client):
        response = client.get(f"{API}/nodes/not-a-uuid")
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_update_and_delete(self, client):
        node_id = create_node(client, "Old")
        response = client.patch(f"{API}/nodes/{node_id}", json={"title": "New"})
        assert response.json()["title"] == "New"

        assert client.delete(f"{API}/nodes/{node_id}").status_code == 204
        assert client.get(f"{API}/nodes/{node_id}").status_code == 404

    def test_descendants_and_ancestors(self, client):
        root = create_node(client, "root", "Start")
        child = create_node(client, "child")
        leaf = create_node(client, "leaf", "End")
        link(client, root, child)
        link(client, child, leaf)

        descendants = client.get(f"{API}/nodes/{root}/descendants").json()
        assert [n["id"] for n in descendants] == [child, leaf]
        ancestors = client.get(f"{API}/nodes/{leaf}/ancestors").json()
        assert [n["id"] for n in ancestors] == [child, root]

    def test_cycle_is_500(self, client):
        a = create_node(client, "a")
        b = create_node(client, "b")
        link(client, a, b)

        response = link(client, b, a)
        assert response.status_code == 500
        assert response.json()["error"] == "CycleError"


class TestWorkflowEndpoints:
    """Workflow lifecycle over HTTP."""

    def test_execute_completed_workflow(self, client):
        workflow_id, start, work, end = create_workflow_with_task(client, "http://actions.test/ok")

        response = client.post(f"{API}/workflows/{workflow_id}/execute")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["executed_nodes"] == [start, work, end]
        assert client.get(f"{API}/workflows/{workflow_id}").json()["status"] == "completed"

        logs = client.get(f"{API}/workflows/{workflow_id}/logs").json()
        assert [(entry["node_id"], entry["status"]) for entry in logs] == [
            (start, "success"), (work, "success"), (end, "success")
        ]

        node_tasks = client.get(f"{API}/nodes/{work}/tasks").json()
        assert node_tasks[0]["status"] == "success"
        assert node_tasks[0]["status_code"] == 200

    def test_execute_failing_workflow(self, client):
        workflow_id, _, work, end = create_workflow_with_task(client, "http://actions.test/fail")

        body = client.post(f"{API}/workflows/{workflow_id}/execute").json()

        assert body["status"] == "failed"
        assert body["failed_node"] == work
        logs = client.get(f"{API}/workflows/{workflow_id}/logs").json()
        assert end not in [entry["node_id"] for entry in logs]

    def test_rollback(self, client):
        workflow_id, _, work, _ = create_workflow_with_task(client, "http://actions.test/ok")
        client.post(f"{API}/workflows/{workflow_id}/execute")

        response = client.post(f"{API}/nodes/{work}/rollback")

        assert response.status_code == 200
        assert response.json()["status"] == "rollback"
        assert response.json()["workflow_id"] == workflow_id

    def test_execute_without_starting_node(self, client):
        workflow_id = client.post(f"{API}/workflows", json={"name": "empty"}).json()["id"]
        assert client.post(f"{API}/workflows/{workflow_id}/execute").status_code == 404

    def test_duplicate_task_order(self, client):
        node = create_node(client, "n")
        task_id = client.post(f"{API}/tasks", json={"title": "t", "method": "GET", "action": "/t"}).json()["id"]
        first = client.post(f"{API}/nodes/{node}/tasks", json={"task_id": task_id, "order": 0})
        second = client.post(f"{API}/nodes/{node}/tasks", json={"task_id": task_id, "order": 0})
        assert first.status_code == 201
        assert second.status_code == 400

    def test_list_tasks(self, client):
        client.post(f"{API}/tasks", json={"title": "t", "method": "GET", "action": "/t", "params": {"a": 1}})
        tasks = client.get(f"{API}/tasks").json()
        assert len(tasks) == 1
        assert tasks[0]["params"] == {"a": 1}

    def test_invalid_task_method(self, client):
        response = client.post(f"{API}/tasks", json={"title": "t", "method": "FETCH", "action": "/t"})
        assert response.status_code == 400
