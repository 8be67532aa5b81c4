"""HTTP tests for the API routes with in-memory collaborators."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from repoagent.api.main import app
from repoagent.api.routes import get_pipeline_dependencies, get_sink
from repoagent.dependencies import PipelineDependencies

from conftest import FakeRouter


TODOS = json.dumps([{"title": "Add CI pipeline", "priority": "high", "category": "devops"}])


@pytest.fixture
def client(github, sink, settings):
    deps = PipelineDependencies(github=github, router=FakeRouter(TODOS), sink=sink, settings=settings)

    app.dependency_overrides[get_pipeline_dependencies] = lambda: deps
    app.dependency_overrides[get_sink] = lambda: sink
    # No context manager: the lifespan handler would connect to the database
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root(self, client):
        body = client.get("/").json()
        assert body["docs"] == "/docs"
        assert "/api/chat" in body["pipelines"]


class TestGenerateTodos:
    def test_success(self, client, sink):
        response = client.post("/api/todos/generate", json={"repository_id": "repo-1", "user_id": "user-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["todos_generated"] == 1
        assert body["todo_list_id"] in sink.todo_lists

    def test_pipeline_failure_is_reported_in_body(self, client):
        response = client.post("/api/todos/generate", json={"repository_id": "missing", "user_id": "user-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Repository not found: missing"

    @pytest.mark.parametrize(
        "payload",
        [{}, {"repository_id": "repo-1"}, {"repository_id": "", "user_id": "user-1"}],
    )
    def test_invalid_request(self, client, payload):
        assert client.post("/api/todos/generate", json=payload).status_code == 422


class TestAnalyzeRepository:
    def test_by_url(self, client):
        response = client.post(
            "/api/repositories/analyze",
            json={"github_url": "https://github.com/acme/widgets", "user_id": "user-1"},
        )

        body = response.json()
        assert body["success"] is True
        assert body["steps"] == 8
        assert body["results"]["repository"]["full_name"] == "acme/widgets"

    def test_missing_target(self, client):
        response = client.post("/api/repositories/analyze", json={"user_id": "user-1"})
        assert response.status_code == 422


class TestChat:
    def test_answer_is_returned_with_conversation(self, client, sink):
        response = client.post(
            "/api/chat",
            json={"message": "What is tested?", "user_id": "user-1", "repository_id": "repo-1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["response"] == TODOS
        assert body["steps"] == 6
        assert body["conversation_id"] in sink.conversations

    @pytest.mark.parametrize(
        "payload",
        [{"user_id": "user-1"}, {"message": "", "user_id": "user-1"}, {"message": "hi"}],
    )
    def test_invalid_request(self, client, payload):
        assert client.post("/api/chat", json=payload).status_code == 422


class TestExecutions:
    def test_execution_with_steps(self, client):
        run = client.post("/api/todos/generate", json={"repository_id": "repo-1", "user_id": "user-1"}).json()

        response = client.get(f"/api/executions/{run['execution_id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["agent_type"] == "todo_generator"
        assert body["step_count"] == 9
        assert [step["step_name"] for step in body["steps"]][:2] == ["start", "fetch_repository"]
        assert body["steps"][-1]["step_name"] == "complete"

    def test_unknown_execution(self, client):
        response = client.get("/api/executions/does-not-exist")

        assert response.status_code == 404
