"""Shared fixtures and in-memory test doubles.

The pipelines take their collaborators through the constructor, so the
fakes here only need the methods the pipelines actually call.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from repoagent.config import Settings
from repoagent.database.models import (
    AgentExecution,
    AgentStep,
    Conversation,
    ConversationMessage,
    Repository,
    TodoItemRecord,
    TodoList,
)
from repoagent.database.sink import build_item_records
from repoagent.schemas import ExecutionStatus, TodoItem
from repoagent.tools.github import NotFoundError


NOW = datetime.now(timezone.utc)


def iso(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")


def make_commit(message: str, login: str = "octocat", days_ago: float = 1) -> dict[str, Any]:
    return {
        "sha": f"{abs(hash((message, login, days_ago))):040x}"[:40],
        "author": {"login": login},
        "commit": {"message": message, "author": {"name": login, "date": iso(days_ago)}},
    }


def make_pr(state: str = "closed", merged: bool = True, days_ago: float = 3) -> dict[str, Any]:
    return {
        "title": f"PR {state}",
        "state": state,
        "user": {"login": "octocat"},
        "created_at": iso(days_ago),
        "merged_at": iso(days_ago - 1) if merged else None,
    }


def make_issue(state: str = "closed", labels: list[str] | None = None, is_pr: bool = False) -> dict[str, Any]:
    issue: dict[str, Any] = {
        "title": "Issue",
        "state": state,
        "labels": [{"name": name} for name in labels or []],
    }
    if is_pr:
        issue["pull_request"] = {"url": "https://api.github.com/repos/o/r/pulls/1"}
    return issue


def encoded(text: str) -> dict[str, Any]:
    return {"type": "file", "encoding": "base64", "content": base64.b64encode(text.encode()).decode()}


# =============================================================================
# GitHub
# =============================================================================

class FakeGitHub:
    """In-memory stand-in for GitHubClient."""

    def __init__(
        self,
        repository: dict[str, Any] | None = None,
        languages: dict[str, int] | None = None,
        topics: list[str] | None = None,
        commits: list[dict[str, Any]] | None = None,
        pull_requests: list[dict[str, Any]] | None = None,
        issues: list[dict[str, Any]] | None = None,
        contents: dict[str, Any] | None = None,
        has_readme: bool = True,
        workflows: dict[str, Any] | None = None,
        runs: list[dict[str, Any]] | None = None,
    ):
        self.repository = repository or {
            "name": "widgets",
            "full_name": "acme/widgets",
            "description": "Widgets for everyone",
            "html_url": "https://github.com/acme/widgets",
            "homepage": None,
            "default_branch": "main",
            "language": "TypeScript",
            "stargazers_count": 42,
            "forks_count": 7,
            "open_issues_count": 3,
        }
        self.languages = languages if languages is not None else {"TypeScript": 1000, "CSS": 200}
        self.topics = topics if topics is not None else ["widgets"]
        self.commits = commits if commits is not None else []
        self.pull_requests = pull_requests if pull_requests is not None else []
        self.issues = issues if issues is not None else []
        self.contents = contents if contents is not None else {"": []}
        self.readme = has_readme
        self.workflows = workflows if workflows is not None else {"total_count": 0, "workflows": []}
        self.runs = runs if runs is not None else []
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.closed = False

    def fail(self, method: str, error: Exception) -> None:
        self.errors[method] = error

    def _call(self, method: str) -> None:
        self.calls.append(method)
        if method in self.errors:
            raise self.errors[method]

    async def get_repository(self, owner, repo):
        self._call("get_repository")
        return self.repository

    async def list_languages(self, owner, repo):
        self._call("list_languages")
        return self.languages

    async def list_topics(self, owner, repo):
        self._call("list_topics")
        return self.topics

    async def list_commits(self, owner, repo, since=None, until=None, per_page=100):
        self._call("list_commits")
        return self.commits[:per_page]

    async def list_pull_requests(self, owner, repo, per_page=50):
        self._call("list_pull_requests")
        return self.pull_requests[:per_page]

    async def list_issues(self, owner, repo, per_page=50):
        self._call("list_issues")
        return self.issues[:per_page]

    async def get_content(self, owner, repo, path=""):
        self._call("get_content")
        if path not in self.contents:
            raise NotFoundError(f"GitHub resource not found: {path}", status_code=404)
        return self.contents[path]

    async def get_file_text(self, owner, repo, path):
        try:
            data = await self.get_content(owner, repo, path)
        except NotFoundError:
            return None
        if not isinstance(data, dict) or not data.get("content"):
            return None
        return base64.b64decode(data["content"]).decode()

    async def path_exists(self, owner, repo, path):
        try:
            await self.get_content(owner, repo, path)
        except NotFoundError:
            return False
        return True

    async def has_readme(self, owner, repo):
        self._call("has_readme")
        return self.readme

    async def list_workflows(self, owner, repo):
        self._call("list_workflows")
        return self.workflows

    async def list_workflow_runs(self, owner, repo, per_page=10):
        self._call("list_workflow_runs")
        return self.runs[:per_page]

    async def close(self):
        self.closed = True


# =============================================================================
# LLM
# =============================================================================

class FakeRouter:
    """Returns canned completions in order; the last one repeats."""

    def __init__(self, *responses: str, error: Exception | None = None):
        self.responses = list(responses) or [""]
        self.error = error
        self.prompts: list[tuple[str, str]] = []

    async def complete_text(self, system_prompt, user_prompt, temperature=0.7, max_tokens=None):
        self.prompts.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        index = min(len(self.prompts) - 1, len(self.responses) - 1)
        return self.responses[index]

    async def close(self):
        pass


# =============================================================================
# Persistence
# =============================================================================

class InMemorySink:
    """PersistenceSink keeping rows in dictionaries."""

    def __init__(self, repositories: list[Repository] | None = None):
        self.repositories: dict[str, Repository] = {r.id: r for r in repositories or []}
        self.executions: dict[str, AgentExecution] = {}
        self.steps: list[AgentStep] = []
        self.todo_lists: dict[str, TodoList] = {}
        self.todo_items: list[TodoItemRecord] = []
        self.analyses: dict[str, dict[str, Any]] = {}
        self.cache: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[ConversationMessage] = []
        self.errors: dict[str, Exception] = {}

    def fail(self, method: str, error: Exception) -> None:
        self.errors[method] = error

    def _check(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    async def get_repository(self, repository_id):
        self._check("get_repository")
        return self.repositories.get(repository_id)

    async def create_execution(self, execution_id, user_id, agent_type, input_data):
        self._check("create_execution")
        self.executions[execution_id] = AgentExecution(
            id=execution_id,
            user_id=user_id,
            agent_type=agent_type,
            input_data=input_data,
            status=ExecutionStatus.RUNNING.value,
        )

    async def update_execution(
        self,
        execution_id,
        status,
        output_data=None,
        error_message=None,
        step_count=None,
        execution_time_ms=None,
    ):
        self._check("update_execution")
        execution = self.executions[execution_id]
        execution.status = status.value
        if output_data is not None:
            execution.output_data = output_data
        if error_message is not None:
            execution.error_message = error_message
        if step_count is not None:
            execution.step_count = step_count
        if execution_time_ms is not None:
            execution.execution_time_ms = execution_time_ms

    async def get_execution(self, execution_id):
        return self.executions.get(execution_id)

    async def list_steps(self, execution_id):
        return [step for step in self.steps if step.execution_id == execution_id]

    async def record_step(self, execution_id, step_name, output_data, status="completed", duration_ms=None):
        self._check("record_step")
        # Audit payloads must be JSON-serializable to reach a JSON column
        json.dumps(output_data)
        self.steps.append(AgentStep(
            execution_id=execution_id,
            step_name=step_name,
            output_data=output_data,
            status=status,
            duration_ms=duration_ms,
        ))

    async def save_todo_list(self, user_id, repository_id, title, description, items: list[TodoItem]):
        self._check("save_todo_list")
        todo_list = TodoList(
            user_id=user_id,
            repository_id=repository_id,
            title=title,
            description=description,
            category="ai_analysis",
            auto_generated=True,
        )
        self.todo_lists[todo_list.id] = todo_list
        self.todo_items.extend(build_item_records(todo_list.id, items))
        return todo_list.id

    async def save_repository_analysis(self, repository_id, tech_stack, summary):
        self._check("save_repository_analysis")
        self.analyses[repository_id] = {"tech_stack": tech_stack, "summary": summary}

    async def cache_analysis(self, repository_id, analysis_type, cache_key, data, ttl_minutes):
        self._check("cache_analysis")
        self.cache[(repository_id, analysis_type, cache_key)] = data

    async def get_cached_analysis(self, repository_id, analysis_type, cache_key):
        self._check("get_cached_analysis")
        return self.cache.get((repository_id, analysis_type, cache_key))

    async def create_conversation(self, user_id, repository_id, title, summary, context):
        self._check("create_conversation")
        conversation = Conversation(
            user_id=user_id,
            repository_id=repository_id,
            title=title,
            summary=summary,
            context=context,
        )
        self.conversations[conversation.id] = conversation
        return conversation.id

    async def list_messages(self, conversation_id, limit):
        self._check("list_messages")
        return [m for m in self.messages if m.conversation_id == conversation_id][-limit:]

    async def add_message(self, conversation_id, role, content, metadata, token_count):
        self._check("add_message")
        self.messages.append(ConversationMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            message_metadata=metadata,
            token_count=token_count,
        ))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        github_token="test-token",
        openai_api_key="test-openai",
        deepseek_api_key="test-deepseek",
        step_timeout_seconds=5,
    )


@pytest.fixture
def stored_repository() -> Repository:
    return Repository(
        id="repo-1",
        user_id="user-1",
        name="widgets",
        full_name="acme/widgets",
        html_url="https://github.com/acme/widgets",
    )


@pytest.fixture
def sink(stored_repository: Repository) -> InMemorySink:
    return InMemorySink([stored_repository])


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub(
        commits=[
            make_commit("fix: null pointer in parser", "alice", days_ago=1),
            make_commit("feat: add export", "bob", days_ago=2),
            make_commit("docs: readme", "alice", days_ago=3),
        ],
        pull_requests=[make_pr("closed", merged=True), make_pr("open", merged=False, days_ago=4)],
        issues=[make_issue("closed", ["bug"]), make_issue("open"), make_issue("open", is_pr=True)],
        contents={
            "": [
                {"name": "src", "path": "src", "type": "dir"},
                {"name": "tests", "path": "tests", "type": "dir"},
                {"name": "README.md", "path": "README.md", "type": "file"},
                {"name": "package.json", "path": "package.json", "type": "file"},
            ],
            "package.json": encoded(json.dumps({
                "dependencies": {"react": "^18.0.0"},
                "devDependencies": {"jest": "^29.0.0"},
                "scripts": {"test": "jest"},
            })),
        },
    )
