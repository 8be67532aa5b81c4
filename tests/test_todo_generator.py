"""End-to-end tests for the todo generation pipeline with in-memory collaborators."""

from __future__ import annotations

import asyncio
import json

import pytest

from repoagent.agent.todo_generator import TodoGeneratorPipeline
from repoagent.llm.router import LLMInvocationError
from repoagent.schemas import ExecutionStatus, Priority, TodoGenerationRequest, TodoPhase, TodoSource
from repoagent.tools.github import GitHubError, RateLimitError

from conftest import FakeGitHub, FakeRouter, encoded, make_commit

LLM_ONE_TODO = (
    "Sure! Here are your todos:\n```json\n"
    '[{"title":"Add tests","priority":"high","category":"testing","estimated_hours":4,'
    '"description":"...","rationale":"..."}]\n```'
)

PHASES = [
    "start",
    "fetch_repository",
    "analyze_commits",
    "analyze_code_structure",
    "check_health",
    "generate_todos",
    "prioritize_todos",
    "save_todos",
]


def request(repository_id: str = "repo-1") -> TodoGenerationRequest:
    return TodoGenerationRequest(repository_id=repository_id, user_id="user-1")


def pipeline(github, router, sink, settings) -> TodoGeneratorPipeline:
    return TodoGeneratorPipeline(github, router, sink, settings)


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    async def test_llm_todos_are_parsed_scored_and_saved(self, github, sink, settings):
        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        assert not state.failed
        assert state.phase == TodoPhase.COMPLETE.value
        assert state.used_fallback is False
        assert len(state.todos) == 1

        todo = state.todos[0]
        assert todo.title == "Add tests"
        assert todo.priority == Priority.HIGH
        assert todo.source == TodoSource.LLM
        assert todo.impact_score == 8  # 5 + high(3) + testing(0)
        assert todo.urgency_score == 4  # 3 + architecture below 60
        assert todo.order == 1

    async def test_analysis_fields_are_populated(self, github, sink, settings):
        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())
        analysis = state.analysis

        assert analysis.commits.total == 3
        assert analysis.commits.contributors[0].author == "alice"
        assert analysis.pull_requests.merged == 1
        assert analysis.issues.total == 2  # pull request excluded
        assert analysis.issues.bug_issues == 1
        # 0.1/day * 10 + 0.5 * 20 + 0.5 * 20 + 20 recent
        assert analysis.activity_score == 41
        # README 20 + tests 25 + package.json scripts 10
        assert analysis.architecture_score == 55
        assert analysis.dependencies.total == 2
        assert analysis.health.build_status == "unknown"
        assert analysis.health.deployment_status == "unknown"
        assert analysis.is_production_ready is False

    async def test_step_count_and_audit_trail(self, github, sink, settings):
        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        # one per phase plus the complete phase
        assert state.step_count == len(PHASES) + 1
        assert [s.step_name for s in sink.steps] == PHASES + ["complete"]

        execution = sink.executions[state.execution_id]
        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.step_count == state.step_count
        assert execution.output_data["todos_generated"] == 1
        assert execution.output_data["todo_list_id"] == state.todo_list_id
        summary = execution.output_data["execution_summary"]
        assert summary["total_steps"] == state.step_count
        assert summary["high_priority_todos"] == 1

    async def test_todo_list_and_items_are_persisted(self, github, sink, settings):
        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        todo_list = sink.todo_lists[state.todo_list_id]
        assert todo_list.title == "AI Analysis - widgets"
        assert todo_list.category == "ai_analysis"
        assert todo_list.repository_id == "repo-1"

        [item] = sink.todo_items
        assert item.todo_list_id == state.todo_list_id
        assert item.status == "pending"
        assert item.completed is False
        assert item.labels[:2] == ["testing", "ai-generated"]
        assert "**Rationale:** ..." in item.description
        assert item.position == 1

    async def test_execute_returns_public_result(self, github, sink, settings):
        result = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).execute(request())

        assert result.success is True
        assert result.todos_generated == 1
        assert result.todo_list_id in sink.todo_lists
        assert result.analysis["activity_score"] == 41
        assert result.execution_time_ms is not None
        assert result.error is None

    async def test_prompt_embeds_analysis_json(self, github, sink, settings):
        router = FakeRouter(LLM_ONE_TODO)
        await pipeline(github, router, sink, settings).run(request())

        [(system_prompt, user_prompt)] = router.prompts
        assert "todo items" in system_prompt
        assert "acme/widgets" in user_prompt
        assert '"activity_score": 41' in user_prompt

    async def test_todos_sorted_by_priority_then_impact(self, github, sink, settings):
        response = json.dumps([
            {"title": "Tidy docs", "priority": "low", "category": "documentation"},
            {"title": "Speed up build", "priority": "medium", "category": "performance"},
            {"title": "Patch auth", "priority": "urgent", "category": "security"},
            {"title": "Refactor utils", "priority": "medium", "category": "maintenance"},
        ])
        state = await pipeline(github, FakeRouter(response), sink, settings).run(request())

        assert [t.title for t in state.todos] == [
            "Patch auth",
            "Speed up build",
            "Refactor utils",
            "Tidy docs",
        ]
        assert [t.order for t in state.todos] == [1, 2, 3, 4]
        assert [item.position for item in sink.todo_items] == [1, 2, 3, 4]

    async def test_concurrent_runs_are_isolated(self, github, sink, settings):
        generator = pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings)

        first, second = await asyncio.gather(generator.run(request()), generator.run(request()))

        assert first.execution_id != second.execution_id
        assert first.todo_list_id != second.todo_list_id
        assert len(sink.executions) == 2


# ---------------------------------------------------------------------------
# Fallback generation
# ---------------------------------------------------------------------------


class TestFallback:
    @pytest.mark.parametrize("response", ["", "I cannot help with that.", "[]", "[not json", '{"todos": "nope"}'])
    async def test_unusable_llm_output_still_yields_todos(self, github, sink, settings, response):
        state = await pipeline(github, FakeRouter(response), sink, settings).run(request())

        assert not state.failed
        assert state.used_fallback is True
        assert len(state.todos) >= 1
        assert all(t.source == TodoSource.FALLBACK for t in state.todos)

    async def test_fallback_follows_latest_bugfix_commit(self, github, sink, settings):
        state = await pipeline(github, FakeRouter("I cannot help with that."), sink, settings).run(request())

        first = state.todos[0]
        assert first.title == "Review and test recent bug fixes"
        assert first.priority == Priority.HIGH
        assert first.category == "testing"
        # architecture score 55 adds the structure item
        assert "Improve project structure and documentation" in [t.title for t in state.todos]

        item = sink.todo_items[0]
        assert "fallback" in item.labels

    async def test_low_activity_adds_roadmap_item(self, sink, settings):
        github = FakeGitHub(
            commits=[],
            contents={"": [{"name": d, "path": d, "type": "dir"} for d in ("src", "docs", "tests", "scripts")]},
            has_readme=True,
        )
        github.contents[".github/workflows"] = [{"name": "ci.yml"}]
        github.contents["Dockerfile"] = {"type": "file"}
        # activity stays 0 so the roadmap item applies
        state = await pipeline(github, FakeRouter(""), sink, settings).run(request())

        assert state.analysis.activity_score == 0
        assert [t.title for t in state.todos] == ["Plan development roadmap"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_rate_limit_during_fetch_is_terminal(self, github, sink, settings):
        github.fail("get_repository", RateLimitError("GitHub API rate limit exceeded", status_code=403))
        router = FakeRouter(LLM_ONE_TODO)

        state = await pipeline(github, router, sink, settings).run(request())

        assert state.phase == "error"
        assert "rate limit" in state.error.message
        assert state.error.phase == TodoPhase.FETCH_REPOSITORY.value
        assert state.todos == []
        assert router.prompts == []

        [execution] = sink.executions.values()
        assert execution.status == ExecutionStatus.FAILED.value
        assert "rate limit" in execution.error_message
        # start counted, failing phase not counted, error phase counted
        assert state.step_count == 2
        assert execution.step_count == 2
        assert [s.step_name for s in sink.steps] == ["start"]

    async def test_unknown_repository_fails_run(self, github, sink, settings):
        result = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).execute(request("missing"))

        assert result.success is False
        assert result.error == "Repository not found: missing"
        assert result.todo_list_id is None
        assert github.calls == []

    async def test_no_phase_runs_after_failure(self, github, sink, settings):
        github.fail("list_commits", RuntimeError("boom"))
        router = FakeRouter(LLM_ONE_TODO)

        state = await pipeline(github, router, sink, settings).run(request())

        assert state.error.phase == TodoPhase.ANALYZE_COMMITS.value
        assert state.analysis.commits is None
        assert state.analysis.structure is None
        assert router.prompts == []
        assert sink.todo_lists == {}

    async def test_llm_invocation_failure_does_not_fall_back(self, github, sink, settings):
        router = FakeRouter(error=LLMInvocationError("LLM invocation failed: openai: 500"))

        state = await pipeline(github, router, sink, settings).run(request())

        assert state.failed
        assert state.error.phase == TodoPhase.GENERATE_TODOS.value
        assert state.todos == []
        assert sink.todo_lists == {}

    async def test_save_failure_is_surfaced(self, github, sink, settings):
        sink.fail("save_todo_list", RuntimeError("insert failed"))

        result = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).execute(request())

        assert result.success is False
        assert result.error == "insert failed"
        assert sink.todo_items == []

    async def test_execution_create_failure_has_no_audit_record(self, github, sink, settings):
        sink.fail("create_execution", RuntimeError("db down"))

        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        assert state.failed
        assert state.execution_id is None
        assert sink.executions == {}

    async def test_audit_write_failure_does_not_abort(self, github, sink, settings):
        sink.fail("record_step", RuntimeError("audit table missing"))

        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        assert not state.failed
        assert state.todo_list_id in sink.todo_lists

    async def test_ci_endpoint_errors_mean_unknown_build(self, sink, settings):
        github = FakeGitHub(commits=[make_commit("chore: bump")])
        github.fail("list_workflows", GitHubError("Resource not accessible by integration", status_code=403))

        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        assert not state.failed
        assert state.analysis.health.build_status == "unknown"


class TestHealth:
    async def test_production_ready_when_ci_green_and_deployed(self, sink, settings):
        commits = [make_commit(f"feat: change {i}", days_ago=i % 20) for i in range(60)]
        github = FakeGitHub(
            repository={
                "name": "widgets",
                "full_name": "acme/widgets",
                "homepage": "https://widgets.example.com",
                "stargazers_count": 1,
                "forks_count": 0,
                "open_issues_count": 0,
            },
            commits=commits,
            contents={"": [{"name": d, "path": d, "type": "dir"} for d in ("src", "tests", "docs")]},
            workflows={"total_count": 1},
            runs=[{"conclusion": "success"}],
        )
        github.contents[".github/workflows"] = [{"name": "ci.yml"}]
        github.contents["Dockerfile"] = {"type": "file"}

        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        health = state.analysis.health
        assert health.build_status == "success"
        assert health.deployment_status == "deployed"
        assert health.live_url == "https://widgets.example.com"
        # activity 2/day * 10 + 20 recent, architecture 20 + 25 + 20 + 15 + 10 dirs
        assert state.analysis.activity_score == 40
        assert state.analysis.architecture_score == 90
        assert state.analysis.is_production_ready is True


class TestPackageJson:
    @pytest.mark.parametrize("manifest", ["[1]", '{"name": "x", // comment\n}'])
    async def test_unusable_manifest_is_ignored(self, github, sink, settings, manifest):
        github.contents["package.json"] = encoded(manifest)

        state = await pipeline(github, FakeRouter(LLM_ONE_TODO), sink, settings).run(request())

        assert not state.failed, state.error
        assert state.analysis.health_files.package_json is None
        assert state.analysis.dependencies is None
        # README 20 + tests 25, no scripts bonus
        assert state.analysis.architecture_score == 45
        assert len(state.todos) == 1
