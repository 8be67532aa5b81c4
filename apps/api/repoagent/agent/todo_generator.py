"""Todo generation pipeline.

Phase order:
start → fetch_repository → analyze_commits → analyze_code_structure →
check_health → generate_todos → prioritize_todos → save_todos → complete
                                     any failure ↘ error

Every phase writes its own fields on ``TodoRunState``; analysis fields go
through ``Analysis.record`` and can only be written once per run. If the
LLM answer contains no usable todo items, rule-based fallback items are
generated instead, so a completed run always has at least one todo.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from repoagent.agent.analyzers import (
    analyze_commit_patterns,
    analyze_dependencies,
    analyze_file_structure,
    analyze_issues,
    analyze_pull_requests,
    assess_production_readiness,
    build_status_from_runs,
    calculate_activity_score,
    calculate_architecture_score,
    detect_deployment,
    has_test_paths,
    parse_package_json,
    prioritize_todos,
)
from repoagent.agent.parsing import TodoResponseParser, generate_fallback_todos
from repoagent.agent.prompts import TODO_GENERATOR_SYSTEM_PROMPT, format_todo_prompt
from repoagent.agent.runner import PipelineRunner, PipelineStep
from repoagent.config import Settings, get_settings
from repoagent.database.sink import PersistenceSink
from repoagent.llm.router import ModelRouter
from repoagent.schemas import (
    AgentType,
    ExecutionStatus,
    HealthCheck,
    HealthFiles,
    Priority,
    RepositoryData,
    TodoGenerationRequest,
    TodoGenerationResult,
    TodoPhase,
    TodoRunState,
)
from repoagent.tools.github import GitHubClient, GitHubError, NotFoundError, RateLimitError, split_full_name


logger = logging.getLogger(__name__)

TODO_LIST_CATEGORY = "ai_analysis"


class RepositoryNotFoundError(LookupError):
    """Repository id is not present in the database."""


def _require_repository(state: TodoRunState) -> RepositoryData:
    if state.repository is None:
        raise RuntimeError(f"Phase {state.phase} needs repository data from fetch_repository")
    return state.repository


class TodoGeneratorPipeline:
    """Analyze a stored repository and produce a prioritized todo list.

    Collaborators are injected so each one can be replaced in tests.
    """

    def __init__(
        self,
        github: GitHubClient,
        router: ModelRouter,
        sink: PersistenceSink,
        settings: Settings | None = None,
        parser: TodoResponseParser | None = None,
    ):
        self.github = github
        self.router = router
        self.sink = sink
        self.settings = settings or get_settings()
        self.parser = parser or TodoResponseParser()

        self.runner: PipelineRunner[TodoRunState] = PipelineRunner(
            steps=[
                PipelineStep(TodoPhase.START.value, self.start),
                PipelineStep(TodoPhase.FETCH_REPOSITORY.value, self.fetch_repository),
                PipelineStep(TodoPhase.ANALYZE_COMMITS.value, self.analyze_commits),
                PipelineStep(TodoPhase.ANALYZE_CODE_STRUCTURE.value, self.analyze_code_structure),
                PipelineStep(TodoPhase.CHECK_HEALTH.value, self.check_health),
                PipelineStep(TodoPhase.GENERATE_TODOS.value, self.generate_todos),
                PipelineStep(TodoPhase.PRIORITIZE_TODOS.value, self.prioritize),
                PipelineStep(TodoPhase.SAVE_TODOS.value, self.save_todos),
            ],
            complete=self.complete,
            on_error=self.handle_error,
            sink=sink,
            step_timeout=self.settings.step_timeout_seconds,
        )

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run(self, request: TodoGenerationRequest) -> TodoRunState:
        """Run the pipeline and return the final run state."""
        state = TodoRunState(
            repository_id=request.repository_id,
            user_id=request.user_id,
            context=dict(request.context),
        )
        return await self.runner.run(state)

    async def execute(self, request: TodoGenerationRequest) -> TodoGenerationResult:
        """Run the pipeline and project the final state onto the public result."""
        state = await self.run(request)

        if state.failed:
            return TodoGenerationResult(
                success=False,
                execution_id=state.execution_id,
                error=state.error.message,
            )

        return TodoGenerationResult(
            success=True,
            execution_id=state.execution_id,
            todo_list_id=state.todo_list_id,
            todos_generated=len(state.todos),
            analysis=state.analysis.model_dump(mode="json", exclude_none=True),
            execution_time_ms=state.elapsed_ms(),
        )

    # =========================================================================
    # Phases
    # =========================================================================

    async def start(self, state: TodoRunState) -> dict[str, Any]:
        execution_id = str(uuid4())
        await self.sink.create_execution(
            execution_id=execution_id,
            user_id=state.user_id,
            agent_type=AgentType.TODO_GENERATOR.value,
            input_data={
                "repository_id": state.repository_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        state.execution_id = execution_id
        logger.info(f"[{execution_id}] Todo generation started for repository {state.repository_id}")
        return {"repository_id": state.repository_id}

    async def fetch_repository(self, state: TodoRunState) -> dict[str, Any]:
        record = await self.sink.get_repository(state.repository_id)
        if record is None:
            raise RepositoryNotFoundError(f"Repository not found: {state.repository_id}")

        owner, repo = split_full_name(record.full_name)
        github_repo = await self.github.get_repository(owner, repo)
        languages = await self.github.list_languages(owner, repo)
        topics = await self.github.list_topics(owner, repo)

        state.repository = RepositoryData(
            id=record.id,
            name=record.name,
            full_name=record.full_name,
            description=github_repo.get("description") or record.description,
            html_url=github_repo.get("html_url") or record.html_url,
            homepage=github_repo.get("homepage") or record.homepage,
            default_branch=github_repo.get("default_branch") or record.default_branch,
            language=github_repo.get("language") or record.language,
            stars=github_repo.get("stargazers_count", 0),
            forks=github_repo.get("forks_count", 0),
            open_issues=github_repo.get("open_issues_count", 0),
            languages=languages,
            topics=topics,
        )

        return {
            "repository_name": record.full_name,
            "languages": list(languages),
            "topics": topics,
            "stars": state.repository.stars,
            "forks": state.repository.forks,
        }

    async def analyze_commits(self, state: TodoRunState) -> dict[str, Any]:
        repository = _require_repository(state)
        window_days = self.settings.commit_window_days
        since = datetime.now(timezone.utc) - timedelta(days=window_days)

        commits = await self.github.list_commits(repository.owner, repository.repo, since=since, per_page=100)
        pull_requests = await self.github.list_pull_requests(
            repository.owner, repository.repo, per_page=self.settings.max_pull_requests
        )
        issues = await self.github.list_issues(
            repository.owner, repository.repo, per_page=self.settings.max_issues
        )

        commit_analysis = analyze_commit_patterns(commits, window_days=window_days)
        pr_analysis = analyze_pull_requests(pull_requests)
        issue_analysis = analyze_issues(issues)

        state.analysis.record(
            commits=commit_analysis,
            pull_requests=pr_analysis,
            issues=issue_analysis,
            activity_score=calculate_activity_score(commit_analysis, pr_analysis, issue_analysis),
        )

        return {
            "commits_count": commit_analysis.total,
            "open_prs": pr_analysis.open,
            "open_issues": issue_analysis.open,
            "commit_frequency": commit_analysis.frequency,
            "main_contributors": [c.model_dump() for c in commit_analysis.contributors[:5]],
        }

    async def _check_health_files(self, owner: str, repo: str, contents: list[dict[str, Any]]) -> HealthFiles:
        """Probe for README, package.json, CI workflows and a Dockerfile.

        Missing paths count as absent; rate limits and other API failures
        propagate and fail the phase.
        """
        health = HealthFiles(has_tests=has_test_paths(contents))
        health.has_readme = await self.github.has_readme(owner, repo)

        package_json = await self.github.get_file_text(owner, repo, "package.json")
        if package_json is not None:
            health.package_json = parse_package_json(package_json, source=f"package.json in {owner}/{repo}")

        try:
            workflows = await self.github.get_content(owner, repo, ".github/workflows")
            health.has_ci = isinstance(workflows, list) and len(workflows) > 0
        except NotFoundError:
            health.has_ci = False

        health.has_dockerfile = await self.github.path_exists(owner, repo, "Dockerfile")
        return health

    async def analyze_code_structure(self, state: TodoRunState) -> dict[str, Any]:
        repository = _require_repository(state)

        contents = await self.github.get_content(repository.owner, repository.repo, "")
        if not isinstance(contents, list):
            contents = []

        structure = analyze_file_structure(contents)
        health_files = await self._check_health_files(repository.owner, repository.repo, contents)
        dependencies = analyze_dependencies(health_files.package_json) if health_files.package_json else None

        state.analysis.record(
            structure=structure,
            health_files=health_files,
            dependencies=dependencies,
            architecture_score=calculate_architecture_score(structure, health_files),
        )

        return {
            "file_count": structure.total_files,
            "directory_count": structure.directories,
            "main_language": repository.language,
            "has_readme": health_files.has_readme,
            "has_tests": health_files.has_tests,
            "has_ci": health_files.has_ci,
        }

    async def _build_status(self, owner: str, repo: str, execution_id: str | None) -> str:
        try:
            workflows = await self.github.list_workflows(owner, repo)
            workflow_count = workflows.get("total_count", 0)
            runs = await self.github.list_workflow_runs(owner, repo, per_page=10) if workflow_count else []
        except RateLimitError:
            raise
        except GitHubError as e:
            logger.info(f"[{execution_id}] CI status unavailable for {owner}/{repo}: {e}")
            return "unknown"
        return build_status_from_runs(workflow_count, runs)

    async def check_health(self, state: TodoRunState) -> dict[str, Any]:
        repository = _require_repository(state)

        health = HealthCheck(
            build_status=await self._build_status(repository.owner, repository.repo, state.execution_id),
        )
        live_url = detect_deployment(repository)
        if live_url:
            health.deployment_status = "deployed"
            health.live_url = live_url

        state.analysis.record(
            health=health,
            is_production_ready=assess_production_readiness(
                state.analysis.activity_score or 0,
                state.analysis.architecture_score or 0,
                health,
            ),
        )

        return {
            "deployment_status": health.deployment_status,
            "build_status": health.build_status,
            "has_live_url": health.live_url is not None,
        }

    async def generate_todos(self, state: TodoRunState) -> dict[str, Any]:
        repository = _require_repository(state)

        text = await self.router.complete_text(
            TODO_GENERATOR_SYSTEM_PROMPT,
            format_todo_prompt(repository, state.analysis, state.context),
            temperature=self.settings.todo_temperature,
        )
        todos = self.parser.parse(text)

        if not todos:
            logger.warning(f"[{state.execution_id}] No todos parsed from LLM output, using fallback generator")
            todos = generate_fallback_todos(repository, state.analysis)
            state.used_fallback = True

        state.todos = todos

        return {
            "todos_generated": len(todos),
            "high_priority_count": sum(1 for t in todos if t.priority == Priority.HIGH),
            "categories": sorted({t.category for t in todos}),
            "used_fallback": state.used_fallback,
        }

    async def prioritize(self, state: TodoRunState) -> dict[str, Any]:
        state.todos = prioritize_todos(state.todos, state.analysis)

        return {
            "final_todo_count": len(state.todos),
            "urgent_count": sum(1 for t in state.todos if t.priority == Priority.URGENT),
            "high_impact_count": sum(1 for t in state.todos if (t.impact_score or 0) > 7),
        }

    async def save_todos(self, state: TodoRunState) -> dict[str, Any]:
        repository = _require_repository(state)
        generated_on = datetime.now(timezone.utc).date().isoformat()

        state.todo_list_id = await self.sink.save_todo_list(
            user_id=state.user_id,
            repository_id=state.repository_id,
            title=f"AI Analysis - {repository.name}",
            description=(
                f"Comprehensive analysis-based improvements for {repository.name}. "
                f"Generated {generated_on}"
            ),
            items=state.todos,
        )

        return {
            "todo_list_id": state.todo_list_id,
            "items_created": len(state.todos),
            "total_estimated_hours": sum(t.estimated_hours for t in state.todos),
        }

    # =========================================================================
    # Terminal phases
    # =========================================================================

    async def complete(self, state: TodoRunState) -> dict[str, Any]:
        execution_time_ms = state.elapsed_ms()
        high_priority = sum(1 for t in state.todos if t.priority == Priority.HIGH)

        output = {
            "todo_list_id": state.todo_list_id,
            "todos_generated": len(state.todos),
            "analysis": state.analysis.model_dump(mode="json", exclude_none=True),
            "execution_summary": {
                "total_steps": state.step_count,
                "execution_time_ms": execution_time_ms,
                "high_priority_todos": high_priority,
            },
        }

        logger.info(
            f"[{state.execution_id}] Todo generation completed in {execution_time_ms}ms: "
            f"{len(state.todos)} todos over {state.step_count} steps"
        )
        await self.sink.update_execution(
            state.execution_id,
            ExecutionStatus.COMPLETED,
            output_data=output,
            step_count=state.step_count,
            execution_time_ms=execution_time_ms,
        )
        return output["execution_summary"]

    async def handle_error(self, state: TodoRunState) -> dict[str, Any]:
        message = state.error.message if state.error else "Unknown error"
        logger.error(f"[{state.execution_id or '-'}] Todo generation failed: {message}")

        if state.execution_id:
            await self.sink.update_execution(
                state.execution_id,
                ExecutionStatus.FAILED,
                error_message=message,
                step_count=state.step_count,
                execution_time_ms=state.elapsed_ms(),
            )
        return {"error": message}
