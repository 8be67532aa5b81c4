"""Repository analysis pipeline.

Phase order:
start → fetch_repository → analyze_structure → analyze_tech_stack →
assess_quality → synthesize_results → save_analysis → complete

The rule-based analyzers produce the structured report; the LLM adds a
prose insight per section and a final executive summary. Saving the
report is best effort: a storage failure marks the report
``completed_with_save_error`` instead of failing the run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from repoagent.agent.analyzers import analyze_file_structure, assess_code_quality, detect_tech_stack
from repoagent.agent.prompts import (
    REPO_ANALYZER_SYSTEM_PROMPT,
    format_quality_prompt,
    format_structure_prompt,
    format_synthesis_prompt,
    format_tech_stack_prompt,
)
from repoagent.agent.runner import PipelineRunner, PipelineStep
from repoagent.agent.todo_generator import RepositoryNotFoundError
from repoagent.config import Settings, get_settings
from repoagent.database.sink import PersistenceSink
from repoagent.llm.router import ModelRouter
from repoagent.schemas import (
    AgentType,
    AnalysisRunState,
    AnalyzerPhase,
    ExecutionStatus,
    GitHubSnapshot,
    RepositoryAnalysisRequest,
    RepositoryAnalysisResult,
    RepositoryData,
)
from repoagent.tools.github import GitHubClient, parse_github_url, split_full_name


logger = logging.getLogger(__name__)

# Files whose contents feed tech stack detection and quality scoring
KEY_FILES = ("README.md", "package.json", "requirements.txt", "Dockerfile", ".env.example")

RECENT_COMMITS = 20
RECENT_ISSUES = 50
RECENT_PULL_REQUESTS = 30

CACHE_ANALYSIS_TYPE = "full_analysis"
CACHE_KEY = "latest"


def _require_snapshot(state: AnalysisRunState) -> GitHubSnapshot:
    if state.github_data is None:
        raise RuntimeError(f"No GitHub data available for {state.phase}")
    return state.github_data


class RepositoryAnalyzerPipeline:
    """Structure, tech stack and quality report for one repository."""

    def __init__(
        self,
        github: GitHubClient,
        router: ModelRouter,
        sink: PersistenceSink,
        settings: Settings | None = None,
    ):
        self.github = github
        self.router = router
        self.sink = sink
        self.settings = settings or get_settings()

        self.runner: PipelineRunner[AnalysisRunState] = PipelineRunner(
            steps=[
                PipelineStep(AnalyzerPhase.START.value, self.start),
                PipelineStep(AnalyzerPhase.FETCH_REPOSITORY.value, self.fetch_repository),
                PipelineStep(AnalyzerPhase.ANALYZE_STRUCTURE.value, self.analyze_structure),
                PipelineStep(AnalyzerPhase.ANALYZE_TECH_STACK.value, self.analyze_tech_stack),
                PipelineStep(AnalyzerPhase.ASSESS_QUALITY.value, self.assess_quality),
                PipelineStep(AnalyzerPhase.SYNTHESIZE_RESULTS.value, self.synthesize_results),
                PipelineStep(AnalyzerPhase.SAVE_ANALYSIS.value, self.save_analysis),
            ],
            complete=self.complete,
            on_error=self.handle_error,
            sink=sink,
            step_timeout=self.settings.step_timeout_seconds,
        )

    async def _insight(self, prompt: str) -> str:
        return await self.router.complete_text(
            REPO_ANALYZER_SYSTEM_PROMPT,
            prompt,
            temperature=self.settings.analyzer_temperature,
        )

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run(self, request: RepositoryAnalysisRequest) -> AnalysisRunState:
        state = AnalysisRunState(
            repository_id=request.repository_id,
            github_url=request.github_url,
            user_id=request.user_id,
        )
        return await self.runner.run(state)

    async def execute(self, request: RepositoryAnalysisRequest) -> RepositoryAnalysisResult:
        state = await self.run(request)

        if state.failed:
            return RepositoryAnalysisResult(
                success=False,
                execution_id=state.execution_id,
                steps=state.step_count,
                error=state.error.message,
            )

        return RepositoryAnalysisResult(
            success=True,
            execution_id=state.execution_id,
            results=self.project_results(state),
            execution_time_ms=state.elapsed_ms(),
            steps=state.step_count,
        )

    @staticmethod
    def project_results(state: AnalysisRunState) -> dict[str, Any]:
        results = state.report.model_dump(mode="json", exclude_none=True)
        if state.repository:
            results["repository"] = {
                "id": state.repository.id,
                "full_name": state.repository.full_name,
                "html_url": state.repository.html_url,
            }
        return results

    # =========================================================================
    # Phases
    # =========================================================================

    async def start(self, state: AnalysisRunState) -> dict[str, Any]:
        execution_id = str(uuid4())
        await self.sink.create_execution(
            execution_id=execution_id,
            user_id=state.user_id,
            agent_type=AgentType.REPO_ANALYZER.value,
            input_data={
                "repository_id": state.repository_id,
                "github_url": state.github_url,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        state.execution_id = execution_id
        logger.info(f"[{execution_id}] Repository analysis started")
        return {"repository_id": state.repository_id, "github_url": state.github_url}

    async def _resolve_target(self, state: AnalysisRunState) -> tuple[str | None, str, str]:
        """Database id (if any) and owner/repo to analyze."""
        if state.repository_id:
            record = await self.sink.get_repository(state.repository_id)
            if record is None:
                raise RepositoryNotFoundError(f"Repository not found: {state.repository_id}")
            owner, repo = split_full_name(record.full_name)
            return record.id, owner, repo

        parsed = parse_github_url(state.github_url or "")
        if parsed is None:
            raise ValueError(f"Not a GitHub repository URL: {state.github_url}")
        return None, parsed[0], parsed[1]

    async def fetch_repository(self, state: AnalysisRunState) -> dict[str, Any]:
        repository_id, owner, repo = await self._resolve_target(state)

        github_repo = await self.github.get_repository(owner, repo)
        files = await self.github.get_content(owner, repo, "")
        if not isinstance(files, list):
            files = []

        file_contents: dict[str, str] = {}
        for path in KEY_FILES:
            text = await self.github.get_file_text(owner, repo, path)
            if text is not None:
                file_contents[path] = text

        commits = await self.github.list_commits(owner, repo, per_page=RECENT_COMMITS)
        issues = await self.github.list_issues(owner, repo, per_page=RECENT_ISSUES)
        pull_requests = await self.github.list_pull_requests(owner, repo, per_page=RECENT_PULL_REQUESTS)
        languages = await self.github.list_languages(owner, repo)

        state.github_data = GitHubSnapshot(
            repository=github_repo,
            files=files,
            file_contents=file_contents,
            commits=commits,
            issues=issues,
            pull_requests=pull_requests,
            languages=languages,
        )
        state.repository = RepositoryData(
            id=repository_id,
            name=github_repo.get("name") or repo,
            full_name=github_repo.get("full_name") or f"{owner}/{repo}",
            description=github_repo.get("description"),
            html_url=github_repo.get("html_url"),
            homepage=github_repo.get("homepage"),
            default_branch=github_repo.get("default_branch") or "main",
            language=github_repo.get("language"),
            stars=github_repo.get("stargazers_count", 0),
            forks=github_repo.get("forks_count", 0),
            open_issues=github_repo.get("open_issues_count", 0),
            languages=languages,
        )

        return {
            "repository_name": state.repository.full_name,
            "files": len(files),
            "key_files": sorted(file_contents),
            "commits": len(commits),
            "issues": len(issues),
            "pull_requests": len(pull_requests),
        }

    async def analyze_structure(self, state: AnalysisRunState) -> dict[str, Any]:
        snapshot = _require_snapshot(state)
        structure = analyze_file_structure(snapshot.files)

        state.report.record(
            structure=structure,
            structure_insights=await self._insight(format_structure_prompt(structure.model_dump(mode="json"))),
        )
        return {"total_files": structure.total_files, "directories": structure.directories}

    async def analyze_tech_stack(self, state: AnalysisRunState) -> dict[str, Any]:
        snapshot = _require_snapshot(state)
        tech_stack = detect_tech_stack(snapshot.files, snapshot.file_contents, snapshot.languages)

        state.report.record(
            tech_stack=tech_stack,
            tech_stack_insights=await self._insight(format_tech_stack_prompt(tech_stack.model_dump(mode="json"))),
        )
        return {
            "frameworks": tech_stack.frameworks,
            "languages": tech_stack.languages,
            "databases": tech_stack.databases,
        }

    async def assess_quality(self, state: AnalysisRunState) -> dict[str, Any]:
        snapshot = _require_snapshot(state)
        quality = assess_code_quality(
            repository=snapshot.repository,
            files=snapshot.files,
            file_contents=snapshot.file_contents,
            commits=snapshot.commits,
            issues=snapshot.issues,
            pull_requests=snapshot.pull_requests,
        )

        state.report.record(
            quality=quality,
            quality_insights=await self._insight(format_quality_prompt(quality.model_dump(mode="json"))),
        )
        return {
            "overall_score": quality.overall_score,
            "recommendations": len(quality.recommendations),
        }

    async def synthesize_results(self, state: AnalysisRunState) -> dict[str, Any]:
        report = state.report
        summary = await self._insight(format_synthesis_prompt(
            full_name=state.repository.full_name if state.repository else "the repository",
            structure=report.structure.model_dump(mode="json") if report.structure else None,
            tech_stack=report.tech_stack.model_dump(mode="json") if report.tech_stack else None,
            quality=report.quality.model_dump(mode="json") if report.quality else None,
        ))
        report.record(summary=summary)
        return {"summary_length": len(summary)}

    async def save_analysis(self, state: AnalysisRunState) -> dict[str, Any]:
        repository_id = state.repository.id if state.repository else None
        if repository_id is None:
            state.report.record(status="completed")
            return {"saved": False}

        try:
            await self.sink.save_repository_analysis(
                repository_id,
                tech_stack=state.report.tech_stack.model_dump(mode="json") if state.report.tech_stack else {},
                summary=state.report.summary,
            )
            await self.sink.cache_analysis(
                repository_id,
                analysis_type=CACHE_ANALYSIS_TYPE,
                cache_key=CACHE_KEY,
                data=state.report.model_dump(mode="json", exclude_none=True),
                ttl_minutes=self.settings.analysis_cache_minutes,
            )
        except Exception as e:
            logger.warning(f"[{state.execution_id}] Saving analysis failed: {e}")
            state.report.record(status="completed_with_save_error", save_error=str(e))
            return {"saved": False, "save_error": str(e)}

        state.report.record(status="completed")
        return {"saved": True}

    # =========================================================================
    # Terminal phases
    # =========================================================================

    async def complete(self, state: AnalysisRunState) -> dict[str, Any]:
        execution_time_ms = state.elapsed_ms()
        logger.info(f"[{state.execution_id}] Repository analysis completed in {execution_time_ms}ms")

        await self.sink.update_execution(
            state.execution_id,
            ExecutionStatus.COMPLETED,
            output_data=self.project_results(state),
            step_count=state.step_count,
            execution_time_ms=execution_time_ms,
        )
        return {"status": state.report.status, "execution_time_ms": execution_time_ms}

    async def handle_error(self, state: AnalysisRunState) -> dict[str, Any]:
        message = state.error.message if state.error else "Unknown error"
        logger.error(f"[{state.execution_id or '-'}] Repository analysis failed: {message}")

        if state.execution_id:
            await self.sink.update_execution(
                state.execution_id,
                ExecutionStatus.FAILED,
                error_message=message,
                step_count=state.step_count,
                execution_time_ms=state.elapsed_ms(),
            )
        return {"error": message}
