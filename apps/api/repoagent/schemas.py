"""Pydantic schemas for all pipeline I/O contracts.

These schemas define the contracts between:
- The pipeline phases (run state, typed analysis records, todo items)
- API endpoints and clients
- LLM model inputs/outputs
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)


# =============================================================================
# Enums
# =============================================================================

class Priority(str, Enum):
    """Priority of a todo item."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK: dict[Priority, int] = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


class TodoSource(str, Enum):
    """Where a todo item came from."""
    LLM = "llm"
    FALLBACK = "fallback"


class ExecutionStatus(str, Enum):
    """Status of an agent execution audit record."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentType(str, Enum):
    """Pipelines that write agent executions."""
    TODO_GENERATOR = "todo_generator"
    REPO_ANALYZER = "repo_analyzer"
    CHAT_ASSISTANT = "chat_assistant"


class TodoPhase(str, Enum):
    """Phases of the todo generation pipeline, in execution order."""
    START = "start"
    FETCH_REPOSITORY = "fetch_repository"
    ANALYZE_COMMITS = "analyze_commits"
    ANALYZE_CODE_STRUCTURE = "analyze_code_structure"
    CHECK_HEALTH = "check_health"
    GENERATE_TODOS = "generate_todos"
    PRIORITIZE_TODOS = "prioritize_todos"
    SAVE_TODOS = "save_todos"
    COMPLETE = "complete"
    ERROR = "error"


class AnalyzerPhase(str, Enum):
    """Phases of the repository analysis pipeline, in execution order."""
    START = "start"
    FETCH_REPOSITORY = "fetch_repository"
    ANALYZE_STRUCTURE = "analyze_structure"
    ANALYZE_TECH_STACK = "analyze_tech_stack"
    ASSESS_QUALITY = "assess_quality"
    SYNTHESIZE_RESULTS = "synthesize_results"
    SAVE_ANALYSIS = "save_analysis"
    COMPLETE = "complete"
    ERROR = "error"


class ChatPhase(str, Enum):
    """Phases of the chat assistant pipeline, in execution order."""
    START = "start"
    LOAD_CONTEXT = "load_context"
    PROCESS_QUERY = "process_query"
    GENERATE_RESPONSE = "generate_response"
    SAVE_CONVERSATION = "save_conversation"
    COMPLETE = "complete"
    ERROR = "error"


class RiskLevel(str, Enum):
    """Dependency staleness risk."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnalysisOverwriteError(Exception):
    """Raised when a phase writes an analysis field that is already set."""


# =============================================================================
# Todo Schemas
# =============================================================================

class TodoItem(BaseModel):
    """One actionable task produced by the todo pipeline."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str = Field(..., min_length=1, description="Short actionable title")
    description: str = Field(default="")
    priority: Priority = Field(default=Priority.MEDIUM)
    category: str = Field(default="maintenance", description="Free-text category label")
    estimated_hours: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices("estimated_hours", "estimatedHours"),
    )
    rationale: str = Field(default="")
    source: TodoSource = Field(default=TodoSource.LLM)
    labels: list[str] = Field(default_factory=list)
    impact_score: int | None = Field(default=None, ge=0, le=10)
    urgency_score: int | None = Field(default=None, ge=0, le=10)
    order: int | None = Field(default=None, description="1-based position after prioritization")

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Any:
        if value is None:
            return Priority.MEDIUM
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in {p.value for p in Priority}:
                return Priority.MEDIUM
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "maintenance"
        return value.strip() if isinstance(value, str) else value

    @field_validator("description", "rationale", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("estimated_hours", mode="before")
    @classmethod
    def _none_to_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value


# =============================================================================
# Analysis Schemas
# =============================================================================

class AppendOnlyRecord(BaseModel):
    """Record whose fields may each be written once per run."""

    _written: set[str] = PrivateAttr(default_factory=set)

    def record(self, **values: Any) -> None:
        """Write named fields, refusing to overwrite a field already written."""
        fields = type(self).model_fields
        for name in values:
            if name not in fields:
                raise ValueError(f"Unknown field for {type(self).__name__}: {name}")
            if name in self._written:
                raise AnalysisOverwriteError(f"Field already written in this run: {name}")
        for name, value in values.items():
            setattr(self, name, value)
            self._written.add(name)

    @property
    def written(self) -> frozenset[str]:
        return frozenset(self._written)


class ContributorCount(BaseModel):
    author: str
    count: int


class CommitSummary(BaseModel):
    message: str
    author: str | None = None
    date: str | None = None


class CommitAnalysis(BaseModel):
    """Commit patterns over the analysis window."""
    total: int = 0
    contributors: list[ContributorCount] = Field(default_factory=list)
    frequency: float = Field(default=0.0, description="Commits per day over the window")
    patterns: dict[str, int] = Field(default_factory=dict, description="Commits per calendar day")
    recent_activity: list[CommitSummary] = Field(default_factory=list)


class PullRequestSummary(BaseModel):
    title: str
    state: str
    author: str | None = None
    created: str | None = None


class PullRequestAnalysis(BaseModel):
    total: int = 0
    open: int = 0
    merged: int = 0
    merge_rate: float = 0.0
    avg_days_open: int = 0
    recent_prs: list[PullRequestSummary] = Field(default_factory=list)


class IssueAnalysis(BaseModel):
    total: int = 0
    open: int = 0
    closed: int = 0
    close_rate: float = 0.0
    labeled_issues: int = 0
    bug_issues: int = 0


class StructureAnalysis(BaseModel):
    """Root directory listing summary."""
    total_files: int = 0
    directories: int = 0
    directory_names: list[str] = Field(default_factory=list)
    file_types: dict[str, int] = Field(default_factory=dict)
    important_files: list[str] = Field(default_factory=list)


class HealthFiles(BaseModel):
    has_readme: bool = False
    has_tests: bool = False
    has_ci: bool = False
    has_dockerfile: bool = False
    package_json: dict[str, Any] | None = None


class DependencyAnalysis(BaseModel):
    total: int = 0
    production: int = 0
    development: int = 0
    scripts: int = 0
    outdated_risk: RiskLevel = RiskLevel.LOW


class HealthCheck(BaseModel):
    """CI and deployment signals."""
    deployment_status: str = "unknown"
    live_url: str | None = None
    last_deployment: str | None = None
    build_status: str = "unknown"
    test_status: str = "unknown"
    security_alerts: list[dict[str, Any]] = Field(default_factory=list)
    performance_score: float | None = None


class Analysis(AppendOnlyRecord):
    """Heuristic outputs accumulated by the todo pipeline.

    Each phase contributes its own named fields through ``record()``;
    a field written once cannot be written again in the same run.
    """
    commits: CommitAnalysis | None = None
    pull_requests: PullRequestAnalysis | None = None
    issues: IssueAnalysis | None = None
    activity_score: int | None = None
    structure: StructureAnalysis | None = None
    health_files: HealthFiles | None = None
    dependencies: DependencyAnalysis | None = None
    architecture_score: int | None = None
    health: HealthCheck | None = None
    is_production_ready: bool | None = None


class TechStack(BaseModel):
    frameworks: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    databases: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    deployment: list[str] = Field(default_factory=list)
    testing: list[str] = Field(default_factory=list)
    styling: list[str] = Field(default_factory=list)
    apis: list[str] = Field(default_factory=list)
    github_languages: dict[str, int] = Field(default_factory=dict)


class QualityDetails(BaseModel):
    has_readme: bool = False
    has_license: bool = False
    has_contributing: bool = False
    has_tests: bool = False
    has_ci: bool = False
    recent_commits: int = 0
    open_issues_ratio: float = 0.0
    pr_merge_rate: float = 0.0


class QualityAssessment(BaseModel):
    overall_score: int = 0
    documentation_score: int = 0
    activity_score: int = 0
    maintenance_score: int = 0
    community_score: int = 0
    details: QualityDetails = Field(default_factory=QualityDetails)
    recommendations: list[str] = Field(default_factory=list)


class RepositoryReport(AppendOnlyRecord):
    """Outputs accumulated by the repository analysis pipeline."""
    structure: StructureAnalysis | None = None
    structure_insights: str | None = None
    tech_stack: TechStack | None = None
    tech_stack_insights: str | None = None
    quality: QualityAssessment | None = None
    quality_insights: str | None = None
    summary: str | None = None
    status: str | None = None
    save_error: str | None = None


# =============================================================================
# Repository Snapshots
# =============================================================================

class RepositoryData(BaseModel):
    """Repository metadata captured once by the fetch phase."""

    model_config = ConfigDict(frozen=True)

    id: str | None = Field(default=None, description="Database id, when stored")
    name: str
    full_name: str
    description: str | None = None
    html_url: str | None = None
    homepage: str | None = None
    default_branch: str = "main"
    language: str | None = None
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    languages: dict[str, int] = Field(default_factory=dict)
    topics: list[str] = Field(default_factory=list)
    analysis_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.full_name.split("/", 1)[1]


class GitHubSnapshot(BaseModel):
    """Raw GitHub payloads fetched by the repository analysis pipeline."""

    model_config = ConfigDict(frozen=True)

    repository: dict[str, Any] = Field(default_factory=dict)
    files: list[dict[str, Any]] = Field(default_factory=list)
    file_contents: dict[str, str] = Field(default_factory=dict)
    commits: list[dict[str, Any]] = Field(default_factory=list)
    issues: list[dict[str, Any]] = Field(default_factory=list)
    pull_requests: list[dict[str, Any]] = Field(default_factory=list)
    languages: dict[str, int] = Field(default_factory=dict)


# =============================================================================
# Run State
# =============================================================================

class RunError(BaseModel):
    """Failure that made a run terminal."""
    message: str
    phase: str


class PipelineState(BaseModel):
    """Fields every pipeline run state carries for the runner."""

    user_id: str = Field(..., frozen=True)
    context: dict[str, Any] = Field(default_factory=dict)
    phase: str = "start"
    step_count: int = 0
    execution_id: str | None = None
    error: RunError | None = None
    started_at: float = Field(default_factory=time.perf_counter)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


class TodoRunState(PipelineState):
    """Mutable record threaded through one todo generation run."""

    repository_id: str = Field(..., frozen=True)
    repository: RepositoryData | None = None
    analysis: Analysis = Field(default_factory=Analysis)
    todos: list[TodoItem] = Field(default_factory=list)
    used_fallback: bool = False
    todo_list_id: str | None = None


class AnalysisRunState(PipelineState):
    """Mutable record threaded through one repository analysis run."""

    repository_id: str | None = Field(default=None, frozen=True)
    github_url: str | None = Field(default=None, frozen=True)
    repository: RepositoryData | None = None
    github_data: GitHubSnapshot | None = None
    report: RepositoryReport = Field(default_factory=RepositoryReport)


class ChatMessage(BaseModel):
    """One earlier turn of a stored conversation."""
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRunState(PipelineState):
    """Mutable record threaded through one chat assistant run."""

    message: str = Field(..., frozen=True)
    repository_id: str | None = Field(default=None, frozen=True)
    conversation_id: str | None = Field(default=None, frozen=True)
    repository: RepositoryData | None = None
    tech_stack: dict[str, Any] = Field(default_factory=dict)
    analysis_summary: str | None = None
    cached_analysis: dict[str, Any] | None = None
    history: list[ChatMessage] = Field(default_factory=list)
    prompt: str | None = None
    response: str | None = None
    used_fallback: bool = False
    saved_conversation_id: str | None = None
    save_error: str | None = None


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class TodoGenerationRequest(BaseModel):
    """Input to the todo generation pipeline."""
    repository_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "repository_id": "3f1c2a8e-6d7b-4f0a-9c39-0b5b2f1d7e21",
                "user_id": "9a0e4c52-1b7d-4e1f-8d6c-2f9b3a7c5e10",
                "context": {},
            }
        }
    )


class TodoGenerationResult(BaseModel):
    """Outcome of one todo generation run."""
    success: bool
    execution_id: str | None = None
    todo_list_id: str | None = None
    todos_generated: int | None = None
    analysis: dict[str, Any] | None = None
    execution_time_ms: int | None = None
    error: str | None = None


class RepositoryAnalysisRequest(BaseModel):
    """Input to the repository analysis pipeline."""
    repository_id: str | None = None
    github_url: str | None = None
    user_id: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _require_target(self) -> RepositoryAnalysisRequest:
        if not self.repository_id and not self.github_url:
            raise ValueError("Repository ID or GitHub URL required")
        return self


class RepositoryAnalysisResult(BaseModel):
    """Outcome of one repository analysis run."""
    success: bool
    execution_id: str | None = None
    results: dict[str, Any] | None = None
    execution_time_ms: int | None = None
    steps: int | None = None
    error: str | None = None


class ChatRequest(BaseModel):
    """Input to the chat assistant pipeline."""
    message: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    repository_id: str | None = None
    conversation_id: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "What does this repository use for testing?",
                "user_id": "9a0e4c52-1b7d-4e1f-8d6c-2f9b3a7c5e10",
                "repository_id": "3f1c2a8e-6d7b-4f0a-9c39-0b5b2f1d7e21",
            }
        }
    )

    @field_validator("message", mode="before")
    @classmethod
    def _strip_message(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ChatResult(BaseModel):
    """Outcome of one chat assistant run.

    ``response`` is always set; a failed run carries an apology text.
    """
    success: bool
    response: str
    execution_id: str | None = None
    conversation_id: str | None = None
    execution_time_ms: int | None = None
    steps: int | None = None
    error: str | None = None


class StepResponse(BaseModel):
    step_name: str
    status: str
    output_data: dict[str, Any] = Field(default_factory=dict)
    duration_ms: int | None = None
    created_at: datetime


class ExecutionResponse(BaseModel):
    """API response for an agent execution audit record."""
    id: str
    agent_type: str
    status: str
    step_count: int = 0
    execution_time_ms: int | None = None
    error_message: str | None = None
    output_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime | None = None
    steps: list[StepResponse] = Field(default_factory=list)


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)


class LLMResponse(BaseModel):
    """Response from an LLM provider."""
    content: str | None = None
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
    status_code: int | None = Field(default=None, description="HTTP status when the call failed")
    error: str | None = None
    raw_response: dict[str, Any] | None = None

    @property
    def failed(self) -> bool:
        return self.finish_reason == "error"
