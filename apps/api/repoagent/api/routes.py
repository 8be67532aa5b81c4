"""FastAPI routes for the RepoAgent API.

Endpoints:
- GET  /health                  - Health check
- POST /todos/generate          - Run the todo generation pipeline
- POST /repositories/analyze    - Run the repository analysis pipeline
- POST /chat                    - Answer a question about a repository
- GET  /executions/{id}         - Audit record of a pipeline run

Pipeline failures are returned as ``{"success": false, "error": ...}``
with status 200; the audit record keeps the details.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException

from repoagent.config import get_settings
from repoagent.database.sink import PersistenceSink, SQLPersistenceSink
from repoagent.dependencies import PipelineDependencies, open_dependencies
from repoagent.schemas import (
    ChatRequest,
    ChatResult,
    ExecutionResponse,
    RepositoryAnalysisRequest,
    RepositoryAnalysisResult,
    StepResponse,
    TodoGenerationRequest,
    TodoGenerationResult,
)


logger = logging.getLogger(__name__)
router = APIRouter()


async def get_pipeline_dependencies() -> AsyncGenerator[PipelineDependencies, None]:
    """Per-request pipeline collaborators."""
    async with open_dependencies() as deps:
        yield deps


def get_sink() -> PersistenceSink:
    return SQLPersistenceSink()


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Pipeline Endpoints
# =============================================================================

@router.post("/todos/generate", response_model=TodoGenerationResult)
async def generate_todos(
    request: TodoGenerationRequest,
    deps: PipelineDependencies = Depends(get_pipeline_dependencies),
) -> TodoGenerationResult:
    """Analyze a stored repository and save a prioritized todo list."""
    logger.info(f"Todo generation requested for repository {request.repository_id}")
    return await deps.todo_generator().execute(request)


@router.post("/repositories/analyze", response_model=RepositoryAnalysisResult)
async def analyze_repository(
    request: RepositoryAnalysisRequest,
    deps: PipelineDependencies = Depends(get_pipeline_dependencies),
) -> RepositoryAnalysisResult:
    """Produce a structure, tech stack and quality report for a repository."""
    logger.info(f"Repository analysis requested for {request.repository_id or request.github_url}")
    return await deps.repo_analyzer().execute(request)


@router.post("/chat", response_model=ChatResult)
async def chat(
    request: ChatRequest,
    deps: PipelineDependencies = Depends(get_pipeline_dependencies),
) -> ChatResult:
    """Answer one message, keeping the exchange in its conversation."""
    logger.info(f"Chat requested by user {request.user_id} (repository {request.repository_id or '-'})")
    return await deps.chat_assistant().execute(request)


# =============================================================================
# Executions Endpoints
# =============================================================================

@router.get("/executions/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    sink: PersistenceSink = Depends(get_sink),
) -> ExecutionResponse:
    """Get the audit record of a pipeline run, with its step checkpoints."""
    execution = await sink.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")

    steps = await sink.list_steps(execution_id)

    return ExecutionResponse(
        id=execution.id,
        agent_type=execution.agent_type,
        status=execution.status,
        step_count=execution.step_count,
        execution_time_ms=execution.execution_time_ms,
        error_message=execution.error_message,
        output_data=execution.output_data or {},
        created_at=execution.created_at,
        updated_at=execution.updated_at,
        steps=[
            StepResponse(
                step_name=step.step_name,
                status=step.status,
                output_data=step.output_data or {},
                duration_ms=step.duration_ms,
                created_at=step.created_at,
            )
            for step in steps
        ],
    )
