"""CLI entrypoint (Typer).

Runs the pipelines without the HTTP layer:
- `repoagent generate-todos <repository-id> --user <user-id>`
- `repoagent analyze --repository-id <id> | --url <github-url> --user <user-id>`
- `repoagent chat "<message>" --user <user-id> [--repository-id <id>] [--conversation <id>]`
- `repoagent init-db`

Results are printed as JSON; a failed run exits with status 1.
"""

from __future__ import annotations

import asyncio

import typer
from pydantic import BaseModel, ValidationError

from repoagent.config import configure_logging
from repoagent.database.session import close_db, init_db
from repoagent.dependencies import open_dependencies
from repoagent.schemas import (
    ChatRequest,
    ChatResult,
    RepositoryAnalysisRequest,
    RepositoryAnalysisResult,
    TodoGenerationRequest,
    TodoGenerationResult,
)

app = typer.Typer(help="RepoAgent: GitHub repository analysis and todo generation.")


def _configure_logging(verbose: bool) -> None:
    configure_logging("DEBUG" if verbose else None)


def _emit(result: BaseModel, success: bool) -> None:
    typer.echo(result.model_dump_json(indent=2, exclude_none=True))
    if not success:
        raise typer.Exit(code=1)


async def _generate_todos(request: TodoGenerationRequest) -> TodoGenerationResult:
    try:
        async with open_dependencies() as deps:
            return await deps.todo_generator().execute(request)
    finally:
        await close_db()


async def _analyze(request: RepositoryAnalysisRequest) -> RepositoryAnalysisResult:
    try:
        async with open_dependencies() as deps:
            return await deps.repo_analyzer().execute(request)
    finally:
        await close_db()


async def _chat(request: ChatRequest) -> ChatResult:
    try:
        async with open_dependencies() as deps:
            return await deps.chat_assistant().execute(request)
    finally:
        await close_db()


@app.command("generate-todos")
def generate_todos(
    repository_id: str = typer.Argument(..., help="Database id of the repository"),
    user_id: str = typer.Option(..., "--user", help="User the todo list belongs to"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Analyze a stored repository and save a prioritized todo list."""
    _configure_logging(verbose)
    request = TodoGenerationRequest(repository_id=repository_id, user_id=user_id)
    result = asyncio.run(_generate_todos(request))
    _emit(result, result.success)


@app.command()
def analyze(
    user_id: str = typer.Option(..., "--user", help="User requesting the analysis"),
    repository_id: str | None = typer.Option(None, "--repository-id", help="Database id of the repository"),
    url: str | None = typer.Option(None, "--url", help="GitHub repository URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Produce a structure, tech stack and quality report for a repository."""
    _configure_logging(verbose)
    try:
        request = RepositoryAnalysisRequest(repository_id=repository_id, github_url=url, user_id=user_id)
    except ValidationError as e:
        raise typer.BadParameter("Provide --repository-id or --url") from e

    result = asyncio.run(_analyze(request))
    _emit(result, result.success)


@app.command()
def chat(
    message: str = typer.Argument(..., help="Question to ask"),
    user_id: str = typer.Option(..., "--user", help="User asking the question"),
    repository_id: str | None = typer.Option(None, "--repository-id", help="Database id of the repository"),
    conversation_id: str | None = typer.Option(None, "--conversation", help="Conversation to continue"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Ask the chat assistant about a repository."""
    _configure_logging(verbose)
    try:
        request = ChatRequest(
            message=message,
            user_id=user_id,
            repository_id=repository_id,
            conversation_id=conversation_id,
        )
    except ValidationError as e:
        raise typer.BadParameter("Message must not be empty") from e

    result = asyncio.run(_chat(request))
    _emit(result, result.success)


@app.command("init-db")
def init_database():
    """Create database tables (development convenience)."""
    _configure_logging(False)

    async def _init() -> None:
        try:
            await init_db()
        finally:
            await close_db()

    asyncio.run(_init())
    typer.echo("Database initialized")


if __name__ == "__main__":
    app()
