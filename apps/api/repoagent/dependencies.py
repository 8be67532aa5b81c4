"""Construction of pipeline collaborators.

Pipelines never build their own clients; the API and the CLI open one
``PipelineDependencies`` per invocation and close it afterwards.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from repoagent.agent.chat_assistant import ChatAssistantPipeline
from repoagent.agent.repo_analyzer import RepositoryAnalyzerPipeline
from repoagent.agent.todo_generator import TodoGeneratorPipeline
from repoagent.config import Settings, get_settings
from repoagent.database.sink import PersistenceSink, SQLPersistenceSink
from repoagent.llm.router import ModelRouter, build_router
from repoagent.tools.github import GitHubClient


@dataclass
class PipelineDependencies:
    """GitHub client, LLM router and persistence sink shared by one invocation."""
    github: GitHubClient
    router: ModelRouter
    sink: PersistenceSink
    settings: Settings

    def todo_generator(self) -> TodoGeneratorPipeline:
        return TodoGeneratorPipeline(self.github, self.router, self.sink, self.settings)

    def repo_analyzer(self) -> RepositoryAnalyzerPipeline:
        return RepositoryAnalyzerPipeline(self.github, self.router, self.sink, self.settings)

    def chat_assistant(self) -> ChatAssistantPipeline:
        return ChatAssistantPipeline(self.router, self.sink, self.settings)

    async def aclose(self) -> None:
        await self.github.close()
        await self.router.close()


@asynccontextmanager
async def open_dependencies(settings: Settings | None = None) -> AsyncIterator[PipelineDependencies]:
    """Build the production collaborators and close them on exit."""
    settings = settings or get_settings()
    deps = PipelineDependencies(
        github=GitHubClient(settings=settings),
        router=build_router(settings),
        sink=SQLPersistenceSink(),
        settings=settings,
    )
    try:
        yield deps
    finally:
        await deps.aclose()
