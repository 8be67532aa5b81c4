"""Persistence sink used by the pipelines.

``PersistenceSink`` is the narrow set of reads and writes a pipeline needs;
``SQLPersistenceSink`` implements it on the async SQLAlchemy session.
Pipelines only see the protocol, so tests pass an in-memory sink instead.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from repoagent.database.models import (
    AgentExecution,
    AgentStep,
    AnalysisCache,
    Conversation,
    ConversationMessage,
    Repository,
    TodoItemRecord,
    TodoList,
    new_id,
)
from repoagent.database.session import get_session
from repoagent.schemas import ExecutionStatus, TodoItem, TodoSource


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class PersistenceSink(Protocol):
    """Storage operations the pipelines depend on."""

    async def get_repository(self, repository_id: str) -> Repository | None: ...

    async def create_execution(
        self,
        execution_id: str,
        user_id: str,
        agent_type: str,
        input_data: dict[str, Any],
    ) -> None: ...

    async def update_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output_data: dict[str, Any] | None = None,
        error_message: str | None = None,
        step_count: int | None = None,
        execution_time_ms: int | None = None,
    ) -> None: ...

    async def get_execution(self, execution_id: str) -> AgentExecution | None: ...

    async def list_steps(self, execution_id: str) -> list[AgentStep]: ...

    async def record_step(
        self,
        execution_id: str,
        step_name: str,
        output_data: dict[str, Any],
        status: str = "completed",
        duration_ms: int | None = None,
    ) -> None: ...

    async def save_todo_list(
        self,
        user_id: str,
        repository_id: str,
        title: str,
        description: str,
        items: list[TodoItem],
    ) -> str: ...

    async def save_repository_analysis(
        self,
        repository_id: str,
        tech_stack: dict[str, Any],
        summary: str | None,
    ) -> None: ...

    async def cache_analysis(
        self,
        repository_id: str,
        analysis_type: str,
        cache_key: str,
        data: dict[str, Any],
        ttl_minutes: int,
    ) -> None: ...

    async def get_cached_analysis(
        self,
        repository_id: str,
        analysis_type: str,
        cache_key: str,
    ) -> dict[str, Any] | None: ...

    async def create_conversation(
        self,
        user_id: str,
        repository_id: str | None,
        title: str,
        summary: str,
        context: dict[str, Any],
    ) -> str: ...

    async def list_messages(self, conversation_id: str, limit: int) -> list[ConversationMessage]: ...

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any],
        token_count: int,
    ) -> None: ...


# =============================================================================
# Row builders
# =============================================================================

def todo_item_description(item: TodoItem) -> str:
    """Stored description: the item's description plus its rationale."""
    if not item.rationale:
        return item.description
    return f"{item.description}\n\n**Rationale:** {item.rationale}"


def todo_item_labels(item: TodoItem) -> list[str]:
    origin = "ai-generated" if item.source == TodoSource.LLM else "fallback"
    labels = [item.category, origin]
    labels.extend(label for label in item.labels if label not in labels)
    return labels


def build_item_records(todo_list_id: str, items: list[TodoItem]) -> list[TodoItemRecord]:
    return [
        TodoItemRecord(
            todo_list_id=todo_list_id,
            title=item.title,
            description=todo_item_description(item),
            priority=item.priority.value,
            status="pending",
            completed=False,
            estimated_hours=item.estimated_hours,
            labels=todo_item_labels(item),
            impact_score=item.impact_score,
            urgency_score=item.urgency_score,
            position=item.order if item.order is not None else index + 1,
        )
        for index, item in enumerate(items)
    ]


# =============================================================================
# SQL implementation
# =============================================================================

class SQLPersistenceSink:
    """PersistenceSink backed by the async SQLAlchemy session."""

    def __init__(self, session_factory: SessionFactory = get_session):
        self._session = session_factory

    async def get_repository(self, repository_id: str) -> Repository | None:
        async with self._session() as session:
            return await session.get(Repository, repository_id)

    async def create_execution(
        self,
        execution_id: str,
        user_id: str,
        agent_type: str,
        input_data: dict[str, Any],
    ) -> None:
        async with self._session() as session:
            session.add(AgentExecution(
                id=execution_id,
                user_id=user_id,
                agent_type=agent_type,
                input_data=input_data,
                status=ExecutionStatus.RUNNING.value,
            ))

    async def update_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output_data: dict[str, Any] | None = None,
        error_message: str | None = None,
        step_count: int | None = None,
        execution_time_ms: int | None = None,
    ) -> None:
        async with self._session() as session:
            execution = await session.get(AgentExecution, execution_id)
            if execution is None:
                raise LookupError(f"Execution not found: {execution_id}")

            execution.status = status.value
            if output_data is not None:
                execution.output_data = output_data
            if error_message is not None:
                execution.error_message = error_message
            if step_count is not None:
                execution.step_count = step_count
            if execution_time_ms is not None:
                execution.execution_time_ms = execution_time_ms
            execution.updated_at = datetime.utcnow()
            session.add(execution)

    async def get_execution(self, execution_id: str) -> AgentExecution | None:
        async with self._session() as session:
            return await session.get(AgentExecution, execution_id)

    async def list_steps(self, execution_id: str) -> list[AgentStep]:
        async with self._session() as session:
            result = await session.execute(
                select(AgentStep)
                .where(AgentStep.execution_id == execution_id)
                .order_by(AgentStep.created_at)
            )
            return list(result.scalars().all())

    async def record_step(
        self,
        execution_id: str,
        step_name: str,
        output_data: dict[str, Any],
        status: str = "completed",
        duration_ms: int | None = None,
    ) -> None:
        async with self._session() as session:
            session.add(AgentStep(
                execution_id=execution_id,
                step_name=step_name,
                output_data=output_data,
                status=status,
                duration_ms=duration_ms,
            ))

    async def save_todo_list(
        self,
        user_id: str,
        repository_id: str,
        title: str,
        description: str,
        items: list[TodoItem],
    ) -> str:
        # List and items commit together or not at all
        async with self._session() as session:
            todo_list = TodoList(
                user_id=user_id,
                repository_id=repository_id,
                title=title,
                description=description,
                category="ai_analysis",
                auto_generated=True,
            )
            session.add(todo_list)
            await session.flush()
            session.add_all(build_item_records(todo_list.id, items))

        logger.info(f"Saved todo list {todo_list.id} with {len(items)} items")
        return todo_list.id

    async def save_repository_analysis(
        self,
        repository_id: str,
        tech_stack: dict[str, Any],
        summary: str | None,
    ) -> None:
        async with self._session() as session:
            repository = await session.get(Repository, repository_id)
            if repository is None:
                raise LookupError(f"Repository not found: {repository_id}")
            repository.tech_stack = tech_stack
            repository.analysis_summary = summary
            repository.last_analyzed = datetime.utcnow()
            repository.updated_at = datetime.utcnow()
            session.add(repository)

    async def cache_analysis(
        self,
        repository_id: str,
        analysis_type: str,
        cache_key: str,
        data: dict[str, Any],
        ttl_minutes: int,
    ) -> None:
        expires_at = datetime.utcnow() + timedelta(minutes=ttl_minutes)
        statement = insert(AnalysisCache).values(
            id=new_id(),
            repository_id=repository_id,
            analysis_type=analysis_type,
            cache_key=cache_key,
            cached_data=data,
            expires_at=expires_at,
            created_at=datetime.utcnow(),
        )
        statement = statement.on_conflict_do_update(
            constraint="uq_analysis_cache_key",
            set_={"cached_data": data, "expires_at": expires_at},
        )
        async with self._session() as session:
            await session.execute(statement)

    async def get_cached_analysis(
        self,
        repository_id: str,
        analysis_type: str,
        cache_key: str,
    ) -> dict[str, Any] | None:
        """Cached payload, or None when missing or expired."""
        async with self._session() as session:
            result = await session.execute(
                select(AnalysisCache)
                .where(AnalysisCache.repository_id == repository_id)
                .where(AnalysisCache.analysis_type == analysis_type)
                .where(AnalysisCache.cache_key == cache_key)
                .where(AnalysisCache.expires_at > datetime.utcnow())
            )
            entry = result.scalars().first()
            return entry.cached_data if entry else None

    # =========================================================================
    # Conversations
    # =========================================================================

    async def create_conversation(
        self,
        user_id: str,
        repository_id: str | None,
        title: str,
        summary: str,
        context: dict[str, Any],
    ) -> str:
        conversation = Conversation(
            user_id=user_id,
            repository_id=repository_id,
            title=title,
            summary=summary,
            context=context,
        )
        async with self._session() as session:
            session.add(conversation)
        return conversation.id

    async def list_messages(self, conversation_id: str, limit: int) -> list[ConversationMessage]:
        """The last ``limit`` messages of a conversation, oldest first."""
        async with self._session() as session:
            result = await session.execute(
                select(ConversationMessage)
                .where(ConversationMessage.conversation_id == conversation_id)
                .order_by(ConversationMessage.created_at.desc())
                .limit(limit)
            )
            return list(reversed(result.scalars().all()))

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any],
        token_count: int,
    ) -> None:
        async with self._session() as session:
            session.add(ConversationMessage(
                conversation_id=conversation_id,
                role=role,
                content=content,
                message_metadata=metadata,
                token_count=token_count,
            ))
            conversation = await session.get(Conversation, conversation_id)
            if conversation is not None:
                conversation.updated_at = datetime.utcnow()
                session.add(conversation)
