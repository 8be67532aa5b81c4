"""SQLModel database tables.

Tables:
- Repository: imported GitHub repositories
- TodoList / TodoItemRecord: generated todo lists and their items
- Conversation / ConversationMessage: chat assistant conversations
- AgentExecution: one row per pipeline run (audit trail)
- AgentStep: one row per completed pipeline phase
- AnalysisCache: cached analysis payloads with an expiry
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Column, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# Repository Model
# =============================================================================

class Repository(SQLModel, table=True):
    """GitHub repository imported by a user."""

    __tablename__ = "repositories"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    github_id: int | None = Field(default=None, unique=True)
    name: str
    full_name: str = Field(index=True, description="owner/repo")
    description: str | None = Field(default=None, sa_column=Column(Text))
    private: bool = Field(default=False)
    html_url: str | None = Field(default=None)
    homepage: str | None = Field(default=None)
    language: str | None = Field(default=None)
    languages: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    topics: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    stars: int = Field(default=0)
    forks: int = Field(default=0)
    open_issues: int = Field(default=0)
    default_branch: str = Field(default="main")

    # Written by the repository analyzer
    tech_stack: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    analysis_summary: str | None = Field(default=None, sa_column=Column(Text))
    last_analyzed: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default=None)


# =============================================================================
# Todo Models
# =============================================================================

class TodoList(SQLModel, table=True):
    """A list of todo items, usually produced by one pipeline run."""

    __tablename__ = "todo_lists"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    repository_id: str | None = Field(default=None, foreign_key="repositories.id", index=True)
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    category: str | None = Field(default=None)
    priority: str = Field(default="medium")
    status: str = Field(default="active")  # active, completed, archived
    auto_generated: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default=None)


class TodoItemRecord(SQLModel, table=True):
    """One stored todo item."""

    __tablename__ = "todo_items"
    __table_args__ = (
        Index("ix_todo_items_list_position", "todo_list_id", "position"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    todo_list_id: str = Field(foreign_key="todo_lists.id", index=True)
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    priority: str = Field(default="medium")
    status: str = Field(default="pending")
    completed: bool = Field(default=False)
    estimated_hours: float | None = Field(default=None)
    labels: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    impact_score: int | None = Field(default=None)
    urgency_score: int | None = Field(default=None)
    position: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = Field(default=None)


# =============================================================================
# Conversation Models
# =============================================================================

class Conversation(SQLModel, table=True):
    """Chat conversation about a repository."""

    __tablename__ = "conversations"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    repository_id: str | None = Field(default=None, foreign_key="repositories.id", index=True)
    title: str
    summary: str | None = Field(default=None, sa_column=Column(Text))
    context: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default=None)


class ConversationMessage(SQLModel, table=True):
    """One user or assistant turn of a conversation."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id")
    role: str  # user, assistant, system
    content: str = Field(sa_column=Column(Text, nullable=False))
    # "metadata" is reserved on declarative models
    message_metadata: dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    token_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Agent Audit Models
# =============================================================================

class AgentExecution(SQLModel, table=True):
    """Audit record for one pipeline run."""

    __tablename__ = "agent_executions"
    __table_args__ = (
        Index("ix_agent_executions_user_created", "user_id", "created_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    agent_type: str = Field(index=True)  # Use AgentType enum values
    input_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    output_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default="running", index=True)  # Use ExecutionStatus enum values
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    step_count: int = Field(default=0)
    execution_time_ms: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default=None)


class AgentStep(SQLModel, table=True):
    """Audit checkpoint written after each completed phase."""

    __tablename__ = "agent_steps"
    __table_args__ = (
        Index("ix_agent_steps_execution_step", "execution_id", "step_name"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    execution_id: str = Field(foreign_key="agent_executions.id", index=True)
    step_name: str
    output_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default="completed")
    duration_ms: int | None = Field(default=None)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Analysis Cache
# =============================================================================

class AnalysisCache(SQLModel, table=True):
    """Cached analysis payload, unique per repository/type/key."""

    __tablename__ = "analysis_cache"
    __table_args__ = (
        UniqueConstraint("repository_id", "analysis_type", "cache_key", name="uq_analysis_cache_key"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    repository_id: str = Field(foreign_key="repositories.id", index=True)
    analysis_type: str
    cache_key: str
    cached_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    expires_at: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)
