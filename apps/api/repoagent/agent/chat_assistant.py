"""Chat assistant pipeline.

Phase order:
start → load_context → process_query → generate_response →
save_conversation → complete

Answers one user message about a repository, using the stored repository
row, its cached analysis and the recent turns of the conversation as
context. Two failures degrade instead of failing the run: an LLM that
cannot answer yields a canned reply built from the repository metadata,
and a conversation that cannot be stored leaves the reply unsaved.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from repoagent.agent.prompts import CHAT_ASSISTANT_SYSTEM_PROMPT, format_chat_prompt
from repoagent.agent.repo_analyzer import CACHE_ANALYSIS_TYPE, CACHE_KEY
from repoagent.agent.runner import PipelineRunner, PipelineStep
from repoagent.config import Settings, get_settings
from repoagent.database.sink import PersistenceSink
from repoagent.llm.router import LLMInvocationError, ModelRouter
from repoagent.schemas import (
    AgentType,
    ChatMessage,
    ChatPhase,
    ChatRequest,
    ChatResult,
    ChatRunState,
    ExecutionStatus,
    RepositoryData,
)


logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "I apologize, but I encountered an issue generating a response."
ERROR_RESPONSE = "I apologize, but I encountered an error processing your request."

SUMMARY_CHARS = 100


def is_conversation_id(value: str | None) -> bool:
    if not value:
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return math.ceil(len(text) / 4)


def fallback_response(repository: RepositoryData | None) -> str:
    """Reply used when the LLM cannot answer."""
    name = repository.name if repository else "repository"
    text = f"I can help you with information about the **{name}**."
    if repository is None:
        return text

    text += (
        f"\n\nThis is a **{repository.language or 'multi-language'}** repository "
        f"with {repository.stars} stars and {repository.forks} forks."
    )
    if repository.description:
        text += f" {repository.description}"
    text += (
        "\n\nSome things I can help you with:\n"
        "- Explain the codebase structure and architecture\n"
        "- Analyze the technology stack and dependencies\n"
        "- Suggest improvements and optimizations\n"
        "- Help with specific technical questions\n"
        "- Generate development tasks and priorities\n\n"
        "What would you like to know more about?"
    )
    return text


class ChatAssistantPipeline:
    """Answer questions about a repository within a stored conversation."""

    def __init__(
        self,
        router: ModelRouter,
        sink: PersistenceSink,
        settings: Settings | None = None,
    ):
        self.router = router
        self.sink = sink
        self.settings = settings or get_settings()

        self.runner: PipelineRunner[ChatRunState] = PipelineRunner(
            steps=[
                PipelineStep(ChatPhase.START.value, self.start),
                PipelineStep(ChatPhase.LOAD_CONTEXT.value, self.load_context),
                PipelineStep(ChatPhase.PROCESS_QUERY.value, self.process_query),
                PipelineStep(ChatPhase.GENERATE_RESPONSE.value, self.generate_response),
                PipelineStep(ChatPhase.SAVE_CONVERSATION.value, self.save_conversation),
            ],
            complete=self.complete,
            on_error=self.handle_error,
            sink=sink,
            step_timeout=self.settings.step_timeout_seconds,
        )

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run(self, request: ChatRequest) -> ChatRunState:
        state = ChatRunState(
            message=request.message,
            user_id=request.user_id,
            repository_id=request.repository_id,
            conversation_id=request.conversation_id,
        )
        return await self.runner.run(state)

    async def execute(self, request: ChatRequest) -> ChatResult:
        state = await self.run(request)

        if state.failed:
            return ChatResult(
                success=False,
                response=ERROR_RESPONSE,
                execution_id=state.execution_id,
                steps=state.step_count,
                error=state.error.message,
            )

        return ChatResult(
            success=True,
            response=state.response or EMPTY_RESPONSE,
            execution_id=state.execution_id,
            conversation_id=state.saved_conversation_id,
            execution_time_ms=state.elapsed_ms(),
            steps=state.step_count,
        )

    # =========================================================================
    # Phases
    # =========================================================================

    async def start(self, state: ChatRunState) -> dict[str, Any]:
        execution_id = str(uuid4())
        await self.sink.create_execution(
            execution_id=execution_id,
            user_id=state.user_id,
            agent_type=AgentType.CHAT_ASSISTANT.value,
            input_data={
                "message": state.message,
                "repository_id": state.repository_id,
                "conversation_id": state.conversation_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        state.execution_id = execution_id
        logger.info(f"[{execution_id}] Chat started")
        return {"repository_id": state.repository_id, "conversation_id": state.conversation_id}

    async def load_context(self, state: ChatRunState) -> dict[str, Any]:
        """Repository row, cached analysis and recent turns; each one optional."""
        if state.repository_id:
            record = await self.sink.get_repository(state.repository_id)
            if record is None:
                logger.warning(
                    f"[{state.execution_id}] Repository {state.repository_id} not found, answering without it"
                )
            else:
                state.repository = RepositoryData(
                    id=record.id,
                    name=record.name,
                    full_name=record.full_name,
                    description=record.description,
                    html_url=record.html_url,
                    homepage=record.homepage,
                    default_branch=record.default_branch,
                    language=record.language,
                    stars=record.stars,
                    forks=record.forks,
                    open_issues=record.open_issues,
                    languages=record.languages or {},
                    topics=record.topics or [],
                )
                state.tech_stack = record.tech_stack or {}
                state.analysis_summary = record.analysis_summary

            state.cached_analysis = await self.sink.get_cached_analysis(
                state.repository_id, CACHE_ANALYSIS_TYPE, CACHE_KEY
            )

        if is_conversation_id(state.conversation_id):
            messages = await self.sink.list_messages(
                state.conversation_id, limit=self.settings.chat_history_limit
            )
            state.history = [ChatMessage(role=m.role, content=m.content) for m in messages]
        elif state.conversation_id:
            logger.warning(
                f"[{state.execution_id}] Invalid conversation id {state.conversation_id!r}, proceeding without history"
            )

        return {
            "has_repository": state.repository is not None,
            "has_cached_analysis": state.cached_analysis is not None,
            "history_messages": len(state.history),
        }

    async def process_query(self, state: ChatRunState) -> dict[str, Any]:
        state.prompt = format_chat_prompt(
            state.message,
            repository=state.repository,
            tech_stack=state.tech_stack,
            analysis_summary=state.analysis_summary,
            cached_analysis=state.cached_analysis,
            history=state.history,
        )
        return {"prompt_length": len(state.prompt)}

    async def generate_response(self, state: ChatRunState) -> dict[str, Any]:
        try:
            response = await self.router.complete_text(
                CHAT_ASSISTANT_SYSTEM_PROMPT,
                state.prompt or state.message,
                temperature=self.settings.chat_temperature,
            )
            state.response = response.strip() or EMPTY_RESPONSE
        except LLMInvocationError as e:
            logger.warning(f"[{state.execution_id}] LLM unavailable, using canned reply: {e}")
            state.response = fallback_response(state.repository)
            state.used_fallback = True

        return {"response_length": len(state.response), "used_fallback": state.used_fallback}

    async def save_conversation(self, state: ChatRunState) -> dict[str, Any]:
        """Store the exchange; failures are logged and leave the reply unsaved."""
        conversation_id = state.conversation_id if is_conversation_id(state.conversation_id) else None

        try:
            if conversation_id is None and state.repository_id:
                conversation_id = await self.sink.create_conversation(
                    user_id=state.user_id,
                    repository_id=state.repository_id,
                    title=f"Chat about {state.repository.name if state.repository else 'Repository'}",
                    summary=state.message[:SUMMARY_CHARS],
                    context={"focus_areas": ["general"], "current_task": "chat"},
                )

            if conversation_id is None:
                return {"saved": False}

            metadata = {
                "agent_type": AgentType.CHAT_ASSISTANT.value,
                "sources": [state.repository_id] if state.repository_id else [],
            }
            await self.sink.add_message(
                conversation_id,
                role="user",
                content=state.message,
                metadata=metadata,
                token_count=estimate_tokens(state.message),
            )
            await self.sink.add_message(
                conversation_id,
                role="assistant",
                content=state.response or "",
                metadata={**metadata, "fallback": state.used_fallback},
                token_count=estimate_tokens(state.response or ""),
            )
        except Exception as e:
            logger.warning(f"[{state.execution_id}] Saving conversation failed: {e}")
            state.save_error = str(e)
            return {"saved": False, "save_error": str(e)}

        state.saved_conversation_id = conversation_id
        return {"saved": True, "conversation_id": conversation_id}

    # =========================================================================
    # Terminal phases
    # =========================================================================

    async def complete(self, state: ChatRunState) -> dict[str, Any]:
        execution_time_ms = state.elapsed_ms()
        logger.info(f"[{state.execution_id}] Chat completed in {execution_time_ms}ms")

        output = {
            "conversation_id": state.saved_conversation_id,
            "response_length": len(state.response or ""),
            "used_fallback": state.used_fallback,
        }
        if state.save_error:
            output["save_error"] = state.save_error

        await self.sink.update_execution(
            state.execution_id,
            ExecutionStatus.COMPLETED,
            output_data=output,
            step_count=state.step_count,
            execution_time_ms=execution_time_ms,
        )
        return output

    async def handle_error(self, state: ChatRunState) -> dict[str, Any]:
        message = state.error.message if state.error else "Unknown error"
        logger.error(f"[{state.execution_id or '-'}] Chat failed: {message}")

        if state.execution_id:
            await self.sink.update_execution(
                state.execution_id,
                ExecutionStatus.FAILED,
                error_message=message,
                step_count=state.step_count,
                execution_time_ms=state.elapsed_ms(),
            )
        return {"error": message}
