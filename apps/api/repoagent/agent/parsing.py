"""LLM response parsing and deterministic fallback todo generation.

Parsing never raises: text that yields no valid todo items produces an
empty list, and the generate phase then asks the fallback generator for
rule-based items built from the analysis alone.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from repoagent.schemas import (
    Analysis,
    Priority,
    RepositoryData,
    TodoItem,
    TodoSource,
)


logger = logging.getLogger(__name__)

# Commit messages are quoted up to this many characters in fallback descriptions
COMMIT_EXCERPT_LENGTH = 80

LOW_ACTIVITY_THRESHOLD = 30
LOW_ARCHITECTURE_THRESHOLD = 60


# =============================================================================
# Extraction strategies
# =============================================================================

class ResponseParser(Protocol):
    """Strategy that pulls a JSON array of raw objects out of free text."""

    def extract(self, text: str) -> list[Any]:
        """Return the raw array elements, or an empty list when none can be found."""
        ...


class BracketArrayParser:
    """Parse the span from the first ``[`` to the last ``]``, then the whole text."""

    def extract(self, text: str) -> list[Any]:
        if not text:
            return []

        start = text.find("[")
        end = text.rfind("]")
        if start != -1 and end > start:
            try:
                parsed = json.loads(text[start:end + 1])
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError as e:
                logger.debug(f"Bracketed span is not valid JSON: {e}")

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse todo response, falling back: {e}")
            return []

        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict) and isinstance(parsed.get("todos"), list):
            return parsed["todos"]
        return []


class TodoResponseParser:
    """Turn LLM free text into validated ``TodoItem`` objects."""

    def __init__(self, strategy: ResponseParser | None = None):
        self.strategy = strategy or BracketArrayParser()

    def parse(self, text: str | None) -> list[TodoItem]:
        todos: list[TodoItem] = []
        for raw in self.strategy.extract(text or ""):
            if not isinstance(raw, dict):
                continue
            try:
                todos.append(TodoItem.model_validate({**raw, "source": TodoSource.LLM}))
            except ValidationError as e:
                logger.warning(f"Skipping malformed todo item: {e.error_count()} error(s)")
        return todos


def parse_todo_response(text: str | None) -> list[TodoItem]:
    """Parse todos with the default bracket strategy."""
    return TodoResponseParser().parse(text)


# =============================================================================
# Fallback generation
# =============================================================================

def _commit_follow_up(message: str, author: str | None) -> TodoItem:
    lowered = message.lower()
    excerpt = message[:COMMIT_EXCERPT_LENGTH]

    if "fix" in lowered or "bug" in lowered:
        title = "Review and test recent bug fixes"
        description = (
            f'Following the recent fix "{excerpt}", ensure comprehensive testing '
            "and consider adding regression tests to prevent similar issues."
        )
        category, priority = "testing", Priority.HIGH
    elif "feat" in lowered or "add" in lowered:
        title = "Document and optimize new feature"
        description = (
            f'The recent addition "{excerpt}" may need documentation updates '
            "and performance optimization review."
        )
        category, priority = "documentation", Priority.MEDIUM
    elif "update" in lowered or "upgrade" in lowered:
        title = "Validate recent updates"
        description = (
            f'Following the update "{excerpt}", verify compatibility and test '
            "all affected functionality."
        )
        category, priority = "testing", Priority.MEDIUM
    else:
        title = "Follow up on recent changes"
        description = (
            f'Recent commit by {author or "team"}: "{message[:100]}". Consider adding '
            "tests, documentation, or optimization opportunities."
        )
        category, priority = "maintenance", Priority.MEDIUM

    return TodoItem(
        title=title,
        description=description,
        priority=priority,
        category=category,
        estimated_hours=2,
        rationale="Generated based on recent commit activity to ensure code quality and maintainability.",
        source=TodoSource.FALLBACK,
        labels=["Git Commits", "Code Quality"],
    )


def generate_fallback_todos(
    repository: RepositoryData | None,
    analysis: Analysis,
) -> list[TodoItem]:
    """Rule-based todos from the analysis; always returns at least one item."""
    todos: list[TodoItem] = []

    recent = analysis.commits.recent_activity if analysis.commits else []
    if recent:
        todos.append(_commit_follow_up(recent[0].message, recent[0].author))

    activity_score = analysis.activity_score or 0
    architecture_score = analysis.architecture_score or 0

    if activity_score < LOW_ACTIVITY_THRESHOLD:
        todos.append(TodoItem(
            title="Plan development roadmap",
            description=(
                f"Repository shows low activity (score: {activity_score}/100). Consider creating "
                "a development roadmap, updating documentation, or planning feature improvements."
            ),
            priority=Priority.MEDIUM,
            category="planning",
            estimated_hours=4,
            rationale="Low repository activity indicates need for strategic planning and development focus.",
            source=TodoSource.FALLBACK,
            labels=["Repository Analysis", "Project Planning"],
        ))

    if architecture_score < LOW_ARCHITECTURE_THRESHOLD:
        todos.append(TodoItem(
            title="Improve project structure and documentation",
            description=(
                f"Architecture score is {architecture_score}/100. Consider adding missing "
                "documentation, tests, CI/CD setup, or improving code organization."
            ),
            priority=Priority.MEDIUM,
            category="architecture",
            estimated_hours=6,
            rationale="Lower architecture score indicates opportunities for structural improvements.",
            source=TodoSource.FALLBACK,
            labels=["Code Analysis", "Documentation"],
        ))

    if not todos:
        name = repository.name if repository else "the repository"
        todos.append(TodoItem(
            title="Code review and quality improvements",
            description=(
                f"Conduct a comprehensive review of {name} for potential improvements, "
                "refactoring opportunities, and best practice implementation."
            ),
            priority=Priority.MEDIUM,
            category="maintenance",
            estimated_hours=4,
            rationale="Regular code reviews ensure maintainability and code quality over time.",
            source=TodoSource.FALLBACK,
            labels=["Code Review", "Best Practices"],
        ))

    return todos
