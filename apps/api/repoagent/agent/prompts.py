"""Prompt templates for the pipeline phases that call the LLM.

The todo prompt asks for a bare JSON array; the analyzer and chat prompts
ask for free-form prose that is stored as-is.
"""

from __future__ import annotations

import json
from typing import Any

from repoagent.schemas import Analysis, ChatMessage, RepositoryData


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


# =============================================================================
# Todo Generator Prompts
# =============================================================================

TODO_GENERATOR_SYSTEM_PROMPT = """You are an experienced software project manager and developer. \
You receive a heuristic analysis of a GitHub repository and turn it into specific, \
actionable todo items that raise the project's quality, maintainability and production readiness.

Look for:
- Code quality and architecture improvements
- Missing documentation or tests
- Security risks
- Performance work
- CI/CD and deployment gaps
- Technical debt and routine maintenance
- Feature opportunities suggested by recent activity

Every todo item needs:
- A short, actionable title
- A description with concrete steps
- A priority: low, medium, high or urgent
- An effort estimate in hours
- A category (maintenance, feature, bug, security, performance, documentation, testing)
- A rationale that points at the analysis"""


TODO_GENERATOR_PROMPT = """Generate 5-15 todo items for this repository.

## Repository
{full_name}
{description}

## Scores
Activity Score: {activity_score}
Architecture Score: {architecture_score}
Production Ready: {is_production_ready}

## Analysis
```json
{analysis}
```

## Additional Context
{context}

## Output Format
Respond with a JSON array only, using this schema for each element:
```json
[
  {{
    "title": "string",
    "description": "string",
    "priority": "low|medium|high|urgent",
    "category": "string",
    "estimated_hours": 0,
    "rationale": "string"
  }}
]
```"""


def format_todo_prompt(
    repository: RepositoryData,
    analysis: Analysis,
    context: dict[str, Any] | None = None,
) -> str:
    """Build the task prompt embedding the accumulated analysis as JSON."""
    return TODO_GENERATOR_PROMPT.format(
        full_name=repository.full_name,
        description=repository.description or "No description provided.",
        activity_score=analysis.activity_score,
        architecture_score=analysis.architecture_score,
        is_production_ready=analysis.is_production_ready,
        analysis=_to_json(analysis.model_dump(mode="json", exclude_none=True)),
        context=_to_json(context) if context else "None",
    )


# =============================================================================
# Repository Analyzer Prompts
# =============================================================================

REPO_ANALYZER_SYSTEM_PROMPT = """You are a senior software engineer who reviews GitHub repositories. \
You explain how a codebase is organized, which technologies it relies on and how healthy it is, \
and you back every recommendation with evidence from the data you are given. \
Be specific and concise."""


STRUCTURE_PROMPT = """Here is the root structure of a repository:
```json
{structure}
```

Describe:
1. How the project is organized
2. Architecture patterns you can infer
3. Signs of development maturity
4. Structural improvements worth making"""


TECH_STACK_PROMPT = """Here is the detected technology stack of a repository:
```json
{tech_stack}
```

Describe:
1. Whether the technology choices fit together
2. Likely compatibility problems
3. Missing tools that would help
4. Modernization opportunities
5. Security considerations"""


QUALITY_PROMPT = """Here is a quality assessment of a repository:
```json
{quality}
```

Describe:
1. Overall project health
2. The most important areas to improve
3. Concrete recommendations
4. Maintenance risks
5. Practices the project already does well"""


SYNTHESIS_PROMPT = """Combine the analyses below into one report for {full_name}.

## Structure
```json
{structure}
```

## Technology Stack
```json
{tech_stack}
```

## Quality
```json
{quality}
```

Write an executive summary with these sections:
1. **Project Overview**
2. **Architecture & Structure**
3. **Technology Stack**
4. **Health Metrics**
5. **Key Strengths**
6. **Areas for Improvement**
7. **Recommendations**
8. **Risk Assessment**"""


def format_structure_prompt(structure: Any) -> str:
    return STRUCTURE_PROMPT.format(structure=_to_json(structure))


def format_tech_stack_prompt(tech_stack: Any) -> str:
    return TECH_STACK_PROMPT.format(tech_stack=_to_json(tech_stack))


def format_quality_prompt(quality: Any) -> str:
    return QUALITY_PROMPT.format(quality=_to_json(quality))


def format_synthesis_prompt(full_name: str, structure: Any, tech_stack: Any, quality: Any) -> str:
    return SYNTHESIS_PROMPT.format(
        full_name=full_name,
        structure=_to_json(structure),
        tech_stack=_to_json(tech_stack),
        quality=_to_json(quality),
    )


# =============================================================================
# Chat Assistant Prompts
# =============================================================================

CHAT_ASSISTANT_SYSTEM_PROMPT = """You are an intelligent code assistant with deep knowledge of \
software development and project management. You help developers understand their repositories, \
answer technical questions and give guidance.

Key responsibilities:
- Answer questions about code, architecture and project status
- Help navigate complex codebases and find specific information
- Provide technical guidance and best practice recommendations
- Explain code patterns, dependencies and relationships
- Assist with debugging, optimization and improvement suggestions

Be conversational and helpful, and ground your answers in the repository being discussed."""


CHAT_INSTRUCTIONS = """Answer the user's question using the repository context above.
- Use Markdown: ## headers for main sections, bullet points for lists, `backticks` for code
- Use **bold** for important terms
- If the context is not enough, say so and suggest which analysis or question would help
- Prefer practical, actionable information"""

# Earlier turns included in the prompt, and how much of each
HISTORY_TURNS = 5
HISTORY_EXCERPT_CHARS = 200


def _excerpt(text: str, limit: int = HISTORY_EXCERPT_CHARS) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def format_chat_prompt(
    message: str,
    repository: RepositoryData | None = None,
    tech_stack: dict[str, Any] | None = None,
    analysis_summary: str | None = None,
    cached_analysis: dict[str, Any] | None = None,
    history: list[ChatMessage] | None = None,
) -> str:
    lines = [f"USER QUESTION: {message}", "", "REPOSITORY CONTEXT:"]

    if repository is None:
        lines.append("No repository selected.")
    else:
        lines.extend([
            f"Repository: {repository.full_name}",
            f"Description: {repository.description or 'No description available'}",
            f"Primary Language: {repository.language or 'Not specified'}",
            f"Stars: {repository.stars} | Forks: {repository.forks} | Issues: {repository.open_issues}",
        ])
        if tech_stack:
            lines.append(f"Tech Stack: {_to_json(tech_stack)}")
        if analysis_summary:
            lines.append(f"Previous Analysis: {analysis_summary}")

    if cached_analysis:
        quality = cached_analysis.get("quality") or {}
        lines.extend([
            "",
            "DETAILED ANALYSIS:",
            f"- Structure: {cached_analysis.get('structure_insights') or 'n/a'}",
            f"- Quality recommendations: {_to_json(quality.get('recommendations') or [])}",
        ])

    if history:
        lines.extend(["", "RECENT CONVERSATION:"])
        lines.extend(f"{turn.role}: {_excerpt(turn.content)}" for turn in history[-HISTORY_TURNS:])

    lines.extend(["", CHAT_INSTRUCTIONS])
    return "\n".join(lines)
