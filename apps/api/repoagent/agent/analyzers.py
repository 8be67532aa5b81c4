"""Heuristic analyzers over raw GitHub payloads.

Every function here is pure: no I/O, no clock reads unless ``now`` is
omitted, and identical inputs always give identical outputs. Payloads are
the JSON objects returned by the GitHub REST API.

Scores:
- activity_score: commit frequency, PR merge rate, issue close rate, recency (0-100)
- architecture_score: README, tests, CI, Dockerfile, scripts, layout (0-100)
- impact_score / urgency_score: per todo item (0-10)
"""

from __future__ import annotations

import json
import logging
import math
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable

from repoagent.schemas import (
    PRIORITY_RANK,
    Analysis,
    CommitAnalysis,
    CommitSummary,
    ContributorCount,
    DependencyAnalysis,
    HealthCheck,
    HealthFiles,
    IssueAnalysis,
    Priority,
    PullRequestAnalysis,
    PullRequestSummary,
    QualityAssessment,
    QualityDetails,
    RepositoryData,
    RiskLevel,
    StructureAnalysis,
    TechStack,
    TodoItem,
)


logger = logging.getLogger(__name__)


# Number of most recent commits / PRs kept as samples
RECENT_SAMPLE_SIZE = 5

IMPORTANT_FILE_MARKERS = ("readme", "package.json", "dockerfile", "makefile")

PRIORITY_BONUS: dict[Priority, int] = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}

CATEGORY_IMPACT_BONUS: dict[str, int] = {
    "security": 3,
    "performance": 2,
    "maintenance": 1,
}


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub ISO-8601 timestamp (``2024-05-01T12:00:00Z``)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _extension(name: str) -> str:
    return name.rsplit(".", 1)[-1].lower() or "no-ext"


# =============================================================================
# Activity
# =============================================================================

def analyze_commit_patterns(
    commits: list[dict[str, Any]],
    window_days: int = 30,
) -> CommitAnalysis:
    """Summarize commits fetched for the analysis window (newest first)."""
    by_author: Counter[str] = Counter()
    by_day: Counter[str] = Counter()

    for commit in commits:
        author = (commit.get("author") or {}).get("login") or "Unknown"
        by_author[author] += 1
        date = commit["commit"]["author"]["date"]
        by_day[parse_timestamp(date).date().isoformat()] += 1

    contributors = sorted(
        (ContributorCount(author=author, count=count) for author, count in by_author.items()),
        key=lambda c: c.count,
        reverse=True,
    )

    return CommitAnalysis(
        total=len(commits),
        contributors=contributors,
        frequency=len(commits) / window_days if commits else 0.0,
        patterns=dict(by_day),
        recent_activity=[
            CommitSummary(
                message=commit["commit"]["message"],
                author=(commit.get("author") or {}).get("login"),
                date=commit["commit"]["author"]["date"],
            )
            for commit in commits[:RECENT_SAMPLE_SIZE]
        ],
    )


def average_days_open(pull_requests: list[dict[str, Any]], now: datetime | None = None) -> int:
    if not pull_requests:
        return 0
    now = now or datetime.now(timezone.utc)
    total_days = sum(
        (now - parse_timestamp(pr["created_at"])).total_seconds() / 86400
        for pr in pull_requests
    )
    return _round_half_up(total_days / len(pull_requests))


def analyze_pull_requests(
    pull_requests: list[dict[str, Any]],
    now: datetime | None = None,
) -> PullRequestAnalysis:
    open_prs = [pr for pr in pull_requests if pr.get("state") == "open"]
    merged = [pr for pr in pull_requests if pr.get("merged_at")]

    return PullRequestAnalysis(
        total=len(pull_requests),
        open=len(open_prs),
        merged=len(merged),
        merge_rate=len(merged) / len(pull_requests) if pull_requests else 0.0,
        avg_days_open=average_days_open(open_prs, now),
        recent_prs=[
            PullRequestSummary(
                title=pr.get("title", ""),
                state=pr.get("state", "unknown"),
                author=(pr.get("user") or {}).get("login"),
                created=pr.get("created_at"),
            )
            for pr in pull_requests[:RECENT_SAMPLE_SIZE]
        ],
    )


def _label_names(issue: dict[str, Any]) -> list[str]:
    return [
        label if isinstance(label, str) else label.get("name", "")
        for label in issue.get("labels") or []
    ]


def analyze_issues(issues: list[dict[str, Any]]) -> IssueAnalysis:
    """Summarize issues. Pull requests returned by the issues endpoint are ignored."""
    issues = [issue for issue in issues if not issue.get("pull_request")]
    open_issues = [issue for issue in issues if issue.get("state") == "open"]
    closed_issues = [issue for issue in issues if issue.get("state") == "closed"]

    return IssueAnalysis(
        total=len(issues),
        open=len(open_issues),
        closed=len(closed_issues),
        close_rate=len(closed_issues) / len(issues) if issues else 0.0,
        labeled_issues=sum(1 for issue in issues if _label_names(issue)),
        bug_issues=sum(
            1 for issue in issues
            if any("bug" in name.lower() for name in _label_names(issue))
        ),
    )


def calculate_activity_score(
    commits: CommitAnalysis,
    pull_requests: PullRequestAnalysis,
    issues: IssueAnalysis,
) -> int:
    """Activity score in [0, 100]."""
    commit_score = min(commits.frequency * 10, 40)
    pr_score = min(pull_requests.merge_rate * 20, 20)
    issue_score = min(issues.close_rate * 20, 20)
    recent_activity_score = 20 if commits.recent_activity else 0

    return _round_half_up(commit_score + pr_score + issue_score + recent_activity_score)


# =============================================================================
# Structure
# =============================================================================

def analyze_file_structure(contents: list[dict[str, Any]]) -> StructureAnalysis:
    """Summarize a directory listing from the contents endpoint."""
    files = [item for item in contents if item.get("type") == "file"]
    directories = [item for item in contents if item.get("type") == "dir"]

    return StructureAnalysis(
        total_files=len(files),
        directories=len(directories),
        directory_names=[item["name"] for item in directories],
        file_types=dict(Counter(_extension(item["name"]) for item in files)),
        important_files=[
            item["name"] for item in files
            if any(marker in item["name"].lower() for marker in IMPORTANT_FILE_MARKERS)
        ],
    )


def has_test_paths(contents: Iterable[dict[str, Any]]) -> bool:
    """True when any listed path looks like tests (``test``, ``spec``, ``__tests__``)."""
    for item in contents:
        path = (item.get("path") or item.get("name") or "").lower()
        if "test" in path or "spec" in path:
            return True
    return False


def assess_outdated_risk(total_dependencies: int) -> RiskLevel:
    if total_dependencies > 50:
        return RiskLevel.HIGH
    if total_dependencies > 20:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def parse_package_json(text: str, source: str = "package.json") -> dict[str, Any] | None:
    """Decoded manifest, or None when it is not a JSON object."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"{source} is not valid JSON: {e}")
        return None
    if not isinstance(parsed, dict):
        logger.warning(f"{source} is not a JSON object, ignoring it")
        return None
    return parsed


def analyze_dependencies(package_json: dict[str, Any]) -> DependencyAnalysis:
    dependencies = package_json.get("dependencies") or {}
    dev_dependencies = package_json.get("devDependencies") or {}
    total = len(dependencies) + len(dev_dependencies)

    return DependencyAnalysis(
        total=total,
        production=len(dependencies),
        development=len(dev_dependencies),
        scripts=len(package_json.get("scripts") or {}),
        outdated_risk=assess_outdated_risk(total),
    )


def calculate_architecture_score(structure: StructureAnalysis, health: HealthFiles) -> int:
    """Architecture score in [0, 100]."""
    score = 0

    if health.has_readme:
        score += 20
    if health.has_tests:
        score += 25
    if health.has_ci:
        score += 20
    if health.has_dockerfile:
        score += 15
    if health.package_json is not None and health.package_json.get("scripts") is not None:
        score += 10
    if structure.directories > 2:
        score += 10

    return min(score, 100)


# =============================================================================
# Health
# =============================================================================

def build_status_from_runs(workflow_count: int, runs: list[dict[str, Any]]) -> str:
    """CI status from the most recent workflow run."""
    if workflow_count == 0:
        return "unknown"
    if not runs:
        return "no_ci"
    return runs[0].get("conclusion") or "running"


def detect_deployment(repository: RepositoryData) -> str | None:
    """Live URL advertised by the repository, if any."""
    homepage = (repository.homepage or "").strip()
    if homepage.startswith(("http://", "https://")):
        return homepage
    return None


def assess_production_readiness(
    activity_score: int,
    architecture_score: int,
    health: HealthCheck,
) -> bool:
    return (
        activity_score + architecture_score > 120
        and health.build_status == "success"
        and health.deployment_status != "unknown"
    )


# =============================================================================
# Todo scoring
# =============================================================================

def calculate_impact_score(todo: TodoItem) -> int:
    """Impact score in [0, 10]: base 5 plus priority and category bonuses."""
    score = 5
    score += PRIORITY_BONUS.get(todo.priority, 1)
    score += CATEGORY_IMPACT_BONUS.get(todo.category, 0)
    return min(score, 10)


def calculate_urgency_score(todo: TodoItem, analysis: Analysis) -> int:
    """Urgency score in [0, 10]: base 3 plus production/activity/architecture signals."""
    category = todo.category
    score = 3

    if analysis.is_production_ready and category == "security":
        score += 4
    if analysis.activity_score is not None and analysis.activity_score < 50 and category == "maintenance":
        score += 2
    if analysis.architecture_score is not None and analysis.architecture_score < 60:
        score += 1

    return min(score, 10)


def prioritize_todos(todos: list[TodoItem], analysis: Analysis) -> list[TodoItem]:
    """Score todos and order them by priority, then impact (stable)."""
    scored = [
        todo.model_copy(
            update={
                "impact_score": calculate_impact_score(todo),
                "urgency_score": calculate_urgency_score(todo, analysis),
            }
        )
        for todo in todos
    ]
    scored.sort(key=lambda t: (PRIORITY_RANK[t.priority], t.impact_score), reverse=True)
    return [todo.model_copy(update={"order": index}) for index, todo in enumerate(scored, 1)]


# =============================================================================
# Tech stack detection
# =============================================================================

# (dependency name, tech stack bucket, display name)
PACKAGE_JSON_RULES: tuple[tuple[str, str, str], ...] = (
    ("react", "frameworks", "React"),
    ("next", "frameworks", "Next.js"),
    ("vue", "frameworks", "Vue.js"),
    ("angular", "frameworks", "Angular"),
    ("svelte", "frameworks", "Svelte"),
    ("express", "frameworks", "Express.js"),
    ("fastify", "frameworks", "Fastify"),
    ("tailwindcss", "styling", "Tailwind CSS"),
    ("sass", "styling", "SASS/SCSS"),
    ("scss", "styling", "SASS/SCSS"),
    ("styled-components", "styling", "Styled Components"),
    ("emotion", "styling", "Emotion"),
    ("jest", "testing", "Jest"),
    ("cypress", "testing", "Cypress"),
    ("playwright", "testing", "Playwright"),
    ("vitest", "testing", "Vitest"),
    ("typescript", "tools", "TypeScript"),
    ("eslint", "tools", "ESLint"),
    ("prettier", "tools", "Prettier"),
    ("webpack", "tools", "Webpack"),
    ("vite", "tools", "Vite"),
    ("axios", "apis", "Axios"),
    ("@supabase/supabase-js", "databases", "Supabase"),
    ("prisma", "databases", "Prisma"),
    ("mongoose", "databases", "MongoDB (Mongoose)"),
)

REQUIREMENTS_RULES: tuple[tuple[str, str, str], ...] = (
    ("django", "frameworks", "Django"),
    ("flask", "frameworks", "Flask"),
    ("fastapi", "frameworks", "FastAPI"),
    ("pytest", "testing", "pytest"),
    ("sqlalchemy", "databases", "SQLAlchemy"),
)

DOCKERFILE_BASE_IMAGES: tuple[tuple[str, str], ...] = (
    ("FROM node", "Node.js"),
    ("FROM python", "Python"),
    ("FROM golang", "Go"),
)

EXTENSION_LANGUAGES: dict[str, str] = {
    "js": "JavaScript",
    "jsx": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "py": "Python",
    "go": "Go",
    "java": "Java",
    "rs": "Rust",
}


def _add(stack: TechStack, bucket: str, value: str) -> None:
    entries: list[str] = getattr(stack, bucket)
    if value not in entries:
        entries.append(value)


def _requirement_name(line: str) -> str:
    for separator in ("==", ">=", "<="):
        line = line.split(separator)[0]
    return line.strip().lower()


def detect_tech_stack(
    files: list[dict[str, Any]],
    file_contents: dict[str, str],
    languages: dict[str, int] | None = None,
) -> TechStack:
    """Detect technologies from manifest files and file extensions."""
    stack = TechStack(github_languages=dict(languages or {}))

    package_json = None
    if "package.json" in file_contents:
        package_json = parse_package_json(file_contents["package.json"])
    if package_json is not None:
        dependencies = {
            **(package_json.get("dependencies") or {}),
            **(package_json.get("devDependencies") or {}),
        }
        for name, bucket, label in PACKAGE_JSON_RULES:
            if name in dependencies:
                _add(stack, bucket, label)

    if "requirements.txt" in file_contents:
        for line in file_contents["requirements.txt"].splitlines():
            package = _requirement_name(line)
            if not package:
                continue
            for name, bucket, label in REQUIREMENTS_RULES:
                if name in package:
                    _add(stack, bucket, label)
        _add(stack, "languages", "Python")

    if "Dockerfile" in file_contents:
        dockerfile = file_contents["Dockerfile"]
        _add(stack, "deployment", "Docker")
        for marker, language in DOCKERFILE_BASE_IMAGES:
            if marker in dockerfile:
                _add(stack, "languages", language)
        if "nginx" in dockerfile:
            _add(stack, "deployment", "Nginx")

    for item in files:
        name = item.get("name") or item.get("path") or ""
        language = EXTENSION_LANGUAGES.get(_extension(name))
        if language:
            _add(stack, "languages", language)

    return stack


# =============================================================================
# Code quality assessment
# =============================================================================

def _any_path(files: list[dict[str, Any]], *markers: str) -> bool:
    return any(
        marker in (item.get("path") or item.get("name") or "").lower()
        for item in files
        for marker in markers
    )


def assess_code_quality(
    repository: dict[str, Any],
    files: list[dict[str, Any]],
    file_contents: dict[str, str],
    commits: list[dict[str, Any]],
    issues: list[dict[str, Any]],
    pull_requests: list[dict[str, Any]],
    now: datetime | None = None,
) -> QualityAssessment:
    """Score documentation, activity, maintenance and community health."""
    now = now or datetime.now(timezone.utc)
    details = QualityDetails()
    recommendations: list[str] = []

    # Documentation
    doc_score = 0
    readme = file_contents.get("README.md")
    if readme:
        details.has_readme = True
        doc_score += 30
        if len(readme) > 1000:
            doc_score += 20
        if len(readme) > 3000:
            doc_score += 10
    if _any_path(files, "license"):
        details.has_license = True
        doc_score += 20
    if _any_path(files, "contributing"):
        details.has_contributing = True
        doc_score += 15
    documentation_score = min(doc_score, 100)

    # Activity
    commit_ages = [
        (now - parse_timestamp(commit["commit"]["author"]["date"])).total_seconds() / 86400
        for commit in commits
    ]
    details.recent_commits = sum(1 for age in commit_ages if age <= 30)
    activity = min(details.recent_commits * 5, 50)
    if commit_ages:
        days_since_last = commit_ages[0]
        if days_since_last <= 7:
            activity += 30
        elif days_since_last <= 30:
            activity += 20
        elif days_since_last <= 90:
            activity += 10
    activity_score = min(activity, 100)

    # Maintenance
    maintenance = 0
    real_issues = [issue for issue in issues if not issue.get("pull_request")]
    if real_issues:
        open_count = sum(1 for issue in real_issues if issue.get("state") == "open")
        details.open_issues_ratio = open_count / len(real_issues)
        if details.open_issues_ratio < 0.3:
            maintenance += 40
        elif details.open_issues_ratio < 0.6:
            maintenance += 20
    if pull_requests:
        merged = sum(1 for pr in pull_requests if pr.get("merged_at"))
        details.pr_merge_rate = merged / len(pull_requests)
        if details.pr_merge_rate > 0.8:
            maintenance += 30
        elif details.pr_merge_rate > 0.6:
            maintenance += 20
        elif details.pr_merge_rate > 0.4:
            maintenance += 10
    if has_test_paths(files):
        details.has_tests = True
        maintenance += 20
    if _any_path(files, ".github/workflows", ".gitlab-ci", "jenkins"):
        details.has_ci = True
        maintenance += 10
    maintenance_score = min(maintenance, 100)

    # Community
    community = 0
    if repository.get("stargazers_count", 0) > 100:
        community += 20
    if repository.get("forks_count", 0) > 20:
        community += 15
    if repository.get("open_issues_count", 0) > 0:
        community += 10
    if details.has_contributing:
        community += 25
    if details.has_license:
        community += 20
    if len(repository.get("description") or "") > 50:
        community += 10
    community_score = min(community, 100)

    if not details.has_readme:
        recommendations.append(
            "Add a comprehensive README.md with project description, installation, and usage instructions"
        )
    if not details.has_license:
        recommendations.append("Add a LICENSE file to clarify usage permissions")
    if not details.has_tests:
        recommendations.append("Add unit tests to improve code reliability")
    if not details.has_ci:
        recommendations.append("Set up CI/CD pipeline for automated testing and deployment")
    if details.open_issues_ratio > 0.5:
        recommendations.append("Address open issues to improve project health")
    if details.recent_commits < 5:
        recommendations.append("Increase development activity with more regular commits")

    return QualityAssessment(
        overall_score=_round_half_up(
            documentation_score * 0.25
            + activity_score * 0.25
            + maintenance_score * 0.3
            + community_score * 0.2
        ),
        documentation_score=documentation_score,
        activity_score=activity_score,
        maintenance_score=maintenance_score,
        community_score=community_score,
        details=details,
        recommendations=recommendations,
    )
