"""Tests for the GitHub REST client against a mocked transport."""

from __future__ import annotations

import base64

import httpx
import pytest

from repoagent.tools.github import (
    GitHubClient,
    GitHubError,
    NotFoundError,
    RateLimitError,
    parse_github_url,
    split_full_name,
)


def client_for(handler, settings) -> GitHubClient:
    return GitHubClient(transport=httpx.MockTransport(handler), settings=settings)


class TestHelpers:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://github.com/acme/widgets", ("acme", "widgets")),
            ("https://github.com/acme/widgets.git", ("acme", "widgets")),
            ("git@github.com/acme/widgets/tree/main", ("acme", "widgets")),
            ("https://gitlab.com/acme/widgets", None),
            ("https://github.com/acme", None),
        ],
    )
    def test_parse_github_url(self, url, expected):
        assert parse_github_url(url) == expected

    def test_split_full_name(self):
        assert split_full_name("acme/widgets") == ("acme", "widgets")
        with pytest.raises(ValueError):
            split_full_name("widgets")


class TestGitHubClient:
    async def test_sends_token_and_api_headers(self, settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"full_name": "acme/widgets"})

        client = client_for(handler, settings)
        repository = await client.get_repository("acme", "widgets")
        await client.close()

        assert repository == {"full_name": "acme/widgets"}
        request = seen[0]
        assert request.url.path == "/repos/acme/widgets"
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"

    async def test_query_parameters(self, settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        client = client_for(handler, settings)
        await client.list_pull_requests("acme", "widgets", per_page=30)
        await client.list_commits("acme", "widgets", per_page=20)
        await client.close()

        prs, commits = seen
        assert prs.url.params["state"] == "all"
        assert prs.url.params["sort"] == "updated"
        assert prs.url.params["direction"] == "desc"
        assert prs.url.params["per_page"] == "30"
        assert commits.url.params["per_page"] == "20"
        assert "since" not in commits.url.params

    async def test_not_found(self, settings):
        client = client_for(lambda request: httpx.Response(404, json={"message": "Not Found"}), settings)

        with pytest.raises(NotFoundError) as exc_info:
            await client.get_repository("acme", "missing")

        assert exc_info.value.status_code == 404
        assert await client.get_file_text("acme", "missing", "README.md") is None
        assert await client.path_exists("acme", "missing", "Dockerfile") is False
        assert await client.has_readme("acme", "missing") is False

    @pytest.mark.parametrize(
        ("status", "headers"),
        [
            (429, {}),
            (403, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1717200000"}),
        ],
    )
    async def test_rate_limit(self, settings, status, headers):
        client = client_for(lambda request: httpx.Response(status, headers=headers, json={}), settings)

        with pytest.raises(RateLimitError) as exc_info:
            await client.list_commits("acme", "widgets")

        assert exc_info.value.status_code == status
        assert "rate limit" in str(exc_info.value)

    async def test_forbidden_without_exhausted_quota_is_generic_error(self, settings):
        client = client_for(
            lambda request: httpx.Response(403, json={"message": "Resource not accessible"}),
            settings,
        )

        with pytest.raises(GitHubError) as exc_info:
            await client.list_workflows("acme", "widgets")

        assert not isinstance(exc_info.value, RateLimitError)
        assert "Resource not accessible" in str(exc_info.value)

    async def test_file_text_is_decoded(self, settings):
        body = {"type": "file", "encoding": "base64", "content": base64.b64encode(b"# Widgets\n").decode()}
        client = client_for(lambda request: httpx.Response(200, json=body), settings)

        assert await client.get_file_text("acme", "widgets", "README.md") == "# Widgets\n"

    async def test_file_text_of_directory_is_none(self, settings):
        client = client_for(lambda request: httpx.Response(200, json=[{"name": "a"}]), settings)

        assert await client.get_file_text("acme", "widgets", "src") is None

    async def test_unwraps_list_payloads(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/topics"):
                return httpx.Response(200, json={"names": ["cli", "python"]})
            return httpx.Response(200, json={"total_count": 1, "workflow_runs": [{"conclusion": "success"}]})

        client = client_for(handler, settings)

        assert await client.list_topics("acme", "widgets") == ["cli", "python"]
        assert await client.list_workflow_runs("acme", "widgets") == [{"conclusion": "success"}]
