"""Tests for the GitHub REST and Buildkite GraphQL clients (mocked HTTP)."""

from __future__ import annotations

import base64
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from oss_stats.clients.buildkite_client import GRAPHQL_ENDPOINT, BuildkiteClient
from oss_stats.clients.github_client import GitHubClient
from oss_stats.exceptions import BuildkiteError, RateLimitError


def _gh_client(ops_per_minute: float | None = None) -> GitHubClient:
    client = GitHubClient.__new__(GitHubClient)
    client._client = AsyncMock()
    client._ops_per_minute = ops_per_minute
    return client


def _response(status: int = 200, data=None, headers: dict | None = None) -> MagicMock:
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = data
    resp.raise_for_status = MagicMock()
    resp.request = MagicMock()
    return resp


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.github.com/x")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(str(status), request=request, response=response)


# ── GitHubClient ──────────────────────────────────────────────────────────


class TestGitHubClient:
    def test_parse_next_link(self):
        header = (
            '<https://api.github.com/repos/a/b/issues?page=2>; rel="next", '
            '<https://api.github.com/repos/a/b/issues?page=5>; rel="last"'
        )
        url = "https://api.github.com/repos/a/b/issues?page=2"
        assert GitHubClient._parse_next_link(header) == url

    def test_parse_next_link_no_next(self):
        header = '<https://api.github.com/repos/a/b/issues?page=1>; rel="last"'
        assert GitHubClient._parse_next_link(header) is None
        assert GitHubClient._parse_next_link("") is None

    def test_constructor_sets_auth_and_endpoint(self):
        client = GitHubClient("tok", api_endpoint="https://ghe.example.com/api/v3")
        assert client._client.headers["Authorization"] == "token tok"
        assert str(client._client.base_url).startswith("https://ghe.example.com/api/v3")

    @pytest.mark.anyio
    async def test_rate_limit_sleep(self):
        client = _gh_client()
        response = MagicMock()
        response.headers = {"X-RateLimit-Remaining": "0", "Retry-After": "7"}
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await client._check_rate_limit(response)
            mock_sleep.assert_called_once_with(7)

    @pytest.mark.anyio
    async def test_rate_limit_no_sleep(self):
        client = _gh_client()
        response = MagicMock()
        response.headers = {"X-RateLimit-Remaining": "100"}
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await client._check_rate_limit(response)
            mock_sleep.assert_not_called()

    @pytest.mark.anyio
    async def test_retry_on_server_error(self):
        client = _gh_client()
        client._client.get = AsyncMock(side_effect=[_response(502), _response(200)])

        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await client._request_with_retry("/test")
        assert result.status_code == 200
        assert client._client.get.call_count == 2

    @pytest.mark.anyio
    async def test_retry_exhausted(self):
        client = _gh_client()
        client._client.get = AsyncMock(return_value=_response(503))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(httpx.HTTPStatusError):
                await client._request_with_retry("/test")
        assert client._client.get.call_count == 3

    @pytest.mark.anyio
    async def test_retry_on_timeout(self):
        client = _gh_client()
        client._client.get = AsyncMock(side_effect=[httpx.ReadTimeout("timeout"), _response()])

        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await client._request_with_retry("/test")
        assert result.status_code == 200

    @pytest.mark.anyio
    async def test_403_rate_limit_exhausted_raises(self):
        client = _gh_client()
        limited = _response(403, headers={"X-RateLimit-Remaining": "0", "Retry-After": "5"})
        client._client.get = AsyncMock(return_value=limited)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RateLimitError) as exc_info:
                await client._request_with_retry("/test")
        assert exc_info.value.retry_after == 5

    @pytest.mark.anyio
    async def test_throttle_sleeps_after_each_request(self):
        client = _gh_client(ops_per_minute=120)
        client._client.get = AsyncMock(return_value=_response())

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await client._request_with_retry("/test")
        mock_sleep.assert_called_once_with(0.5)

    @pytest.mark.anyio
    async def test_no_throttle_by_default(self):
        client = _gh_client()
        client._client.get = AsyncMock(return_value=_response())

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await client._request_with_retry("/test")
        mock_sleep.assert_not_called()

    @pytest.mark.anyio
    async def test_iter_pages_follows_link_header(self):
        client = _gh_client()
        page1 = _response(
            data=[{"n": 1}, {"n": 2}],
            headers={"Link": '<https://api.github.com/x?page=2>; rel="next"'},
        )
        page2 = _response(data=[{"n": 3}])

        with patch.object(
            client, "_request_with_retry", new_callable=AsyncMock, side_effect=[page1, page2]
        ) as mock_req:
            pages = [page async for page in client.iter_pages("/x", {"state": "all"})]

        assert pages == [[{"n": 1}, {"n": 2}], [{"n": 3}]]
        first_call = mock_req.call_args_list[0]
        assert first_call.args == ("/x", {"state": "all", "per_page": 100})
        assert mock_req.call_args_list[1].args == ("https://api.github.com/x?page=2", None)

    @pytest.mark.anyio
    async def test_iter_pages_respects_max_pages(self):
        client = _gh_client()
        page = _response(
            data=[{"n": 1}],
            headers={"Link": '<https://api.github.com/x?page=2>; rel="next"'},
        )
        with patch.object(
            client, "_request_with_retry", new_callable=AsyncMock, return_value=page
        ) as mock_req:
            pages = [p async for p in client.iter_pages("/x", max_pages=2)]
        assert len(pages) == 2
        assert mock_req.call_count == 2

    @pytest.mark.anyio
    async def test_get_paginated_unwraps_items_key(self):
        client = _gh_client()
        page = _response(data={"total_count": 2, "workflows": [{"id": 1}, {"id": 2}]})
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=page):
            items = [i async for i in client.get_paginated("/wf", items_key="workflows")]
        assert items == [{"id": 1}, {"id": 2}]

    @pytest.mark.anyio
    async def test_get_readme_decodes_base64(self):
        client = _gh_client()
        encoded = base64.b64encode(b"# Hello\n").decode()
        with patch.object(
            client, "get", new_callable=AsyncMock, return_value={"content": encoded}
        ):
            assert await client.get_readme("o", "r") == "# Hello\n"

    @pytest.mark.anyio
    async def test_get_readme_missing(self):
        client = _gh_client()
        with patch.object(client, "get", new_callable=AsyncMock, side_effect=_status_error(404)):
            assert await client.get_readme("o", "r") is None

    @pytest.mark.anyio
    async def test_get_file_other_errors_propagate(self):
        client = _gh_client()
        with patch.object(client, "get", new_callable=AsyncMock, side_effect=_status_error(500)):
            with pytest.raises(httpx.HTTPStatusError):
                await client.get_file("o", "r", ".expeditor/config.yml")

    @pytest.mark.anyio
    async def test_pr_statuses(self):
        client = _gh_client()
        statuses = [{"target_url": "https://buildkite.com/org/pipe/builds/1"}]
        with patch.object(client, "get", new_callable=AsyncMock, return_value=statuses) as mock_get:
            result = await client.pr_statuses({"statuses_url": "https://api.github.com/s/abc"})
        assert result == statuses
        mock_get.assert_awaited_once_with("https://api.github.com/s/abc")

    @pytest.mark.anyio
    async def test_pr_statuses_without_url(self):
        client = _gh_client()
        assert await client.pr_statuses({}) == []


# ── BuildkiteClient ───────────────────────────────────────────────────────


def _bk_client() -> BuildkiteClient:
    client = BuildkiteClient.__new__(BuildkiteClient)
    client._endpoint = GRAPHQL_ENDPOINT
    client._client = AsyncMock()
    return client


class TestBuildkiteClient:
    @pytest.mark.anyio
    async def test_execute_sends_query_and_variables(self):
        client = _bk_client()
        client._client.post = AsyncMock(return_value=_response(data={"data": {"x": 1}}))

        body = await client.execute("query { x }", {"a": 1})

        assert body == {"data": {"x": 1}}
        client._client.post.assert_awaited_once_with(
            GRAPHQL_ENDPOINT, json={"query": "query { x }", "variables": {"a": 1}}
        )

    @pytest.mark.anyio
    async def test_execute_graphql_errors(self):
        client = _bk_client()
        errors = [{"message": "No pipeline", "path": ["pipeline", "builds"]}]
        client._client.post = AsyncMock(return_value=_response(data={"errors": errors}))

        with pytest.raises(BuildkiteError, match="No pipeline \\(path: pipeline -> builds\\)"):
            await client.execute("query { x }")

    @pytest.mark.anyio
    async def test_execute_bad_json(self):
        client = _bk_client()
        resp = _response()
        resp.json.side_effect = ValueError("Expecting value")
        resp.text = "<html>"
        client._client.post = AsyncMock(return_value=resp)

        with pytest.raises(BuildkiteError, match="Error parsing JSON"):
            await client.execute("query { x }")

    @pytest.mark.anyio
    async def test_client_error_not_retried(self):
        client = _bk_client()
        client._client.post = AsyncMock(return_value=_response(401))

        with pytest.raises(BuildkiteError, match="status 401"):
            await client.execute("query { x }")
        assert client._client.post.call_count == 1

    @pytest.mark.anyio
    async def test_server_error_retried(self):
        client = _bk_client()
        client._client.post = AsyncMock(
            side_effect=[_response(502), _response(data={"data": {}})]
        )
        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await client.execute("query { x }") == {"data": {}}
        assert client._client.post.call_count == 2

    @pytest.mark.anyio
    async def test_network_error(self):
        client = _bk_client()
        client._client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(BuildkiteError, match="Network error"):
            await client.execute("query { x }")

    @pytest.mark.anyio
    async def test_get_pipeline_not_found(self):
        client = _bk_client()
        with patch.object(
            client, "execute", new_callable=AsyncMock, return_value={"data": {"pipeline": None}}
        ):
            assert await client.get_pipeline("org", "nope") is None

    @pytest.mark.anyio
    async def test_pipelines_by_repo_paginates_and_normalizes(self):
        client = _bk_client()
        page1 = {
            "data": {
                "organization": {
                    "pipelines": {
                        "edges": [
                            {
                                "node": {
                                    "slug": "a",
                                    "url": "https://buildkite.com/org/a",
                                    "visibility": "PUBLIC",
                                    "repository": {"url": "git@github.com:Acme/widget.git"},
                                }
                            }
                        ],
                        "pageInfo": {"endCursor": "c1", "hasNextPage": True},
                    }
                }
            }
        }
        page2 = {
            "data": {
                "organization": {
                    "pipelines": {
                        "edges": [
                            {
                                "node": {
                                    "slug": "b",
                                    "url": "https://buildkite.com/org/b",
                                    "visibility": "PRIVATE",
                                    "repository": {"url": "https://github.com/Acme/widget"},
                                }
                            },
                            {"node": {"slug": "c", "url": None, "repository": None}},
                        ],
                        "pageInfo": {"endCursor": None, "hasNextPage": False},
                    }
                }
            }
        }
        with patch.object(
            client, "execute", new_callable=AsyncMock, side_effect=[page1, page2]
        ) as mock_exec:
            grouped = await client.pipelines_by_repo("org")

        assert list(grouped) == ["https://github.com/Acme/widget"]
        assert [p["slug"] for p in grouped["https://github.com/Acme/widget"]] == ["a", "b"]
        assert mock_exec.call_args_list[1].args[1]["after"] == "c1"

    @pytest.mark.anyio
    async def test_get_pipeline_builds_variables(self):
        client = _bk_client()
        data = {
            "data": {
                "pipeline": {
                    "builds": {
                        "edges": [{"node": {"id": "1", "state": "PASSED"}}],
                        "pageInfo": {"hasNextPage": False},
                    }
                }
            }
        }
        with patch.object(
            client, "execute", new_callable=AsyncMock, return_value=data
        ) as mock_exec:
            builds = await client.get_pipeline_builds(
                "org", "pipe", date(2024, 3, 1), date(2024, 3, 10), "release"
            )

        assert builds == [{"id": "1", "state": "PASSED"}]
        variables = mock_exec.call_args.args[1]
        assert variables["slug"] == "org/pipe"
        assert variables["branch"] == ["release"]
        assert variables["from"] == "2024-03-01T00:00:00+00:00"
        assert variables["to"].startswith("2024-03-10T23:59:59")

    @pytest.mark.anyio
    async def test_all_pipelines_stops_without_cursor(self):
        client = _bk_client()
        page = {
            "data": {
                "organization": {
                    "pipelines": {
                        "edges": [{"node": {"slug": "a"}}],
                        "pageInfo": {"endCursor": None, "hasNextPage": True},
                    }
                }
            }
        }
        with patch.object(
            client, "execute", new_callable=AsyncMock, return_value=page
        ) as mock_exec:
            pipelines = await client.all_pipelines("org")

        assert pipelines == [{"slug": "a"}]
        mock_exec.assert_awaited_once()

    @pytest.mark.anyio
    async def test_get_pipeline_builds_stops_without_cursor(self):
        client = _bk_client()
        data = {
            "data": {
                "pipeline": {
                    "builds": {
                        "edges": [{"node": {"id": "1", "state": "FAILED"}}],
                        "pageInfo": {"endCursor": "", "hasNextPage": True},
                    }
                }
            }
        }
        with patch.object(
            client, "execute", new_callable=AsyncMock, return_value=data
        ) as mock_exec:
            builds = await client.get_pipeline_builds(
                "org", "pipe", date(2024, 3, 1), date(2024, 3, 10)
            )

        assert builds == [{"id": "1", "state": "FAILED"}]
        mock_exec.assert_awaited_once()
