"""Async Buildkite GraphQL client."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import date, datetime, time, timezone
from typing import Any

import httpx
import structlog

from oss_stats.core.github import normalize_repo_url
from oss_stats.exceptions import BuildkiteError

log = structlog.get_logger("oss_stats.buildkite")

GRAPHQL_ENDPOINT = "https://graphql.buildkite.com/v1"

_PAGE_SIZE = 50
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds

_PIPELINE_QUERY = """
query Pipeline($slug: ID!) {
  pipeline(slug: $slug) {
    slug
    url
    visibility
  }
}
"""

_ORG_PIPELINES_QUERY = """
query OrgPipelines($org: ID!, $first: Int!, $after: String) {
  organization(slug: $org) {
    pipelines(first: $first, after: $after) {
      edges {
        node {
          slug
          url
          visibility
          repository { url }
        }
      }
      pageInfo { endCursor hasNextPage }
    }
  }
}
"""

_PIPELINE_BUILDS_QUERY = """
query PipelineBuilds(
  $slug: ID!, $first: Int!, $after: String,
  $from: DateTime, $to: DateTime, $branch: [String!]
) {
  pipeline(slug: $slug) {
    builds(first: $first, after: $after, createdAtFrom: $from,
           createdAtTo: $to, branch: $branch) {
      edges {
        node { id url state createdAt message }
      }
      pageInfo { endCursor hasNextPage }
    }
  }
}
"""


class BuildkiteClient:
    """Thin async wrapper around the Buildkite GraphQL API.

    Every failure (HTTP status, undecodable body, GraphQL ``errors``) surfaces
    as :class:`BuildkiteError`; callers decide whether it is fatal.
    """

    def __init__(self, token: str, *, endpoint: str = GRAPHQL_ENDPOINT) -> None:
        self._endpoint = endpoint
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BuildkiteClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get_pipeline(self, org: str, pipeline: str) -> dict[str, Any] | None:
        """Return ``{slug, url, visibility}`` or None if Buildkite doesn't know it."""
        data = await self.execute(_PIPELINE_QUERY, {"slug": f"{org}/{pipeline}"})
        node = (data.get("data") or {}).get("pipeline")
        if node is None:
            log.debug("buildkite.pipeline_not_found", pipeline=f"{org}/{pipeline}")
        return node

    async def all_pipelines(self, org: str) -> list[dict[str, Any]]:
        """Every pipeline in *org*, following cursor pagination."""
        pipelines: list[dict[str, Any]] = []
        after: str | None = None
        while True:
            data = await self.execute(
                _ORG_PIPELINES_QUERY,
                {"org": org, "first": _PAGE_SIZE, "after": after},
            )
            conn = ((data.get("data") or {}).get("organization") or {}).get("pipelines")
            if not conn:
                break
            pipelines.extend(edge["node"] for edge in conn.get("edges") or [])
            page_info = conn.get("pageInfo") or {}
            after = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not after:
                break

        log.debug("buildkite.pipelines_listed", org=org, count=len(pipelines))
        return pipelines

    async def pipelines_by_repo(self, org: str) -> dict[str, list[dict[str, Any]]]:
        """Group *org*'s pipelines by normalized GitHub repository URL."""
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for pipeline in await self.all_pipelines(org):
            repo_url = normalize_repo_url((pipeline.get("repository") or {}).get("url"))
            if repo_url is None:
                continue
            grouped[repo_url].append(
                {
                    "slug": pipeline.get("slug"),
                    "url": pipeline.get("url"),
                    "visibility": pipeline.get("visibility"),
                }
            )
        return dict(grouped)

    async def get_pipeline_builds(
        self,
        org: str,
        pipeline: str,
        from_date: date,
        to_date: date,
        branch: str = "main",
    ) -> list[dict[str, Any]]:
        """Build nodes created between *from_date* and the end of *to_date*."""
        variables: dict[str, Any] = {
            "slug": f"{org}/{pipeline}",
            "first": _PAGE_SIZE,
            "after": None,
            "from": _rfc3339(from_date, time.min),
            "to": _rfc3339(to_date, time.max),
            "branch": [branch],
        }
        builds: list[dict[str, Any]] = []
        while True:
            data = await self.execute(_PIPELINE_BUILDS_QUERY, variables)
            conn = ((data.get("data") or {}).get("pipeline") or {}).get("builds")
            if not conn or conn.get("edges") is None:
                break
            builds.extend(edge["node"] for edge in conn["edges"])
            page_info = conn.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not cursor:
                break
            variables["after"] = cursor

        log.debug(
            "buildkite.builds_fetched",
            pipeline=f"{org}/{pipeline}",
            branch=branch,
            count=len(builds),
        )
        return builds

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST one GraphQL document, returning the decoded response body."""
        response = await self._post_with_retry({"query": query, "variables": variables or {}})
        try:
            body = response.json()
        except ValueError as exc:
            log.debug("buildkite.bad_body", body=response.text[:500])
            raise BuildkiteError(f"Error parsing JSON from Buildkite API: {exc}") from exc

        errors = body.get("errors")
        if errors:
            details = "; ".join(_format_graphql_error(e) for e in errors)
            log.debug("buildkite.graphql_errors", errors=errors)
            raise BuildkiteError(f"Buildkite API returned errors: {details}")
        return body

    # ── internal ───────────────────────────────────────────────────────────

    async def _post_with_retry(self, payload: dict[str, Any]) -> httpx.Response:
        """POST with exponential backoff on 5xx and timeout errors."""
        last_error = "no attempts made"
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.post(self._endpoint, json=payload)
            except httpx.TimeoutException:
                log.warning(
                    "buildkite.timeout", attempt=attempt + 1, max_retries=_MAX_RETRIES
                )
                last_error = "request timed out"
            except httpx.HTTPError as exc:
                raise BuildkiteError(
                    f"Network error connecting to Buildkite API: {exc}"
                ) from exc
            else:
                if resp.status_code < 400:
                    return resp
                if resp.status_code < 500:
                    raise BuildkiteError(
                        f"Buildkite API request failed with status {resp.status_code}"
                    )
                log.warning(
                    "buildkite.server_error",
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_error = f"status {resp.status_code}"

            if attempt < _MAX_RETRIES - 1:
                await asyncio.sleep(_RETRY_BASE_DELAY * (2**attempt))

        raise BuildkiteError(f"Buildkite API request failed after retries: {last_error}")


def _rfc3339(day: date, at: time) -> str:
    return datetime.combine(day, at, tzinfo=timezone.utc).isoformat()


def _format_graphql_error(error: dict[str, Any]) -> str:
    message = error.get("message", "unknown error")
    path = error.get("path")
    if path:
        return f"{message} (path: {' -> '.join(str(p) for p in path)})"
    return message
