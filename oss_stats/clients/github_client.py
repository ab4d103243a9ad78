"""Async GitHub API client with pagination, rate-limit handling, and retries."""

from __future__ import annotations

import asyncio
import base64
import os
import re
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import structlog

from oss_stats.exceptions import RateLimitError

log = structlog.get_logger("oss_stats.github")

DEFAULT_API_ENDPOINT = "https://api.github.com"

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds


class GitHubClient:
    """Thin async wrapper around the GitHub REST API.

    *ops_per_minute* enables client-side throttling: after every request the
    client sleeps ``60 / ops_per_minute`` seconds. Useful for big orgs where
    the secondary rate limits bite long before the hourly quota runs out.
    """

    _ops_per_minute: float | None = None

    def __init__(
        self,
        token: str | None = None,
        *,
        api_endpoint: str | None = None,
        ops_per_minute: float | None = None,
    ) -> None:
        resolved_token = token or os.environ.get("GITHUB_TOKEN")
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "oss-stats",
        }
        if resolved_token:
            headers["Authorization"] = f"token {resolved_token}"
        self._client = httpx.AsyncClient(
            base_url=api_endpoint or DEFAULT_API_ENDPOINT,
            headers=headers,
            timeout=30.0,
        )
        self._ops_per_minute = ops_per_minute

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def iter_pages(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        items_key: str | None = None,
        max_pages: int = 10,
    ) -> AsyncGenerator[list[dict[str, Any]], None]:
        """Yield one list of JSON items per page of a paginated endpoint.

        Automatically follows ``Link: <...>; rel="next"`` headers and
        respects rate-limit headers. Stops after *max_pages* pages.

        Some endpoints wrap the list in an envelope
        (``{"total_count": 3, "workflows": [...]}``); pass *items_key* to
        unwrap it.
        """
        url: str | None = path
        params = dict(params or {})
        params.setdefault("per_page", 100)
        page = 0

        while url and page < max_pages:
            response = await self._request_with_retry(url, params if page == 0 else None)
            await self._check_rate_limit(response)

            data = response.json()
            if items_key is not None and isinstance(data, dict):
                data = data.get(items_key) or []
            if isinstance(data, list):
                yield data
            else:
                yield [data]

            url = self._parse_next_link(response.headers.get("Link", ""))
            page += 1

    async def get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        items_key: str | None = None,
        max_pages: int = 10,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield JSON items from a paginated GitHub API endpoint.

        Same as :meth:`iter_pages` but flattened to individual items.
        """
        async for page in self.iter_pages(
            path, params, items_key=items_key, max_pages=max_pages
        ):
            for item in page:
                yield item

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Single-resource GET, returns parsed JSON.

        *path* may also be an absolute URL, e.g. a ``statuses_url`` taken
        from a pull request payload.
        """
        response = await self._request_with_retry(path, params)
        await self._check_rate_limit(response)
        return response.json()

    async def get_readme(self, owner: str, repo: str) -> str | None:
        """Return the decoded README of a repository, or None if it has none."""
        try:
            data = await self.get(f"/repos/{owner}/{repo}/readme")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise
        return _decode_content(data)

    async def get_file(self, owner: str, repo: str, path: str) -> str | None:
        """Return the decoded contents of *path*, or None on 404."""
        try:
            data = await self.get(f"/repos/{owner}/{repo}/contents/{path}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise
        return _decode_content(data)

    async def recent_prs(self, owner: str, repo: str, n: int = 10) -> list[dict[str, Any]]:
        """The *n* most recently updated open pull requests."""
        params = {"state": "open", "sort": "updated", "direction": "desc", "per_page": n}
        prs: list[dict[str, Any]] = []
        async for page in self.iter_pages(f"/repos/{owner}/{repo}/pulls", params, max_pages=1):
            prs.extend(page)
        return prs

    async def pr_statuses(self, pr: dict[str, Any]) -> list[dict[str, Any]]:
        """Commit statuses of a pull request's head, via its ``statuses_url``."""
        url = pr.get("statuses_url")
        if not url:
            return []
        return await self.get(url)

    # ── internal ───────────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """GET with exponential backoff on 5xx, 403 rate-limit, and timeout errors."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.get(url, params=params)
                await self._throttle()

                # 403 with rate-limit headers → sleep and retry
                if resp.status_code == 403 and self._is_rate_limited(resp):
                    wait = self._get_rate_limit_wait(resp)
                    log.warning(
                        "github.rate_limit",
                        url=url,
                        wait_seconds=wait,
                        attempt=attempt + 1,
                        max_retries=_MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    last_exc = RateLimitError(wait)
                    continue

                if resp.status_code < 500:
                    resp.raise_for_status()
                    return resp

                # 5xx: retry
                log.warning(
                    "github.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = httpx.HTTPStatusError(
                    f"{resp.status_code}", request=resp.request, response=resp
                )
            except httpx.TimeoutException as exc:
                log.warning(
                    "github.timeout",
                    url=url,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = exc

            if attempt < _MAX_RETRIES - 1:
                delay = _RETRY_BASE_DELAY * (2**attempt)
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    async def _throttle(self) -> None:
        if self._ops_per_minute and self._ops_per_minute > 0:
            delay = 60.0 / self._ops_per_minute
            log.debug("github.throttle", sleep_seconds=round(delay, 2))
            await asyncio.sleep(delay)

    async def _check_rate_limit(self, response: httpx.Response) -> None:
        """Sleep until rate-limit resets if remaining == 0."""
        remaining = self._parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None and remaining == 0:
            wait = self._get_rate_limit_wait(response)
            log.warning("github.rate_limit_wait", wait_seconds=wait)
            await asyncio.sleep(wait)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        """Check if a 403 response is due to rate limiting."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # GitHub also uses Retry-After header for abuse rate limits
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        """Calculate how long to wait based on rate-limit headers."""
        # Prefer Retry-After (used for abuse/secondary rate limits)
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (ValueError, TypeError):
                pass
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return max(int(reset_ts) - int(time.time()), 1)
            except (ValueError, TypeError):
                pass
        return 60

    @staticmethod
    def _parse_header_int(value: str | None) -> int | None:
        """Safely parse an integer header value."""
        if value is None:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the ``next`` URL from a GitHub ``Link`` header."""
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None


def _decode_content(data: dict[str, Any]) -> str:
    content = data.get("content") or ""
    if data.get("encoding", "base64") != "base64":
        return content
    return base64.b64decode(content).decode("utf-8", errors="replace")
