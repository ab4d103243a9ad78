"""Buildkite event producer and pipeline discovery."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx
import structlog

from oss_stats.clients.buildkite_client import BuildkiteClient
from oss_stats.clients.github_client import GitHubClient
from oss_stats.core.github import repo_html_url
from oss_stats.engines.ci_status.models import CheckEvent, FetchResult, Outcome
from oss_stats.exceptions import BuildkiteError, RateLimitError

log = structlog.get_logger("oss_stats.engine")

# [![Build Status](https://badge.buildkite.com/x.svg)](https://buildkite.com/org/pipeline)
_BADGE_RE = re.compile(r"\)\]\((https://buildkite\.com/([^/]+)/([^/)]+))\)")


@dataclass(frozen=True)
class Pipeline:
    org: str
    slug: str
    url: str | None = None

    @property
    def job_key(self) -> str:
        return f"[BK] {self.org}/{self.slug}"


def pipelines_from_readme(readme: str) -> list[tuple[str, str]]:
    """Extract ``(org, slug)`` pairs from Buildkite badge links, in order, deduplicated."""
    found: list[tuple[str, str]] = []
    for match in _BADGE_RE.finditer(readme):
        pair = (match.group(2), match.group(3))
        if pair not in found:
            found.append(pair)
    return found


async def discover_pipelines(
    gh: GitHubClient,
    bk: BuildkiteClient,
    owner: str,
    repo: str,
    pipelines_by_repo: dict[str, list[dict[str, Any]]],
    bk_org: str | None,
) -> tuple[list[Pipeline], list[str]]:
    """Find the Buildkite pipelines that build *owner/repo*.

    Two sources: the organisation's pipeline listing (matched by repository
    URL) and badge links in the README. Returns ``(pipelines, errors)``.
    """
    pipelines: list[Pipeline] = []
    errors: list[str] = []
    full_name = f"{owner}/{repo}"

    if bk_org:
        for entry in pipelines_by_repo.get(repo_html_url(owner, repo), []):
            pipelines.append(Pipeline(org=bk_org, slug=entry["slug"], url=entry.get("url")))

    try:
        readme = await gh.get_readme(owner, repo)
    except (httpx.HTTPError, RateLimitError) as exc:
        log.error("ci.readme_failed", repo=full_name, error=str(exc))
        errors.append(f"README fetch failed for {full_name}: {exc}")
        readme = None

    if readme is None:
        log.warning("ci.readme_not_found", repo=full_name)
    else:
        for org, slug in pipelines_from_readme(readme):
            if any(p.org == org and p.slug == slug for p in pipelines):
                continue
            try:
                node = await bk.get_pipeline(org, slug)
            except BuildkiteError as exc:
                log.error("ci.pipeline_lookup_failed", pipeline=f"{org}/{slug}", error=str(exc))
                errors.append(f"pipeline lookup failed for {org}/{slug}: {exc}")
                continue
            if node is None:
                continue
            log.debug("ci.pipeline_from_readme", repo=full_name, pipeline=f"{org}/{slug}")
            pipelines.append(Pipeline(org=org, slug=slug, url=node.get("url")))

    return pipelines, errors


async def collect_buildkite(
    bk: BuildkiteClient,
    pipeline: Pipeline,
    branch: str,
    *,
    window_start: date,
    today: date,
) -> FetchResult:
    """One :class:`CheckEvent` per build of *pipeline* on *branch*.

    Events link to the pipeline, not the individual build.
    """
    result = FetchResult()
    try:
        builds = await bk.get_pipeline_builds(
            pipeline.org, pipeline.slug, window_start, today, branch
        )
    except BuildkiteError as exc:
        log.error(
            "ci.buildkite_failed",
            pipeline=f"{pipeline.org}/{pipeline.slug}",
            branch=branch,
            error=str(exc),
        )
        result.errors.append(
            f"Buildkite builds failed for {pipeline.org}/{pipeline.slug} on {branch}: {exc}"
        )
        return result

    for build in builds:
        state = build.get("state")
        if not state:
            log.debug("ci.build_without_state", build=build.get("id"))
            continue
        result.events.append(
            CheckEvent(
                job_key=pipeline.job_key,
                timestamp=build.get("createdAt"),
                outcome=Outcome.from_buildkite(state),
                url=pipeline.url,
                status=state,
            )
        )
    return result
