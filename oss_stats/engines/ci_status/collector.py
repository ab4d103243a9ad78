"""CI status collection — producers + reconstructor, per repository."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

import structlog

from oss_stats.clients.buildkite_client import BuildkiteClient
from oss_stats.clients.github_client import GitHubClient
from oss_stats.config.schema import RepoSettings
from oss_stats.core.timeutil import utcnow
from oss_stats.engines.ci_status.buildkite import (
    Pipeline,
    collect_buildkite,
    discover_pipelines,
)
from oss_stats.engines.ci_status.github_actions import collect_github_actions
from oss_stats.engines.ci_status.models import CIStatus, FailureWindow
from oss_stats.engines.ci_status.streaks import chronological, merge_windows, reconstruct

log = structlog.get_logger("oss_stats.engine")


async def collect_ci_failures(
    gh: GitHubClient,
    bk: BuildkiteClient | None,
    settings: RepoSettings,
    pipelines_by_repo: dict[str, list[dict[str, Any]]] | None = None,
    *,
    bk_org: str | None = None,
    today: date | None = None,
) -> CIStatus:
    """Failure windows for every branch of one repository.

    GitHub Actions is always checked; Buildkite only when *bk* is given.
    Each (branch, provider) pair is reconstructed separately and the results
    merged per branch. Every requested branch appears in the result, even
    when it has no failures.
    """
    today = today or utcnow().date()
    window_start = today - timedelta(days=settings.days)
    status = CIStatus()

    pipelines: list[Pipeline] = []
    if bk is not None:
        pipelines, errors = await discover_pipelines(
            gh, bk, settings.org, settings.repo, pipelines_by_repo or {}, bk_org
        )
        status.errors.extend(errors)
        log.debug(
            "ci.pipelines_discovered",
            repo=settings.full_name,
            pipelines=[p.job_key for p in pipelines],
        )

    for branch in settings.branches:
        per_provider: list[dict[str, FailureWindow]] = []

        gha = await collect_github_actions(
            gh, settings.org, settings.repo, branch, window_start=window_start
        )
        status.errors.extend(gha.errors)
        per_provider.append(reconstruct(chronological(gha.events), window_start, today))

        if bk is not None:
            for pipeline in pipelines:
                fetched = await collect_buildkite(
                    bk, pipeline, branch, window_start=window_start, today=today
                )
                status.errors.extend(fetched.errors)
                events = chronological(fetched.events)
                per_provider.append(reconstruct(events, window_start, today))

        status.branches[branch] = merge_windows(*per_provider)

    log.info(
        "ci.collected",
        repo=settings.full_name,
        branches=len(status.branches),
        failing_jobs=status.failing_jobs,
        errors=len(status.errors),
    )
    return status
