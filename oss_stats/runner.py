"""RepoStatsRunner — runs the activity and CI engines across repositories."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any

import httpx
import structlog

from oss_stats.clients.buildkite_client import BuildkiteClient
from oss_stats.clients.github_client import GitHubClient
from oss_stats.config.schema import RepoSettings, RepoStatsConfig
from oss_stats.engines.ci_status.collector import collect_ci_failures
from oss_stats.engines.repo_activity.collector import collect_activity
from oss_stats.exceptions import BuildkiteError, OssStatsError
from oss_stats.reporting.models import RepoReport

log = structlog.get_logger("oss_stats.engine")

_MAX_CONCURRENCY = 3


class RepoStatsRunner:
    """Orchestration layer: config → engines → :class:`RepoReport` per repository."""

    def __init__(
        self,
        config: RepoStatsConfig,
        gh: GitHubClient,
        bk: BuildkiteClient | None = None,
        *,
        today: date | None = None,
    ) -> None:
        self._config = config
        self._gh = gh
        self._bk = bk
        self._today = today
        self._pipelines_by_repo: dict[str, list[dict[str, Any]]] = {}

    async def prepare(self) -> None:
        """Fetch the Buildkite org's pipeline listing once per run."""
        if self._bk is None or not self._config.buildkite_org or "ci" not in self._config.modes:
            return
        org = self._config.buildkite_org
        try:
            self._pipelines_by_repo = await self._bk.pipelines_by_repo(org)
        except BuildkiteError as exc:
            log.error("runner.pipeline_listing_failed", org=org, error=str(exc))
            self._pipelines_by_repo = {}

    async def run(self, settings: RepoSettings) -> RepoReport:
        """Collect everything the active modes ask for, for one repository."""
        report = RepoReport(settings=settings)
        modes = self._config.modes

        if modes & {"pr", "issue"}:
            try:
                report.activity = await collect_activity(
                    self._gh,
                    settings.org,
                    settings.repo,
                    days=settings.days,
                    today=self._today,
                    count_unmerged_prs=self._config.count_unmerged_prs,
                )
            except (httpx.HTTPError, OssStatsError) as exc:
                log.error("runner.activity_failed", repo=settings.full_name, error=str(exc))
                report.errors.append(f"PR/issue stats failed for {settings.full_name}: {exc}")

        if "ci" in modes:
            try:
                report.ci = await asyncio.wait_for(
                    collect_ci_failures(
                        self._gh,
                        self._bk,
                        settings,
                        self._pipelines_by_repo,
                        bk_org=self._config.buildkite_org,
                        today=self._today,
                    ),
                    timeout=self._config.ci_timeout,
                )
            except asyncio.TimeoutError:
                log.error(
                    "runner.ci_timeout",
                    repo=settings.full_name,
                    timeout_seconds=self._config.ci_timeout,
                )
                report.errors.append(
                    f"CI processing for {settings.full_name} timed out "
                    f"after {self._config.ci_timeout}s"
                )
            except (httpx.HTTPError, OssStatsError) as exc:
                log.error("runner.ci_failed", repo=settings.full_name, error=str(exc))
                report.errors.append(f"CI status failed for {settings.full_name}: {exc}")
            else:
                report.errors.extend(report.ci.errors)

        return report

    async def run_all(
        self, repos: list[RepoSettings], *, max_concurrency: int = _MAX_CONCURRENCY
    ) -> list[RepoReport]:
        """Run every repository with bounded concurrency; order is preserved."""
        await self.prepare()
        sem = asyncio.Semaphore(max(max_concurrency, 1))

        async def _run_one(settings: RepoSettings) -> RepoReport:
            async with sem:
                try:
                    return await self.run(settings)
                except Exception as exc:
                    log.error("runner.failed", repo=settings.full_name, error=str(exc))
                    r = RepoReport(settings=settings)
                    r.errors.append(str(exc))
                    return r

        return list(await asyncio.gather(*(_run_one(s) for s in repos)))
