"""GitHub Actions event producer.

Walks workflows → completed runs on a branch → jobs of each run, and emits
one :class:`CheckEvent` per (workflow, job, run).
"""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
import structlog

from oss_stats.clients.github_client import GitHubClient
from oss_stats.core.github import workflow_branch_url
from oss_stats.engines.ci_status.models import CheckEvent, FetchResult, Outcome
from oss_stats.exceptions import RateLimitError

log = structlog.get_logger("oss_stats.engine")

_RUNS_MAX_PAGES = 20


async def collect_github_actions(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str,
    *,
    window_start: date,
) -> FetchResult:
    """Fetch job outcomes for every workflow of *owner/repo* on *branch*.

    A repository without Actions (404 on the workflows API) is an expected
    condition: it is logged and recorded in ``errors``. A failure on one
    workflow doesn't stop the others.
    """
    result = FetchResult()
    full_name = f"{owner}/{repo}"

    try:
        workflows = [
            wf
            async for wf in client.get_paginated(
                f"/repos/{owner}/{repo}/actions/workflows", items_key="workflows"
            )
        ]
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        msg = f"workflows API returned {status} for {full_name} branch {branch}"
        if status == 404:
            log.warning("ci.workflows_not_found", repo=full_name, branch=branch)
        else:
            log.error("ci.workflows_failed", repo=full_name, branch=branch, status=status)
        result.errors.append(msg)
        return result
    except (httpx.HTTPError, RateLimitError) as exc:
        log.error("ci.workflows_failed", repo=full_name, branch=branch, error=str(exc))
        result.errors.append(f"workflows API failed for {full_name}: {exc}")
        return result

    for workflow in workflows:
        try:
            events = await _collect_workflow(
                client, owner, repo, branch, workflow, window_start=window_start
            )
        except (httpx.HTTPError, RateLimitError) as exc:
            name = workflow.get("name", workflow.get("id"))
            log.error(
                "ci.workflow_failed",
                repo=full_name,
                branch=branch,
                workflow=name,
                error=str(exc),
            )
            result.errors.append(f"workflow {name!r} failed for {full_name}: {exc}")
            continue
        result.events.extend(events)

    log.info(
        "ci.github_actions_collected",
        repo=full_name,
        branch=branch,
        workflows=len(workflows),
        events=len(result.events),
    )
    return result


async def _collect_workflow(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str,
    workflow: dict[str, Any],
    *,
    window_start: date,
) -> list[CheckEvent]:
    name = workflow.get("name", "")
    url = workflow_branch_url(workflow.get("html_url", ""), branch)
    params = {
        "branch": branch,
        "status": "completed",
        "created": f">={window_start.isoformat()}",
    }

    events: list[CheckEvent] = []
    async for run in client.get_paginated(
        f"/repos/{owner}/{repo}/actions/workflows/{workflow['id']}/runs",
        params,
        items_key="workflow_runs",
        max_pages=_RUNS_MAX_PAGES,
    ):
        async for job in client.get_paginated(
            f"/repos/{owner}/{repo}/actions/runs/{run['id']}/jobs", items_key="jobs"
        ):
            conclusion = job.get("conclusion")
            events.append(
                CheckEvent(
                    job_key=f"{name} / {job.get('name', '')}",
                    timestamp=run.get("created_at"),
                    outcome=Outcome.from_github(conclusion),
                    url=url,
                    status=conclusion,
                )
            )
    log.debug("ci.workflow_collected", workflow=name, branch=branch, events=len(events))
    return events
