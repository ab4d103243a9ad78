"""Pull-request and issue aging statistics for one repository."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

import structlog

from oss_stats.clients.github_client import GitHubClient
from oss_stats.core.timeutil import parse_timestamp, utcnow
from oss_stats.engines.repo_activity.models import ItemStats, RepoActivity, TrackedItem

log = structlog.get_logger("oss_stats.engine")

WAITING_ON_CONTRIBUTOR = "Status: Waiting on Contributor"
STALE_AFTER_DAYS = 30
_DEFAULT_MAX_PAGES = 50


async def collect_activity(
    client: GitHubClient,
    owner: str,
    repo: str,
    *,
    days: int,
    today: date | None = None,
    count_unmerged_prs: bool = False,
    waiting_label: str = WAITING_ON_CONTRIBUTOR,
    max_pages: int = _DEFAULT_MAX_PAGES,
) -> RepoActivity:
    """Walk the repository's issues (PRs included), newest first.

    Open items labelled *waiting_label* are ignored. Paging stops after a
    page in which nothing fell inside the *days* window.
    """
    today = today or utcnow().date()
    cutoff = today - timedelta(days=days)
    stale_cutoff = today - timedelta(days=STALE_AFTER_DAYS)
    activity = RepoActivity()
    pages = 0

    async for page in client.iter_pages(
        f"/repos/{owner}/{repo}/issues",
        {"state": "all", "sort": "created", "direction": "desc"},
        max_pages=max_pages,
    ):
        pages += 1
        if not page:
            break
        touched = False
        for item in page:
            is_pr = "pull_request" in item and item["pull_request"] is not None
            stats = activity.pr if is_pr else activity.issue
            if _account(
                item,
                stats,
                is_pr=is_pr,
                today=today,
                cutoff=cutoff,
                stale_cutoff=stale_cutoff,
                count_unmerged_prs=count_unmerged_prs,
                waiting_label=waiting_label,
            ):
                touched = True
        if not touched:
            break

    log.info(
        "activity.collected",
        repo=f"{owner}/{repo}",
        pages=pages,
        open_prs=activity.pr.open,
        open_issues=activity.issue.open,
    )
    return activity


def _account(
    item: dict[str, Any],
    stats: ItemStats,
    *,
    is_pr: bool,
    today: date,
    cutoff: date,
    stale_cutoff: date,
    count_unmerged_prs: bool,
    waiting_label: str,
) -> bool:
    """Fold one item into *stats*; True when it fell inside the window."""
    created_at = parse_timestamp(item.get("created_at"))
    if created_at is None:
        log.warning("activity.malformed_item", number=item.get("number"))
        return False
    closed_at = parse_timestamp(item.get("closed_at"))
    updated_at = parse_timestamp(item.get("updated_at")) or created_at

    created = created_at.date()
    last_activity = updated_at.date()
    labels = {label.get("name") for label in item.get("labels") or []}
    in_window = False

    if closed_at is None and waiting_label not in labels:
        if stats.oldest_open is None or created < stats.oldest_open:
            stats.oldest_open = created
            stats.oldest_open_days = (today - created).days
            stats.oldest_open_last_activity = (today - last_activity).days
        if last_activity < stale_cutoff:
            stats.stale_count += 1
        stats.open += 1
        if created >= cutoff:
            stats.opened_this_period += 1
            stats.open_items.append(_tracked(item))
            in_window = True

    if closed_at is None or closed_at.date() < cutoff:
        return in_window

    if is_pr and not count_unmerged_prs and not (item.get("pull_request") or {}).get("merged_at"):
        return in_window

    stats.closed += 1
    stats.closed_items.append(_tracked(item))
    stats.total_close_time += _hours_between(created_at, closed_at)
    return True


def _tracked(item: dict[str, Any]) -> TrackedItem:
    return TrackedItem(
        number=item.get("number", 0),
        title=item.get("title", ""),
        html_url=item.get("html_url"),
        author=(item.get("user") or {}).get("login"),
    )


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0
