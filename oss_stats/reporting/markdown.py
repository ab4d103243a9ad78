"""Markdown rendering for repo-stats and pipeline-visibility reports.

Output is Slack-flavoured Markdown: nested ``*`` bullets indented by four
spaces, ``*_..._*`` for bold-italic headers.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from oss_stats.core.github import repo_html_url
from oss_stats.engines.ci_status.models import CIStatus
from oss_stats.engines.repo_activity.models import ItemStats, TrackedItem
from oss_stats.reporting.models import RepoReport, VisibilityReport

_INDENT = "    "


def render_repo_header(org: str, repo: str, days: int, *, no_links: bool = False) -> str:
    full_name = f"{org}/{repo}"
    if no_links:
        return f"* {full_name} Stats (Last {days} days) *"
    return f"*_[{full_name}]({repo_html_url(org, repo)}) Stats (Last {days} days)_*"


def render_item_stats(
    stats: ItemStats,
    kind: str,
    *,
    include_list: bool = False,
    no_links: bool = False,
) -> list[str]:
    """PR or issue section; *kind* is ``"PR"`` or ``"Issue"``."""
    plural = f"{kind}s"
    lines = [f"* {kind} Stats:", f"{_INDENT}* Closed {plural}: {stats.closed}"]
    if include_list:
        lines.extend(_item_lines(stats.closed_items, no_links))

    listing = "listing " if include_list else ""
    lines.append(
        f"{_INDENT}* Open {plural}: {stats.open} "
        f"({listing}{stats.opened_this_period} opened this period)"
    )
    if include_list and stats.opened_this_period > 0:
        lines.extend(_item_lines(stats.open_items, no_links))

    if stats.oldest_open is not None:
        lines.append(
            f"{_INDENT}* Oldest Open {kind}: {stats.oldest_open.isoformat()} "
            f"({stats.oldest_open_days} days open, "
            f"last activity {stats.oldest_open_last_activity} days ago)"
        )
    lines.append(f"{_INDENT}* Stale {kind} (>30 days without comment): {stats.stale_count}")
    lines.append(
        f"{_INDENT}* Avg Time to Close {plural}: "
        f"{format_duration(stats.avg_time_to_close_hours)}"
    )
    return lines


def format_duration(hours: float) -> str:
    """Hours up to a day, days beyond that."""
    if hours > 24:
        return f"{round(hours / 24, 2)} days"
    return f"{round(hours, 2)} hours"


def render_ci_status(ci: CIStatus, *, no_links: bool = False) -> list[str]:
    lines = ["* CI Stats:"]
    for branch in sorted(ci.branches):
        jobs = ci.branches[branch]
        head = f"{_INDENT}* Branch: `{branch}`"
        if not jobs:
            lines.append(f"{head}: No job failures found! :tada:")
            continue
        lines.append(f"{head} has the following failures:")
        for job_key in sorted(jobs):
            window = jobs[job_key]
            tail = f"{window.days} days (latest: {window.latest_status})"
            if no_links or not window.url:
                lines.append(f"{_INDENT * 2}* {job_key}: {tail}")
            else:
                lines.append(f"{_INDENT * 2}* [{job_key}]({window.url}): {tail}")
    return lines


def render_repo_report(
    report: RepoReport,
    modes: Iterable[str],
    *,
    include_list: bool = False,
    no_links: bool = False,
) -> str:
    modes = set(modes)
    s = report.settings
    lines = [render_repo_header(s.org, s.repo, s.days, no_links=no_links)]

    if report.activity is not None:
        if "pr" in modes:
            lines.append("")
            lines.extend(
                render_item_stats(
                    report.activity.pr, "PR", include_list=include_list, no_links=no_links
                )
            )
        if "issue" in modes:
            lines.append("")
            lines.extend(
                render_item_stats(
                    report.activity.issue, "Issue", include_list=include_list, no_links=no_links
                )
            )

    if "ci" in modes and report.ci is not None:
        lines.append("")
        lines.extend(render_ci_status(report.ci, no_links=no_links))

    return "\n".join(lines) + "\n"


def render_visibility_report(
    report: VisibilityReport, *, today: date, no_links: bool = False
) -> str:
    title = f"{report.github_org.capitalize()} Pipeline Visibility Report {today.isoformat()}"
    lines = [f"# {title}", ""]

    for result in sorted(report.repos, key=lambda r: r.repo):
        if not result.private_pipelines:
            continue
        name = f"{report.github_org}/{result.repo}"
        if result.html_url and not no_links:
            name = f"[{name}]({result.html_url})"
        lines.append(f"* {name}")
        lines.extend(f"{_INDENT}* {p}" for p in sorted(result.private_pipelines))

    total = report.total_pipelines
    if total == 0:
        lines.append("No pipelines found (excluding skipped patterns).")
        return "\n".join(lines) + "\n"

    pct = round(report.private_pipelines / total * 100, 2)
    lines.append("")
    lines.append(f"Total percentage of private pipelines: {pct}%")
    lines.append(
        f"  --> {report.private_pipelines} out of {total} "
        f"across {report.repos_with_private} repos"
    )
    skipped = report.skipped
    if skipped:
        lines.append("  --> Skipped pipelines:")
        lines.extend(f"    - {name}" for name in skipped)
        lines.append("  -> The following skip patterns were specified:")
        lines.extend(f"    - {pat}" for pat in report.skip_patterns)
    return "\n".join(lines) + "\n"


def _item_lines(items: list[TrackedItem], no_links: bool) -> list[str]:
    lines = []
    for item in items:
        label = f"{item.title} (#{item.number})"
        if not no_links and item.html_url:
            label = f"[{label}]({item.html_url})"
        lines.append(f"{_INDENT * 2}* {label} - @{item.author}")
    return lines
