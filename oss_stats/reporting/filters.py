"""Top-N report filtering.

With any ``top_n_*`` option set, only repositories that rank in the top N
(or top N percent) for at least one active metric are reported. A
repository also needs a positive value for that metric; a quiet repository
never makes the cut just because the list is short.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from oss_stats.config.schema import RepoStatsConfig
    from oss_stats.reporting.models import RepoReport

log = structlog.get_logger("oss_stats.reporting")

TOP_N_OPTIONS: tuple[str, ...] = (
    "top_n_stale",
    "top_n_oldest",
    "top_n_time_to_close",
    "top_n_most_broken_ci_days",
    "top_n_most_broken_ci_jobs",
    "top_n_stale_pr",
    "top_n_stale_issue",
    "top_n_oldest_pr",
    "top_n_oldest_issue",
    "top_n_time_to_close_pr",
    "top_n_time_to_close_issue",
)

Metric = Callable[["RepoReport"], float]


def parse_top_n(value: str) -> int | float:
    """``"3"`` → 3 repositories, ``"5%"`` → 0.05 (a fraction of all repositories)."""
    text = value.strip()
    if text.endswith("%"):
        return float(text[:-1]) / 100.0
    return int(text)


def filter_repositories(
    reports: Sequence[RepoReport], config: RepoStatsConfig
) -> list[RepoReport]:
    active = {opt: getattr(config, opt) for opt in TOP_N_OPTIONS if getattr(config, opt)}
    if not active:
        return list(reports)

    log.debug("filter.active", filters=sorted(active))
    modes = config.modes
    metrics: dict[str, Metric] = {}

    if modes & {"pr", "issue"}:
        metrics["top_n_stale"] = lambda r: max(_pr(r, "stale_count"), _issue(r, "stale_count"))
        metrics["top_n_oldest"] = lambda r: max(
            _pr(r, "oldest_open_days"), _issue(r, "oldest_open_days")
        )
        metrics["top_n_time_to_close"] = lambda r: max(
            _pr(r, "avg_time_to_close_hours"), _issue(r, "avg_time_to_close_hours")
        )
    if "pr" in modes:
        metrics["top_n_stale_pr"] = lambda r: _pr(r, "stale_count")
        metrics["top_n_oldest_pr"] = lambda r: _pr(r, "oldest_open_days")
        metrics["top_n_time_to_close_pr"] = lambda r: _pr(r, "avg_time_to_close_hours")
    if "issue" in modes:
        metrics["top_n_stale_issue"] = lambda r: _issue(r, "stale_count")
        metrics["top_n_oldest_issue"] = lambda r: _issue(r, "oldest_open_days")
        metrics["top_n_time_to_close_issue"] = lambda r: _issue(r, "avg_time_to_close_hours")
    if "ci" in modes:
        metrics["top_n_most_broken_ci_days"] = lambda r: r.ci.total_failure_days if r.ci else 0
        metrics["top_n_most_broken_ci_jobs"] = lambda r: r.ci.failing_jobs if r.ci else 0

    selected: set[int] = set()
    for option, value in active.items():
        metric = metrics.get(option)
        if metric is None:
            continue
        n = _top_count(value, len(reports))
        ranked = sorted(range(len(reports)), key=lambda i: -metric(reports[i]))
        for i in ranked[:n]:
            if metric(reports[i]) > 0:
                selected.add(i)

    log.debug("filter.selected", count=len(selected), total=len(reports))
    return [r for i, r in enumerate(reports) if i in selected]


def _top_count(value: int | float, total: int) -> int:
    if isinstance(value, float):
        return math.ceil(value * total)
    return value


def _pr(report: RepoReport, attr: str) -> float:
    if report.activity is None:
        return 0
    return getattr(report.activity.pr, attr) or 0


def _issue(report: RepoReport, attr: str) -> float:
    if report.activity is None:
        return 0
    return getattr(report.activity.issue, attr) or 0
