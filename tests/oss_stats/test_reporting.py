"""Tests for Markdown rendering and top-N filtering."""

from __future__ import annotations

from datetime import date

from oss_stats.config.schema import RepoSettings, RepoStatsConfig
from oss_stats.engines.ci_status.models import CIStatus, FailureWindow
from oss_stats.engines.repo_activity.models import ItemStats, RepoActivity, TrackedItem
from oss_stats.reporting.filters import filter_repositories, parse_top_n
from oss_stats.reporting.markdown import (
    format_duration,
    render_ci_status,
    render_item_stats,
    render_repo_header,
    render_repo_report,
    render_visibility_report,
)
from oss_stats.reporting.models import RepoReport, VisibilityReport, VisibilityResult


def _report(repo: str, *, stale: int = 0, ci_days: int = 0) -> RepoReport:
    activity = RepoActivity(pr=ItemStats(stale_count=stale))
    jobs = {}
    if ci_days:
        jobs["job"] = FailureWindow(dates={date(2024, 3, d + 1) for d in range(ci_days)})
    ci = CIStatus(branches={"main": jobs})
    return RepoReport(
        settings=RepoSettings("acme", repo, 30, ("main",)), activity=activity, ci=ci
    )


# ── header / durations ────────────────────────────────────────────────────


class TestMarkdownBasics:
    def test_header_with_link(self):
        assert render_repo_header("acme", "widget", 7) == (
            "*_[acme/widget](https://github.com/acme/widget) Stats (Last 7 days)_*"
        )

    def test_header_without_link(self):
        assert render_repo_header("acme", "widget", 7, no_links=True) == (
            "* acme/widget Stats (Last 7 days) *"
        )

    def test_format_duration(self):
        assert format_duration(5.256) == "5.26 hours"
        assert format_duration(24) == "24 hours"
        assert format_duration(36) == "1.5 days"


# ── item stats ────────────────────────────────────────────────────────────


class TestRenderItemStats:
    def test_summary(self):
        stats = ItemStats(
            open=3,
            closed=2,
            total_close_time=10.0,
            oldest_open=date(2024, 1, 1),
            oldest_open_days=90,
            oldest_open_last_activity=12,
            stale_count=1,
            opened_this_period=2,
        )
        assert render_item_stats(stats, "PR") == [
            "* PR Stats:",
            "    * Closed PRs: 2",
            "    * Open PRs: 3 (2 opened this period)",
            "    * Oldest Open PR: 2024-01-01 (90 days open, last activity 12 days ago)",
            "    * Stale PR (>30 days without comment): 1",
            "    * Avg Time to Close PRs: 5.0 hours",
        ]

    def test_include_list(self):
        stats = ItemStats(
            open=1,
            closed=1,
            opened_this_period=1,
            closed_items=[TrackedItem(1, "Fix", "https://github.com/a/b/pull/1", "alice")],
            open_items=[TrackedItem(2, "Add", "https://github.com/a/b/pull/2", "bob")],
        )
        lines = render_item_stats(stats, "Issue", include_list=True, no_links=True)
        assert "        * Fix (#1) - @alice" in lines
        assert "        * Add (#2) - @bob" in lines
        assert "    * Open Issues: 1 (listing 1 opened this period)" in lines

    def test_include_list_with_links(self):
        stats = ItemStats(
            closed=1, closed_items=[TrackedItem(1, "Fix", "https://github.com/a/b/pull/1", "al")]
        )
        lines = render_item_stats(stats, "PR", include_list=True)
        assert "        * [Fix (#1)](https://github.com/a/b/pull/1) - @al" in lines


# ── CI ────────────────────────────────────────────────────────────────────


class TestRenderCIStatus:
    def test_branches_sorted_and_clean_branch_celebrated(self):
        ci = CIStatus(
            branches={
                "main": {
                    "CI / build": FailureWindow(
                        dates={date(2024, 3, 9), date(2024, 3, 10)},
                        url="https://github.com/a/b/actions",
                        latest_status="failure",
                    ),
                    "[BK] acme/b": FailureWindow(dates={date(2024, 3, 10)}, latest_status="FAILED"),
                },
                "develop": {},
            }
        )
        assert render_ci_status(ci) == [
            "* CI Stats:",
            "    * Branch: `develop`: No job failures found! :tada:",
            "    * Branch: `main` has the following failures:",
            "        * [CI / build](https://github.com/a/b/actions): 2 days (latest: failure)",
            "        * [BK] acme/b: 1 days (latest: FAILED)",
        ]

    def test_no_links(self):
        ci = CIStatus(branches={"main": {"j": FailureWindow(dates={date(2024, 3, 1)}, url="u")}})
        assert render_ci_status(ci, no_links=True)[-1] == "        * j: 1 days (latest: None)"


class TestRenderRepoReport:
    def test_sections_follow_modes(self):
        report = _report("widget", stale=2, ci_days=1)
        text = render_repo_report(report, {"pr", "ci"})
        assert text.startswith("*_[acme/widget]")
        assert "* PR Stats:" in text
        assert "* Issue Stats:" not in text
        assert "* CI Stats:" in text
        assert text.endswith("\n")

    def test_ci_only(self):
        text = render_repo_report(_report("widget"), {"ci"})
        assert "* PR Stats:" not in text
        assert "No job failures found!" in text


# ── visibility ────────────────────────────────────────────────────────────


class TestRenderVisibility:
    def test_report(self):
        report = VisibilityReport(
            github_org="acme",
            repos=[
                VisibilityResult(
                    "widget",
                    "https://github.com/acme/widget",
                    private_pipelines=["acme/widget-verify"],
                    total=2,
                    skipped={"acme/widget-release": 1},
                ),
                VisibilityResult("gadget", total=2),
            ],
            skip_patterns=["release"],
        )
        text = render_visibility_report(report, today=date(2024, 3, 10))
        assert text.splitlines() == [
            "# Acme Pipeline Visibility Report 2024-03-10",
            "",
            "* [acme/widget](https://github.com/acme/widget)",
            "    * acme/widget-verify",
            "",
            "Total percentage of private pipelines: 25.0%",
            "  --> 1 out of 4 across 1 repos",
            "  --> Skipped pipelines:",
            "    - acme/widget-release",
            "  -> The following skip patterns were specified:",
            "    - release",
        ]

    def test_no_pipelines(self):
        report = VisibilityReport(github_org="acme", repos=[VisibilityResult("x")])
        text = render_visibility_report(report, today=date(2024, 3, 10))
        assert "No pipelines found (excluding skipped patterns)." in text


# ── top-N filters ─────────────────────────────────────────────────────────


class TestFilters:
    def test_parse_top_n(self):
        assert parse_top_n("3") == 3
        assert parse_top_n(" 5% ") == 0.05

    def test_no_filters_returns_everything(self):
        reports = [_report("a"), _report("b")]
        assert filter_repositories(reports, RepoStatsConfig()) == reports

    def test_top_n_stale_requires_positive_metric(self):
        reports = [_report("a", stale=1), _report("b", stale=5), _report("c")]
        config = RepoStatsConfig(top_n_stale=3)
        kept = filter_repositories(reports, config)
        assert [r.settings.repo for r in kept] == ["a", "b"]

    def test_union_of_filters_keeps_input_order(self):
        reports = [
            _report("a", stale=1),
            _report("b", ci_days=4),
            _report("c", stale=9),
            _report("d", ci_days=1),
        ]
        config = RepoStatsConfig(top_n_stale=1, top_n_most_broken_ci_days=1)
        kept = filter_repositories(reports, config)
        assert [r.settings.repo for r in kept] == ["b", "c"]

    def test_percentage_rounds_up(self):
        reports = [_report(name, ci_days=i + 1) for i, name in enumerate("abcd")]
        config = RepoStatsConfig(top_n_most_broken_ci_jobs="30%")
        kept = filter_repositories(reports, config)
        # ceil(0.3 * 4) == 2; every repo has one failing job, ties keep order
        assert [r.settings.repo for r in kept] == ["a", "b"]

    def test_filter_for_inactive_mode_selects_nothing(self):
        reports = [_report("a", ci_days=3)]
        config = RepoStatsConfig(mode=["pr"], top_n_most_broken_ci_days=1)
        assert filter_repositories(reports, config) == []
