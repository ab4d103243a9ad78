"""CI status engine — failure-streak tracking for GitHub Actions and Buildkite."""

from oss_stats.engines.ci_status.collector import collect_ci_failures
from oss_stats.engines.ci_status.models import (
    CheckEvent,
    CIStatus,
    FailureWindow,
    FetchResult,
    Outcome,
)
from oss_stats.engines.ci_status.streaks import chronological, merge_windows, reconstruct

__all__ = [
    "CIStatus",
    "CheckEvent",
    "FailureWindow",
    "FetchResult",
    "Outcome",
    "chronological",
    "collect_ci_failures",
    "merge_windows",
    "reconstruct",
]
