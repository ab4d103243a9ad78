"""Repository activity engine — PR and issue aging statistics."""

from oss_stats.engines.repo_activity.collector import collect_activity
from oss_stats.engines.repo_activity.models import ItemStats, RepoActivity, TrackedItem

__all__ = [
    "ItemStats",
    "RepoActivity",
    "TrackedItem",
    "collect_activity",
]
