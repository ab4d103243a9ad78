"""Data models for the repository activity engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass
class TrackedItem:
    """A PR or issue worth listing in a report."""

    number: int
    title: str
    html_url: str | None = None
    author: str | None = None


@dataclass
class ItemStats:
    """Aggregates for either pull requests or issues of one repository."""

    open: int = 0
    closed: int = 0
    total_close_time: float = 0.0  # hours
    oldest_open: date | None = None
    oldest_open_days: int = 0
    oldest_open_last_activity: int = 0
    stale_count: int = 0
    opened_this_period: int = 0
    open_items: list[TrackedItem] = field(default_factory=list)
    closed_items: list[TrackedItem] = field(default_factory=list)

    @property
    def avg_time_to_close_hours(self) -> float:
        if self.closed == 0:
            return 0.0
        return self.total_close_time / self.closed


@dataclass
class RepoActivity:
    pr: ItemStats = field(default_factory=ItemStats)
    issue: ItemStats = field(default_factory=ItemStats)
