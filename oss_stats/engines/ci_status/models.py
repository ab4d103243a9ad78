"""Data models for the CI status engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime

import structlog

log = structlog.get_logger("oss_stats.engine")


class Outcome(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    OTHER = "other"

    @classmethod
    def from_github(cls, conclusion: str | None) -> Outcome:
        """Map a GitHub Actions job ``conclusion``.

        Only ``failure`` and ``success`` matter; cancelled, skipped,
        timed_out, neutral and in-progress jobs are all OTHER.
        """
        if conclusion == "failure":
            return cls.FAILURE
        if conclusion == "success":
            return cls.SUCCESS
        return cls.OTHER

    @classmethod
    def from_buildkite(cls, state: str | None) -> Outcome:
        """Map a Buildkite build ``state``."""
        if state == "FAILED":
            return cls.FAILURE
        if state == "PASSED":
            return cls.SUCCESS
        return cls.OTHER

    @classmethod
    def coerce(cls, value: object) -> Outcome:
        if isinstance(value, Outcome):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        log.warning("ci.unknown_outcome", value=repr(value))
        return cls.OTHER


@dataclass(frozen=True)
class CheckEvent:
    """One observed run of one CI job.

    *timestamp* is whatever the provider returned: a datetime, a date or an
    ISO-8601 string. The reconstructor normalizes it and tolerates garbage.
    """

    job_key: str
    timestamp: datetime | date | str | None
    outcome: Outcome | str
    url: str | None = None
    status: str | None = None  # raw provider status, shown as "latest"


@dataclass
class FailureWindow:
    """The set of calendar days on which a job was broken."""

    dates: set[date] = field(default_factory=set)
    url: str | None = None
    latest_status: str | None = None
    latest_at: datetime | None = None

    @property
    def days(self) -> int:
        return len(self.dates)


@dataclass
class FetchResult:
    """Events produced by one provider fetch, plus per-item failures."""

    events: list[CheckEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class CIStatus:
    """Reconstructed failure windows for one repository, keyed by branch."""

    branches: dict[str, dict[str, FailureWindow]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def total_failure_days(self) -> int:
        return sum(w.days for jobs in self.branches.values() for w in jobs.values())

    @property
    def failing_jobs(self) -> int:
        return sum(len(jobs) for jobs in self.branches.values())
