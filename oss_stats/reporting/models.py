"""Report containers."""

from __future__ import annotations

from dataclasses import dataclass, field

from oss_stats.config.schema import RepoSettings
from oss_stats.engines.ci_status.models import CIStatus
from oss_stats.engines.repo_activity.models import RepoActivity


@dataclass
class RepoReport:
    """Everything collected for one repository in one run."""

    settings: RepoSettings
    activity: RepoActivity | None = None
    ci: CIStatus | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class VisibilityResult:
    """Audit outcome for one repository."""

    repo: str
    html_url: str | None = None
    private_pipelines: list[str] = field(default_factory=list)
    total: int = 0
    skipped: dict[str, int] = field(default_factory=dict)


@dataclass
class VisibilityReport:
    github_org: str
    repos: list[VisibilityResult] = field(default_factory=list)
    skip_patterns: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_pipelines(self) -> int:
        return sum(r.total for r in self.repos)

    @property
    def private_pipelines(self) -> int:
        return sum(len(r.private_pipelines) for r in self.repos)

    @property
    def repos_with_private(self) -> int:
        return sum(1 for r in self.repos if r.private_pipelines)

    @property
    def skipped(self) -> dict[str, int]:
        merged: dict[str, int] = {}
        for r in self.repos:
            for name, count in r.skipped.items():
                merged[name] = merged.get(name, 0) + count
        return merged
