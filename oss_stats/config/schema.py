"""Configuration schema — immutable pydantic models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

from oss_stats.reporting.filters import TOP_N_OPTIONS, parse_top_n

Mode = Literal["ci", "pr", "issue", "all"]
Provider = Literal["buildkite", "expeditor"]
LogLevel = Literal["trace", "debug", "info", "warn", "warning", "error", "fatal", "critical"]

ALL_MODES: tuple[str, ...] = ("ci", "pr", "issue")


def _split_csv(value: object) -> object:
    """Accept ``"a, b"`` as well as ``["a", "b"]``."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [part.strip() if isinstance(part, str) else part for part in value]
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RepoConfig(_Frozen):
    days: int | None = None
    branches: list[str] | None = None

    @field_validator("branches", mode="before")
    @classmethod
    def _branches_csv(cls, v: object) -> object:
        return _split_csv(v)


class OrgConfig(_Frozen):
    days: int | None = None
    branches: list[str] | None = None
    repositories: dict[str, RepoConfig] = {}

    @field_validator("branches", mode="before")
    @classmethod
    def _branches_csv(cls, v: object) -> object:
        return _split_csv(v)

    @field_validator("repositories", mode="before")
    @classmethod
    def _empty_repos(cls, v: object) -> object:
        # ``repo1:`` with no body parses as None in YAML
        if v is None:
            return {}
        if isinstance(v, dict):
            return {name: conf if conf is not None else {} for name, conf in v.items()}
        return v


class RepoStatsConfig(_Frozen):
    """Everything ``repo-stats`` needs to know for one run.

    ``days`` and ``branches`` override every org and repo setting and are
    meant for the command line; files should set ``default_days`` and
    ``default_branches`` instead.
    """

    days: int | None = None
    branches: list[str] | None = None
    default_days: int = 30
    default_branches: list[str] = ["main"]

    log_level: LogLevel = "info"
    ci_timeout: int = 600
    no_links: bool = False
    include_list: bool = False
    count_unmerged_prs: bool = False
    mode: list[Mode] = ["all"]

    github_api_endpoint: str | None = None
    github_token: str | None = None
    github_org: str | None = None
    github_repo: str | None = None
    buildkite_token: str | None = None
    buildkite_org: str | None = None
    limit_gh_ops_per_minute: float | None = None

    top_n_stale: int | float | None = None
    top_n_oldest: int | float | None = None
    top_n_time_to_close: int | float | None = None
    top_n_most_broken_ci_days: int | float | None = None
    top_n_most_broken_ci_jobs: int | float | None = None
    top_n_stale_pr: int | float | None = None
    top_n_stale_issue: int | float | None = None
    top_n_oldest_pr: int | float | None = None
    top_n_oldest_issue: int | float | None = None
    top_n_time_to_close_pr: int | float | None = None
    top_n_time_to_close_issue: int | float | None = None

    organizations: dict[str, OrgConfig] = {}

    @field_validator("branches", "default_branches", mode="before")
    @classmethod
    def _branches_csv(cls, v: object) -> object:
        return _split_csv(v)

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_csv(cls, v: object) -> object:
        v = _split_csv(v)
        if isinstance(v, list):
            return [m.lower() if isinstance(m, str) else m for m in v]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_level(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @field_validator(*TOP_N_OPTIONS, mode="before")
    @classmethod
    def _top_n(cls, v: object) -> object:
        if isinstance(v, str):
            return parse_top_n(v)
        return v

    @field_validator("organizations", mode="before")
    @classmethod
    def _empty_orgs(cls, v: object) -> object:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {name: conf if conf is not None else {} for name, conf in v.items()}
        return v

    @property
    def modes(self) -> frozenset[str]:
        """Active modes with ``all`` expanded."""
        if "all" in self.mode:
            return frozenset(ALL_MODES)
        return frozenset(self.mode)


class VisibilityOptions(_Frozen):
    """Options for the ``pipeline-visibility`` audit."""

    github_org: str
    provider: Provider = "buildkite"
    buildkite_org: str | None = None
    repos: list[str] = []
    skip_patterns: list[str] = []
    skip_repos: list[str] = []
    verify_only: bool = True


@dataclass(frozen=True)
class RepoSettings:
    """Effective settings for one repository after all overrides."""

    org: str
    repo: str
    days: int
    branches: tuple[str, ...]

    @property
    def full_name(self) -> str:
        return f"{self.org}/{self.repo}"
