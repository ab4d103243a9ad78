"""Config file discovery, validation and effective-settings resolution."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from oss_stats.config.schema import OrgConfig, RepoConfig, RepoSettings, RepoStatsConfig
from oss_stats.exceptions import ConfigError

log = structlog.get_logger("oss_stats.config")

CONFIG_FILENAME = "repo_stats.yml"

EXAMPLE_CONFIG = """\
# Example configuration for `oss-stats repo-stats`.
#
# Anything not configured per org or repo below uses default_branches and
# default_days. Don't set `days` or `branches` here: they override every
# org and repo setting and are meant for the command line.
default_branches: [main]
default_days: 30
log_level: info
ci_timeout: 600
include_list: false
mode: [all]

# buildkite_org: my-buildkite-org
# limit_gh_ops_per_minute: 60

organizations:
  someorg:
    # org-wide overrides, can be overridden again per repository
    branches: [trunk]
    days: 7
    repositories:
      repo1: {}
      repo2:
        days: 2
        branches: [main]
  anotherorg:
    days: 45
    branches: [main, oldstuff]
    repositories:
      repo1: {}
      repo2: {}

# Only report the top-N trouble-makers. Each accepts N or "N%".
# top_n_stale: 3
# top_n_oldest: 3
# top_n_time_to_close: 3
# top_n_most_broken_ci_days: 3
# top_n_most_broken_ci_jobs: 3
"""


def config_search_paths() -> list[Path]:
    return [
        Path.cwd() / CONFIG_FILENAME,
        Path.home() / ".config" / "oss_stats" / CONFIG_FILENAME,
        Path("/etc") / CONFIG_FILENAME,
    ]


def find_config_file() -> Path | None:
    for candidate in config_search_paths():
        log.debug("config.probe", path=str(candidate))
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a YAML config file; raises :class:`ConfigError` on any problem."""
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError([f"cannot read {path}: {exc}"]) from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError([f"{path}: invalid YAML: {exc}"]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError([f"{path}: top level must be a mapping"])
    return data


def validate_config(data: object) -> list[str]:
    """Return a list of human-readable problems with *data*; empty when valid."""
    _, errors = _build(data)
    return errors


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RepoStatsConfig:
    """Load the config file (explicit or discovered) and apply CLI *overrides*.

    ``None`` values in *overrides* mean "not given" and never replace file
    values.
    """
    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path).expanduser()
        if not path.is_file():
            raise ConfigError([f"Specified config file '{path}' not found."])
    else:
        path = find_config_file()

    if path is not None:
        data = read_config_file(path)
        log.info("config.loaded", path=str(path.resolve()))

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    config, errors = _build(data)
    if config is None:
        raise ConfigError(errors)
    return config


def effective_repo_settings(
    config: RepoStatsConfig,
    org: str,
    repo: str,
    org_conf: OrgConfig | None = None,
    repo_conf: RepoConfig | None = None,
) -> RepoSettings:
    """CLI override → repo → org → default, separately for days and branches."""
    org_conf = org_conf or OrgConfig()
    repo_conf = repo_conf or RepoConfig()
    days = config.days or repo_conf.days or org_conf.days or config.default_days
    branches = (
        config.branches or repo_conf.branches or org_conf.branches or config.default_branches
    )
    return RepoSettings(org=org, repo=repo, days=days, branches=tuple(b.strip() for b in branches))


def determine_orgs_to_process(config: RepoStatsConfig) -> dict[str, OrgConfig]:
    """Narrow the configured orgs to ``github_org`` / ``github_repo`` when set.

    Orgs and repos named on the command line but absent from the file are
    created empty, so they pick up the defaults.
    """
    if not config.github_org:
        return dict(config.organizations)

    org_conf = config.organizations.get(config.github_org)
    if org_conf is None:
        log.debug("config.org_added", org=config.github_org)
        org_conf = OrgConfig()
    else:
        log.debug("config.org_limited", org=config.github_org)

    if config.github_repo:
        repo_conf = org_conf.repositories.get(config.github_repo) or RepoConfig()
        org_conf = org_conf.model_copy(
            update={"repositories": {config.github_repo: repo_conf}}
        )
    return {config.github_org: org_conf}


def repos_to_process(config: RepoStatsConfig) -> list[RepoSettings]:
    settings: list[RepoSettings] = []
    for org, org_conf in determine_orgs_to_process(config).items():
        for repo, repo_conf in org_conf.repositories.items():
            settings.append(effective_repo_settings(config, org, repo, org_conf, repo_conf))
    return settings


def write_example_config(path: str | Path) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(EXAMPLE_CONFIG)
    return path


def _build(data: object) -> tuple[RepoStatsConfig | None, list[str]]:
    if data is None:
        return None, ["Configuration is empty or not properly loaded"]
    if not isinstance(data, Mapping):
        return None, ["Configuration must be a mapping"]

    try:
        config = RepoStatsConfig.model_validate(dict(data))
    except ValidationError as exc:
        return None, [_format_error(err) for err in exc.errors()]

    if config.github_repo and not config.github_org:
        return None, ["github_repo: --github-repo requires --github-org"]
    return config, []


def _format_error(err: Any) -> str:
    loc = " → ".join(str(part) for part in err["loc"])
    return f"{loc}: {err['msg']}" if loc else err["msg"]
