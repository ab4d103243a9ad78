"""Configuration — YAML file + CLI overrides, validated by pydantic."""

from oss_stats.config.loader import (
    determine_orgs_to_process,
    effective_repo_settings,
    find_config_file,
    load_config,
    repos_to_process,
    validate_config,
    write_example_config,
)
from oss_stats.config.schema import (
    OrgConfig,
    RepoConfig,
    RepoSettings,
    RepoStatsConfig,
    VisibilityOptions,
)

__all__ = [
    "OrgConfig",
    "RepoConfig",
    "RepoSettings",
    "RepoStatsConfig",
    "VisibilityOptions",
    "determine_orgs_to_process",
    "effective_repo_settings",
    "find_config_file",
    "load_config",
    "repos_to_process",
    "validate_config",
    "write_example_config",
]
