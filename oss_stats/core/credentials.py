"""API token discovery for GitHub and Buildkite."""

from __future__ import annotations

import os
from pathlib import Path

import structlog
import yaml

from oss_stats.exceptions import MissingCredentialsError

log = structlog.get_logger("oss_stats.core")

GH_HOSTS_FILE = Path("~/.config/gh/hosts.yml")


def get_github_token(explicit: str | None = None, hosts_file: Path | None = None) -> str | None:
    """Find a GitHub token.

    Order: explicit value (CLI/config) → ``GITHUB_TOKEN`` → ``GH_TOKEN`` →
    the ``gh`` CLI's ``hosts.yml``.
    """
    if explicit:
        log.debug("credentials.github", source="cli")
        return explicit

    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if token:
        log.debug("credentials.github", source="env")
        return token

    path = (hosts_file or GH_HOSTS_FILE).expanduser()
    if not path.is_file():
        return None
    try:
        hosts = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        log.warning("credentials.gh_hosts_unreadable", path=str(path), error=str(exc))
        return None

    entry = hosts.get("github.com") if isinstance(hosts, dict) else None
    token = entry.get("oauth_token") if isinstance(entry, dict) else None
    if token:
        log.debug("credentials.github", source="gh-cli")
    return token


def require_github_token(explicit: str | None = None, hosts_file: Path | None = None) -> str:
    token = get_github_token(explicit, hosts_file)
    if not token:
        raise MissingCredentialsError(
            "GitHub token is missing. Please provide a token using "
            "--github-token, or set $GITHUB_TOKEN, or run `gh auth login`"
        )
    return token


def get_buildkite_token(explicit: str | None = None) -> str | None:
    return explicit or os.environ.get("BUILDKITE_TOKEN") or None


def require_buildkite_token(explicit: str | None = None) -> str:
    token = get_buildkite_token(explicit)
    if not token:
        raise MissingCredentialsError(
            "Buildkite token not found. Pass with --buildkite-token or set "
            "BUILDKITE_TOKEN env var."
        )
    return token
