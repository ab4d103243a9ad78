"""HTTP clients for the GitHub REST and Buildkite GraphQL APIs."""

from oss_stats.clients.buildkite_client import BuildkiteClient
from oss_stats.clients.github_client import GitHubClient

__all__ = ["BuildkiteClient", "GitHubClient"]
