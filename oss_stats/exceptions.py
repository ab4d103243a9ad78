"""Custom exceptions for oss-stats."""

from __future__ import annotations


class OssStatsError(Exception):
    """Base exception for all oss-stats errors."""


class ConfigError(OssStatsError):
    """Raised when a configuration file or CLI override set is invalid."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid configuration:\n" + "\n".join(errors))


class MissingCredentialsError(OssStatsError):
    """Raised when a required API token cannot be found anywhere."""


class BuildkiteError(OssStatsError):
    """Raised when the Buildkite GraphQL API fails or returns errors."""


class RateLimitError(OssStatsError):
    """Raised when GitHub rate limit is exhausted and we need to wait."""

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"rate limit exceeded, retry after {retry_after}s")
