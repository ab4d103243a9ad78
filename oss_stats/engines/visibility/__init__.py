"""Pipeline visibility engine — finds private CI pipelines on public repos."""

from oss_stats.engines.visibility.auditor import (
    audit_buildkite,
    audit_expeditor,
    list_public_repos,
    run_audit,
)

__all__ = ["audit_buildkite", "audit_expeditor", "list_public_repos", "run_audit"]
