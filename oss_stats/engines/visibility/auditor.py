"""Pipeline visibility audit.

Public repositories whose CI pipelines are private leave outside
contributors staring at a status link they can't open. This engine finds
them, for Buildkite directly or for Expeditor-managed pipelines.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog
import yaml

from oss_stats.clients.buildkite_client import BuildkiteClient
from oss_stats.clients.github_client import GitHubClient
from oss_stats.config.schema import VisibilityOptions
from oss_stats.core.github import normalize_repo_url
from oss_stats.exceptions import BuildkiteError, RateLimitError
from oss_stats.reporting.models import VisibilityReport, VisibilityResult

log = structlog.get_logger("oss_stats.engine")

EXPEDITOR_CONFIG_PATH = ".expeditor/config.yml"

_BK_URL_RE = re.compile(r"https://buildkite\.com/([^/]+)/([^/?#]+)")


def _skip_match(name: str, patterns: list[str]) -> str | None:
    for pat in patterns:
        if pat in name:
            return pat
    return None


# ── buildkite ──────────────────────────────────────────────────────────────


async def audit_buildkite(
    gh: GitHubClient,
    bk: BuildkiteClient,
    options: VisibilityOptions,
    repo_info: dict[str, Any],
    pipelines_by_repo: dict[str, list[dict[str, Any]]],
    slug_visibility: dict[str, str | None],
) -> VisibilityResult:
    """Audit one public repository against Buildkite.

    Two sources of pipelines: those the Buildkite org associates with the
    repository, and those referenced by commit statuses on the most recently
    updated open (non-draft) PRs. The second catches pipelines in orgs we
    can't list.
    """
    name = repo_info["name"]
    result = VisibilityResult(repo=name, html_url=repo_info.get("html_url"))
    seen: set[str] = set()
    bk_org = options.buildkite_org

    repo_url = normalize_repo_url(repo_info.get("html_url"))
    for entry in pipelines_by_repo.get(repo_url or "", []):
        slug = entry["slug"]
        key = f"{bk_org}/{slug}"
        pat = _skip_match(slug, options.skip_patterns)
        if pat:
            log.debug("visibility.skipped", pipeline=key, pattern=pat)
            result.skipped[key] = result.skipped.get(key, 0) + 1
            continue
        if key in seen:
            continue
        seen.add(key)
        result.total += 1
        if (entry.get("visibility") or "").lower() != "public":
            log.debug("visibility.private", pipeline=key, source="org listing")
            result.private_pipelines.append(key)

    prs = [pr for pr in await gh.recent_prs(options.github_org, name) if not pr.get("draft")]
    for pr in prs:
        statuses = await gh.pr_statuses(pr)
        pairs: list[tuple[str, str]] = []
        for status in statuses:
            target = status.get("target_url")
            if not isinstance(target, str):
                continue
            m = _BK_URL_RE.search(target)
            if m and (m.group(1), m.group(2)) not in pairs:
                pairs.append((m.group(1), m.group(2)))

        for org, slug in pairs:
            key = f"{org}/{slug}"
            pat = _skip_match(slug, options.skip_patterns)
            if pat:
                log.debug("visibility.skipped", pipeline=key, pattern=pat)
                result.skipped[key] = result.skipped.get(key, 0) + 1
                continue
            if key in seen:
                continue
            seen.add(key)
            result.total += 1

            visibility = await _lookup_visibility(bk, org, slug, bk_org, slug_visibility)
            if (visibility or "").lower() == "public":
                continue
            log.debug(
                "visibility.private",
                pipeline=key,
                source=f"PR #{pr.get('number')}",
                visibility=visibility,
            )
            result.private_pipelines.append(key)

    return result


async def _lookup_visibility(
    bk: BuildkiteClient,
    org: str,
    slug: str,
    bk_org: str | None,
    slug_visibility: dict[str, str | None],
) -> str | None:
    if org == bk_org and slug in slug_visibility:
        log.warning("visibility.unassociated_pipeline", pipeline=f"{org}/{slug}")
        return slug_visibility[slug]
    try:
        node = await bk.get_pipeline(org, slug)
    except BuildkiteError as exc:
        # not visible to us counts as not public
        log.warning("visibility.lookup_failed", pipeline=f"{org}/{slug}", error=str(exc))
        return None
    return (node or {}).get("visibility")


# ── expeditor ──────────────────────────────────────────────────────────────


async def audit_expeditor(
    gh: GitHubClient,
    options: VisibilityOptions,
    repo_info: dict[str, Any],
) -> VisibilityResult:
    """Audit the pipelines declared in a repository's Expeditor config."""
    name = repo_info["name"]
    result = VisibilityResult(repo=name, html_url=repo_info.get("html_url"))

    content = await gh.get_file(options.github_org, name, EXPEDITOR_CONFIG_PATH)
    if content is None:
        log.debug("visibility.no_expeditor_config", repo=name)
        return result
    try:
        config = yaml.safe_load(content) or {}
    except yaml.YAMLError as exc:
        log.warning("visibility.bad_expeditor_config", repo=name, error=str(exc))
        return result

    pipelines = (config.get("pipelines") or []) if isinstance(config, dict) else []
    entries: list[tuple[str, Any]] = []
    for block in pipelines:
        if isinstance(block, str):
            entries.append((block, {}))
        elif isinstance(block, dict):
            entries.extend(block.items())
    names = {pl_name for pl_name, _ in entries}

    for pl_name, details in entries:
        if options.verify_only and not pl_name.startswith("verify"):
            continue

        if pl_name.endswith("_private"):
            public_twin = pl_name.replace("_private", "")
            if public_twin in names:
                result.skipped[pl_name] = result.skipped.get(pl_name, 0) + 1
                continue
            log.warning("visibility.private_without_public", repo=name, pipeline=pl_name)

        if _skip_match(pl_name, options.skip_patterns):
            result.skipped[pl_name] = result.skipped.get(pl_name, 0) + 1
            continue

        env = details.get("env") if isinstance(details, dict) else None
        if any(isinstance(e, dict) and e.get("ADHOC") for e in env or []):
            log.warning("visibility.adhoc_not_named", repo=name, pipeline=pl_name)
            result.skipped[pl_name] = result.skipped.get(pl_name, 0) + 1
            continue

        result.total += 1
        if not isinstance(details, dict) or details.get("public") is not True:
            result.private_pipelines.append(pl_name)

    return result


# ── orchestration ──────────────────────────────────────────────────────────


async def list_public_repos(gh: GitHubClient, org: str) -> list[str]:
    repos: list[str] = []
    private: list[str] = []
    async for repo in gh.get_paginated(f"/orgs/{org}/repos", max_pages=100):
        (private if repo.get("private") else repos).append(repo["name"])
    if private:
        log.debug("visibility.private_repos", repos=private)
    return repos


async def run_audit(
    gh: GitHubClient,
    bk: BuildkiteClient | None,
    options: VisibilityOptions,
) -> VisibilityReport:
    report = VisibilityReport(
        github_org=options.github_org, skip_patterns=list(options.skip_patterns)
    )

    pipelines_by_repo: dict[str, list[dict[str, Any]]] = {}
    slug_visibility: dict[str, str | None] = {}
    if options.provider == "buildkite":
        if bk is None or not options.buildkite_org:
            raise ValueError("buildkite provider requires a Buildkite client and org")
        pipelines_by_repo = await bk.pipelines_by_repo(options.buildkite_org)
        for entries in pipelines_by_repo.values():
            for entry in entries:
                slug_visibility[entry["slug"]] = entry.get("visibility")
        log.info(
            "visibility.pipelines_listed",
            org=options.buildkite_org,
            pipelines=len(slug_visibility),
            repos=len(pipelines_by_repo),
        )

    repos = list(dict.fromkeys(options.repos)) or await list_public_repos(gh, options.github_org)

    for repo in sorted(repos):
        if repo in options.skip_repos:
            continue
        try:
            repo_info = await gh.get(f"/repos/{options.github_org}/{repo}")
        except (httpx.HTTPError, RateLimitError) as exc:
            log.error("visibility.repo_failed", repo=repo, error=str(exc))
            report.errors.append(f"{options.github_org}/{repo}: {exc}")
            continue
        if repo_info.get("private"):
            log.debug("visibility.private_repo_skipped", repo=repo)
            continue

        try:
            if options.provider == "buildkite" and bk is not None:
                result = await audit_buildkite(
                    gh, bk, options, repo_info, pipelines_by_repo, slug_visibility
                )
            else:
                result = await audit_expeditor(gh, options, repo_info)
        except (httpx.HTTPError, BuildkiteError, RateLimitError) as exc:
            log.error("visibility.audit_failed", repo=repo, error=str(exc))
            report.errors.append(f"{options.github_org}/{repo}: {exc}")
            continue
        report.repos.append(result)

    log.info(
        "visibility.done",
        repos=len(report.repos),
        total=report.total_pipelines,
        private=report.private_pipelines,
    )
    return report
