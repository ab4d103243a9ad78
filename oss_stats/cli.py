"""CLI entry point: oss-stats.

Subcommands:
    oss-stats repo-stats [options]              # PR/issue/CI report per repository
    oss-stats pipeline-visibility --github-org X  # private pipelines on public repos
    oss-stats validate-config repo_stats.yml    # check a config file
    oss-stats create-config -o repo_stats.yml   # write an example config
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import click
import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from oss_stats.clients.buildkite_client import BuildkiteClient
from oss_stats.clients.github_client import GitHubClient
from oss_stats.config.loader import (
    load_config,
    read_config_file,
    repos_to_process,
    validate_config,
    write_example_config,
)
from oss_stats.config.schema import RepoSettings, RepoStatsConfig, VisibilityOptions
from oss_stats.core.credentials import (
    get_buildkite_token,
    require_buildkite_token,
    require_github_token,
)
from oss_stats.core.logging import LOG_LEVELS, setup_logging
from oss_stats.core.timeutil import utcnow
from oss_stats.engines.visibility.auditor import run_audit
from oss_stats.exceptions import ConfigError, MissingCredentialsError
from oss_stats.reporting.filters import filter_repositories
from oss_stats.reporting.markdown import render_repo_report, render_visibility_report
from oss_stats.reporting.models import RepoReport, VisibilityReport
from oss_stats.runner import RepoStatsRunner

log = structlog.get_logger("oss_stats.cli")

EXIT_CONFIG = 1
EXIT_CREDENTIALS = 3


def _split(values: tuple[str, ...]) -> list[str]:
    """Flatten repeated, comma-separated option values, dropping duplicates."""
    out: list[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part and part not in out:
                out.append(part)
    return out


def _fail(message: str, code: int) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def _emit(text: str, output: str | None) -> None:
    if output:
        Path(output).write_text(text)
        log.info("report.written", path=output)
    else:
        click.echo(text, nl=False)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging (same as --log-level debug)")
@click.option(
    "-l",
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level [default: info, or OSS_STATS_LOG_LEVEL]",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, log_level: str | None) -> None:
    """oss-stats: health reports for open-source repositories."""
    load_dotenv()
    level = "debug" if verbose else log_level
    setup_logging(level)
    ctx.obj = {"log_level": level}


# ── repo-stats ─────────────────────────────────────────────────────────────


@main.command("repo-stats")
@click.option("-c", "--config", "config_path", default=None, help="Config file to load")
@click.option("-d", "--days", type=int, default=None, help="Days to analyze (overrides config)")
@click.option("-D", "--default-days", type=int, default=None, help="Days for repos without any")
@click.option("-b", "--branches", default=None, help="Branches (overrides config)")
@click.option("-B", "--default-branches", default=None, help="Branches for repos without any")
@click.option("--github-org", default=None, help="Only this GitHub org")
@click.option("--github-repo", default=None, help="Only this repository (requires --github-org)")
@click.option("--github-token", default=None, help="GitHub token (or GITHUB_TOKEN / gh auth)")
@click.option("--github-api-endpoint", default=None, help="GitHub API endpoint")
@click.option("--buildkite-token", default=None, help="Buildkite API token (or BUILDKITE_TOKEN)")
@click.option("--buildkite-org", default=None, help="Buildkite org to match pipelines in")
@click.option("--mode", default=None, help="Comma-separated: ci, pr, issue or all [default: all]")
@click.option("--include-list", is_flag=True, help="List the individual PRs/issues")
@click.option("--no-links", is_flag=True, help="Plain text instead of Markdown links")
@click.option("--ci-timeout", type=int, default=None, help="CI seconds allowed per repo")
@click.option("--limit-gh-ops-per-minute", type=float, default=None, help="Throttle GitHub calls")
@click.option("--count-unmerged-prs", is_flag=True, help="Count unmerged closed PRs")
@click.option("--top-n-stale", default=None, help="Top N or N% by stale PRs/issues")
@click.option("--top-n-oldest", default=None, help="Top N or N% by oldest open PR/issue")
@click.option("--top-n-time-to-close", default=None, help="Top N or N% by time to close")
@click.option("--top-n-most-broken-ci-days", default=None, help="Top N or N% by broken CI days")
@click.option("--top-n-most-broken-ci-jobs", default=None, help="Top N or N% by broken CI jobs")
@click.option("--top-n-stale-pr", default=None, help="Top N or N% by stale PRs")
@click.option("--top-n-stale-issue", default=None, help="Top N or N% by stale issues")
@click.option("--top-n-oldest-pr", default=None, help="Top N or N% by oldest open PR")
@click.option("--top-n-oldest-issue", default=None, help="Top N or N% by oldest open issue")
@click.option("--top-n-time-to-close-pr", default=None, help="Top N or N% by PR time to close")
@click.option("--top-n-time-to-close-issue", default=None, help="Top N or N% by issue close time")
@click.option("-o", "--output", default=None, help="Write the report to FILE instead of stdout")
@click.pass_context
def repo_stats(
    ctx: click.Context, config_path: str | None, output: str | None, **options: object
) -> None:
    """PR, issue and CI health report for the configured repositories."""
    for flag in ("include_list", "no_links", "count_unmerged_prs"):
        options[flag] = options[flag] or None

    try:
        config = load_config(config_path, options)
    except ConfigError as exc:
        for err in exc.errors:
            click.echo(f"Error: {err}", err=True)
        sys.exit(EXIT_CONFIG)

    if not (ctx.obj or {}).get("log_level"):
        setup_logging(config.log_level)

    repos = repos_to_process(config)
    if not repos:
        log.warning("repo_stats.nothing_to_do")
        click.echo("No repositories configured to process.", err=True)
        return

    try:
        gh_token = require_github_token(config.github_token)
        bk_token = None
        if "ci" in config.modes:
            if config.buildkite_org:
                bk_token = require_buildkite_token(config.buildkite_token)
            else:
                bk_token = get_buildkite_token(config.buildkite_token)
    except MissingCredentialsError as exc:
        _fail(str(exc), EXIT_CREDENTIALS)

    reports = asyncio.run(_collect_repo_stats(config, repos, gh_token, bk_token))
    reports = filter_repositories(reports, config)

    text = "\n".join(
        render_repo_report(
            r, config.modes, include_list=config.include_list, no_links=config.no_links
        )
        for r in reports
    )
    _emit(text, output)

    failed = sum(len(r.errors) for r in reports)
    if failed:
        log.warning("repo_stats.partial", errors=failed)


async def _collect_repo_stats(
    config: RepoStatsConfig,
    repos: list[RepoSettings],
    gh_token: str,
    bk_token: str | None,
) -> list[RepoReport]:
    async with GitHubClient(
        gh_token,
        api_endpoint=config.github_api_endpoint,
        ops_per_minute=config.limit_gh_ops_per_minute,
    ) as gh:
        bk = BuildkiteClient(bk_token) if bk_token else None
        try:
            runner = RepoStatsRunner(config, gh, bk)
            concurrency = 1 if config.limit_gh_ops_per_minute else 3
            return await runner.run_all(repos, max_concurrency=concurrency)
        finally:
            if bk is not None:
                await bk.close()


# ── pipeline-visibility ────────────────────────────────────────────────────


@main.command("pipeline-visibility")
@click.option("--github-org", required=True, help="GitHub org whose repos are audited")
@click.option(
    "--provider",
    type=click.Choice(["buildkite", "expeditor"]),
    default="buildkite",
    show_default=True,
    help="Where pipeline definitions live",
)
@click.option("--buildkite-org", default=None, help="Buildkite org slug (buildkite provider)")
@click.option("--repos", multiple=True, help="Repositories to audit (repeatable, comma-separated)")
@click.option("--skip", "skip_patterns", multiple=True, help="Pipeline name substrings to skip")
@click.option("--skip-repos", multiple=True, help="Repositories to skip even if public")
@click.option(
    "--verify-only/--no-verify-only",
    default=True,
    show_default=True,
    help="Expeditor: only look at verify pipelines",
)
@click.option("--github-token", default=None, help="GitHub token (or GITHUB_TOKEN / gh auth)")
@click.option("--buildkite-token", default=None, help="Buildkite API token (or BUILDKITE_TOKEN)")
@click.option("--no-links", is_flag=True, help="Plain text instead of Markdown links")
@click.option("-o", "--output", default=None, help="Write the report to FILE instead of stdout")
def pipeline_visibility(
    github_org: str,
    provider: str,
    buildkite_org: str | None,
    repos: tuple[str, ...],
    skip_patterns: tuple[str, ...],
    skip_repos: tuple[str, ...],
    verify_only: bool,
    github_token: str | None,
    buildkite_token: str | None,
    no_links: bool,
    output: str | None,
) -> None:
    """Report CI pipelines on public repositories that are not public."""
    try:
        options = VisibilityOptions(
            github_org=github_org,
            provider=provider,
            buildkite_org=buildkite_org,
            repos=_split(repos),
            skip_patterns=_split(skip_patterns),
            skip_repos=_split(skip_repos),
            verify_only=verify_only,
        )
    except ValidationError as exc:
        _fail(str(exc), EXIT_CONFIG)
    if options.provider == "buildkite" and not options.buildkite_org:
        _fail("--buildkite-org is required for the buildkite provider", EXIT_CONFIG)

    try:
        gh_token = require_github_token(github_token)
        bk_token = (
            require_buildkite_token(buildkite_token) if options.provider == "buildkite" else None
        )
    except MissingCredentialsError as exc:
        _fail(str(exc), EXIT_CREDENTIALS)

    report = asyncio.run(_collect_visibility(options, gh_token, bk_token))
    _emit(render_visibility_report(report, today=utcnow().date(), no_links=no_links), output)


async def _collect_visibility(
    options: VisibilityOptions, gh_token: str, bk_token: str | None
) -> VisibilityReport:
    async with GitHubClient(gh_token) as gh:
        bk = BuildkiteClient(bk_token) if bk_token else None
        try:
            return await run_audit(gh, bk, options)
        finally:
            if bk is not None:
                await bk.close()


# ── config helpers ─────────────────────────────────────────────────────────


@main.command("validate-config")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def validate_config_cmd(path: str) -> None:
    """Check a repo-stats config file and list every problem found."""
    try:
        data = read_config_file(Path(path))
    except ConfigError as exc:
        errors = exc.errors
    else:
        errors = validate_config(data)

    if errors:
        click.echo(f"{path}: {len(errors)} problem(s)", err=True)
        for err in errors:
            click.echo(f"  - {err}", err=True)
        sys.exit(EXIT_CONFIG)
    click.echo(f"{path}: configuration is valid")


@main.command("create-config")
@click.option("-o", "--output", default="repo_stats.yml", help="Output file path")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def create_config(output: str, force: bool) -> None:
    """Write an example repo-stats config file."""
    if Path(output).exists() and not force:
        _fail(f"{output} already exists (use --force to overwrite)", EXIT_CONFIG)
    write_example_config(output)
    click.echo(f"Example config written to {output}")
    click.echo("Edit the file, then run: oss-stats repo-stats -c " + output)


if __name__ == "__main__":
    main()
