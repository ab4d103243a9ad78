"""GitHub URL utilities."""

from __future__ import annotations

from urllib.parse import quote


def repo_html_url(owner: str, repo: str) -> str:
    return f"https://github.com/{owner}/{repo}"


def normalize_repo_url(repo_url: str | None) -> str | None:
    """Canonicalize a repository URL to ``https://github.com/owner/repo``.

    Buildkite reports repository URLs in whatever form the pipeline was
    configured with (HTTPS, ``.git`` suffix, SSH), so lookups keyed by repo
    URL go through here. Returns None when the URL cannot be parsed.
    """
    if not repo_url:
        return None
    owner_repo = _extract_owner_repo(repo_url)
    if owner_repo is None:
        return None
    return f"https://github.com/{owner_repo}"


def workflow_branch_url(workflow_html_url: str, branch: str) -> str:
    """Link to a workflow's run list filtered to *branch*.

    The API's ``html_url`` for a workflow points at the YAML file that
    defines it (``.../blob/<branch>/.github/workflows/x.yml``); swapping
    ``blob/<branch>`` for ``actions`` lands on the runs page instead.
    """
    url = workflow_html_url.replace(f"blob/{branch}", "actions")
    return f"{url}?query=branch%3A{quote(branch, safe='')}"


def _extract_owner_repo(repo_url: str) -> str | None:
    """Extract 'owner/repo' from a GitHub URL.

    Handles:
      - https://github.com/owner/repo
      - https://github.com/owner/repo.git
      - git@github.com:owner/repo.git
    """
    repo_url = repo_url.strip().rstrip("/")
    if repo_url.endswith(".git"):
        repo_url = repo_url[:-4]

    # SSH format: git@github.com:owner/repo
    if repo_url.startswith("git@"):
        colon_idx = repo_url.find(":")
        if colon_idx == -1:
            return None
        path = repo_url[colon_idx + 1 :]
        parts = path.split("/")
        if len(parts) == 2 and all(parts):
            return f"{parts[0]}/{parts[1]}"
        return None

    # HTTPS format: https://github.com/owner/repo
    parts = repo_url.split("/")
    if len(parts) >= 2 and all(parts[-2:]):
        return f"{parts[-2]}/{parts[-1]}"
    return None
