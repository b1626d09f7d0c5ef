"""
iac_runner.gitctx — Repository context and tool preflight checks.
"""

from __future__ import annotations

import re
import shutil
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from iac_runner.exceptions import PreflightError

DEFAULT_BRANCH_FALLBACK = "main"

# git@github.com:org/repo.git, https://github.com/org/repo(.git), ssh://git@github.com/org/repo
_GITHUB_REMOTE_RE = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")


@dataclass(frozen=True)
class GitContext:
    org: str
    repo: str
    default_branch: str


def require_tools(names: Iterable[str]) -> None:
    """Fail fast when a required CLI is not on PATH."""
    for name in names:
        if shutil.which(name) is None:
            raise PreflightError(f"Required tool not found: {name}. Please install it and re-run.")


def _git(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=False,
        capture_output=True,
        text=True,
    )


def ensure_git_repo(cwd: Path) -> None:
    if _git(["rev-parse", "--git-dir"], cwd).returncode != 0:
        raise PreflightError("Not inside a Git repository. Clone or init this repo first.")


def parse_github_remote(url: str) -> tuple[str, str]:
    """Return (org, repo) from an HTTPS or SSH GitHub remote URL."""
    match = _GITHUB_REMOTE_RE.search(url.strip())
    if not match:
        raise PreflightError(
            f"Could not parse GitHub org/repo from remote URL: {url}\n"
            "Expected format: git@github.com:org/repo.git or https://github.com/org/repo.git"
        )
    return match.group(1), match.group(2)


def detect_default_branch(cwd: Path) -> str:
    result = _git(["symbolic-ref", "refs/remotes/origin/HEAD"], cwd)
    ref = result.stdout.strip()
    if result.returncode != 0 or not ref:
        return DEFAULT_BRANCH_FALLBACK
    return ref.rsplit("/", 1)[-1]


def detect_context(cwd: Path) -> GitContext:
    """Read org, repo and default branch from the origin remote."""
    result = _git(["remote", "get-url", "origin"], cwd)
    if result.returncode != 0 or not result.stdout.strip():
        raise PreflightError("No Git remote 'origin' found. Add one: git remote add origin <url>")
    org, repo = parse_github_remote(result.stdout)
    return GitContext(org=org, repo=repo, default_branch=detect_default_branch(cwd))
