# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


GITHUB_BASE = "https://github.com"


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (stderr is captured
            on the exception so callers can report it).
        FileNotFoundError: git is not installed.
    """
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        capture_output=True,
        check=True,
    )
    return proc.stdout.strip()


def repo_url(locator: str) -> str:
    """
    Turn a repository locator into something `git clone` accepts.

    "owner/name" is expanded to a GitHub HTTPS URL; URLs, scp-style remotes
    (git@host:path) and local paths are returned unchanged.
    """
    loc = locator.strip()
    if "://" in loc or loc.startswith("git@") or loc.startswith(("/", ".", "~")):
        return loc
    if loc.count("/") == 1:
        return f"{GITHUB_BASE}/{loc}.git"
    return loc


def clone(locator: str, dest: Path, ref: Optional[str] = None, depth: int = 1) -> Path:
    """
    Shallow-clone a repository into `dest`.

    With ref=None the remote's default branch is checked out, which is what
    the SDK jobs want: always the latest SDK code.
    """
    args = ["clone", "--depth", str(depth)]
    if ref:
        # --branch works for branches and tags; a bare SHA needs a fetch below
        if not _looks_like_sha(ref):
            args.extend(["--branch", ref])
    args.extend([repo_url(locator), str(dest)])
    _git(args)

    if ref and _looks_like_sha(ref):
        _git(["fetch", "--depth", "1", "origin", ref], cwd=dest)
        _git(["checkout", "--detach", "FETCH_HEAD"], cwd=dest)
    return dest


def head_sha(cwd: str | Path) -> str:
    """Return the full SHA of HEAD in the given checkout."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def _looks_like_sha(ref: str) -> bool:
    return 7 <= len(ref) <= 40 and all(c in "0123456789abcdef" for c in ref.lower())
