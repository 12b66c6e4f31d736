# git.py
# Small, focused wrapper around the Git CLI.
# All Git interactions go through here so the rest of the codebase
# never calls subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError if git exits non-zero.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the Git repository containing `cwd`."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def is_repo(path: str | Path) -> bool:
    return (Path(path) / ".git").exists()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Name of the checked-out branch.

    Raises:
        RuntimeError on a detached HEAD.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        raise RuntimeError("HEAD is detached; pass --branch explicitly")
    return name


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def get_actor(cwd: Optional[str | Path] = None) -> Optional[str]:
    try:
        return _git(["config", "user.name"], cwd=cwd) or None
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if the working tree has modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def clone(source: str | Path, dest: str | Path, ref: Optional[str] = None) -> None:
    """Clone `source` into `dest` (a local path or URL) and check out `ref` if given."""
    _git(["clone", "--quiet", "--no-hardlinks", str(source), str(dest)])
    if ref:
        _git(["checkout", "--quiet", ref], cwd=dest)


def commit_all(message: str, cwd: str | Path) -> Optional[str]:
    """
    Stage every change in `cwd` and commit it.

    Returns:
        The new commit SHA, or None when there was nothing to commit.
    """
    if not is_dirty(cwd):
        return None
    _git(["add", "--all"], cwd=cwd)
    _git(["commit", "--quiet", "-m", message], cwd=cwd)
    return head_sha(cwd)


def checked_out_branch(path: str | Path) -> Optional[str]:
    """Branch checked out in the working tree at `path`, or None (not a repo, detached HEAD)."""
    if not is_repo(path):
        return None
    try:
        return current_branch(path)
    except (subprocess.CalledProcessError, RuntimeError):
        return None


def push_ref(ref: str, cwd: str | Path, remote: str = "origin") -> None:
    """Push HEAD to the full ref name `ref` on `remote`."""
    _git(["push", "--quiet", remote, f"HEAD:{ref}"], cwd=cwd)


def push(branch: str, cwd: str | Path, remote: str = "origin") -> None:
    push_ref(f"refs/heads/{branch}", cwd=cwd, remote=remote)


def fast_forward(repo: str | Path, source: str | Path, ref: str = "HEAD") -> None:
    """
    Fast-forward the branch checked out in `repo` to `ref` of `source`.

    A checked-out branch of a non-bare repository refuses pushes; this
    updates it (and its working tree) from the other side instead.

    Raises:
        subprocess.CalledProcessError if the update is not a fast-forward or
        would overwrite local changes.
    """
    _git(["fetch", "--quiet", str(source), ref], cwd=repo)
    _git(["merge", "--ff-only", "--quiet", "FETCH_HEAD"], cwd=repo)
