"""Minimal git helpers
Just enough structure to find the repository that hosts the loop, report the
current branch, and switch to (or create) the feature branch named in the
Task Store.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


def _run(args: Sequence[str], cwd: Path, *, check: bool) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=False,
            check=False,
        )
    except FileNotFoundError as error:
        raise GitError("git executable not found on PATH") from error
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    @classmethod
    def initialise(
        cls,
        root: Path | str,
        *,
        initial_branch: str = "main",
    ) -> "GitRepository":
        """Initialise a repository at ``root`` with an empty initial commit."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        _run(["init"], path, check=True)
        _run(["symbolic-ref", "HEAD", f"refs/heads/{initial_branch}"], path, check=True)

        for key, value in (("user.email", "storyloop@example.com"), ("user.name", "storyloop")):
            probe = _run(["config", "--get", key], path, check=False)
            if probe.returncode != 0 or not probe.stdout.strip():
                _run(["config", key, value], path, check=True)

        _run(["commit", "--allow-empty", "-m", "Initial commit"], path, check=True)
        return cls(path)

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run(list(args), self.root, check=check)

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self.git("branch", "--show-current", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def branch_exists(self, name: str) -> bool:
        """Return ``True`` when a local branch called ``name`` exists."""

        result = self.git("show-ref", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        return result.returncode == 0

    def checkout(self, name: str, *, create: bool = False) -> None:
        """Switch to ``name``, creating it from ``HEAD`` when ``create`` is set."""

        args: List[str] = ["checkout"]
        if create:
            args.append("-b")
        args.append(name)
        self.git(*args)


__all__ = ["GitError", "GitRepository"]
