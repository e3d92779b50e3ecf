"""Tool integrations used by the story loop."""

from .vcs import GitError, GitRepository

__all__ = [
    "GitError",
    "GitRepository",
]
