"""Progress Log helpers.

The log is owned by the assistant, which appends to it every iteration. The
loop only creates it, resets it on a branch change, and reads it back into the
prompt.
"""

from __future__ import annotations

from pathlib import Path

PROGRESS_SKELETON = "# Progress Log\n\n## Codebase Patterns\n\n## Session Log\n"


def reset_progress_log(path: Path) -> None:
    """Truncate the log to its two empty section headers."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(PROGRESS_SKELETON, encoding="utf-8")


def ensure_progress_log(path: Path) -> bool:
    """Create the log skeleton when missing. Returns ``True`` if it was created."""
    if path.exists():
        return False
    reset_progress_log(path)
    return True


def read_progress_log(path: Path) -> str:
    """Return the log text, or an empty string when the file is absent."""
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8", errors="replace")


__all__ = [
    "PROGRESS_SKELETON",
    "ensure_progress_log",
    "read_progress_log",
    "reset_progress_log",
]
