"""Branch tracking and archival of finished runs.

When the Task Store names a different branch than the previous run, the old
Task Store and Progress Log are copied into ``archive/<date>-<branch>`` and the
Progress Log starts over. The working tree is then moved onto the branch named
by the Task Store.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

from .progress import ensure_progress_log, reset_progress_log
from .state import AppState
from .tools.vcs import GitRepository

LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


@dataclass(slots=True)
class BranchSetup:
    """What happened while preparing the branch for a run."""

    archived_to: Optional[Path] = None
    branch: Optional[str] = None
    action: str = "skipped"
    progress_created: bool = False


def archive_folder_name(
    branch: str,
    *,
    prefixes: Sequence[str] = ("feature/", "ralph/"),
    today: Optional[date] = None,
) -> str:
    """Return ``<YYYY-MM-DD>-<branch>`` with known prefixes stripped.

    Prefixes are removed in order, each at most once.
    """
    name = branch.strip()
    for prefix in prefixes:
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
    slug = _HYPHEN_COLLAPSE.sub("-", _UNSAFE_CHARS.sub("-", name)).strip("-") or "unknown"
    stamp = (today or date.today()).strftime("%Y-%m-%d")
    return f"{stamp}-{slug}"


def _copy_if_present(source: Path, destination: Path) -> bool:
    try:
        shutil.copy2(source, destination / source.name)
    except FileNotFoundError:
        LOGGER.debug("Skipping archive of missing file %s", source)
        return False
    return True


def archive_previous_run(state: AppState, *, today: Optional[date] = None) -> Optional[Path]:
    """Archive the previous run when the Task Store switched branches."""

    run_state = state.run_state
    if not run_state.recorded:
        return None

    current = state.store.branch_name
    previous = run_state.last_branch
    if not current or not previous or current == previous:
        return None

    settings = state.settings
    destination = settings.archive_dir / archive_folder_name(
        previous,
        prefixes=settings.strip_prefixes,
        today=today,
    )
    LOGGER.info("Archiving previous run to %s", destination)
    destination.mkdir(parents=True, exist_ok=True)

    _copy_if_present(settings.prd_path, destination)
    _copy_if_present(settings.progress_path, destination)

    reset_progress_log(settings.progress_path)
    return destination


def record_branch(state: AppState) -> None:
    """Persist the Task Store branch as the Run State for the next run."""
    branch = state.store.branch_name
    if branch:
        state.run_state.save(branch)


def sync_branch(state: AppState, repo: Optional[GitRepository] = None) -> str:
    """Make the working branch match ``branchName``.

    Returns ``"skipped"`` when no branch is configured, ``"unchanged"`` when
    already on it, otherwise ``"checked-out"`` or ``"created"``.
    """
    branch = state.store.branch_name
    if not branch:
        LOGGER.warning(
            "No branchName in %s, staying on current branch",
            state.settings.prd_path.name,
        )
        return "skipped"

    repository = repo or GitRepository.discover(state.settings.repo_root)
    if repository.current_branch() == branch:
        return "unchanged"

    if repository.branch_exists(branch):
        LOGGER.info("Checking out existing branch: %s", branch)
        repository.checkout(branch)
        return "checked-out"

    LOGGER.info("Creating new branch: %s", branch)
    repository.checkout(branch, create=True)
    return "created"


def prepare_branch(
    state: AppState,
    *,
    repo: Optional[GitRepository] = None,
    today: Optional[date] = None,
) -> BranchSetup:
    """Run the startup sequence: archive, record, switch branch, seed the log."""
    setup = BranchSetup(branch=state.store.branch_name)
    setup.archived_to = archive_previous_run(state, today=today)
    record_branch(state)
    setup.action = sync_branch(state, repo)
    setup.progress_created = ensure_progress_log(state.settings.progress_path)
    return setup


__all__ = [
    "BranchSetup",
    "archive_folder_name",
    "archive_previous_run",
    "prepare_branch",
    "record_branch",
    "sync_branch",
]
