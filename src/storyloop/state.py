"""Application state loaded once at startup and handed to the loop."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import LoopSettings
from .schema import TaskStore
from .store import load_task_store


class PrerequisiteError(RuntimeError):
    """Raised when the loop cannot start: missing files, binaries or capabilities."""


@dataclass(slots=True)
class RunState:
    """Branch seen by the previous run, persisted as a single line."""

    path: Path
    last_branch: Optional[str] = None
    recorded: bool = False

    @classmethod
    def load(cls, path: Path) -> "RunState":
        if not path.exists():
            return cls(path=path)
        value = path.read_text(encoding="utf-8", errors="replace").strip()
        return cls(path=path, last_branch=value or None, recorded=True)

    def save(self, branch: str) -> None:
        """Record ``branch`` as the last seen branch."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{branch}\n", encoding="utf-8")
        self.last_branch = branch
        self.recorded = True


@dataclass(slots=True)
class AppState:
    """Resolved settings, Run State and the latest read of the Task Store."""

    settings: LoopSettings
    run_state: RunState
    store: TaskStore

    @classmethod
    def load(cls, settings: LoopSettings) -> "AppState":
        check_required_files(settings)
        return cls(
            settings=settings,
            run_state=RunState.load(settings.last_branch_path),
            store=load_task_store(settings.prd_path),
        )

    def reload_store(self) -> TaskStore:
        """Re-read the Task Store, which the assistant rewrites between iterations."""
        self.store = load_task_store(self.settings.prd_path)
        return self.store

    def read_instructions(self) -> str:
        return self.settings.prompt_path.read_text(encoding="utf-8", errors="replace")


def check_required_files(settings: LoopSettings) -> None:
    """Ensure the Task Store and the instruction template exist."""
    if not settings.prd_path.is_file():
        raise PrerequisiteError(
            f"{settings.prd_path.name} not found at {settings.prd_path}. "
            "Create one with `storyloop generate` or `storyloop convert`."
        )
    if not settings.prompt_path.is_file():
        raise PrerequisiteError(
            f"{settings.prompt_path.name} not found at {settings.prompt_path}. "
            "Run `storyloop init` to write the default instructions."
        )


__all__ = ["AppState", "PrerequisiteError", "RunState", "check_required_files"]
