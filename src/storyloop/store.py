"""Read-only accessors over the Task Store file."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .schema import TaskStore, UserStory


class TaskStoreError(RuntimeError):
    """Raised when the Task Store cannot be read or does not match the schema."""


@dataclass(frozen=True, slots=True)
class StoryCounts:
    """Completed versus total stories."""

    done: int
    total: int

    @property
    def remaining(self) -> int:
        return self.total - self.done

    def __str__(self) -> str:
        return f"{self.done}/{self.total}"


def parse_task_store(text: str, *, source: str = "<text>") -> TaskStore:
    """Parse Task Store JSON ``text`` into a :class:`TaskStore`."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as error:
        raise TaskStoreError(f"Invalid JSON in {source}: {error}") from error
    if not isinstance(data, dict):
        raise TaskStoreError(f"Task Store {source} must contain a JSON object.")
    try:
        return TaskStore.model_validate(data)
    except ValidationError as error:
        raise TaskStoreError(f"Task Store {source} does not match the schema: {error}") from error


def load_task_store(path: Path) -> TaskStore:
    """Read and validate the Task Store at ``path``."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as error:
        raise TaskStoreError(f"Task Store not found at {path}") from error
    except OSError as error:
        raise TaskStoreError(f"Unable to read Task Store {path}: {error}") from error
    return parse_task_store(text, source=str(path))


def pending_stories(store: TaskStore) -> List[UserStory]:
    """Stories not yet passing, ordered by priority (stable for ties)."""
    pending = [story for story in store.user_stories if not story.passes]
    return sorted(pending, key=lambda story: story.sort_key)


def select_next_story(store: TaskStore) -> Optional[UserStory]:
    pending = pending_stories(store)
    return pending[0] if pending else None


def all_stories_complete(store: TaskStore) -> bool:
    """Return ``True`` when no story is left with ``passes != true``."""
    return all(story.passes for story in store.user_stories)


def count_stories(store: TaskStore) -> StoryCounts:
    done = sum(1 for story in store.user_stories if story.passes)
    return StoryCounts(done=done, total=len(store.user_stories))


__all__ = [
    "StoryCounts",
    "TaskStoreError",
    "all_stories_complete",
    "count_stories",
    "load_task_store",
    "parse_task_store",
    "pending_stories",
    "select_next_story",
]
