"""Typed records for the Task Store (``prd.json``).

Default substitution happens once, while parsing:

* ``priority`` missing or ``null`` stays ``None``. Such stories sort after any
  explicit priority, however large (see :attr:`UserStory.sort_key`).
* ``passes`` missing or ``null`` becomes ``False``. Only a JSON ``true`` counts
  as passing, so strings such as ``"true"`` are treated as not passing.
* ``acceptanceCriteria`` missing or ``null`` becomes an empty list. Its items
  and ``technicalNotes`` are not checked: the loop only echoes them back.
* A blank ``branchName`` is treated as absent.

Unknown keys are kept so a story can be echoed back to the assistant verbatim.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class RecordModel(BaseModel):
    """Base Pydantic model that keeps unknown keys and accepts camelCase aliases."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class UserStory(RecordModel):
    """Single unit of work picked up by one loop iteration."""

    id: str = "unknown"
    title: str = "Untitled"
    priority: Optional[int] = None
    passes: bool = False
    acceptance_criteria: List[Any] = Field(default_factory=list, alias="acceptanceCriteria")
    technical_notes: Any = Field(default=None, alias="technicalNotes")

    @field_validator("id", "title", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return "unknown" if info.field_name == "id" else "Untitled"
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("passes", mode="before")
    @classmethod
    def _strict_passes(cls, value: Any) -> bool:
        return value is True

    @field_validator("acceptance_criteria", mode="before")
    @classmethod
    def _default_criteria(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def sort_key(self) -> Tuple[bool, int]:
        """Order by priority with unprioritised stories last."""
        return (self.priority is None, self.priority or 0)

    def to_json(self, *, indent: int = 2) -> str:
        """Serialise the story with its original keys for prompt embedding."""
        payload: Dict[str, Any] = self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return json.dumps(payload, indent=indent, ensure_ascii=False)


class TaskStore(RecordModel):
    """Project metadata plus the ordered list of user stories."""

    project_name: str = Field(default="", alias="projectName")
    branch_name: Optional[str] = Field(default=None, alias="branchName")
    description: Optional[str] = None
    user_stories: List[UserStory] = Field(default_factory=list, alias="userStories")

    @field_validator("project_name", mode="before")
    @classmethod
    def _default_project_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("branch_name", mode="before")
    @classmethod
    def _blank_branch(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("user_stories", mode="before")
    @classmethod
    def _default_stories(cls, value: Any) -> Any:
        return [] if value is None else value


__all__ = ["RecordModel", "TaskStore", "UserStory"]
