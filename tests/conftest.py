from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from storyloop.config import AgentSettings, LoopSettings  # noqa: E402
from storyloop.executors import SandboxMode, TaskExecutor  # noqa: E402
from storyloop.state import AppState  # noqa: E402


def story(story_id: str, *, priority: Optional[int] = None, passes: bool = False, **extra: Any) -> Dict[str, Any]:
    """Build a raw user story dictionary as found in ``prd.json``."""

    payload: Dict[str, Any] = {
        "id": story_id,
        "title": f"Story {story_id}",
        "passes": passes,
        "acceptanceCriteria": [f"{story_id} works"],
    }
    if priority is not None:
        payload["priority"] = priority
    payload.update(extra)
    return payload


@dataclass(slots=True)
class LoopWorkspace:
    """Fixture payload representing a state directory with a Task Store."""

    root: Path
    settings: LoopSettings

    def write_prd(self, stories: List[Dict[str, Any]], *, branch: Optional[str] = "feature/demo", **extra: Any) -> None:
        payload: Dict[str, Any] = {"projectName": "Demo", "userStories": stories}
        if branch is not None:
            payload["branchName"] = branch
        payload.update(extra)
        self.settings.prd_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def read_prd(self) -> Dict[str, Any]:
        return json.loads(self.settings.prd_path.read_text(encoding="utf-8"))

    def mark_passing(self, story_id: str) -> None:
        payload = self.read_prd()
        for entry in payload["userStories"]:
            if entry["id"] == story_id:
                entry["passes"] = True
        self.settings.prd_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def state(self) -> AppState:
        return AppState.load(self.settings)


@pytest.fixture()
def workspace(tmp_path: Path) -> LoopWorkspace:
    """State directory with instructions and a two-story Task Store."""

    root = tmp_path / "project"
    root.mkdir()
    settings = LoopSettings.from_config({"loop": {"pause_seconds": 0}}, base_dir=root)
    settings.prompt_path.write_text("Follow the house rules.\n", encoding="utf-8")
    ws = LoopWorkspace(root=root, settings=settings)
    ws.write_prd([story("US-001", priority=1), story("US-002", priority=2)])
    return ws


class RecordingExecutor(TaskExecutor):
    """Executor double that records prompts instead of spawning a process."""

    mode = SandboxMode.SANDBOX
    description = "recording executor"

    def __init__(self, behaviour: Optional[Callable[[str, int], int]] = None) -> None:
        super().__init__(AgentSettings(), project_root=Path.cwd(), which=lambda name: name)
        self.behaviour = behaviour or (lambda prompt, call: 0)
        self.prompts: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        return []

    def execute(self, prompt: str) -> int:
        self.prompts.append(prompt)
        return self.behaviour(prompt, len(self.prompts))


@pytest.fixture()
def recording_executor() -> Callable[..., RecordingExecutor]:
    return RecordingExecutor


@pytest.fixture()
def make_story() -> Callable[..., Dict[str, Any]]:
    return story
