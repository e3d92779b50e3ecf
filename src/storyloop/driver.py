"""Iteration driver: pick the next story, hand it to the assistant, repeat."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .executors import TaskExecutor
from .progress import read_progress_log
from .prompts import build_iteration_prompt
from .schema import UserStory
from .state import AppState
from .store import StoryCounts, all_stories_complete, count_stories, select_next_story

LOGGER = logging.getLogger(__name__)

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_RULE = "━" * 58


class LoopStatus(str, Enum):
    """Why the loop stopped."""

    COMPLETE = "complete"
    NO_PENDING = "no-pending"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(slots=True)
class LoopOutcome:
    """Aggregated result of one driver run."""

    status: LoopStatus
    iterations: int = 0
    last_story_id: Optional[str] = None
    failed_iteration: Optional[int] = None
    exit_status: Optional[int] = None
    counts: StoryCounts = StoryCounts(done=0, total=0)

    @property
    def ok(self) -> bool:
        return self.status is not LoopStatus.FAILED

    def exit_code(self, *, exhausted_exit_code: int = 0) -> int:
        if self.status is LoopStatus.FAILED:
            return 1
        if self.status is LoopStatus.EXHAUSTED:
            return exhausted_exit_code
        return 0


class IterationDriver:
    """Run up to ``max_iterations`` story iterations through ``executor``."""

    def __init__(
        self,
        state: AppState,
        executor: TaskExecutor,
        *,
        pause_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._state = state
        self._executor = executor
        self._pause_seconds = (
            state.settings.pause_seconds if pause_seconds is None else pause_seconds
        )
        self._sleep = sleep

    # ------------------------------------------------------------------ public
    def run(self, max_iterations: int) -> LoopOutcome:
        LOGGER.info("Starting autonomous agent loop")
        LOGGER.info("Max iterations: %d", max_iterations)

        last_story_id: Optional[str] = None
        for iteration in range(1, max_iterations + 1):
            store = self._state.reload_store()

            if all_stories_complete(store):
                LOGGER.log(SUCCESS, _RULE)
                LOGGER.log(SUCCESS, "ALL STORIES COMPLETE!")
                LOGGER.log(SUCCESS, _RULE)
                return LoopOutcome(
                    status=LoopStatus.COMPLETE,
                    iterations=iteration - 1,
                    last_story_id=last_story_id,
                    counts=count_stories(store),
                )

            story = select_next_story(store)
            if story is None:
                LOGGER.log(SUCCESS, "No more stories to process")
                return LoopOutcome(
                    status=LoopStatus.NO_PENDING,
                    iterations=iteration - 1,
                    last_story_id=last_story_id,
                    counts=count_stories(store),
                )

            last_story_id = story.id
            exit_status = self._run_iteration(iteration, max_iterations, story, count_stories(store))
            if exit_status != 0:
                LOGGER.error("Assistant exited with error code %d", exit_status)
                LOGGER.error("Iteration %d failed", iteration)
                LOGGER.info("Check the output above for details")
                return LoopOutcome(
                    status=LoopStatus.FAILED,
                    iterations=iteration,
                    last_story_id=last_story_id,
                    failed_iteration=iteration,
                    exit_status=exit_status,
                    counts=count_stories(store),
                )

            if self._pause_seconds > 0:
                self._sleep(self._pause_seconds)

        store = self._state.reload_store()
        counts = count_stories(store)
        if all_stories_complete(store):
            LOGGER.log(SUCCESS, "ALL STORIES COMPLETE!")
            return LoopOutcome(
                status=LoopStatus.COMPLETE,
                iterations=max_iterations,
                last_story_id=last_story_id,
                counts=counts,
            )
        LOGGER.warning("Reached max iterations (%d)", max_iterations)
        LOGGER.info("Progress: %s stories complete", counts)
        LOGGER.info("Run again to continue")
        return LoopOutcome(
            status=LoopStatus.EXHAUSTED,
            iterations=max_iterations,
            last_story_id=last_story_id,
            counts=counts,
        )

    # ----------------------------------------------------------------- helpers
    def _run_iteration(
        self,
        iteration: int,
        max_iterations: int,
        story: UserStory,
        counts: StoryCounts,
    ) -> int:
        settings = self._state.settings
        LOGGER.info(_RULE)
        LOGGER.info("Iteration %d of %d", iteration, max_iterations)
        LOGGER.info("Story: [%s] %s", story.id, story.title)
        LOGGER.info("Progress: %s stories complete", counts)
        LOGGER.info("Mode: %s", self._executor.mode.value)
        LOGGER.info(_RULE)

        prompt = build_iteration_prompt(
            story,
            iteration,
            read_progress_log(settings.progress_path),
            self._state.read_instructions(),
            store_name=settings.prd_path.name,
            progress_name=settings.progress_path.name,
        )
        return self._executor.execute(prompt)


__all__ = ["IterationDriver", "LoopOutcome", "LoopStatus", "SUCCESS"]
