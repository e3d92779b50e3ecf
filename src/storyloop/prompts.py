"""Prompt templates and helpers shared by the loop and the PRD tooling."""

from __future__ import annotations

from .schema import UserStory

STORY_DONE_SENTINEL = "<complete>STORY_DONE</complete>"
ALL_DONE_SENTINEL = "<complete>ALL_DONE</complete>"

DEFAULT_INSTRUCTIONS = """\
You are an autonomous coding agent working through a product backlog one story at a time.

1. Read the progress log above, especially the Codebase Patterns section, before touching code.
2. Implement only the current story. Keep the change small and focused.
3. Make sure every acceptance criterion is met and verified.
4. Run the project's quality checks (type checks, linters, tests) and fix anything you broke.
5. Commit your work with a message of the form `feat: [<story id>] <story title>`.
6. Set `passes` to true for the story in the task store.
7. Append a short entry to the Session Log: what you did, files changed, and what you learned.
   Add reusable conventions to the Codebase Patterns section.
"""

PRD_GENERATOR_PROMPT = """\
You are a product requirements expert. You write well-scoped PRDs that an autonomous AI coding
agent can execute story by story.

## Process

### Step 1: Gather requirements

Ask clarifying questions until you understand:
1. **Goal**: the problem being solved and the desired outcome.
2. **Scope**: what is in scope and what is out of scope.
3. **Technical context**: stack, frameworks, existing patterns to follow.
4. **Constraints**: timeline, dependencies, must-haves versus nice-to-haves.

### Step 2: Break the work into stories

Each user story must be:
- **Small**: completable in a single agent context window (15-30 minutes of focused work).
- **Independent**: no waiting on later stories.
- **Testable**: acceptance criteria that can be verified.
- **Ordered**: lower priority numbers are implemented first.

### Step 3: Output format

# [Feature Name]

## Overview
What is being built and why.

## Technical Context
- Stack/framework
- Relevant existing patterns
- Key files/directories

## User Stories

### US-001: [Title]
**Priority**: 1
**Acceptance Criteria**:
- [ ] Criterion 1
- [ ] Criterion 2

**Technical Notes**: implementation hints, patterns to follow, gotchas.

## Sizing guidance

Right-sized: one migration, one API endpoint, one UI component, one validated form, tests for
one module, one configuration option.

Too large (split them): "build the dashboard" (layout, data fetching, charts, filters),
"add authentication" (model, login endpoint, sessions, UI), "refactor the API" (one endpoint
at a time).

Every story must fit in one iteration, carry enough context to be implemented without
questions, and never depend on a later story.
"""

PRD_CONVERTER_PROMPT = """\
Convert the PRD markdown you are given into JSON with exactly this structure:

{
  "projectName": "Feature Name",
  "branchName": "feature/kebab-case-name",
  "description": "What this feature does",
  "userStories": [
    {
      "id": "US-001",
      "title": "Short description",
      "priority": 1,
      "passes": false,
      "acceptanceCriteria": ["Criterion 1", "Criterion 2"],
      "technicalNotes": "Implementation hints"
    }
  ]
}

Rules:
- Include every user story from the markdown.
- Set passes to false for all stories.
- Keep the priority numbers from the markdown.
- Output ONLY valid JSON: no markdown code fences and no commentary.
"""


def _fenced(body: str, language: str = "") -> str:
    return f"```{language}\n{body}\n```"


def render_critical_reminders(*, store_name: str, progress_name: str) -> str:
    """Return the fixed checklist appended to every iteration prompt."""
    return (
        "## Critical Reminders\n"
        "1. Focus ONLY on the current story above\n"
        "2. Run quality checks before committing\n"
        f"3. Update {store_name} to mark the story as passes: true when complete\n"
        f"4. Append learnings to {progress_name}\n"
        f"5. When finished, output: {STORY_DONE_SENTINEL}\n"
        f"6. If ALL stories are done, output: {ALL_DONE_SENTINEL}"
    )


def build_iteration_prompt(
    story: UserStory,
    iteration: int,
    progress_text: str,
    instructions: str,
    *,
    store_name: str = "prd.json",
    progress_name: str = "progress.txt",
) -> str:
    """Assemble the prompt handed to the assistant for one iteration."""
    sections = [
        f"# Autonomous Agent Iteration {iteration}",
        "## Current Story\n" + _fenced(story.to_json(), "json"),
        "## Progress from Previous Iterations\n" + _fenced(progress_text.rstrip("\n")),
        "## Instructions\n" + instructions.rstrip("\n"),
        render_critical_reminders(store_name=store_name, progress_name=progress_name),
    ]
    return "\n\n".join(sections) + "\n"


def render_generation_request(description: str) -> str:
    return (
        f"I want to build: {description.strip()}\n\n"
        "Please ask me clarifying questions, then generate a detailed PRD with small, "
        "focused user stories."
    )


def render_conversion_request(markdown: str) -> str:
    return f"Convert this PRD to JSON:\n\n{markdown.rstrip()}"


def render_edit_request(store_json: str, *, store_name: str = "prd.json") -> str:
    """Prompt for an interactive edit session over the current Task Store."""
    return (
        f"Here's the current {store_name}:\n\n"
        f"{_fenced(store_json.rstrip(), 'json')}\n\n"
        "What would you like to change? I can:\n"
        "- Add new stories\n"
        "- Modify existing stories\n"
        "- Reorder priorities\n"
        "- Update acceptance criteria\n\n"
        "Tell me what to change and I'll output the updated JSON."
    )


__all__ = [
    "ALL_DONE_SENTINEL",
    "DEFAULT_INSTRUCTIONS",
    "PRD_CONVERTER_PROMPT",
    "PRD_GENERATOR_PROMPT",
    "STORY_DONE_SENTINEL",
    "build_iteration_prompt",
    "render_conversion_request",
    "render_critical_reminders",
    "render_edit_request",
    "render_generation_request",
]
