"""PRD tooling: turn a feature description into a Task Store with the assistant."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .config import LoopSettings
from .driver import SUCCESS
from .prompts import (
    PRD_CONVERTER_PROMPT,
    PRD_GENERATOR_PROMPT,
    render_conversion_request,
    render_edit_request,
    render_generation_request,
)
from .schema import TaskStore
from .store import TaskStoreError, parse_task_store

LOGGER = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class PrdGenerationError(RuntimeError):
    """Raised when a PRD cannot be generated, converted or edited."""


@dataclass(slots=True)
class AssistantCli:
    """One-shot ``--print`` invocations of the assistant CLI."""

    binary: str = "claude"
    cwd: Optional[Path] = None
    runner: Runner = field(default=subprocess.run)

    def ask(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        capture: bool = True,
    ) -> "subprocess.CompletedProcess[str]":
        command: List[str] = [self.binary]
        if system_prompt:
            command.extend(["--system-prompt", system_prompt])
        command.extend(["--print", prompt])
        try:
            return self.runner(
                command,
                cwd=self.cwd,
                capture_output=capture,
                text=True,
                check=False,
            )
        except FileNotFoundError as error:
            raise PrdGenerationError(
                f"{self.binary} not found. Install: npm install -g @anthropic-ai/claude-code"
            ) from error


def extract_json_block(text: str) -> Optional[str]:
    """Return the outermost ``{...}`` block of ``text`` when it parses as JSON."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    candidate = text[start : end + 1]
    try:
        json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return candidate


def _check(result: "subprocess.CompletedProcess[str]", action: str) -> None:
    if result.returncode != 0:
        detail = (result.stderr or "").strip()
        suffix = f": {detail}" if detail else ""
        raise PrdGenerationError(f"Assistant failed to {action} (exit {result.returncode}){suffix}")


def convert_prd(markdown_path: Path, settings: LoopSettings, cli: AssistantCli) -> TaskStore:
    """Convert a markdown PRD into the Task Store file."""
    if not markdown_path.is_file():
        raise PrdGenerationError(f"File not found: {markdown_path}")

    LOGGER.info("Converting %s to %s...", markdown_path, settings.prd_path.name)
    markdown = markdown_path.read_text(encoding="utf-8")
    result = cli.ask(render_conversion_request(markdown), system_prompt=PRD_CONVERTER_PROMPT)
    _check(result, "convert the PRD")

    raw = result.stdout or ""
    settings.prd_path.parent.mkdir(parents=True, exist_ok=True)
    raw_path = settings.prd_path.with_name(settings.prd_path.name + ".tmp")
    raw_path.write_text(raw, encoding="utf-8")

    payload = raw
    try:
        store = parse_task_store(raw, source=str(raw_path))
    except TaskStoreError:
        LOGGER.info("Assistant output wasn't pure JSON. Extracting...")
        extracted = extract_json_block(raw)
        if extracted is None:
            raise PrdGenerationError(
                f"Failed to extract valid JSON. Raw output kept at {raw_path}"
            ) from None
        try:
            store = parse_task_store(extracted, source=str(raw_path))
        except TaskStoreError as error:
            raise PrdGenerationError(f"{error}. Raw output kept at {raw_path}") from error
        payload = extracted

    settings.prd_path.write_text(payload.strip() + "\n", encoding="utf-8")
    raw_path.unlink(missing_ok=True)
    LOGGER.log(SUCCESS, "Created %s", settings.prd_path)
    return store


def generate_prd(
    description: str,
    settings: LoopSettings,
    cli: AssistantCli,
    *,
    convert: bool = True,
) -> Optional[TaskStore]:
    """Write a markdown PRD for ``description`` and optionally convert it."""
    if not description.strip():
        raise PrdGenerationError("A feature description is required.")

    LOGGER.info("Starting PRD generation...")
    LOGGER.info("The assistant will ask clarifying questions before generating the PRD.")
    result = cli.ask(render_generation_request(description), system_prompt=PRD_GENERATOR_PROMPT)
    _check(result, "generate the PRD")

    markdown_path = settings.prd_markdown_path
    markdown_path.parent.mkdir(parents=True, exist_ok=True)
    markdown_path.write_text(result.stdout or "", encoding="utf-8")
    LOGGER.log(SUCCESS, "Created %s", markdown_path)

    if not convert:
        return None
    return convert_prd(markdown_path, settings, cli)


def edit_prd(settings: LoopSettings, cli: AssistantCli) -> int:
    """Open an assistant session over the current Task Store. Returns its exit status."""
    if not settings.prd_path.is_file():
        raise PrdGenerationError(f"No {settings.prd_path.name} found. Run 'generate' first.")
    LOGGER.info("Opening %s for editing...", settings.prd_path.name)
    current = settings.prd_path.read_text(encoding="utf-8")
    result = cli.ask(
        render_edit_request(current, store_name=settings.prd_path.name),
        capture=False,
    )
    return result.returncode


__all__ = [
    "AssistantCli",
    "PrdGenerationError",
    "convert_prd",
    "edit_prd",
    "extract_json_block",
    "generate_prd",
]
