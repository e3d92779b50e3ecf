"""CLI commands for running the story loop and managing its Task Store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, NoReturn, Optional

import typer

from .archive import prepare_branch
from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    LoopSettings,
    copy_config_template,
    load_settings,
    write_config,
)
from .driver import SUCCESS, IterationDriver
from .executors import ExecutorError, SandboxMode, build_executor
from .prd import AssistantCli, PrdGenerationError, convert_prd, edit_prd, generate_prd
from .progress import ensure_progress_log
from .prompts import DEFAULT_INSTRUCTIONS
from .schema import TaskStore
from .state import AppState, PrerequisiteError
from .store import TaskStoreError, count_stories, load_task_store
from .tools.vcs import GitError

APP_HELP = "Drive an AI coding assistant through the user stories of a Task Store."

_MODE_META_KEY = "storyloop.sandbox_mode"

_LEVEL_STYLES = {
    logging.DEBUG: ("DEBUG", typer.colors.BRIGHT_BLACK),
    logging.INFO: ("INFO", typer.colors.BLUE),
    SUCCESS: ("SUCCESS", typer.colors.GREEN),
    logging.WARNING: ("WARN", typer.colors.YELLOW),
    logging.ERROR: ("ERROR", typer.colors.RED),
}

LOGGER = logging.getLogger("storyloop.cli")

app = typer.Typer(help=APP_HELP)


class _EchoHandler(logging.Handler):
    """Render log records as ``[LEVEL] message`` lines through typer."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        label, colour = _LEVEL_STYLES.get(record.levelno, (record.levelname, None))
        to_stderr = record.levelno >= logging.WARNING
        typer.secho(f"[{label}]", fg=colour, nl=False, err=to_stderr)
        typer.echo(f" {message}", err=to_stderr)


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("storyloop")
    for handler in list(logger.handlers):
        if isinstance(handler, _EchoHandler):
            logger.removeHandler(handler)
    handler = _EchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def _fail(message: str) -> NoReturn:
    LOGGER.error(message)
    raise typer.Exit(code=1)


def _load_settings(config: Optional[str]) -> LoopSettings:
    """Resolve settings, treating an explicitly named but missing config as a usage error."""
    config_path = Path(config) if config else None
    if config_path is not None and not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}", param_hint="--config")
    try:
        return load_settings(config_path)
    except ConfigError as error:
        _fail(str(error))


def _mode_flag(mode: SandboxMode) -> Callable[[typer.Context, bool], bool]:
    """Record ``mode`` when its flag is given. Click handles flags in command-line order."""

    def _record(ctx: typer.Context, value: bool) -> bool:
        if value:
            ctx.meta[_MODE_META_KEY] = mode
        return value

    return _record


def _confirm_unrestricted() -> bool:
    return typer.confirm("Continue?", default=False)


def _config_option() -> Optional[str]:
    return typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the loop configuration file (default: {DEFAULT_CONFIG_NAME} if present).",
    )


def _render_status(store: TaskStore) -> None:
    """Print the project, branch and per-story completion markers."""
    typer.echo("")
    typer.echo(f"Project: {store.project_name or '(unnamed)'}")
    typer.echo(f"Branch:  {store.branch_name or '(none)'}")
    typer.echo("")
    typer.echo("Stories:")
    for story in sorted(store.user_stories, key=lambda item: item.sort_key):
        marker = "✅" if story.passes else "⬜"
        typer.echo(f"  {marker} [{story.id}] {story.title}")
    typer.echo("")
    counts = count_stories(store)
    typer.echo(f"Progress: {counts.done}/{counts.total} complete")


def _render_story_list(store: TaskStore) -> None:
    typer.echo("Stories:")
    for story in store.user_stories:
        typer.echo(f"  [{story.id}] {story.title}")


@app.command()
def run(
    ctx: typer.Context,
    max_iterations: Optional[int] = typer.Argument(
        None,
        min=0,
        help="Maximum number of iterations (default from config, 10).",
    ),
    sandbox: bool = typer.Option(
        False,
        "--sandbox",
        help="Use the assistant's native sandbox (recommended).",
        callback=_mode_flag(SandboxMode.SANDBOX),
    ),
    docker: bool = typer.Option(
        False,
        "--docker",
        help="Use the Docker Desktop sandbox.",
        callback=_mode_flag(SandboxMode.DOCKER),
    ),
    podman: bool = typer.Option(
        False,
        "--podman",
        help="Use a rootless Podman container.",
        callback=_mode_flag(SandboxMode.PODMAN),
    ),
    dangerous: bool = typer.Option(
        False,
        "--dangerous",
        help="Skip all permission checks (no sandbox, not recommended).",
        callback=_mode_flag(SandboxMode.DANGEROUS),
    ),
    interactive: bool = typer.Option(
        False,
        "--interactive",
        help="Require approval for each action (safest).",
        callback=_mode_flag(SandboxMode.INTERACTIVE),
    ),
    config: Optional[str] = _config_option(),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Work through the Task Store, one story per iteration."""
    _configure_logging(verbose)
    settings = _load_settings(config)

    mode = ctx.meta.get(_MODE_META_KEY)
    if mode is None:
        try:
            mode = SandboxMode.parse(settings.sandbox_mode)
        except ValueError as error:
            _fail(str(error))
    iterations = settings.max_iterations if max_iterations is None else max_iterations

    try:
        state = AppState.load(settings)
        executor = build_executor(
            mode,
            settings.agent,
            project_root=settings.repo_root,
            confirm=_confirm_unrestricted,
        )
        executor.prepare()
        setup = prepare_branch(state)
        if setup.progress_created:
            LOGGER.info("Created %s", settings.progress_path)
        outcome = IterationDriver(state, executor).run(iterations)
    except (PrerequisiteError, TaskStoreError, GitError, ExecutorError) as error:
        _fail(str(error))

    raise typer.Exit(code=outcome.exit_code(exhausted_exit_code=settings.exhausted_exit_code))


@app.command()
def status(config: Optional[str] = _config_option()) -> None:
    """Show the Task Store and how many stories are complete."""
    _configure_logging(False)
    settings = _load_settings(config)
    if not settings.prd_path.is_file():
        typer.echo(f"No {settings.prd_path.name} found.")
        return
    try:
        store = load_task_store(settings.prd_path)
    except TaskStoreError as error:
        _fail(str(error))
    _render_status(store)


@app.command()
def generate(
    description: List[str] = typer.Argument(..., help="Description of the feature to build."),
    convert: bool = typer.Option(
        True,
        "--convert/--no-convert",
        help="Convert the generated markdown PRD into the Task Store.",
    ),
    config: Optional[str] = _config_option(),
) -> None:
    """Generate a markdown PRD with the assistant and convert it to the Task Store."""
    _configure_logging(False)
    settings = _load_settings(config)
    cli = AssistantCli(binary=settings.agent.binary, cwd=settings.repo_root)
    try:
        store = generate_prd(" ".join(description), settings, cli, convert=convert)
    except PrdGenerationError as error:
        _fail(str(error))

    if store is None:
        typer.echo(f"Review {settings.prd_markdown_path.name}, then run: storyloop convert <file.md>")
        return
    typer.echo("")
    _render_story_list(store)
    typer.echo("")
    LOGGER.log(SUCCESS, "PRD generation complete! Run `storyloop run` to start execution.")


@app.command()
def convert(
    markdown: Path = typer.Argument(..., help="Markdown PRD to convert."),
    config: Optional[str] = _config_option(),
) -> None:
    """Convert a markdown PRD into the Task Store."""
    _configure_logging(False)
    settings = _load_settings(config)
    cli = AssistantCli(binary=settings.agent.binary, cwd=settings.repo_root)
    try:
        store = convert_prd(markdown, settings, cli)
    except PrdGenerationError as error:
        _fail(str(error))
    typer.echo("")
    _render_story_list(store)


@app.command()
def edit(config: Optional[str] = _config_option()) -> None:
    """Edit the Task Store interactively with the assistant."""
    _configure_logging(False)
    settings = _load_settings(config)
    cli = AssistantCli(binary=settings.agent.binary, cwd=settings.repo_root)
    try:
        exit_status = edit_prd(settings, cli)
    except PrdGenerationError as error:
        _fail(str(error))
    if exit_status != 0:
        raise typer.Exit(code=exit_status)


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Where to write the loop configuration file.",
    ),
) -> None:
    """Write the default configuration, instructions and Progress Log."""
    _configure_logging(False)
    config_path = Path(config)
    if config_path.exists():
        typer.echo(f"Configuration already present at {config_path}.")
    else:
        write_config(config_path, copy_config_template())
        typer.echo(f"Created configuration at {config_path}.")

    try:
        settings = load_settings(config_path, required=True)
    except ConfigError as error:
        _fail(str(error))

    if not settings.prompt_path.exists():
        settings.prompt_path.parent.mkdir(parents=True, exist_ok=True)
        settings.prompt_path.write_text(DEFAULT_INSTRUCTIONS, encoding="utf-8")
        typer.echo(f"Created instructions at {settings.prompt_path}.")
    if ensure_progress_log(settings.progress_path):
        typer.echo(f"Created progress log at {settings.progress_path}.")
    if not settings.prd_path.exists():
        typer.echo("Next: create a Task Store with `storyloop generate \"<feature>\"`.")


if __name__ == "__main__":
    app()
