"""Task executors: how one iteration's prompt is handed to the assistant.

Each sandbox mode is a :class:`TaskExecutor` subclass that only decides the
argv. Writing the prompt file, running the process and cleaning up are shared.
The executor is chosen once at startup with :func:`build_executor` and
injected into the driver.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, ClassVar, Dict, List, Mapping, Optional, Tuple, Type

from .config import AgentSettings
from .state import PrerequisiteError

LOGGER = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
Which = Callable[[str], Optional[str]]
Confirm = Callable[[], bool]

_CLAUDE_INSTALL_HINT = "Install: npm install -g @anthropic-ai/claude-code"


class SandboxMode(str, Enum):
    """Isolation strategy for the assistant subprocess."""

    SANDBOX = "sandbox"
    DOCKER = "docker"
    PODMAN = "podman"
    DANGEROUS = "dangerous"
    INTERACTIVE = "interactive"

    @classmethod
    def parse(cls, value: str) -> "SandboxMode":
        normalised = (value or "").strip().lower()
        try:
            return cls(normalised)
        except ValueError:
            choices = ", ".join(mode.value for mode in cls)
            raise ValueError(f"Unknown sandbox mode '{value}'. Expected one of: {choices}.") from None


class ExecutorError(RuntimeError):
    """Raised when the assistant process cannot be started."""


class TaskExecutor(ABC):
    """Run the assistant once per prompt and report its exit status."""

    mode: ClassVar[SandboxMode]
    description: ClassVar[str] = ""

    def __init__(
        self,
        settings: AgentSettings,
        *,
        project_root: Path,
        runner: Optional[Runner] = None,
        which: Optional[Which] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.settings = settings
        self.project_root = Path(project_root)
        self._runner: Runner = runner or subprocess.run
        self._which: Which = which or shutil.which
        self._environ: Dict[str, str] = dict(os.environ if environ is None else environ)

    # ------------------------------------------------------------ prerequisites
    def required_binaries(self) -> Tuple[Tuple[str, str], ...]:
        """``(binary, install hint)`` pairs that must be on ``PATH``."""
        return ((self.settings.binary, _CLAUDE_INSTALL_HINT),)

    def prepare(self) -> None:
        """Validate prerequisites once, before the first iteration."""
        for binary, hint in self.required_binaries():
            if self._which(binary) is None:
                raise PrerequisiteError(f"{binary} not found on PATH. {hint}")
        self._check_capabilities()
        LOGGER.info("Using %s", self.description)

    def _check_capabilities(self) -> None:
        """Hook for mode specific checks beyond binary presence."""

    # ---------------------------------------------------------------- execution
    @abstractmethod
    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        """Return the argv that hands ``prompt`` to the assistant."""

    def execute(self, prompt: str) -> int:
        """Run the assistant on ``prompt`` and return its exit status."""
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            prefix="storyloop-prompt-",
            suffix=".md",
            delete=False,
        )
        prompt_file = Path(handle.name)
        try:
            with handle:
                handle.write(prompt)
            command = self.build_command(prompt, prompt_file)
            LOGGER.debug("Launching %s (%s mode)", command[0], self.mode.value)
            try:
                completed = self._runner(
                    command,
                    cwd=self.project_root,
                    env=self._environ,
                    check=False,
                )
            except FileNotFoundError as error:
                raise ExecutorError(f"Assistant command not found: {command[0]}") from error
            except OSError as error:
                raise ExecutorError(f"Assistant command failed to start: {error}") from error
            return completed.returncode
        finally:
            prompt_file.unlink(missing_ok=True)


class NativeSandboxExecutor(TaskExecutor):
    mode = SandboxMode.SANDBOX
    description = "Claude Code native sandbox"

    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        return [self.settings.binary, "--sandbox", "--print", str(prompt_file)]


class DockerSandboxExecutor(TaskExecutor):
    mode = SandboxMode.DOCKER
    description = "Docker Desktop sandbox"
    binary = "docker"

    def required_binaries(self) -> Tuple[Tuple[str, str], ...]:
        return ((self.binary, "Install Docker Desktop first."),)

    def _check_capabilities(self) -> None:
        try:
            probe = self._runner(
                [self.binary, "sandbox", "--help"],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as error:
            raise PrerequisiteError(f"Unable to probe Docker sandbox support: {error}") from error
        if probe.returncode != 0:
            raise PrerequisiteError(
                "Docker sandbox not available. Requires Docker Desktop 4.50+. "
                "Update Docker Desktop or use --sandbox for native sandboxing."
            )

    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        return [self.binary, "sandbox", "run", self.settings.docker_template, "--prompt", prompt]


class PodmanExecutor(TaskExecutor):
    mode = SandboxMode.PODMAN
    description = "rootless Podman container"
    binary = "podman"
    container_binary = "claude"

    def required_binaries(self) -> Tuple[Tuple[str, str], ...]:
        return ((self.binary, "Install with: brew install podman (macOS) or your package manager."),)

    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        settings = self.settings
        workdir = settings.container_workdir
        command = [
            self.binary,
            "run",
            "--rm",
            "-it",
            "--userns=keep-id",
            "--security-opt",
            "label=disable",
            "-v",
            f"{self.project_root}:{workdir}:Z",
            "-v",
            f"{settings.config_dir}:{settings.container_config_dir}:Z",
            "-w",
            workdir,
        ]
        # ``-e NAME`` without a value makes podman copy it from our environment.
        if self._environ.get(settings.api_key_env):
            command.extend(["-e", settings.api_key_env])
        command.extend(
            [
                settings.podman_image,
                self.container_binary,
                "--dangerously-skip-permissions",
                "--print",
                prompt,
            ]
        )
        return command


class UnrestrictedExecutor(TaskExecutor):
    """No sandbox at all. Requires an explicit confirmation before first use."""

    mode = SandboxMode.DANGEROUS
    description = "unrestricted mode (--dangerously-skip-permissions)"

    def __init__(
        self,
        settings: AgentSettings,
        *,
        project_root: Path,
        confirm: Optional[Confirm] = None,
        **kwargs,
    ) -> None:
        super().__init__(settings, project_root=project_root, **kwargs)
        self._confirm = confirm
        self.confirmed = False

    def _check_capabilities(self) -> None:
        LOGGER.warning("Running WITHOUT sandbox (--dangerously-skip-permissions)")
        LOGGER.warning("The assistant has unrestricted access to your system")
        if self._confirm is None or not self._confirm():
            raise PrerequisiteError("Unrestricted mode was not confirmed.")
        self.confirmed = True

    def execute(self, prompt: str) -> int:
        if not self.confirmed:
            raise ExecutorError("Unrestricted mode must be confirmed before the first run.")
        return super().execute(prompt)

    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        return [self.settings.binary, "--dangerously-skip-permissions", "--print", str(prompt_file)]


class InteractiveExecutor(TaskExecutor):
    mode = SandboxMode.INTERACTIVE
    description = "interactive mode (approval required for each action)"

    def build_command(self, prompt: str, prompt_file: Path) -> List[str]:
        return [self.settings.binary, "--print", str(prompt_file)]


_EXECUTORS: Dict[SandboxMode, Type[TaskExecutor]] = {
    SandboxMode.SANDBOX: NativeSandboxExecutor,
    SandboxMode.DOCKER: DockerSandboxExecutor,
    SandboxMode.PODMAN: PodmanExecutor,
    SandboxMode.DANGEROUS: UnrestrictedExecutor,
    SandboxMode.INTERACTIVE: InteractiveExecutor,
}


def build_executor(
    mode: SandboxMode,
    settings: AgentSettings,
    *,
    project_root: Path,
    confirm: Optional[Confirm] = None,
    runner: Optional[Runner] = None,
    which: Optional[Which] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TaskExecutor:
    """Instantiate the executor for ``mode``."""
    executor_cls = _EXECUTORS[mode]
    kwargs = {"project_root": project_root, "runner": runner, "which": which, "environ": environ}
    if executor_cls is UnrestrictedExecutor:
        return UnrestrictedExecutor(settings, confirm=confirm, **kwargs)
    return executor_cls(settings, **kwargs)


__all__ = [
    "DockerSandboxExecutor",
    "ExecutorError",
    "InteractiveExecutor",
    "NativeSandboxExecutor",
    "PodmanExecutor",
    "SandboxMode",
    "TaskExecutor",
    "UnrestrictedExecutor",
    "build_executor",
]
