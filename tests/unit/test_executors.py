from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, Dict, List

import pytest

from storyloop.config import AgentSettings
from storyloop.executors import (
    DockerSandboxExecutor,
    ExecutorError,
    InteractiveExecutor,
    NativeSandboxExecutor,
    PodmanExecutor,
    SandboxMode,
    UnrestrictedExecutor,
    build_executor,
)
from storyloop.state import PrerequisiteError


class FakeRunner:
    """Records subprocess invocations and returns a fixed exit status."""

    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: List[Dict[str, Any]] = []
        self.prompt_files: List[str] = []

    def __call__(self, command, **kwargs):
        self.calls.append({"command": list(command), **kwargs})
        for part in command:
            if str(part).endswith(".md") and Path(part).exists():
                self.prompt_files.append(Path(part).read_text(encoding="utf-8"))
        return subprocess.CompletedProcess(command, self.returncode, "", "")


def _build(mode: SandboxMode, tmp_path: Path, **kwargs):
    kwargs.setdefault("runner", FakeRunner())
    kwargs.setdefault("which", lambda name: f"/usr/bin/{name}")
    kwargs.setdefault("environ", {})
    return build_executor(mode, AgentSettings(), project_root=tmp_path, **kwargs)


def test_build_executor_maps_every_mode(tmp_path: Path) -> None:
    expected = {
        SandboxMode.SANDBOX: NativeSandboxExecutor,
        SandboxMode.DOCKER: DockerSandboxExecutor,
        SandboxMode.PODMAN: PodmanExecutor,
        SandboxMode.DANGEROUS: UnrestrictedExecutor,
        SandboxMode.INTERACTIVE: InteractiveExecutor,
    }
    for mode, executor_cls in expected.items():
        assert type(_build(mode, tmp_path)) is executor_cls


def test_parse_mode_is_case_insensitive() -> None:
    assert SandboxMode.parse(" Podman ") is SandboxMode.PODMAN
    with pytest.raises(ValueError, match="Expected one of"):
        SandboxMode.parse("chroot")


def test_native_sandbox_passes_prompt_file(tmp_path: Path) -> None:
    runner = FakeRunner()
    executor = _build(SandboxMode.SANDBOX, tmp_path, runner=runner)

    assert executor.execute("hello prompt") == 0

    command = runner.calls[0]["command"]
    assert command[:3] == ["claude", "--sandbox", "--print"]
    assert runner.prompt_files == ["hello prompt"]
    assert runner.calls[0]["cwd"] == tmp_path
    assert runner.calls[0]["check"] is False


def test_prompt_file_removed_after_execution(tmp_path: Path) -> None:
    runner = FakeRunner(returncode=5)
    executor = _build(SandboxMode.INTERACTIVE, tmp_path, runner=runner)

    assert executor.execute("text") == 5

    command = runner.calls[0]["command"]
    assert command[:2] == ["claude", "--print"]
    assert not Path(command[2]).exists()


def test_prompt_file_removed_when_launch_fails(tmp_path: Path) -> None:
    seen: List[Path] = []

    def missing(command, **kwargs):
        seen.append(Path(command[-1]))
        raise FileNotFoundError(command[0])

    executor = _build(SandboxMode.SANDBOX, tmp_path, runner=missing)

    with pytest.raises(ExecutorError, match="not found"):
        executor.execute("text")
    assert seen and not seen[0].exists()


def test_docker_passes_prompt_text(tmp_path: Path) -> None:
    runner = FakeRunner()
    executor = _build(SandboxMode.DOCKER, tmp_path, runner=runner)

    executor.execute("build the thing")

    assert runner.calls[0]["command"] == [
        "docker",
        "sandbox",
        "run",
        "claude-code",
        "--prompt",
        "build the thing",
    ]


def test_docker_probe_failure_is_prerequisite_error(tmp_path: Path) -> None:
    executor = _build(SandboxMode.DOCKER, tmp_path, runner=FakeRunner(returncode=1))

    with pytest.raises(PrerequisiteError, match="Docker Desktop 4.50"):
        executor.prepare()


def test_podman_forwards_api_key_only_when_set(tmp_path: Path) -> None:
    with_key = _build(SandboxMode.PODMAN, tmp_path, environ={"ANTHROPIC_API_KEY": "secret"})
    without_key = _build(SandboxMode.PODMAN, tmp_path, environ={})

    command = with_key.build_command("do it", tmp_path / "unused.md")
    assert command[:7] == ["podman", "run", "--rm", "-it", "--userns=keep-id", "--security-opt", "label=disable"]
    assert f"{tmp_path}:/workspace:Z" in command
    assert command[command.index("-e") + 1] == "ANTHROPIC_API_KEY"
    assert "secret" not in command
    assert command[-4:] == ["claude", "--dangerously-skip-permissions", "--print", "do it"]

    assert "-e" not in without_key.build_command("do it", tmp_path / "unused.md")


def test_missing_binary_reports_install_hint(tmp_path: Path) -> None:
    executor = _build(SandboxMode.SANDBOX, tmp_path, which=lambda name: None)

    with pytest.raises(PrerequisiteError, match="npm install"):
        executor.prepare()


def test_unrestricted_requires_confirmation(tmp_path: Path) -> None:
    declined = _build(SandboxMode.DANGEROUS, tmp_path, confirm=lambda: False)
    with pytest.raises(PrerequisiteError, match="not confirmed"):
        declined.prepare()
    with pytest.raises(ExecutorError):
        declined.execute("text")

    runner = FakeRunner()
    accepted = _build(SandboxMode.DANGEROUS, tmp_path, confirm=lambda: True, runner=runner)
    accepted.prepare()
    accepted.execute("text")
    assert runner.calls[0]["command"][:3] == ["claude", "--dangerously-skip-permissions", "--print"]


def test_unrestricted_is_unconfirmed_until_prepared(tmp_path: Path) -> None:
    asked: List[bool] = []

    def confirm() -> bool:
        asked.append(True)
        return True

    runner = FakeRunner()
    executor = _build(SandboxMode.DANGEROUS, tmp_path, confirm=confirm, runner=runner)

    assert executor.confirmed is False
    with pytest.raises(ExecutorError, match="must be confirmed"):
        executor.execute("text")
    assert runner.calls == []

    executor.prepare()

    assert asked == [True]
    assert executor.confirmed is True
