"""Configuration loading and resolution for the story loop."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

DEFAULT_CONFIG_NAME = "storyloop.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "repo_root": ".",
    },
    "paths": {
        "state_dir": ".",
        "prd": "prd.json",
        "progress": "progress.txt",
        "prompt": "prompt.md",
        "prd_markdown": "prd.md",
        "archive": "archive",
        "last_branch": ".last-branch",
    },
    "loop": {
        "max_iterations": 10,
        "pause_seconds": 2,
        "sandbox_mode": "sandbox",
        "exhausted_exit_code": 0,
    },
    "agent": {
        "binary": "claude",
        "docker_template": "claude-code",
        "podman_image": "ghcr.io/anthropics/claude-code:latest",
        "config_dir": "~/.claude",
        "container_config_dir": "/home/user/.claude",
        "container_workdir": "/workspace",
        "api_key_env": "ANTHROPIC_API_KEY",
    },
    "archive": {
        "strip_prefixes": ["feature/", "ralph/"],
    },
}


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be used."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return data


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def merge_with_defaults(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay user sections on top of the default template, one level deep."""
    merged = copy_config_template()
    for section, values in config.items():
        if values is None:
            continue
        if isinstance(merged.get(section), dict):
            if not isinstance(values, Mapping):
                raise ConfigError(f"Config section '{section}' must be a mapping.")
            merged[section].update(values)
        else:
            merged[section] = copy.deepcopy(values)
    return merged


def _resolve(base: Path, value: Any, default: str) -> Path:
    text = str(value).strip() if value is not None else ""
    candidate = Path(text or default).expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate.resolve()


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return default
    return value


@dataclass(frozen=True, slots=True)
class AgentSettings:
    """How the external assistant CLI and its containers are invoked."""

    binary: str = "claude"
    docker_template: str = "claude-code"
    podman_image: str = "ghcr.io/anthropics/claude-code:latest"
    config_dir: Path = Path("~/.claude").expanduser()
    container_config_dir: str = "/home/user/.claude"
    container_workdir: str = "/workspace"
    api_key_env: str = "ANTHROPIC_API_KEY"

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> "AgentSettings":
        defaults = DEFAULT_CONFIG_TEMPLATE["agent"]

        def text(key: str) -> str:
            value = section.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            return str(defaults[key])

        return cls(
            binary=text("binary"),
            docker_template=text("docker_template"),
            podman_image=text("podman_image"),
            config_dir=Path(text("config_dir")).expanduser(),
            container_config_dir=text("container_config_dir"),
            container_workdir=text("container_workdir"),
            api_key_env=text("api_key_env"),
        )


@dataclass(frozen=True, slots=True)
class LoopSettings:
    """Fully resolved paths and loop parameters."""

    repo_root: Path
    state_dir: Path
    prd_path: Path
    progress_path: Path
    prompt_path: Path
    prd_markdown_path: Path
    archive_dir: Path
    last_branch_path: Path
    max_iterations: int = 10
    pause_seconds: float = 2.0
    sandbox_mode: str = "sandbox"
    exhausted_exit_code: int = 0
    strip_prefixes: Tuple[str, ...] = ("feature/", "ralph/")
    agent: AgentSettings = AgentSettings()

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        base_dir: Optional[Path] = None,
    ) -> "LoopSettings":
        """Resolve ``config`` (merged over defaults) relative to ``base_dir``."""
        merged = merge_with_defaults(config)
        base = (base_dir or Path.cwd()).resolve()
        paths_cfg = merged["paths"]
        loop_cfg = merged["loop"]
        defaults = DEFAULT_CONFIG_TEMPLATE["paths"]

        repo_root = _resolve(base, merged["project"].get("repo_root"), ".")
        state_dir = _resolve(base, paths_cfg.get("state_dir"), defaults["state_dir"])

        def state_path(key: str) -> Path:
            return _resolve(state_dir, paths_cfg.get(key), defaults[key])

        pause_value = loop_cfg.get("pause_seconds")
        if isinstance(pause_value, bool) or not isinstance(pause_value, (int, float)) or pause_value < 0:
            pause_value = DEFAULT_CONFIG_TEMPLATE["loop"]["pause_seconds"]

        exhausted_value = loop_cfg.get("exhausted_exit_code")
        if isinstance(exhausted_value, bool) or not isinstance(exhausted_value, int):
            exhausted_value = 0

        prefixes = merged["archive"].get("strip_prefixes") or ()
        if isinstance(prefixes, str):
            prefixes = (prefixes,)

        return cls(
            repo_root=repo_root,
            state_dir=state_dir,
            prd_path=state_path("prd"),
            progress_path=state_path("progress"),
            prompt_path=state_path("prompt"),
            prd_markdown_path=state_path("prd_markdown"),
            archive_dir=state_path("archive"),
            last_branch_path=state_path("last_branch"),
            max_iterations=_positive_int(loop_cfg.get("max_iterations"), 10),
            pause_seconds=float(pause_value),
            sandbox_mode=str(loop_cfg.get("sandbox_mode") or "sandbox").strip().lower(),
            exhausted_exit_code=exhausted_value,
            strip_prefixes=tuple(str(item) for item in prefixes if str(item)),
            agent=AgentSettings.from_section(merged["agent"]),
        )


def load_settings(config_path: Optional[Path], *, required: bool = False) -> LoopSettings:
    """Load settings from ``config_path``.

    When the file is missing and ``required`` is false the defaults are used,
    resolved against the current working directory.
    """
    path = config_path or Path(DEFAULT_CONFIG_NAME)
    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return LoopSettings.from_config({}, base_dir=Path.cwd())
    config = load_config(path)
    return LoopSettings.from_config(config, base_dir=path.resolve().parent)


__all__ = [
    "AgentSettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "LoopSettings",
    "copy_config_template",
    "load_config",
    "load_settings",
    "merge_with_defaults",
    "write_config",
]
