"""Configuration loading for MCP Time Machine.

Supports three tiers:
1. Simple config via .toml or .json - most users
2. Python config via .py - power users with hooks and custom tools
3. Full override via subclassing - rare cases
"""

from __future__ import annotations

import importlib.util
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib


DEFAULT_WATCH_PATTERNS = ["*.py", "*.md", "*.txt", "*.toml", "*.json", "*.yaml", "*.yml"]
DEFAULT_WATCH_IGNORE = [".git/*", ".timemachine/*", "*.ot.json", "*.lock", "*.tmp"]


@dataclass
class ProjectConfig:
    """Configuration for a project's edit logs."""

    # Project identification
    project_name: str = "unnamed"
    project_root: Path = field(default_factory=Path.cwd)

    # Storage (relative to project_root)
    store_dir: str = ".timemachine/logs"
    sidecar_logs: bool = False  # Write <file>.ot.json next to each document instead
    lock_timeout: float = 10.0

    # Replay
    checkpoint_interval: int = 64

    # Watching documents on disk
    watch_enabled: bool = False
    watch_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_WATCH_PATTERNS))
    watch_ignore: list[str] = field(default_factory=lambda: list(DEFAULT_WATCH_IGNORE))
    poll_interval: float = 1.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # text or json

    # Hooks (populated from Python config)
    hooks: dict[str, Callable] = field(default_factory=dict)

    # Custom tools (populated from Python config)
    custom_tools: dict[str, Callable] = field(default_factory=dict)

    def get_store_path(self) -> Path:
        return self.project_root / self.store_dir


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_python_config(path: Path) -> tuple[dict[str, Any], dict[str, Callable], dict[str, Callable]]:
    """Load configuration from Python file.

    Returns:
        Tuple of (config_dict, hooks_dict, custom_tools_dict)

    Convention:
        - CONFIG dict or config dict for static configuration
        - Functions named hook_* become hooks
        - Functions named custom_tool_* become MCP tools
    """
    spec = importlib.util.spec_from_file_location("timemachine_config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load Python config from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["timemachine_config"] = module
    spec.loader.exec_module(module)

    config_dict = {}
    if hasattr(module, "CONFIG"):
        config_dict = module.CONFIG
    elif hasattr(module, "config"):
        config_dict = module.config

    hooks = {}
    for name in dir(module):
        if name.startswith("hook_"):
            hooks[name[5:]] = getattr(module, name)

    custom_tools = {}
    for name in dir(module):
        if name.startswith("custom_tool_"):
            custom_tools[name[12:]] = getattr(module, name)

    return config_dict, hooks, custom_tools


def dict_to_config(data: dict[str, Any], project_root: Path) -> ProjectConfig:
    """Convert dictionary to ProjectConfig."""
    config = ProjectConfig(project_root=project_root)

    if "project" in data:
        proj = data["project"]
        if "name" in proj:
            config.project_name = proj["name"]

    if "store" in data:
        store = data["store"]
        if "dir" in store:
            config.store_dir = store["dir"]
        if "sidecar_logs" in store:
            config.sidecar_logs = bool(store["sidecar_logs"])
        if "lock_timeout" in store:
            config.lock_timeout = float(store["lock_timeout"])

    if "replay" in data:
        replay = data["replay"]
        if "checkpoint_interval" in replay:
            interval = int(replay["checkpoint_interval"])
            if interval < 1:
                raise ValueError(f"checkpoint_interval must be positive, got {interval}")
            config.checkpoint_interval = interval

    if "watch" in data:
        watch = data["watch"]
        if "enabled" in watch:
            config.watch_enabled = bool(watch["enabled"])
        if "patterns" in watch:
            config.watch_patterns = list(watch["patterns"])
        if "ignore" in watch:
            config.watch_ignore = list(watch["ignore"])
        if "poll_interval" in watch:
            config.poll_interval = float(watch["poll_interval"])

    if "logging" in data:
        log = data["logging"]
        if "level" in log:
            config.log_level = str(log["level"]).upper()
        if "format" in log:
            fmt = str(log["format"]).lower()
            if fmt not in ("text", "json"):
                raise ValueError(f"Unsupported log format: {fmt}")
            config.log_format = fmt

    return config


def find_config_file(project_root: Path) -> Optional[Path]:
    """Find configuration file in project root.

    Search order:
    1. timemachine_config.py (most flexible)
    2. timemachine_config.toml
    3. timemachine_config.json
    4. .timemachine.toml
    5. .timemachine.json
    """
    candidates = [
        "timemachine_config.py",
        "timemachine_config.toml",
        "timemachine_config.json",
        ".timemachine.toml",
        ".timemachine.json",
    ]

    for name in candidates:
        path = project_root / name
        if path.is_file():
            return path

    return None


def load_config(project_root: Path, config_path: Optional[Path] = None) -> ProjectConfig:
    """Load project configuration.

    Args:
        project_root: Root directory of the project
        config_path: Optional explicit path to config file

    Returns:
        ProjectConfig instance
    """
    if config_path is None:
        config_path = find_config_file(project_root)

    if config_path is None:
        return ProjectConfig(project_root=project_root)

    suffix = config_path.suffix.lower()

    if suffix == ".py":
        config_dict, hooks, custom_tools = load_python_config(config_path)
        config = dict_to_config(config_dict, project_root)
        config.hooks = hooks
        config.custom_tools = custom_tools
        return config

    elif suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), project_root)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), project_root)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
