"""
Configuration loader for the prompt queue.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class StoreConfig:
    backend: str = "file"                              # "memory" | "file"
    file_path: str = "./data/prompt_queue.json"


@dataclass
class QueueConfig:
    default_delay_hours: float = 5.0
    sink: str = "file"                                 # "file" | "session"
    completion: str = ""                               # "" = sink default | "mark_processed" | "remove"
    delivery_timeout_s: float = 10.0


@dataclass
class FileDropConfig:
    output_dir: str = ".prompt-queue"
    filename_template: str = "{timestamp}_{id}.md"
    workspace_root: str = ""                           # "" = current directory


@dataclass
class SessionConfig:
    program: str = "claude"
    default_session_name: str = "claude"
    name_pattern: str = "claude"
    target_session: str = ""
    tmux_binary: str = "tmux"
    command_timeout_s: float = 10.0


@dataclass
class Settings:
    app_name: str = "PromptQueue"
    debug: bool = False
    log_level: str = "INFO"
    store: StoreConfig = field(default_factory=StoreConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    file_drop: FileDropConfig = field(default_factory=FileDropConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "PROMPT_QUEUE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = str(raw.get("log_level", settings.log_level)).upper()

        if "store" in raw:
            st = raw["store"] or {}
            settings.store = StoreConfig(
                backend=st.get("backend", settings.store.backend),
                file_path=st.get("file_path", settings.store.file_path),
            )

        if "queue" in raw:
            q = raw["queue"] or {}
            settings.queue = QueueConfig(
                default_delay_hours=float(q.get("default_delay_hours", 5.0)),
                sink=q.get("sink", "file"),
                completion=q.get("completion", "") or "",
                delivery_timeout_s=float(q.get("delivery_timeout_s", 10.0)),
            )

        if "file_drop" in raw:
            fd = raw["file_drop"] or {}
            settings.file_drop = FileDropConfig(
                output_dir=fd.get("output_dir", ".prompt-queue"),
                filename_template=fd.get("filename_template", "{timestamp}_{id}.md"),
                workspace_root=fd.get("workspace_root", "") or "",
            )

        if "session" in raw:
            se = raw["session"] or {}
            settings.session = SessionConfig(
                program=se.get("program", "claude"),
                default_session_name=se.get("default_session_name", "claude"),
                name_pattern=se.get("name_pattern", "claude"),
                target_session=se.get("target_session", "") or "",
                tmux_binary=se.get("tmux_binary", "tmux"),
                command_timeout_s=float(se.get("command_timeout_s", 10.0)),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
