"""
Sink Factory: instantiates the configured delivery strategy.

Configuration in settings.yaml:
    queue:
      sink: "file"            # "file" (default) | "session"
      completion: ""          # "" = sink default | "mark_processed" | "remove"

The processor only ever sees the DeliverySink interface, so strategies
can be swapped without touching the scheduling logic.
"""
from __future__ import annotations

import structlog
from typing import Optional

from models.schemas import CompletionPolicy
from sinks.base import DeliverySink
from sinks.file_sink import FileDropSink
from sinks.session_sink import SessionInjectionSink
from sinks.sessions import SessionHost, TmuxSessionHost

logger = structlog.get_logger()

SINK_TYPES = ("file", "session")


def _completion(value: str) -> Optional[CompletionPolicy]:
    return CompletionPolicy(value) if value else None


def create_sink(settings, host: Optional[SessionHost] = None) -> DeliverySink:
    """
    Build the sink named by settings.queue.sink.

    Args:
        settings: config.settings.Settings
        host: session host override (tests); defaults to tmux
    """
    kind = settings.queue.sink or "file"
    completion = _completion(settings.queue.completion)

    if kind == "session":
        cfg = settings.session
        sink = SessionInjectionSink(
            host=host or TmuxSessionHost(binary=cfg.tmux_binary, timeout_s=cfg.command_timeout_s),
            program=cfg.program,
            default_session_name=cfg.default_session_name,
            name_pattern=cfg.name_pattern,
            target_session=cfg.target_session,
            workspace_root=settings.file_drop.workspace_root,
            completion=completion,
        )
    elif kind == "file":
        cfg = settings.file_drop
        sink = FileDropSink(
            output_dir=cfg.output_dir,
            filename_template=cfg.filename_template,
            workspace_root=cfg.workspace_root,
            completion=completion,
        )
    else:
        raise ValueError(f"Unknown sink type {kind!r}; expected one of {SINK_TYPES}")

    logger.info("sink_created", sink=sink.name, completion=sink.completion.value)
    return sink
