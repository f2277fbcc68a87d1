"""
Live-session injection sink: types a due prompt into a running
interactive session of the target program (claude by default).

Destination priority:
  1. the session named by the routing hint
  2. the well-known default session name
  3. any session whose name contains the configured pattern (case-insensitive)
  4. the currently focused session

With no destination, a new session is opened in the item's working
directory and the program is started with the prompt read from a temp
file; the shell removes the file once the program exits.

Delivery is ephemeral, so a delivered item is removed from the queue, and
a failed one waits for the next explicit "process now" instead of being
re-typed on every timer tick.
"""
from __future__ import annotations

import os
import re
import shlex
import tempfile
import structlog
from pathlib import Path
from typing import Optional

from models.schemas import CompletionPolicy, QueueItem
from sinks.base import DeliveryError, DeliverySink
from sinks.sessions.base import SessionHost, SessionInfo

logger = structlog.get_logger()

# OSC (ESC ] ... BEL / ST), CSI (ESC [ ... final byte), two-byte ESC sequences
_ESCAPE_SEQ_RE = re.compile(
    r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?"
    r"|\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b[@-Z\\-_]"
)
# C0 controls except tab and newline, DEL, C1 controls
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")


def sanitize_for_injection(text: str) -> str:
    """Strip everything the destination could read as an editing keystroke."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _ESCAPE_SEQ_RE.sub("", text)
    text = _CONTROL_CHAR_RE.sub("", text)
    return text.strip("\n")


def _looks_like_path(value: str) -> bool:
    return os.sep in value or "/" in value or value.startswith("~")


class SessionInjectionSink(DeliverySink):
    """Injects prompts into a live session through a SessionHost."""

    name = "session"
    default_completion = CompletionPolicy.REMOVE
    retry_on_tick = False

    def __init__(
        self,
        host: SessionHost,
        program: str = "claude",
        default_session_name: str = "claude",
        name_pattern: str = "claude",
        target_session: str = "",
        workspace_root: str = "",
        completion: Optional[CompletionPolicy] = None,
    ):
        super().__init__(completion)
        self.host = host
        self.program = program
        self.default_session_name = default_session_name
        self.name_pattern = name_pattern
        self.target_session = target_session
        self.workspace_root = workspace_root

    # ── Routing ───────────────────────────────────────────────

    def routing_hint(self, item: QueueItem) -> str:
        if item.origin_context and not _looks_like_path(item.origin_context):
            return item.origin_context
        return self.target_session

    async def find_destination(self, item: QueueItem) -> Optional[SessionInfo]:
        sessions = await self.host.list_sessions()
        by_name = {s.name: s for s in sessions}

        hint = self.routing_hint(item)
        if hint and hint in by_name:
            return by_name[hint]

        if self.default_session_name in by_name:
            return by_name[self.default_session_name]

        if self.name_pattern:
            pattern = self.name_pattern.lower()
            for session in sessions:
                if pattern in session.name.lower():
                    return session

        return await self.host.focused_session()

    def working_directory(self, item: QueueItem) -> str:
        for candidate in (item.origin_context, self.workspace_root):
            if candidate and Path(candidate).expanduser().is_dir():
                return str(Path(candidate).expanduser())
        return str(Path.home())

    # ── Delivery ──────────────────────────────────────────────

    async def _do_deliver(self, item: QueueItem) -> str:
        destination = await self.find_destination(item)
        if destination is None:
            return await self._launch(item)

        text = sanitize_for_injection(item.prompt_text)
        if not text:
            raise DeliveryError("prompt is empty after sanitizing", self.name, item.id)

        await self.host.paste_text(destination.name, text)
        await self.host.submit(destination.name)
        logger.info("prompt_injected", item_id=item.id, session=destination.name)
        return destination.name

    async def _launch(self, item: QueueItem) -> str:
        fd, tmp_path = tempfile.mkstemp(prefix=f"pq-{item.id}-", suffix=".txt")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(item.prompt_text)

        quoted = shlex.quote(tmp_path)
        command = f'{self.program} "$(cat {quoted})" ; rm -f {quoted}'
        session_name = f"{self.default_session_name}-{item.id}"
        cwd = self.working_directory(item)

        try:
            await self.host.create_session(session_name, cwd, command)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.info("prompt_session_launched", item_id=item.id, session=session_name, cwd=cwd)
        return session_name
