"""
tmux session host.

Every tmux invocation is a subprocess bounded by timeout_s; on timeout the
process is killed and SessionError raised. Text is injected through a
named paste buffer with bracketed paste, so embedded newlines reach the
program as part of one paste instead of as separate Enter presses.
"""
from __future__ import annotations

import asyncio
import uuid
import structlog
from typing import Optional

from sinks.sessions.base import SessionError, SessionInfo

logger = structlog.get_logger()

_LIST_FORMAT = "#{session_name}\t#{session_attached}\t#{session_activity}"
_NO_SERVER_MARKERS = ("no server running", "error connecting", "no sessions")


def _pane_target(session: str) -> str:
    # "=" forces an exact session-name match instead of prefix matching
    return f"={session}:"


def parse_session_list(output: str) -> list[SessionInfo]:
    sessions = []
    for line in output.splitlines():
        parts = line.split("\t")
        if not parts or not parts[0]:
            continue
        attached = len(parts) > 1 and parts[1].isdigit() and int(parts[1]) > 0
        activity = int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else 0
        sessions.append(SessionInfo(name=parts[0], attached=attached, last_activity=activity))
    return sessions


class TmuxSessionHost:

    def __init__(self, binary: str = "tmux", timeout_s: float = 10.0):
        self.binary = binary
        self.timeout_s = timeout_s

    async def _run(self, *args: str, stdin: Optional[str] = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary, *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SessionError(f"cannot run {self.binary}: {e}") from e

        try:
            out, err = await asyncio.wait_for(
                proc.communicate(stdin.encode("utf-8") if stdin is not None else None),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise SessionError(f"{self.binary} {args[0]} timed out after {self.timeout_s}s")

        if proc.returncode != 0:
            message = err.decode("utf-8", "replace").strip() or f"exit code {proc.returncode}"
            raise SessionError(f"{self.binary} {args[0]} failed: {message}")
        return out.decode("utf-8", "replace")

    async def list_sessions(self) -> list[SessionInfo]:
        try:
            output = await self._run("list-sessions", "-F", _LIST_FORMAT)
        except SessionError as e:
            if any(marker in str(e).lower() for marker in _NO_SERVER_MARKERS):
                return []
            raise
        return parse_session_list(output)

    async def focused_session(self) -> Optional[SessionInfo]:
        attached = [s for s in await self.list_sessions() if s.attached]
        if not attached:
            return None
        return max(attached, key=lambda s: s.last_activity)

    async def create_session(self, name: str, cwd: str, command: str) -> SessionInfo:
        await self._run("new-session", "-d", "-s", name, "-c", cwd)
        await self._run("send-keys", "-t", _pane_target(name), "-l", command)
        await self.submit(name)
        logger.info("tmux_session_created", session=name, cwd=cwd)
        return SessionInfo(name=name)

    async def paste_text(self, session: str, text: str) -> None:
        buffer = f"prompt-queue-{uuid.uuid4().hex[:8]}"
        await self._run("load-buffer", "-b", buffer, "-", stdin=text)
        await self._run("paste-buffer", "-p", "-d", "-b", buffer, "-t", _pane_target(session))

    async def submit(self, session: str) -> None:
        await self._run("send-keys", "-t", _pane_target(session), "Enter")
