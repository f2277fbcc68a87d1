"""
Session host protocol: the common interface every terminal multiplexer
client implements, so the injection sink never needs to know which one
is running.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from sinks.base import DeliveryError


class SessionError(DeliveryError):
    """A session host command failed or timed out."""

    def __init__(self, message: str):
        super().__init__(message, sink="session")


@dataclass
class SessionInfo:
    name: str
    attached: bool = False
    last_activity: int = 0                  # epoch seconds


@runtime_checkable
class SessionHost(Protocol):
    """
    Common interface for interactive session hosts.

    Every method may raise SessionError; none may block longer than the
    host's command timeout.
    """

    async def list_sessions(self) -> list[SessionInfo]:
        """All open sessions. Empty when the host is not running."""
        ...

    async def focused_session(self) -> Optional[SessionInfo]:
        """The session the user is currently looking at, if any."""
        ...

    async def create_session(self, name: str, cwd: str, command: str) -> SessionInfo:
        """Open a new detached session in cwd and run a shell command in it."""
        ...

    async def paste_text(self, session: str, text: str) -> None:
        """Insert text as a paste, without submitting it."""
        ...

    async def submit(self, session: str) -> None:
        """Press Enter in the session."""
        ...
