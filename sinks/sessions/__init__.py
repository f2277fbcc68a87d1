"""
Interactive session hosts for live prompt injection.

Supports: tmux (default).
Each host provides: list_sessions, focused_session, create_session,
paste_text, submit.

Usage:
    from sinks.sessions import TmuxSessionHost
    host = TmuxSessionHost(timeout_s=10.0)
    sessions = await host.list_sessions()
"""
from sinks.sessions.base import SessionError, SessionHost, SessionInfo
from sinks.sessions.tmux_client import TmuxSessionHost

__all__ = [
    "SessionError", "SessionHost", "SessionInfo",
    "TmuxSessionHost",
]
