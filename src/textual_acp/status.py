"""Connection status snapshots and their rendering."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from .sessions import LogicalSession

# JSON type for agent info/capabilities
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]


@dataclass
class ConnectionStatus:
    """Point-in-time view of one connection."""

    backend: str
    state: str
    running: bool
    initialized: bool
    initializing: bool
    acp_session_id: str | None
    agent_info: JSON
    capabilities: JSON
    pending_requests: int
    last_error: str | None
    last_error_time: float | None

    @property
    def agent_name(self) -> str | None:
        info = self.agent_info
        if isinstance(info, dict):
            name = info.get("title") or info.get("name")
            if isinstance(name, str) and name:
                return name
        return None


def format_age(seconds: float) -> str:
    """Humanize an elapsed time: 5 -> 5s, 125 -> 2m, 7300 -> 2h."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


_STATUS_STYLE = {
    "active": "green",
    "disconnected": "yellow",
    "error": "red",
}


def render_status(
    sessions: Iterable[LogicalSession],
    active_id: str | None = None,
    now: float | None = None,
) -> Table:
    """Table of every logical session with its connection state."""
    now = time.time() if now is None else now
    table = Table(title="ACP sessions", expand=True)
    table.add_column("", width=1)
    table.add_column("Session")
    table.add_column("Status")
    table.add_column("Connection")
    table.add_column("Agent session")
    table.add_column("Pending", justify="right")
    table.add_column("Last error")

    for session in sessions:
        status = session.connection.status()
        error = Text("")
        if status.last_error:
            age = format_age(now - status.last_error_time) if status.last_error_time else "?"
            error = Text(f"{status.last_error} ({age} ago)", style="red")
        table.add_row(
            "●" if session.id == active_id else "",
            session.display_name,
            Text(session.status.value, style=_STATUS_STYLE.get(session.status.value, "")),
            status.state,
            status.acp_session_id or "-",
            str(status.pending_requests),
            error,
        )
    return table


def describe(status: ConnectionStatus) -> str:
    """One-line summary for a status bar."""
    parts = [f"backend={status.backend}", status.state]
    if status.agent_name:
        parts.append(status.agent_name)
    if status.pending_requests:
        parts.append(f"{status.pending_requests} pending")
    if status.last_error:
        parts.append(f"error: {status.last_error}")
    return " | ".join(parts)
