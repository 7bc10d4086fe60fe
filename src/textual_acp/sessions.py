"""Logical sessions, each owning its own ACP connection.

Every session gets a dedicated agent subprocess so several conversations
can stream at once. Connections start lazily on first use.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .config import BackendConfig, RetryPolicy
from .connection import ACPConnection, SessionUpdate
from .errors import ACPError, SessionError
from .host import HostEnvironment
from .jsonrpc import Notification
from .launcher import Launcher
from .session_storage import SessionRecord, SessionStorage

log = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class LogicalSession:
    """A host-facing conversation with its connection."""

    id: str
    created_at: float
    display_name: str
    connection: ACPConnection = field(repr=False)
    status: SessionStatus = SessionStatus.ACTIVE

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.id,
            created_at=self.created_at,
            display_name=self.display_name,
            status=self.status.value,
        )


def default_display_name(timestamp: float) -> str:
    return time.strftime("Session %H:%M:%S", time.localtime(timestamp))


class SessionManager:
    """Maps logical session ids to independent connections.

    Args:
        config: Backend every connection launches
        host: Shared working directory provider and shutdown flag
        store: Optional metadata persistence
        policy: Retry/timeout settings handed to each connection
        launcher: Process launcher handed to each connection (tests)
        auto_approve: Answer agent permission requests with the first "allow" option
    """

    def __init__(
        self,
        config: BackendConfig,
        host: HostEnvironment | None = None,
        store: SessionStorage | None = None,
        policy: RetryPolicy | None = None,
        launcher: Launcher | None = None,
        clock: Callable[[], float] = time.time,
        auto_approve: bool = False,
    ) -> None:
        self.config = config
        self.auto_approve = auto_approve
        self.host = host or HostEnvironment()
        self.store = store
        self.policy = policy or RetryPolicy()
        self.launcher = launcher
        self._clock = clock
        self._counter = itertools.count(1)
        self._sessions: dict[str, LogicalSession] = {}
        self.active_session_id: str | None = None

        # Host hooks, called for updates arriving outside a prompt and for warnings
        self.on_update: Callable[[SessionUpdate], None] | None = None
        self.on_warning: Callable[[str, str], None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _new_connection(self, session_id: str) -> ACPConnection:
        connection = ACPConnection(
            self.config,
            host=self.host,
            policy=self.policy,
            launcher=self.launcher,
            session_key=session_id,
            auto_approve=self.auto_approve,
        )

        def on_notification(notification: Notification) -> None:
            if notification.method != "session/update" or not isinstance(notification.params, dict):
                return
            if self.on_update is not None and not connection.outstanding_prompts:
                self.on_update(SessionUpdate(None, session_id, dict(notification.params)))

        def on_warning(message: str) -> None:
            if self.on_warning is not None:
                self.on_warning(session_id, message)

        connection.on_notification = on_notification
        connection.on_connect = lambda: self.update_status(session_id, SessionStatus.ACTIVE)
        connection.on_disconnect = lambda: self.update_status(session_id, SessionStatus.DISCONNECTED)
        connection.on_error = lambda _error: self.update_status(session_id, SessionStatus.ERROR)
        connection.on_warning = on_warning
        return connection

    def _generate_id(self, timestamp: float) -> str:
        # The counter is never reset, so ids are never reused within a process
        while True:
            session_id = f"session-{int(timestamp)}-{next(self._counter)}"
            if session_id not in self._sessions:
                return session_id

    def create_session(self, display_name: str | None = None) -> str:
        """Create a session, make it active and return its id.

        The agent subprocess is not started until the session is first used.
        """
        timestamp = self._clock()
        session_id = self._generate_id(timestamp)
        session = LogicalSession(
            id=session_id,
            created_at=timestamp,
            display_name=display_name or default_display_name(timestamp),
            connection=self._new_connection(session_id),
        )
        self._sessions[session_id] = session
        self.active_session_id = session_id
        self._persist(session)
        log.info(f"Created session {session_id} ({session.display_name})")
        return session_id

    def get_session(self, session_id: str) -> LogicalSession | None:
        return self._sessions.get(session_id)

    def get_connection(self, session_id: str) -> ACPConnection | None:
        session = self._sessions.get(session_id)
        return session.connection if session else None

    def require(self, session_id: str) -> LogicalSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionError(f"Session not found: {session_id}")
        return session

    @property
    def active_session(self) -> LogicalSession | None:
        if self.active_session_id is None:
            return None
        return self._sessions.get(self.active_session_id)

    def switch_session(self, session_id: str) -> LogicalSession:
        session = self.require(session_id)
        self.active_session_id = session_id
        return session

    def list_sessions(self) -> list[LogicalSession]:
        """Sessions ordered by creation time, newest first."""
        ordered = list(self._sessions.values())
        # Insertion order breaks ties between sessions created in the same instant
        indexed = list(enumerate(ordered))
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [session for _, session in indexed]

    async def delete_session(self, session_id: str) -> None:
        """Tear down a session's connection (failing its pending requests) and forget it."""
        session = self.require(session_id)
        del self._sessions[session_id]
        if self.active_session_id == session_id:
            self.active_session_id = None

        await session.connection.close()

        if self.store is not None:
            try:
                self.store.delete(session_id)
            except sqlite3.Error as e:
                log.warning(f"Failed to delete session {session_id} from storage: {e}")
        log.info(f"Deleted session {session_id}")

    def rename_session(self, session_id: str, display_name: str) -> None:
        session = self.require(session_id)
        session.display_name = display_name
        self._persist(session)

    def update_status(self, session_id: str, status: SessionStatus) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.status is status:
            return
        session.status = status
        self._persist(session)

    def _persist(self, session: LogicalSession) -> None:
        if self.store is None:
            return
        try:
            self.store.save(session.to_record())
        except sqlite3.Error as e:
            # Sessions keep working in memory
            log.warning(f"Failed to persist session {session.id}: {e}")

    def load_sessions(self) -> int:
        """Restore persisted sessions as disconnected sessions. Returns how many were added."""
        if self.store is None:
            return 0
        try:
            records = self.store.load_all()
        except sqlite3.Error as e:
            log.warning(f"Failed to load sessions: {e}")
            return 0

        added = 0
        for record in records:
            if record.id in self._sessions:
                continue
            self._sessions[record.id] = LogicalSession(
                id=record.id,
                created_at=record.created_at,
                display_name=record.display_name,
                connection=self._new_connection(record.id),
                status=SessionStatus.DISCONNECTED,
            )
            added += 1
        log.info(f"Restored {added} session(s)")
        return added

    async def shutdown(self) -> None:
        """Disable retries everywhere and stop every subprocess."""
        self.host.shutdown()
        for session in list(self._sessions.values()):
            try:
                await session.connection.close()
            except ACPError as e:
                log.warning(f"Error closing session {session.id}: {e.message}")
