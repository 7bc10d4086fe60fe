"""Session metadata storage.

Persists logical session metadata (id, creation time, label, status) per
project so the session list survives app restarts. Agent processes don't
survive restarts, so restored sessions come back disconnected.

Uses SQLite for persistence.
"""

from __future__ import annotations

import logging
import sqlite3
import subprocess
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    """Persisted view of a logical session."""

    id: str
    created_at: float
    display_name: str
    status: str = "disconnected"


def git_toplevel(cwd: str | None = None) -> str | None:
    """Git top-level directory containing ``cwd``, or None outside a repository."""
    base = str(Path(cwd or Path.cwd()).resolve())
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=base,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    root = result.stdout.strip()
    return root if result.returncode == 0 and root else None


def find_project_root(cwd: str | None = None) -> str:
    """Git top-level directory for ``cwd``, or ``cwd`` itself outside a repository."""
    return git_toplevel(cwd) or str(Path(cwd or Path.cwd()).resolve())


class SessionStorage:
    """Stores logical session metadata scoped to a project directory.

    Args:
        db_path: SQLite file (defaults to ``~/.cache/textual-acp/sessions.db``)
        project: Project root the sessions belong to (defaults to the git root of cwd)
    """

    def __init__(self, db_path: Path | None = None, project: str | None = None):
        if db_path is None:
            cache_dir = Path.home() / ".cache" / "textual-acp"
            cache_dir.mkdir(parents=True, exist_ok=True)
            db_path = cache_dir / "sessions.db"

        self.db_path = db_path
        self.project = project or find_project_root()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    project TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    display_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project, created_at DESC)"
            )
            conn.commit()
        log.info(f"Session database initialized at: {self.db_path}")

    def save(self, record: SessionRecord) -> None:
        """Insert or update a session's metadata."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO sessions (id, project, created_at, display_name, status, updated_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    display_name = excluded.display_name,
                    status = excluded.status,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (record.id, self.project, record.created_at, record.display_name, record.status),
            )
            conn.commit()
        log.debug(f"💾 Stored session {record.id} for {self.project}")

    def load_all(self) -> list[SessionRecord]:
        """All sessions for this project, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT id, created_at, display_name, status FROM sessions
                WHERE project = ? ORDER BY created_at DESC
                """,
                (self.project,),
            )
            rows = cursor.fetchall()
        return [
            SessionRecord(id=row[0], created_at=row[1], display_name=row[2], status=row[3])
            for row in rows
        ]

    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns False when it wasn't stored."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE id = ? AND project = ? RETURNING id",
                (session_id, self.project),
            )
            row = cursor.fetchone()
            conn.commit()

        if row:
            log.info(f"🗑️  Deleted session {session_id} for {self.project}")
            return True
        log.warning(f"⚠️  No session found to delete for {session_id}")
        return False

    def clear_all(self) -> int:
        """Clear every stored session for this project.

        Returns:
            Number of sessions cleared
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE project = ?", (self.project,))
            count = cursor.rowcount
            conn.commit()
        if count > 0:
            log.info(f"Cleared {count} session(s) for {self.project}")
        return count
