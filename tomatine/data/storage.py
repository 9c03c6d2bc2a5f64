from __future__ import annotations

"""SQLite-слой хранения: записи сессий, пользовательские настройки и текущее состояние таймера."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from tomatine.core.models import CURRENT_TIMER_STATE_ID, Mood, SessionRecord, TimerMode, TimerState, UserPrefs
from tomatine.data.base import BaseStore, StorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
USER_PREFS_KEY = "user_prefs"

_SESSION_COLUMNS = (
    "id, start_at, end_at, focus_ms, break_ms, actual_focus_ms, actual_break_ms, "
    "mood_start, mood_end, task_note, completed, warmup_skipped"
)
_UPDATABLE_SESSION_FIELDS = {
    "start_at",
    "end_at",
    "focus_ms",
    "break_ms",
    "actual_focus_ms",
    "actual_break_ms",
    "mood_start",
    "mood_end",
    "task_note",
    "completed",
    "warmup_skipped",
}


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _to_column(value: Any) -> Any:
    if isinstance(value, Mood):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _to_mood(raw: str | None) -> Mood | None:
    if raw is None:
        return None
    try:
        return Mood(raw)
    except ValueError:
        logger.warning(f"Ignoring unknown mood value: {raw!r}")
        return None


class Storage(BaseStore):
    """Encapsulates the SQLite connection and transactional operations."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.DatabaseError:
            pass
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self.db_path}: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Creates all tables on first run."""
        with self._transaction() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if not row:
                conn.execute("INSERT INTO schema_version(version) VALUES (?)", (SCHEMA_VERSION,))
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions(
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    start_at TEXT NOT NULL,
                    end_at TEXT,
                    focus_ms INTEGER NOT NULL,
                    break_ms INTEGER NOT NULL,
                    actual_focus_ms INTEGER,
                    actual_break_ms INTEGER,
                    mood_start TEXT,
                    mood_end TEXT,
                    task_note TEXT NOT NULL DEFAULT '',
                    completed INTEGER NOT NULL DEFAULT 0,
                    warmup_skipped INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_at, completed)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings(
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS timer_state(
                    id TEXT PRIMARY KEY,
                    mode TEXT NOT NULL,
                    started_at INTEGER,
                    target_at INTEGER,
                    paused_at INTEGER,
                    session_id INTEGER,
                    last_update INTEGER NOT NULL
                )
                """
            )

    # ---- Settings ----

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        raw = row["value"]
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return raw

    def set_setting(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO settings(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, payload),
            )

    def get_user_prefs(self) -> UserPrefs:
        return UserPrefs.from_dict(self.get_setting(USER_PREFS_KEY, {}))

    def update_user_prefs(self, **updates: Any) -> UserPrefs:
        merged = self.get_user_prefs().to_dict()
        unknown = set(updates) - set(merged)
        if unknown:
            raise ValueError(f"Unknown preference(s): {', '.join(sorted(unknown))}")
        merged.update(updates)
        self.set_setting(USER_PREFS_KEY, merged)
        return UserPrefs.from_dict(merged)

    # ---- Sessions ----

    def create_session(
        self,
        focus_ms: int,
        break_ms: int,
        mood_start: Mood | None = None,
        task_note: str = "",
        warmup_skipped: bool = False,
        start_at: str | None = None,
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sessions(start_at, focus_ms, break_ms, mood_start, task_note, completed, warmup_skipped)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                """,
                (start_at or _now_iso(), focus_ms, break_ms, _to_column(mood_start), task_note, int(warmup_skipped)),
            )
            return int(cursor.lastrowid)

    def get_session(self, session_id: int) -> SessionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._session_from_row(row) if row else None

    def update_session(self, session_id: int, **updates: Any) -> None:
        unknown = set(updates) - _UPDATABLE_SESSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown session field(s): {', '.join(sorted(unknown))}")
        if not updates:
            return
        assignments = ", ".join(f"{name} = ?" for name in updates)
        params = [_to_column(value) for value in updates.values()]
        with self._transaction() as conn:
            conn.execute(f"UPDATE sessions SET {assignments} WHERE id = ?", (*params, session_id))

    def complete_session(
        self,
        session_id: int,
        actual_focus_ms: int | None = None,
        mood_end: Mood | None = None,
        end_at: str | None = None,
    ) -> None:
        updates: dict[str, Any] = {"completed": True, "end_at": end_at or _now_iso()}
        if actual_focus_ms is not None:
            updates["actual_focus_ms"] = actual_focus_ms
        if mood_end is not None:
            updates["mood_end"] = mood_end
        self.update_session(session_id, **updates)

    def delete_session(self, session_id: int) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))

    def list_sessions(self, limit: int = 100) -> list[SessionRecord]:
        """Returns the latest sessions, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._session_from_row(row) for row in rows]

    def _session_from_row(self, row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            start_at=row["start_at"],
            end_at=row["end_at"],
            focus_ms=row["focus_ms"],
            break_ms=row["break_ms"],
            actual_focus_ms=row["actual_focus_ms"],
            actual_break_ms=row["actual_break_ms"],
            mood_start=_to_mood(row["mood_start"]),
            mood_end=_to_mood(row["mood_end"]),
            task_note=row["task_note"] or "",
            completed=bool(row["completed"]),
            warmup_skipped=bool(row["warmup_skipped"]),
        )

    # ---- Timer state ----

    def get_timer_state(self) -> TimerState | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT mode, started_at, target_at, paused_at, session_id, last_update
                FROM timer_state WHERE id = ?
                """,
                (CURRENT_TIMER_STATE_ID,),
            ).fetchone()
        if not row:
            return None
        try:
            mode = TimerMode(row["mode"])
        except ValueError as exc:
            raise StorageError(f"Corrupt timer state mode: {row['mode']!r}") from exc
        return TimerState(
            mode=mode,
            started_at=row["started_at"],
            target_at=row["target_at"],
            paused_at=row["paused_at"],
            session_id=row["session_id"],
            last_update=row["last_update"],
        )

    def set_timer_state(self, state: TimerState) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO timer_state(id, mode, started_at, target_at, paused_at, session_id, last_update)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    mode=excluded.mode,
                    started_at=excluded.started_at,
                    target_at=excluded.target_at,
                    paused_at=excluded.paused_at,
                    session_id=excluded.session_id,
                    last_update=excluded.last_update
                """,
                (
                    CURRENT_TIMER_STATE_ID,
                    state.mode.value,
                    state.started_at,
                    state.target_at,
                    state.paused_at,
                    state.session_id,
                    state.last_update,
                ),
            )

    def clear_timer_state(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM timer_state WHERE id = ?", (CURRENT_TIMER_STATE_ID,))

    def clear_all_data(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM sessions")
            conn.execute("DELETE FROM settings")
            conn.execute("DELETE FROM timer_state")
