from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from tomatine.core.models import Mood, SessionRecord, TimerState, UserPrefs


class StorageError(Exception):
    """The record store could not complete a read or write."""


class BaseStore(ABC):
    """Record store the session state machine persists through.

    Implementations raise ``StorageError`` for any backend failure.
    """

    @abstractmethod
    def create_session(
        self,
        focus_ms: int,
        break_ms: int,
        mood_start: Mood | None = None,
        task_note: str = "",
        warmup_skipped: bool = False,
        start_at: str | None = None,
    ) -> int:
        """Insert an uncompleted session record and return its id."""

    @abstractmethod
    def get_session(self, session_id: int) -> SessionRecord | None:
        ...

    @abstractmethod
    def update_session(self, session_id: int, **updates: Any) -> None:
        ...

    @abstractmethod
    def complete_session(
        self,
        session_id: int,
        actual_focus_ms: int | None = None,
        mood_end: Mood | None = None,
        end_at: str | None = None,
    ) -> None:
        ...

    @abstractmethod
    def delete_session(self, session_id: int) -> None:
        ...

    @abstractmethod
    def list_sessions(self, limit: int = 100) -> list[SessionRecord]:
        ...

    @abstractmethod
    def get_timer_state(self) -> TimerState | None:
        """Return the single in-flight timer record, if any."""

    @abstractmethod
    def set_timer_state(self, state: TimerState) -> None:
        """Replace the in-flight timer record. The previous one stays readable until this succeeds."""

    @abstractmethod
    def clear_timer_state(self) -> None:
        ...

    @abstractmethod
    def get_user_prefs(self) -> UserPrefs:
        ...

    @abstractmethod
    def update_user_prefs(self, **updates: Any) -> UserPrefs:
        ...

    def reset_user_prefs(self) -> UserPrefs:
        return self.update_user_prefs(**UserPrefs().to_dict())

    @abstractmethod
    def clear_all_data(self) -> None:
        ...

    def health_check(self) -> bool:
        try:
            self.get_user_prefs()
        except StorageError:
            return False
        return True
