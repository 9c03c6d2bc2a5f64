from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any

MINUTE_MS = 60 * 1000

TIMER_UPDATE_INTERVAL_MS = 1000
DRIFT_THRESHOLD_MS = 5000
FRAME_INTERVAL_MS = 16

MIN_FOCUS_MS = 1 * MINUTE_MS
MAX_FOCUS_MS = 120 * MINUTE_MS
MIN_BREAK_MS = 1 * MINUTE_MS
MAX_BREAK_MS = 30 * MINUTE_MS
MIN_WARMUP_MS = 1 * MINUTE_MS
MAX_WARMUP_MS = 5 * MINUTE_MS

CURRENT_TIMER_STATE_ID = "current"


class TimerMode(str, Enum):
    IDLE = "idle"
    WARMUP = "warmup"
    FOCUS = "focus"
    BREAK = "break"


class Mood(str, Enum):
    ENERGETIC = "energetic"
    CALM = "calm"
    FOCUSED = "focused"
    TIRED = "tired"
    DISTRACTED = "distracted"


@dataclass
class TimerState:
    """Persisted shape of the in-flight countdown.

    Remaining time is never stored here; it is derived from ``target_at``.
    """

    mode: TimerMode = TimerMode.IDLE
    started_at: int | None = None
    target_at: int | None = None
    paused_at: int | None = None
    session_id: int | None = None
    last_update: int = 0

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    @property
    def is_running(self) -> bool:
        return self.mode != TimerMode.IDLE and self.target_at is not None and self.paused_at is None

    def remaining(self, now: int) -> int:
        if self.target_at is None:
            return 0
        if self.paused_at is not None:
            return max(0, self.target_at - self.paused_at)
        return max(0, self.target_at - now)


@dataclass(frozen=True)
class SessionRecord:
    id: int
    start_at: str
    focus_ms: int
    break_ms: int
    completed: bool = False
    end_at: str | None = None
    actual_focus_ms: int | None = None
    actual_break_ms: int | None = None
    mood_start: Mood | None = None
    mood_end: Mood | None = None
    task_note: str = ""
    warmup_skipped: bool = False


@dataclass
class UserPrefs:
    focus_preset_ms: int = 25 * MINUTE_MS
    break_preset_ms: int = 5 * MINUTE_MS
    warmup_enabled: bool = True
    warmup_duration_ms: int = 3 * MINUTE_MS
    sound_enabled: bool = True

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> UserPrefs:
        if not isinstance(raw, dict):
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in raw.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


def format_remaining(ms: int) -> str:
    """Formats milliseconds as ``MM:SS``, rounding partial seconds up."""
    total_seconds = -(-max(0, ms) // 1000)
    return f"{total_seconds // 60:02d}:{total_seconds % 60:02d}"
