from __future__ import annotations

import logging
from dataclasses import replace

from PyQt6.QtCore import QObject, pyqtSignal

from tomatine.core.models import (
    MAX_BREAK_MS,
    MAX_FOCUS_MS,
    MAX_WARMUP_MS,
    MIN_BREAK_MS,
    MIN_FOCUS_MS,
    MIN_WARMUP_MS,
    Mood,
    TimerMode,
    TimerState,
    UserPrefs,
    clamp,
)
from tomatine.core.timer import TimerEngine
from tomatine.data.base import BaseStore, StorageError

logger = logging.getLogger(__name__)


class TimerSession(QObject):
    """Work-cycle state machine: idle -> warmup -> focus -> break -> idle.

    Owns the authoritative ``TimerState``, the link to the session record and
    crash recovery. Every transition while not idle is written to the store
    before the action returns. A store failure is raised to the caller after
    the in-memory transition has been applied; it is never rolled back.
    """

    state_changed = pyqtSignal()
    remaining_changed = pyqtSignal(int)
    phase_completed = pyqtSignal(str)
    session_completed = pyqtSignal(int)
    drift_detected = pyqtSignal(int)
    recovery_available = pyqtSignal()

    def __init__(self, store: BaseStore, engine: TimerEngine) -> None:
        super().__init__()
        self._store = store
        self._engine = engine
        self._now = engine.now
        self._state = TimerState(last_update=self._now())
        self.remaining: int = 0
        self.mood: Mood | None = None
        self.task_note: str = ""

        prefs = self._load_prefs()
        self.focus_duration_ms = prefs.focus_preset_ms
        self.break_duration_ms = prefs.break_preset_ms
        self.warmup_duration_ms = prefs.warmup_duration_ms
        self.warmup_enabled = prefs.warmup_enabled

        self._unsubscribe = engine.subscribe(
            on_tick=self._on_tick,
            on_complete=self._on_engine_complete,
            on_drift_detected=self._on_drift_detected,
        )
        if engine.visibility is not None:
            engine.visibility.add_listener(self._on_visibility_changed)

        self.recoverable: TimerState | None = self._read_recoverable()

    # ---- Read-only view ----

    @property
    def state(self) -> TimerState:
        return replace(self._state)

    @property
    def mode(self) -> TimerMode:
        return self._state.mode

    @property
    def session_id(self) -> int | None:
        return self._state.session_id

    @property
    def started_at(self) -> int | None:
        return self._state.started_at

    @property
    def target_at(self) -> int | None:
        return self._state.target_at

    @property
    def paused_at(self) -> int | None:
        return self._state.paused_at

    @property
    def last_update(self) -> int:
        return self._state.last_update

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def is_paused(self) -> bool:
        return self._state.is_paused

    def has_recoverable_session(self) -> bool:
        return self.recoverable is not None

    # ---- Configuration ----

    def set_focus_duration(self, duration_ms: int) -> None:
        self.focus_duration_ms = clamp(duration_ms, MIN_FOCUS_MS, MAX_FOCUS_MS)

    def set_break_duration(self, duration_ms: int) -> None:
        self.break_duration_ms = clamp(duration_ms, MIN_BREAK_MS, MAX_BREAK_MS)

    def set_warmup_duration(self, duration_ms: int) -> None:
        self.warmup_duration_ms = clamp(duration_ms, MIN_WARMUP_MS, MAX_WARMUP_MS)

    def set_warmup_enabled(self, enabled: bool) -> None:
        self.warmup_enabled = enabled

    def set_mood(self, mood: Mood | None) -> None:
        self.mood = mood

    def set_task_note(self, note: str) -> None:
        self.task_note = note

    def save_preferences(self) -> UserPrefs:
        return self._store.update_user_prefs(
            focus_preset_ms=self.focus_duration_ms,
            break_preset_ms=self.break_duration_ms,
            warmup_duration_ms=self.warmup_duration_ms,
            warmup_enabled=self.warmup_enabled,
        )

    # ---- Transitions ----

    def start_session(self) -> None:
        if self.warmup_enabled:
            self.start_warmup()
        else:
            self.start_focus(skip_warmup=True)

    def start_warmup(self) -> None:
        if self._state.mode != TimerMode.IDLE:
            logger.debug(f"start_warmup ignored in mode {self._state.mode.value}")
            return
        self._state.session_id = self._create_session(warmup_skipped=False)
        self._begin_phase(TimerMode.WARMUP, self.warmup_duration_ms)

    def start_focus(self, skip_warmup: bool = False) -> None:
        if self._state.mode not in (TimerMode.IDLE, TimerMode.WARMUP):
            logger.debug(f"start_focus ignored in mode {self._state.mode.value}")
            return
        if self._state.session_id is None:
            self._state.session_id = self._create_session(warmup_skipped=skip_warmup)
        self._begin_phase(TimerMode.FOCUS, self.focus_duration_ms)

    def start_break(self) -> None:
        if self._state.mode != TimerMode.FOCUS:
            logger.debug(f"start_break ignored in mode {self._state.mode.value}")
            return
        self._begin_phase(TimerMode.BREAK, self.break_duration_ms)

    def pause(self) -> None:
        if not self._state.is_running:
            logger.debug("pause ignored: timer is not running")
            return
        self._engine.pause()
        paused_at = self._engine.get_state().paused_at
        if paused_at is None:
            paused_at = self._now()
        self._state.paused_at = paused_at
        self._state.last_update = paused_at
        self.remaining = self._state.remaining(paused_at)
        logger.info(f"Paused {self._state.mode.value} with {self.remaining}ms left")
        self._commit()

    def resume(self) -> None:
        if not self._state.is_paused or self._state.target_at is None:
            logger.debug("resume ignored: timer is not paused")
            return
        now = self._now()
        if self._engine.get_state().paused_at is not None:
            self._engine.resume()
            target_at = self._engine.get_state().target_at
        else:
            target_at = self._state.target_at + (now - self._state.paused_at)
            self._engine.set_target_time(target_at, self._state.mode, self._state.started_at)
        self._state.target_at = target_at
        self._state.paused_at = None
        self._state.last_update = now
        self.remaining = self._state.remaining(now)
        logger.info(f"Resumed {self._state.mode.value} with {self.remaining}ms left")
        self._commit()

    def skip(self) -> None:
        mode = self._state.mode
        if mode in (TimerMode.WARMUP, TimerMode.FOCUS):
            self.complete()
        elif mode == TimerMode.BREAK:
            self.stop()

    def stop(self) -> None:
        """Abandon the current phase. The session record is left as it is."""
        if self._state.mode != TimerMode.IDLE:
            logger.info(f"Stopped during {self._state.mode.value} (session {self._state.session_id})")
        self._engine.stop()
        self._state = TimerState(last_update=self._now())
        self.remaining = 0
        self.mood = None
        self.task_note = ""
        self.state_changed.emit()
        self.remaining_changed.emit(0)
        self._clear_persisted()

    def complete(self) -> None:
        self._complete(ended_at=None)

    def add_time(self, additional_ms: int) -> None:
        if self._state.mode == TimerMode.IDLE:
            return
        self._engine.add_time(additional_ms)
        self._sync_target()

    def subtract_time(self, reduce_ms: int) -> None:
        if self._state.mode == TimerMode.IDLE:
            return
        self._engine.subtract_time(reduce_ms)
        self._sync_target()

    # ---- Recovery ----

    def check_recovery(self) -> bool:
        """Re-read the store and announce a recoverable countdown.

        Hosts call this after connecting to ``recovery_available``. Ignored
        while a phase is active.
        """
        if self._state.mode != TimerMode.IDLE:
            return False
        self.recoverable = self._read_recoverable()
        if self.recoverable is None:
            return False
        self.recovery_available.emit()
        return True

    def recover_session(self) -> bool:
        """Resume the countdown found in the store at construction.

        A phase whose target passed while the process was down is completed
        right away, as if its last tick had been observed on time.
        """
        recovered = self.recoverable
        if recovered is None:
            return False
        self.recoverable = None
        if recovered.target_at is None:
            logger.warning("Recoverable timer state has no target; discarding it")
            self.stop()
            return False

        now = self._now()
        self._state = replace(recovered, last_update=now)
        self._engine.set_target_time(
            recovered.target_at,
            recovered.mode,
            recovered.started_at,
            paused_at=recovered.paused_at,
        )
        self.remaining = self._state.remaining(now)
        logger.info(
            f"Recovered {recovered.mode.value} session {recovered.session_id} with {self.remaining}ms left"
        )
        self._commit()

        if not self._state.is_paused and self.remaining <= 0:
            self._complete(ended_at=recovered.target_at)
        return True

    def discard_recovery(self) -> None:
        recovered = self.recoverable
        session_id = recovered.session_id if recovered is not None else self._state.session_id
        if session_id is not None:
            try:
                self._store.delete_session(session_id)
            except StorageError:
                logger.error(f"Failed to delete abandoned session {session_id}")
                raise
            logger.info(f"Discarded recoverable session {session_id}")
        self.recoverable = None
        self.stop()

    def recalculate(self) -> None:
        if self._state.target_at is None:
            return
        now = self._now()
        self._state.last_update = now
        self.remaining = self._state.remaining(now)
        self.remaining_changed.emit(self.remaining)

    def close(self) -> None:
        self._unsubscribe()
        if self._engine.visibility is not None:
            self._engine.visibility.remove_listener(self._on_visibility_changed)

    # ---- Internals ----

    def _complete(self, ended_at: int | None) -> None:
        mode = self._state.mode
        if mode == TimerMode.IDLE:
            return
        ended_at = ended_at if ended_at is not None else self._now()
        session_id = self._state.session_id
        logger.info(f"Completed {mode.value} (session {session_id})")

        if mode == TimerMode.WARMUP:
            self.phase_completed.emit(mode.value)
            self.start_focus()
            return

        if mode == TimerMode.FOCUS:
            failure: StorageError | None = None
            if session_id is not None:
                actual_focus_ms = self._elapsed(ended_at, self.focus_duration_ms)
                try:
                    self._store.complete_session(
                        session_id,
                        actual_focus_ms=actual_focus_ms,
                        mood_end=self._resolve_mood_end(session_id),
                    )
                except StorageError as exc:
                    logger.error(f"Failed to mark session {session_id} completed: {exc}")
                    failure = exc
                else:
                    self.session_completed.emit(session_id)
            self.phase_completed.emit(mode.value)
            self.start_break()
            if failure is not None:
                raise failure
            return

        failure = None
        if session_id is not None:
            try:
                self._store.update_session(session_id, actual_break_ms=self._elapsed(ended_at, self.break_duration_ms))
            except StorageError as exc:
                logger.error(f"Failed to record break time for session {session_id}: {exc}")
                failure = exc
        self.phase_completed.emit(mode.value)
        self.stop()
        if failure is not None:
            raise failure

    def _elapsed(self, ended_at: int, planned_ms: int) -> int:
        if self._state.started_at is None:
            return planned_ms
        return max(0, ended_at - self._state.started_at)

    def _resolve_mood_end(self, session_id: int) -> Mood | None:
        if self.mood is None:
            return None
        try:
            record = self._store.get_session(session_id)
        except StorageError as exc:
            logger.warning(f"Skipping end mood for session {session_id}: {exc}")
            return None
        if record is None or record.mood_start == self.mood:
            return None
        return self.mood

    def _begin_phase(self, mode: TimerMode, duration_ms: int) -> None:
        self._engine.start(duration_ms, mode)
        engine_state = self._engine.get_state()
        self._state.mode = mode
        self._state.started_at = engine_state.started_at
        self._state.target_at = engine_state.target_at
        self._state.paused_at = None
        self._state.last_update = engine_state.last_update
        self.remaining = duration_ms
        logger.info(f"Started {mode.value} for {duration_ms}ms (session {self._state.session_id})")
        self._commit()

    def _sync_target(self) -> None:
        self._state.target_at = self._engine.get_state().target_at
        self.recalculate()
        self._commit()

    def _create_session(self, warmup_skipped: bool) -> int:
        try:
            return self._store.create_session(
                focus_ms=self.focus_duration_ms,
                break_ms=self.break_duration_ms,
                mood_start=self.mood,
                task_note=self.task_note,
                warmup_skipped=warmup_skipped,
            )
        except StorageError as exc:
            logger.error(f"Failed to create session record: {exc}")
            raise

    def _commit(self) -> None:
        self.state_changed.emit()
        self.remaining_changed.emit(self.remaining)
        self._persist()

    def _persist(self) -> None:
        if self._state.mode == TimerMode.IDLE:
            return
        try:
            self._store.set_timer_state(replace(self._state))
        except StorageError as exc:
            logger.error(f"Failed to persist timer state: {exc}")
            raise

    def _clear_persisted(self) -> None:
        try:
            self._store.clear_timer_state()
        except StorageError as exc:
            logger.error(f"Failed to clear persisted timer state: {exc}")
            raise

    def _load_prefs(self) -> UserPrefs:
        try:
            return self._store.get_user_prefs()
        except StorageError as exc:
            logger.warning(f"Using default preferences: {exc}")
            return UserPrefs()

    def _read_recoverable(self) -> TimerState | None:
        try:
            persisted = self._store.get_timer_state()
        except StorageError as exc:
            logger.warning(f"Treating unreadable timer state as absent: {exc}")
            return None
        if persisted is None or persisted.mode == TimerMode.IDLE:
            return None
        logger.info(f"Found recoverable {persisted.mode.value} session {persisted.session_id}")
        return persisted

    def _on_tick(self, remaining: int) -> None:
        if self._state.mode == TimerMode.IDLE or self._state.is_paused:
            return
        self.remaining = remaining
        self._state.last_update = self._now()
        self.remaining_changed.emit(remaining)

    def _on_engine_complete(self) -> None:
        if self._state.mode == TimerMode.IDLE or self._state.is_paused:
            return
        self.complete()

    def _on_drift_detected(self, drift: int) -> None:
        self.drift_detected.emit(drift)
        self.recalculate()

    def _on_visibility_changed(self, visible: bool) -> None:
        if not visible or not self._state.is_running:
            return
        expected = self._state.last_update + self._engine.update_interval_ms
        if abs(self._now() - expected) > self._engine.drift_threshold_ms:
            self.recalculate()
