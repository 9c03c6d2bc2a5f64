from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable

from tomatine.core.clock import Clock, system_clock
from tomatine.core.models import DRIFT_THRESHOLD_MS, FRAME_INTERVAL_MS, TIMER_UPDATE_INTERVAL_MS, TimerMode
from tomatine.core.scheduler import (
    FrameScheduler,
    IntervalScheduler,
    Scheduler,
    SchedulingStrategy,
    frame_scheduling_available,
)
from tomatine.core.visibility import VisibilityCoordinator, VisibilitySource

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], None]
CompleteCallback = Callable[[], None]
DriftCallback = Callable[[int], None]


@dataclass
class EngineState:
    mode: TimerMode = TimerMode.IDLE
    target_at: int | None = None
    started_at: int | None = None
    paused_at: int | None = None
    last_update: int = 0
    is_running: bool = False


@dataclass
class _Subscription:
    on_tick: TickCallback | None = None
    on_complete: CompleteCallback | None = None
    on_drift_detected: DriftCallback | None = None


class TimerEngine:
    """Wall-clock anchored countdown detached from any UI framework.

    The engine owns a target timestamp and recomputes the remaining time on
    every tick of whichever scheduler is active. Drift correction only
    changes when the next tick runs, never the target, so the elapsed time is
    right even after the process was suspended.
    """

    def __init__(
        self,
        on_tick: TickCallback | None = None,
        on_complete: CompleteCallback | None = None,
        on_drift_detected: DriftCallback | None = None,
        *,
        update_interval_ms: int = TIMER_UPDATE_INTERVAL_MS,
        drift_threshold_ms: int = DRIFT_THRESHOLD_MS,
        clock: Clock | None = None,
        interval_scheduler: Scheduler | None = None,
        frame_scheduler: Scheduler | None = None,
        visibility: VisibilitySource | None = None,
    ) -> None:
        if update_interval_ms <= 0:
            raise ValueError("Update interval must be positive")
        self._update_interval_ms = update_interval_ms
        self._drift_threshold_ms = drift_threshold_ms
        self._clock = clock or system_clock
        self._interval_scheduler = interval_scheduler or IntervalScheduler(update_interval_ms)
        self._frame_scheduler = frame_scheduler
        self._active: Scheduler | None = None
        self._visible = True
        self._countdown = 0
        self._destroyed = False
        self._subscriptions: list[_Subscription] = []
        self._state = EngineState(last_update=self._clock())

        if on_tick or on_complete or on_drift_detected:
            self.subscribe(on_tick=on_tick, on_complete=on_complete, on_drift_detected=on_drift_detected)

        self.visibility: VisibilityCoordinator | None = None
        if visibility is not None:
            self.visibility = VisibilityCoordinator(visibility, self)
            self.visibility.attach()

    @property
    def mode(self) -> TimerMode:
        return self._state.mode

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def update_interval_ms(self) -> int:
        return self._update_interval_ms

    @property
    def drift_threshold_ms(self) -> int:
        return self._drift_threshold_ms

    @property
    def strategy(self) -> SchedulingStrategy | None:
        """Strategy of the armed scheduler, or ``None`` while the loop is halted."""
        return self._active.strategy if self._active is not None else None

    def now(self) -> int:
        return self._clock()

    def subscribe(
        self,
        on_tick: TickCallback | None = None,
        on_complete: CompleteCallback | None = None,
        on_drift_detected: DriftCallback | None = None,
    ) -> Callable[[], None]:
        subscription = _Subscription(on_tick, on_complete, on_drift_detected)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    # ---- Countdown control ----

    def start(self, duration_ms: int, mode: TimerMode = TimerMode.FOCUS) -> None:
        if duration_ms <= 0:
            raise ValueError("Duration must be positive")
        now = self._clock()
        self._stop_update_loop()
        self._countdown += 1
        self._state = EngineState(
            mode=mode,
            target_at=now + duration_ms,
            started_at=now,
            paused_at=None,
            last_update=now,
            is_running=True,
        )
        logger.debug(f"Countdown started: mode={mode.value} duration={duration_ms}ms")
        self._start_update_loop()

    def pause(self) -> None:
        if not self._state.is_running or self._state.paused_at is not None:
            return
        now = self._clock()
        self._state.paused_at = now
        self._state.is_running = False
        self._state.last_update = now
        self._stop_update_loop()

    def resume(self) -> None:
        if self._state.is_running or self._state.paused_at is None or self._state.target_at is None:
            return
        now = self._clock()
        self._state.target_at += now - self._state.paused_at
        self._state.paused_at = None
        self._state.is_running = True
        self._state.last_update = now
        self._start_update_loop()

    def stop(self) -> None:
        self._countdown += 1
        self._state = EngineState(last_update=self._clock())
        self._stop_update_loop()

    def get_remaining(self) -> int:
        """Time left on a running countdown. Idle and paused engines report 0."""
        if self._state.target_at is None or self._state.paused_at is not None:
            return 0
        return max(0, self._state.target_at - self._clock())

    def get_state(self) -> EngineState:
        return replace(self._state)

    def set_target_time(
        self,
        target_at: int,
        mode: TimerMode,
        started_at: int | None = None,
        paused_at: int | None = None,
    ) -> None:
        """Restore a countdown from persisted timestamps.

        The loop is armed only when the target is still in the future and the
        countdown was not paused.
        """
        now = self._clock()
        self._stop_update_loop()
        self._countdown += 1
        self._state = EngineState(
            mode=mode,
            target_at=target_at,
            started_at=started_at or now,
            paused_at=paused_at,
            last_update=now,
            is_running=paused_at is None and target_at > now,
        )
        if self._state.is_running:
            self._start_update_loop()

    def add_time(self, additional_ms: int) -> None:
        if additional_ms < 0:
            raise ValueError("Use subtract_time to shorten the countdown")
        if self._state.target_at is None:
            return
        self._state.target_at += additional_ms
        self._state.last_update = self._clock()

    def subtract_time(self, reduce_ms: int) -> None:
        """Shorten the countdown. The target never moves before now, or before
        the pause instant while paused."""
        if reduce_ms < 0:
            raise ValueError("Use add_time to extend the countdown")
        if self._state.target_at is None:
            return
        now = self._clock()
        floor = self._state.paused_at if self._state.paused_at is not None else now
        self._state.target_at = max(floor, self._state.target_at - reduce_ms)
        self._state.last_update = now

    # ---- Drift and visibility ----

    def check_and_correct_drift(self) -> bool:
        if not self._state.is_running or self._state.target_at is None:
            return False
        now = self._clock()
        expected = self._state.last_update + self._update_interval_ms
        drift = abs(now - expected)
        if drift <= self._drift_threshold_ms:
            return False

        logger.warning(f"Timer drift detected: {drift}ms, recomputing remaining time")
        self._state.last_update = now
        self._emit("on_drift_detected", drift)
        self._perform_update()
        return True

    def set_visible(self, visible: bool) -> None:
        was_visible = self._visible
        self._visible = visible
        if was_visible == visible or not self._state.is_running:
            return
        if visible:
            # Catch up before choosing the new strategy; this tick may complete the countdown.
            self.check_and_correct_drift()
            if not self._state.is_running:
                return
        self._switch_strategy()

    def destroy(self) -> None:
        self._destroyed = True
        self.stop()
        if self.visibility is not None:
            self.visibility.detach()
            self.visibility = None
        self._subscriptions.clear()

    # ---- Update loop ----

    def _preferred_scheduler(self) -> Scheduler:
        if self._frame_scheduler is not None and self._visible:
            return self._frame_scheduler
        return self._interval_scheduler

    def _start_update_loop(self) -> None:
        if self._active is not None or self._destroyed:
            return
        scheduler = self._preferred_scheduler()
        scheduler.arm(self._on_scheduled_tick)
        self._active = scheduler

    def _stop_update_loop(self) -> None:
        if self._active is None:
            return
        self._active.disarm()
        self._active = None

    def _switch_strategy(self) -> None:
        if self._active is self._preferred_scheduler():
            return
        self._stop_update_loop()
        self._start_update_loop()
        logger.debug(f"Scheduling strategy switched to {self.strategy}")

    def _on_scheduled_tick(self) -> None:
        if not self._state.is_running:
            return
        if self.check_and_correct_drift():
            return
        self._perform_update()

    def _perform_update(self) -> None:
        if self._state.target_at is None or self._state.paused_at is not None:
            return
        now = self._clock()
        remaining = max(0, self._state.target_at - now)
        self._state.last_update = now

        completed = remaining <= 0 and self._state.is_running
        if completed:
            self._state.is_running = False
            self._stop_update_loop()

        countdown = self._countdown
        self._emit("on_tick", remaining)
        # A tick listener may have replaced the countdown; its completion is no longer ours to report.
        if completed and countdown == self._countdown:
            logger.info(f"Countdown complete: mode={self._state.mode.value}")
            self._emit("on_complete")

    def _emit(self, name: str, *args: int) -> None:
        if self._destroyed:
            return
        for subscription in list(self._subscriptions):
            callback = getattr(subscription, name)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Timer {name} callback failed")


def create_timer_engine(
    on_tick: TickCallback | None = None,
    on_complete: CompleteCallback | None = None,
    on_drift_detected: DriftCallback | None = None,
    *,
    update_interval_ms: int = TIMER_UPDATE_INTERVAL_MS,
    drift_threshold_ms: int = DRIFT_THRESHOLD_MS,
    frame_interval_ms: int | None = FRAME_INTERVAL_MS,
    clock: Clock | None = None,
    visibility: VisibilitySource | None = None,
) -> TimerEngine:
    """Builds an engine on Qt schedulers, using frame pacing when a GUI application is running."""
    clock = clock or system_clock
    frame_scheduler = None
    if frame_interval_ms is not None and frame_scheduling_available():
        frame_scheduler = FrameScheduler(update_interval_ms, frame_interval_ms, clock=clock)
    return TimerEngine(
        on_tick,
        on_complete,
        on_drift_detected,
        update_interval_ms=update_interval_ms,
        drift_threshold_ms=drift_threshold_ms,
        clock=clock,
        interval_scheduler=IntervalScheduler(update_interval_ms),
        frame_scheduler=frame_scheduler,
        visibility=visibility,
    )
