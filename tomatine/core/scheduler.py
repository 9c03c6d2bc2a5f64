from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

from PyQt6.QtCore import QCoreApplication, QObject, Qt, QTimer
from PyQt6.QtGui import QGuiApplication

from tomatine.core.clock import Clock, system_clock
from tomatine.core.models import FRAME_INTERVAL_MS, TIMER_UPDATE_INTERVAL_MS


class SchedulingStrategy(str, Enum):
    FRAME = "frame"
    INTERVAL = "interval"


class Scheduler(ABC):
    """A periodic trigger the engine can arm and disarm.

    At most one callback is armed at a time; arming again replaces it.
    """

    strategy: SchedulingStrategy

    @property
    @abstractmethod
    def is_armed(self) -> bool:
        ...

    @abstractmethod
    def arm(self, callback: Callable[[], None]) -> None:
        """Start calling ``callback`` at the nominal cadence."""

    @abstractmethod
    def disarm(self) -> None:
        """Cancel pending calls. Safe when not armed."""


class IntervalScheduler(Scheduler):
    """Coarse ``QTimer`` firing once per nominal interval."""

    strategy = SchedulingStrategy.INTERVAL

    def __init__(self, interval_ms: int = TIMER_UPDATE_INTERVAL_MS, parent: QObject | None = None) -> None:
        if interval_ms <= 0:
            raise ValueError("Interval must be positive")
        self._callback: Callable[[], None] | None = None
        self._timer = QTimer(parent)
        self._timer.setTimerType(Qt.TimerType.CoarseTimer)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._on_timeout)

    @property
    def is_armed(self) -> bool:
        return self._callback is not None

    def arm(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._timer.start()

    def disarm(self) -> None:
        self._timer.stop()
        self._callback = None

    def _on_timeout(self) -> None:
        if self._callback is not None:
            self._callback()


class FrameScheduler(Scheduler):
    """Frame-paced ``QTimer`` throttled down to the nominal interval.

    The precise timer wakes every frame, but the callback only runs once the
    nominal interval has elapsed since the previous run. The first run happens
    on the first frame after arming.
    """

    strategy = SchedulingStrategy.FRAME

    def __init__(
        self,
        interval_ms: int = TIMER_UPDATE_INTERVAL_MS,
        frame_interval_ms: int = FRAME_INTERVAL_MS,
        clock: Clock | None = None,
        parent: QObject | None = None,
    ) -> None:
        if interval_ms <= 0 or frame_interval_ms <= 0:
            raise ValueError("Intervals must be positive")
        self._interval_ms = interval_ms
        self._clock = clock or system_clock
        self._callback: Callable[[], None] | None = None
        self._last_fired: int | None = None
        self._timer = QTimer(parent)
        self._timer.setTimerType(Qt.TimerType.PreciseTimer)
        self._timer.setInterval(frame_interval_ms)
        self._timer.timeout.connect(self.on_frame)

    @property
    def is_armed(self) -> bool:
        return self._callback is not None

    def arm(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._last_fired = None
        self._timer.start()

    def disarm(self) -> None:
        self._timer.stop()
        self._callback = None
        self._last_fired = None

    def on_frame(self) -> None:
        if self._callback is None:
            return
        now = self._clock()
        if self._last_fired is not None and now - self._last_fired < self._interval_ms:
            return
        self._last_fired = now
        self._callback()


def frame_scheduling_available() -> bool:
    """Frame pacing needs a GUI application; headless hosts fall back to intervals."""
    return isinstance(QCoreApplication.instance(), QGuiApplication)
