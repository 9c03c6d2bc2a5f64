from __future__ import annotations

from typing import Callable

import pytest
from PyQt6.QtCore import QCoreApplication

from tomatine.core.scheduler import Scheduler, SchedulingStrategy
from tomatine.data.storage import Storage

T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ManualScheduler(Scheduler):
    """Scheduler whose ticks are fired by the test."""

    def __init__(self, strategy: SchedulingStrategy = SchedulingStrategy.INTERVAL) -> None:
        self.strategy = strategy
        self._callback: Callable[[], None] | None = None
        self.arm_count = 0

    @property
    def is_armed(self) -> bool:
        return self._callback is not None

    def arm(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self.arm_count += 1

    def disarm(self) -> None:
        self._callback = None

    def fire(self) -> None:
        if self._callback is not None:
            self._callback()


@pytest.fixture(scope="session", autouse=True)
def qapp() -> QCoreApplication:
    return QCoreApplication.instance() or QCoreApplication([])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def interval() -> ManualScheduler:
    return ManualScheduler(SchedulingStrategy.INTERVAL)


@pytest.fixture
def frame() -> ManualScheduler:
    return ManualScheduler(SchedulingStrategy.FRAME)


@pytest.fixture
def storage(tmp_path) -> Storage:
    storage = Storage(tmp_path / "tomatine.db")
    storage.init_db()
    return storage
