from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def system_clock() -> int:
    """Wall-clock epoch time in milliseconds. Targets are compared against it across restarts."""
    return int(time.time() * 1000)
