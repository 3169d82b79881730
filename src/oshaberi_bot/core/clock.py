"""Millisecond wall clock shared by the quota repositories."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)
