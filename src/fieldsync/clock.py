"""Wall-clock helpers.

Every timestamp the engine persists (``cached_at``, ``enqueued_at``,
message ``timestamp``) is an integer count of milliseconds since the
epoch.  Components accept a :data:`Clock` callable so tests can drive
time explicitly.
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
