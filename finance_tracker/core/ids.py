"""Unique integer ids for stored records."""
import time
from typing import Callable, Iterable, Optional


class IdGenerator:
    """Millisecond-timestamp ids, bumped so they never repeat.

    Each id is at least the current time in milliseconds and strictly greater
    than both the last id issued and any id already present in the target
    collection, so ids stay unique even when many are created within the same
    millisecond (e.g. recurring occurrences).
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._last = 0

    def next_id(self, existing: Iterable[int] = ()) -> int:
        candidate = int(self._clock() * 1000)
        floor = max(existing, default=0)
        candidate = max(candidate, self._last + 1, floor + 1)
        self._last = candidate
        return candidate
