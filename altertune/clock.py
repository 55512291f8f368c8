from __future__ import annotations

import time
from typing import Callable, Optional


TimeSource = Callable[[], float]


class MonotonicTimeline:
    """Shared timeline in fractional seconds, starting near 0.0.

    The scheduler and the audio sink must read the same instance so that
    note onsets computed by one are played at the right moment by the other.
    """

    def __init__(self, source: Optional[TimeSource] = None):
        self._source: TimeSource = source or time.monotonic
        self._origin = self._source()

    def now(self) -> float:
        return self._source() - self._origin

    def to_source(self, t: float) -> float:
        """Convert a timeline instant back to the underlying clock."""
        return self._origin + t


def percentile(values, pct: float) -> float:
    if not values:
        return 0.0
    xs = sorted(values)
    k = (len(xs) - 1) * pct
    f = int(k)
    c = min(f + 1, len(xs) - 1)
    if f == c:
        return xs[f]
    d0 = xs[f] * (c - k)
    d1 = xs[c] * (k - f)
    return d0 + d1
