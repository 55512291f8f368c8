from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Sequence

from altertune.clock import percentile
from altertune.models import ScheduledNote


WindowProvider = Callable[[float, float], Sequence[ScheduledNote]]

STOPPED = "stopped"
RUNNING = "running"

LOOKAHEAD_SEC = 0.025
SCHEDULE_AHEAD_SEC = 0.1


class LookaheadScheduler:
    """Polls a window provider and forwards its notes to an audio sink.

    Every `lookahead` seconds the window [last_scheduled_time,
    now + schedule_ahead) is requested and then becomes the new boundary,
    so one running period covers the timeline without gaps or overlaps.
    Runs as a timer callback on an asyncio event loop; stop() cancels the
    pending timer before returning.
    """

    def __init__(
        self,
        sink,
        timeline,
        lookahead: float = LOOKAHEAD_SEC,
        schedule_ahead: float = SCHEDULE_AHEAD_SEC,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        if lookahead <= 0:
            raise ValueError("lookahead must be positive")
        if schedule_ahead <= lookahead:
            raise ValueError("schedule_ahead must be longer than lookahead")
        self.sink = sink
        self.timeline = timeline
        self.lookahead = float(lookahead)
        self.schedule_ahead = float(schedule_ahead)
        self._loop_arg = loop
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._state = STOPPED
        self._provider: Optional[WindowProvider] = None
        self._handle: Optional[Any] = None
        self._last_scheduled_time: Optional[float] = None
        self._next_due = 0.0
        self._lateness_ms: Deque[float] = deque(maxlen=512)
        self.metrics: Dict[str, int] = {
            "ticks": 0,
            "windows": 0,
            "notes": 0,
            "skipped_ticks": 0,
            "provider_errors": 0,
            "sink_errors": 0,
        }

    @property
    def state(self) -> str:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == RUNNING

    @property
    def last_scheduled_time(self) -> Optional[float]:
        return self._last_scheduled_time

    # --- Public control ---
    def start(self, window_provider: WindowProvider, start_time: Optional[float] = None) -> None:
        if self._state == RUNNING:
            self.stop()
        self._loop = self._loop_arg or asyncio.get_running_loop()
        self._provider = window_provider
        # Not retroactive: nothing before this instant is ever scheduled
        self._last_scheduled_time = self.timeline.now() if start_time is None else float(start_time)
        self._state = RUNNING
        self._next_due = self._loop.time()
        # First window right away so events at the start instant are not late
        self._tick()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._state = STOPPED
        self._provider = None
        self._last_scheduled_time = None

    def get_metrics(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.metrics)
        samples = list(self._lateness_ms)
        out["tickLateMsP95"] = round(percentile(samples, 0.95), 3)
        out["tickLateMsP99"] = round(percentile(samples, 0.99), 3)
        return out

    # --- Tick loop ---
    def _tick(self) -> None:
        self._handle = None
        if self._state != RUNNING or self._loop is None:
            return
        loop = self._loop
        now = loop.time()
        self._lateness_ms.append(max(0.0, (now - self._next_due) * 1000.0))
        self.metrics["ticks"] += 1
        self.run_once()
        if self._state != RUNNING:
            return
        self._next_due += self.lookahead
        delay = self._next_due - loop.time()
        if delay < 0:
            # Fell behind; resume the cadence from now instead of bursting
            self._next_due = loop.time()
            delay = 0.0
        self._handle = loop.call_later(delay, self._tick)

    def run_once(self) -> int:
        """Schedule the next window; returns the number of notes delivered."""
        if self._state != RUNNING or self._provider is None or self._last_scheduled_time is None:
            return 0
        window_start = self._last_scheduled_time
        window_end = self.timeline.now() + self.schedule_ahead
        if window_end <= window_start:
            self.metrics["skipped_ticks"] += 1
            return 0
        try:
            notes = list(self._provider(window_start, window_end))
        except Exception:
            self.metrics["provider_errors"] += 1
            notes = []
        notes.sort(key=lambda n: n.time)
        delivered = 0
        for n in notes:
            if self._state != RUNNING:
                return delivered
            try:
                self.sink.trigger_note(n.time, n.freq, n.velocity, n.length_sec)
            except Exception:
                self.metrics["sink_errors"] += 1
                continue
            delivered += 1
        self.metrics["windows"] += 1
        self.metrics["notes"] += delivered
        if self._state == RUNNING:
            self._last_scheduled_time = window_end
        return delivered
