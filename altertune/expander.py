from __future__ import annotations

import math
from typing import Dict, List

from altertune.models import ArpeggioPattern, Fingering, ScheduledNote, TransportState, Tuning
from altertune.theory import A4_HZ, transposed_freq


BEATS_PER_BAR = 4
DEFAULT_STRUM_MS = 8.0
DEFAULT_LENGTH_STEPS = 2.0
DEFAULT_VELOCITY = 0.8
LENGTH_FACTOR = 0.95
MIN_LENGTH_SEC = 0.01
MAX_EVENTS_PER_WINDOW = 4096


def step_duration(bpm: float, steps_per_bar: int) -> float:
    """Seconds per step (4/4), or 0.0 when the inputs give no usable value."""
    try:
        bpm = float(bpm)
        spb = float(steps_per_bar)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(bpm) or bpm <= 0 or not math.isfinite(spb) or spb <= 0:
        return 0.0
    d = (60.0 / bpm) * (BEATS_PER_BAR / spb)
    if not math.isfinite(d) or d <= 0:
        return 0.0
    return d


def pattern_duration(bpm: float, steps_per_bar: int, bars: int) -> float:
    d = step_duration(bpm, steps_per_bar)
    if d <= 0 or bars <= 0:
        return 0.0
    total = d * steps_per_bar * bars
    return total if math.isfinite(total) and total > 0 else 0.0


class PatternExpander:
    """Turns the looping arpeggio pattern into timed notes for a window.

    - step_duration = (60 / bpm) * (4 / stepsPerBar)
    - Repetition k starts at pattern_start + k * pattern_duration.
    - A note belongs to the window [t0, t1) of its event onset; strum
      offsets are added after that test, so consecutive windows never
      emit the same event twice.
    - At most max_events notes are produced per call.
    """

    def __init__(
        self,
        default_strum_ms: float = DEFAULT_STRUM_MS,
        default_length_steps: float = DEFAULT_LENGTH_STEPS,
        default_velocity: float = DEFAULT_VELOCITY,
        length_factor: float = LENGTH_FACTOR,
        min_length_sec: float = MIN_LENGTH_SEC,
        max_events: int = MAX_EVENTS_PER_WINDOW,
        a4: float = A4_HZ,
    ) -> None:
        self.default_strum_ms = float(default_strum_ms)
        self.default_length_steps = float(default_length_steps)
        self.default_velocity = float(default_velocity)
        self.length_factor = float(length_factor)
        self.min_length_sec = float(min_length_sec)
        self.max_events = int(max_events)
        self.a4 = float(a4)
        self.metrics: Dict[str, int] = {
            "windows": 0,
            "invalid_windows": 0,
            "capped_windows": 0,
            "walk_bounded": 0,
            "notes": 0,
        }

    def get_metrics(self) -> Dict[str, int]:
        return dict(self.metrics)

    def compute_window(
        self,
        t0: float,
        t1: float,
        pattern_start: float,
        transport: TransportState,
        pattern: ArpeggioPattern,
        tuning: Tuning,
        fingering: Fingering,
    ) -> List[ScheduledNote]:
        self.metrics["windows"] += 1
        if not (math.isfinite(t0) and math.isfinite(t1) and math.isfinite(pattern_start)) or t1 <= t0:
            self.metrics["invalid_windows"] += 1
            return []
        if pattern.bars <= 0 or not pattern.events:
            self.metrics["invalid_windows"] += 1
            return []
        step_dur = step_duration(transport.bpm, pattern.steps_per_bar)
        total_steps = pattern.steps_per_bar * pattern.bars
        pattern_dur = pattern_duration(transport.bpm, pattern.steps_per_bar, pattern.bars)
        if step_dur <= 0 or pattern_dur <= 0:
            self.metrics["invalid_windows"] += 1
            return []

        opens = tuning.open_pitches()
        # Events outside one cycle would overlap the next repetition
        events = [e for e in pattern.events if 0 <= e.step < total_steps]
        if not events:
            self.metrics["invalid_windows"] += 1
            return []

        rel = (t0 - pattern_start) / pattern_dur
        k = math.floor(rel) if math.isfinite(rel) else 0
        out: List[ScheduledNote] = []
        capped = False
        bounded = False
        reps = 0
        while not capped:
            base = pattern_start + k * pattern_dur
            if base >= t1:
                break
            reps += 1
            if reps > self.max_events:
                # Fully muted patterns emit nothing; bound the walk anyway
                bounded = True
                break
            for ev in events:
                ev_time = base + ev.step * step_dur
                if ev_time < t0 or ev_time >= t1:
                    continue
                spread_ms = self.default_strum_ms if ev.strum_ms is None else ev.strum_ms
                length_steps = self.default_length_steps if ev.length_steps is None else ev.length_steps
                velocity = self.default_velocity if ev.velocity is None else ev.velocity
                length_sec = max(self.min_length_sec, length_steps * step_dur * self.length_factor)
                for i, s_idx in enumerate(ev.strings):
                    open_pitch = opens.get(s_idx)
                    if open_pitch is None:
                        continue
                    fret = fingering.fret(s_idx)
                    if fret < 0:
                        continue  # muted
                    out.append(
                        ScheduledNote(
                            time=ev_time + (i * spread_ms) / 1000.0,
                            freq=transposed_freq(open_pitch, fret, self.a4),
                            velocity=velocity,
                            length_sec=length_sec,
                        )
                    )
                    if len(out) >= self.max_events:
                        capped = True
                        break
                if capped:
                    break
            k += 1
        if capped:
            self.metrics["capped_windows"] += 1
        if bounded:
            self.metrics["walk_bounded"] += 1
        self.metrics["notes"] += len(out)
        out.sort(key=lambda n: n.time)
        return out


_default_expander = PatternExpander()


def compute_window(
    t0: float,
    t1: float,
    pattern_start: float,
    transport: TransportState,
    pattern: ArpeggioPattern,
    tuning: Tuning,
    fingering: Fingering,
) -> List[ScheduledNote]:
    """compute_window with the default constants."""
    return _default_expander.compute_window(t0, t1, pattern_start, transport, pattern, tuning, fingering)
