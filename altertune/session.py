from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from altertune.clock import MonotonicTimeline
from altertune.expander import PatternExpander, step_duration
from altertune.models import ArpEvent, ArpeggioPattern, Fingering, ScheduledNote, TransportState, Tuning
from altertune.scheduler import LookaheadScheduler
from altertune.transport import TransportModel
from altertune.validator import DOC_VERSION, ValidationError, validate_workspace


def default_pattern() -> ArpeggioPattern:
    # High string down to the low string and back up, one pluck every two steps
    order = [5, 4, 3, 2, 1, 0, 1, 2]
    return ArpeggioPattern(
        steps_per_bar=16,
        bars=1,
        events=[ArpEvent(step=i * 2, strings=[s]) for i, s in enumerate(order)],
    )


@dataclass
class PlaybackContext:
    """What one running period of the scheduler reads on every tick.

    Holds a non-owning reference to the session, so edits made to its
    tuning, fingering, pattern or transport show up on the next window.
    """

    session: "Session"
    pattern_start: float
    expander: PatternExpander

    def window(self, t0: float, t1: float) -> Sequence[ScheduledNote]:
        s = self.session
        return self.expander.compute_window(
            t0, t1, self.pattern_start, s.transport.state, s.pattern, s.tuning, s.fingering
        )


class Session:
    """Owns the editable configuration and drives playback from the transport."""

    def __init__(
        self,
        sink,
        tuning: Optional[Tuning] = None,
        fingering: Optional[Fingering] = None,
        pattern: Optional[ArpeggioPattern] = None,
        transport: Optional[TransportModel] = None,
        timeline=None,
        expander: Optional[PatternExpander] = None,
        scheduler: Optional[LookaheadScheduler] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.sink = sink
        self.tuning = tuning or Tuning.standard()
        self.fingering = fingering or Fingering(frets=[0] * len(self.tuning))
        self.pattern = pattern or default_pattern()
        self.transport = transport or TransportModel(TransportState(bpm=100.0))
        self.timeline = timeline or MonotonicTimeline()
        self.expander = expander or PatternExpander()
        self.scheduler = scheduler or LookaheadScheduler(sink, self.timeline, loop=loop)
        self.context: Optional[PlaybackContext] = None
        self._unsubscribe = self.transport.subscribe(self._on_playing_changed)

    # --- Transport ---
    def _on_playing_changed(self, playing: bool) -> None:
        if playing:
            self.context = PlaybackContext(self, self.timeline.now(), self.expander)
            self.scheduler.start(self.context.window, self.context.pattern_start)
        else:
            self.scheduler.stop()
            self.context = None
            # Notes already handed to the sink would otherwise still sound
            self.sink.panic()

    async def play(self) -> None:
        # The sink must be able to sound before the first window is handed over
        await self.sink.resume()
        self.transport.set_playing(True)

    def stop(self) -> None:
        self.transport.set_playing(False)

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    # --- Edits ---
    def apply_fingering(self, frets: List[int], name: Optional[str] = None) -> None:
        self.fingering.frets = [int(f) for f in frets]
        self.fingering.name = name

    def get_state(self) -> Dict[str, Any]:
        ctx = self.context
        step = None
        if ctx is not None and self.transport.playing:
            d = step_duration(self.transport.bpm, self.pattern.steps_per_bar)
            total = self.pattern.total_steps
            if d > 0 and total > 0:
                step = int((self.timeline.now() - ctx.pattern_start) // d) % total
        return {
            "transport": "playing" if self.transport.playing else "stopped",
            "bpm": self.transport.bpm,
            "scheduler": self.scheduler.state,
            "step": step,
            "totalSteps": self.pattern.total_steps,
            "strings": len(self.tuning),
        }

    def get_metrics(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "scheduler": self.scheduler.get_metrics(),
            "expander": self.expander.get_metrics(),
        }
        if hasattr(self.sink, "get_metrics"):
            out["sink"] = self.sink.get_metrics()
        return out

    # --- Document ---
    def to_doc(self, doc_version: int = 0) -> Dict[str, Any]:
        return {
            "version": DOC_VERSION,
            "docVersion": int(doc_version),
            "tuning": self.tuning.to_dict(),
            "fingering": self.fingering.to_dict(),
            "pattern": self.pattern.to_dict(),
            "transport": self.transport.state.to_dict(),
        }

    def load_doc(self, doc: Dict[str, Any]) -> None:
        """Replace the configuration from a workspace document.

        The playing flag is kept; a running scheduler picks up the new
        configuration on its next tick.
        """
        errors = validate_workspace(doc)
        if errors:
            raise ValidationError("; ".join(errors))
        self.tuning = Tuning.from_dict(doc["tuning"])
        self.fingering = Fingering.from_dict(doc["fingering"])
        self.pattern = ArpeggioPattern.from_dict(doc["pattern"])
        loaded = TransportState.from_dict(doc.get("transport", {}))
        st = self.transport.state
        st.bpm = loaded.bpm
        st.swing = loaded.swing
        st.humanize_ms = loaded.humanize_ms

    @classmethod
    def from_doc(cls, doc: Dict[str, Any], sink, **kwargs) -> "Session":
        session = cls(sink, **kwargs)
        session.load_doc(doc)
        return session
