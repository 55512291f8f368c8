from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


MAX_STRINGS = 12
MIN_FRET = -1  # muted
MAX_FRET = 24
MIN_STEPS_PER_BAR = 2
MAX_STEPS_PER_BAR = 64
MIN_BARS = 1
MAX_BARS = 16

# Grid cells toggled on in the sequencer start with these values
NEW_EVENT_VELOCITY = 0.8
NEW_EVENT_LENGTH_STEPS = 2


def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


@dataclass
class Pitch:
    note: str
    octave: int
    cents: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"note": self.note, "octave": int(self.octave)}
        if self.cents:
            out["cents"] = self.cents
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Pitch":
        return cls(note=str(d["note"]), octave=int(d["octave"]), cents=float(d.get("cents", 0.0) or 0.0))


@dataclass
class StringTuning:
    string_index: int
    pitch: Pitch

    def to_dict(self) -> Dict[str, Any]:
        return {"stringIndex": self.string_index, "pitch": self.pitch.to_dict()}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StringTuning":
        return cls(string_index=int(d["stringIndex"]), pitch=Pitch.from_dict(d["pitch"]))


STANDARD_PITCHES = (("E", 2), ("A", 2), ("D", 3), ("G", 3), ("B", 3), ("E", 4))


@dataclass
class Tuning:
    """Open-string pitches by string index; index 0 is the lowest string."""

    strings: List[StringTuning] = field(default_factory=list)
    name: Optional[str] = None

    @classmethod
    def standard(cls) -> "Tuning":
        return cls(
            strings=[StringTuning(i, Pitch(n, o)) for i, (n, o) in enumerate(STANDARD_PITCHES)],
            name="Standard (EADGBE)",
        )

    def __len__(self) -> int:
        return len(self.strings)

    def open_pitches(self) -> Dict[int, Pitch]:
        return {s.string_index: s.pitch for s in self.strings}

    def set_string_count(self, count: int) -> None:
        # New strings default to E2; indices are renumbered 0..n-1
        n = _clamp(int(count or 1), 1, MAX_STRINGS)
        kept = self.strings[:n]
        while len(kept) < n:
            kept.append(StringTuning(len(kept), Pitch("E", 2)))
        self.strings = [StringTuning(i, st.pitch) for i, st in enumerate(kept)]

    def set_note(self, index: int, note: str) -> None:
        for st in self.strings:
            if st.string_index == index:
                st.pitch = Pitch(note, st.pitch.octave, st.pitch.cents)

    def set_octave(self, index: int, octave: int) -> None:
        for st in self.strings:
            if st.string_index == index:
                st.pitch = Pitch(st.pitch.note, int(octave), st.pitch.cents)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "strings": [s.to_dict() for s in self.strings]}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Tuning":
        strings = [StringTuning.from_dict(s) for s in d.get("strings", [])]
        strings.sort(key=lambda s: s.string_index)
        return cls(strings=strings, name=d.get("name"))


@dataclass
class Fingering:
    """Fret per string index: -1 muted, 0 open, >=1 fretted."""

    frets: List[int] = field(default_factory=list)
    name: Optional[str] = None

    def fret(self, index: int) -> int:
        if 0 <= index < len(self.frets):
            return int(self.frets[index])
        return 0

    def set_fret(self, index: int, value: int) -> None:
        if index < 0:
            return
        while len(self.frets) <= index:
            self.frets.append(0)
        v = int(round(value)) if math.isfinite(value) else 0
        self.frets[index] = _clamp(v, MIN_FRET, MAX_FRET)

    def clear(self, strings_count: int) -> None:
        self.frets = [0] * max(0, int(strings_count))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "frets": [int(f) for f in self.frets]}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Fingering":
        return cls(frets=[int(f) for f in d.get("frets", [])], name=d.get("name"))


@dataclass
class ArpEvent:
    step: int
    strings: List[int]
    velocity: Optional[float] = None
    length_steps: Optional[float] = None
    strum_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"step": self.step, "strings": list(self.strings)}
        if self.velocity is not None:
            out["velocity"] = self.velocity
        if self.length_steps is not None:
            out["lengthSteps"] = self.length_steps
        if self.strum_ms is not None:
            out["strumMs"] = self.strum_ms
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ArpEvent":
        def opt(key: str) -> Optional[float]:
            v = d.get(key)
            return None if v is None else float(v)

        return cls(
            step=int(d["step"]),
            strings=[int(s) for s in d.get("strings", [])],
            velocity=opt("velocity"),
            length_steps=opt("lengthSteps"),
            strum_ms=opt("strumMs"),
        )


@dataclass
class ArpeggioPattern:
    steps_per_bar: int = 16
    bars: int = 1
    events: List[ArpEvent] = field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return self.steps_per_bar * self.bars

    def _drop_out_of_range(self) -> None:
        total = self.total_steps
        self.events = [e for e in self.events if e.step < total]

    def set_steps_per_bar(self, steps: int) -> None:
        self.steps_per_bar = _clamp(int(round(steps or 16)), MIN_STEPS_PER_BAR, MAX_STEPS_PER_BAR)
        self._drop_out_of_range()

    def set_bars(self, bars: int) -> None:
        self.bars = _clamp(int(round(bars or 1)), MIN_BARS, MAX_BARS)
        self._drop_out_of_range()

    def has_event(self, step: int, string_index: int) -> bool:
        return any(e.step == step and string_index in e.strings for e in self.events)

    def toggle(self, step: int, string_index: int) -> None:
        """Flip one sequencer grid cell (step x string)."""
        for i, ev in enumerate(self.events):
            if ev.step == step and string_index in ev.strings:
                ev.strings = [s for s in ev.strings if s != string_index]
                if not ev.strings:
                    del self.events[i]
                return
        for ev in self.events:
            if ev.step == step:
                ev.strings.append(string_index)
                return
        self.events.append(
            ArpEvent(step=step, strings=[string_index], velocity=NEW_EVENT_VELOCITY, length_steps=NEW_EVENT_LENGTH_STEPS)
        )

    def clear(self) -> None:
        self.events = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepsPerBar": self.steps_per_bar,
            "bars": self.bars,
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ArpeggioPattern":
        return cls(
            steps_per_bar=int(d.get("stepsPerBar", 16)),
            bars=int(d.get("bars", 1)),
            events=[ArpEvent.from_dict(e) for e in d.get("events", [])],
        )


@dataclass
class TransportState:
    bpm: float = 100.0
    playing: bool = False
    swing: Optional[float] = None
    humanize_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"bpm": self.bpm}
        if self.swing is not None:
            out["swing"] = self.swing
        if self.humanize_ms is not None:
            out["humanizeMs"] = self.humanize_ms
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TransportState":
        swing = d.get("swing")
        hum = d.get("humanizeMs")
        return cls(
            bpm=float(d.get("bpm", 100.0)),
            swing=None if swing is None else float(swing),
            humanize_ms=None if hum is None else float(hum),
        )


@dataclass(frozen=True)
class ScheduledNote:
    time: float
    freq: float
    velocity: float
    length_sec: float
