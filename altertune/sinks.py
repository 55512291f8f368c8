from __future__ import annotations

import array
import asyncio
import math
import sys
import wave
from typing import Any, Dict, List, Optional, Tuple

import mido

from altertune.theory import freq_to_midi


class AudioSink:
    """Sink interface used by the scheduler.

    trigger_note must accept onsets in the future on the shared timeline.
    resume() is awaited once before playback starts.
    """

    def trigger_note(self, time: float, frequency: float, velocity: float, length_seconds: float) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def resume(self) -> None:
        return None

    def panic(self) -> None:
        return None


class VirtualSink(AudioSink):
    """A minimal sink capturing events for tests and demos.

    Records tuples (type, time, freq, velocity, length). Types: 'note', 'panic'.
    """

    def __init__(self) -> None:
        self.events: List[Tuple[str, float, float, float, float]] = []
        self.resumed = False

    def trigger_note(self, time: float, frequency: float, velocity: float, length_seconds: float) -> None:
        self.events.append(("note", float(time), float(frequency), float(velocity), float(length_seconds)))

    async def resume(self) -> None:
        self.resumed = True

    def panic(self) -> None:
        self.events.append(("panic", -1.0, 0.0, 0.0, 0.0))

    def notes(self) -> List[Tuple[str, float, float, float, float]]:
        return [e for e in self.events if e[0] == "note"]


def velocity_to_midi(velocity: float) -> int:
    return max(1, min(127, int(round(float(velocity) * 127))))


def freq_to_note_and_bend(freq: float, bend_range: float = 2.0) -> Tuple[int, int]:
    """Nearest MIDI note plus the 14-bit signed pitch-wheel value for the rest."""
    m = freq_to_midi(freq)
    note = max(0, min(127, int(round(m))))
    bend = int(round((m - note) / bend_range * 8192))
    return note, max(-8192, min(8191, bend))


# mido channel 9 is the GM percussion channel
MELODIC_CHANNELS: Tuple[int, ...] = tuple(c for c in range(1, 16) if c != 9)


class MidoSink(AudioSink):
    """Plays notes on a MIDI output at their timeline instants.

    Each note takes the next channel from a round-robin pool so that its
    pitch bend (microtonal offset) does not disturb notes still sounding.
    Note off is sent at time + length; the instrument's own release is the tail.
    """

    def __init__(self, out_port, timeline, loop: Optional[asyncio.AbstractEventLoop] = None,
                 channels: Tuple[int, ...] = MELODIC_CHANNELS, bend_range: float = 2.0):
        self.out = out_port
        self.timeline = timeline
        self._loop_arg = loop
        self.channels = tuple(channels) or (0,)
        self.bend_range = float(bend_range)
        self._next_channel = 0
        self._pending: Dict[int, Any] = {}
        self._next_id = 0
        self._sounding: Dict[int, Tuple[int, int]] = {}
        self.metrics: Dict[str, int] = {"msgs_note_on": 0, "msgs_note_off": 0, "late_notes": 0}

    def _loop(self) -> asyncio.AbstractEventLoop:
        return self._loop_arg or asyncio.get_running_loop()

    async def resume(self) -> None:
        # Bend range (RPN 0) on every channel we use
        semis = int(self.bend_range)
        cents = int(round((self.bend_range - semis) * 100))
        for ch in self.channels:
            self.out.send(mido.Message("control_change", channel=ch, control=101, value=0))
            self.out.send(mido.Message("control_change", channel=ch, control=100, value=0))
            self.out.send(mido.Message("control_change", channel=ch, control=6, value=max(0, min(127, semis))))
            self.out.send(mido.Message("control_change", channel=ch, control=38, value=max(0, min(127, cents))))

    def trigger_note(self, time: float, frequency: float, velocity: float, length_seconds: float) -> None:
        loop = self._loop()
        ch = self.channels[self._next_channel % len(self.channels)]
        self._next_channel += 1
        note, bend = freq_to_note_and_bend(frequency, self.bend_range)
        vel = velocity_to_midi(velocity)
        delay = time - self.timeline.now()
        if delay < 0:
            self.metrics["late_notes"] += 1
        note_id = self._next_id
        self._next_id += 1
        on = loop.call_later(max(0.0, delay), self._note_on, note_id, ch, note, bend, vel)
        off = loop.call_later(max(0.0, delay + length_seconds), self._note_off, note_id)
        self._pending[note_id] = (on, off)

    def _note_on(self, note_id: int, ch: int, note: int, bend: int, vel: int) -> None:
        self.out.send(mido.Message("pitchwheel", channel=ch, pitch=bend))
        self.out.send(mido.Message("note_on", channel=ch, note=note, velocity=vel))
        self.metrics["msgs_note_on"] += 1
        self._sounding[note_id] = (ch, note)

    def _note_off(self, note_id: int) -> None:
        self._pending.pop(note_id, None)
        sounding = self._sounding.pop(note_id, None)
        if sounding is None:
            return
        ch, note = sounding
        self.out.send(mido.Message("note_off", channel=ch, note=note, velocity=0))
        self.metrics["msgs_note_off"] += 1

    def panic(self) -> None:
        # Drop everything queued, then All Sound Off / All Notes Off
        for on, off in self._pending.values():
            on.cancel()
            off.cancel()
        self._pending.clear()
        self._sounding.clear()
        for ch in range(16):
            self.out.send(mido.Message("control_change", control=64, value=0, channel=ch))
            self.out.send(mido.Message("control_change", control=120, value=0, channel=ch))
            self.out.send(mido.Message("control_change", control=123, value=0, channel=ch))

    def get_metrics(self) -> Dict[str, int]:
        return dict(self.metrics)


class _NullOutput:
    def send(self, *_args, **_kwargs):
        pass

    def close(self):
        pass


def open_mido_output(name_filter: Optional[str] = None):
    """Open a Mido output port with safe fallbacks.

    If the system MIDI stack is inaccessible, or a requested port is not
    found, return a null object exposing `.send()` instead of crashing in
    headless environments.
    """
    try:
        names = mido.get_output_names()
    except Exception:
        print("[midi-out] MIDI system unavailable; using null output", flush=True)
        return _NullOutput()
    if name_filter:
        names = [n for n in names if name_filter in n]
    if not names:
        print(f"[midi-out] no output port matching {name_filter!r}; using null output", flush=True)
        return _NullOutput()
    try:
        return mido.open_output(names[0])
    except Exception as e:
        print(f"[midi-out] could not open {names[0]!r}: {e}; using null output", flush=True)
        return _NullOutput()


class RenderSink(AudioSink):
    """Collects notes and renders them offline to a mono 16-bit WAV.

    Voice: triangle oscillator -> one-pole lowpass at min(12 kHz, 4 * f) ->
    exponential envelope (5 ms attack to velocity, decay to silence at
    length_seconds), followed by a `release` tail before the voice ends.
    """

    FLOOR = 0.0001
    ATTACK_SEC = 0.005

    def __init__(self, sample_rate: int = 44100, release: float = 0.05, gain: float = 0.3):
        self.sample_rate = int(sample_rate)
        self.release = float(release)
        self.gain = float(gain)
        self.notes: List[Tuple[float, float, float, float]] = []

    def trigger_note(self, time: float, frequency: float, velocity: float, length_seconds: float) -> None:
        self.notes.append((float(time), float(frequency), float(velocity), float(length_seconds)))

    def _envelope(self, t: float, vel: float, length: float) -> float:
        peak = max(self.FLOOR, vel)
        if t < self.ATTACK_SEC:
            return self.FLOOR * math.pow(peak / self.FLOOR, t / self.ATTACK_SEC)
        if t < length:
            span = max(1e-6, length - self.ATTACK_SEC)
            return peak * math.pow(self.FLOOR / peak, (t - self.ATTACK_SEC) / span)
        return self.FLOOR

    def render_samples(self, start: float = 0.0, duration: Optional[float] = None) -> List[float]:
        if duration is None:
            end = max((t + ln + self.release for t, _f, _v, ln in self.notes), default=start)
            duration = max(0.0, end - start)
        n_total = int(math.ceil(duration * self.sample_rate))
        buf = [0.0] * n_total
        sr = self.sample_rate
        for t, freq, vel, length in self.notes:
            first = int(round((t - start) * sr))
            n_voice = int(math.ceil((length + self.release) * sr))
            cutoff = min(12000.0, freq * 4.0)
            alpha = 1.0 - math.exp(-2.0 * math.pi * cutoff / sr)
            y = 0.0
            for i in range(n_voice):
                j = first + i
                if j < 0:
                    continue
                if j >= n_total:
                    break
                ts = i / sr
                phase = (ts * freq) % 1.0
                tri = 4.0 * abs(phase - 0.5) - 1.0
                y += alpha * (tri - y)
                buf[j] += y * self._envelope(ts, vel, length) * self.gain
        return buf

    def write_wav(self, path: str, start: float = 0.0, duration: Optional[float] = None) -> int:
        samples = self.render_samples(start, duration)
        pcm = array.array("h", (int(max(-1.0, min(1.0, s)) * 32767) for s in samples))
        if sys.byteorder == "big":
            pcm.byteswap()
        with wave.open(path, "wb") as w:
            w.setnchannels(1)
            w.setsampwidth(2)
            w.setframerate(self.sample_rate)
            w.writeframes(pcm.tobytes())
        return len(samples)
