from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, Optional

from altertune.clock import MonotonicTimeline
from altertune.expander import PatternExpander
from altertune.scheduler import SCHEDULE_AHEAD_SEC
from altertune.session import Session
from altertune.sinks import MidoSink, RenderSink, open_mido_output
from altertune.validator import ValidationError


def load_doc(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def render_offline(doc: Dict[str, Any], seconds: float, wav_path: str, bpm: Optional[float] = None,
                   window: float = SCHEDULE_AHEAD_SEC, sample_rate: int = 44100) -> int:
    """Render `seconds` of the workspace to a WAV file; returns the note count.

    Walks the same contiguous windows the live scheduler would request.
    """
    sink = RenderSink(sample_rate=sample_rate)
    session = Session.from_doc(doc, sink)
    if bpm:
        session.transport.set_bpm(bpm)
    expander = PatternExpander()
    t = 0.0
    while t < seconds:
        t1 = min(seconds, t + window)
        for n in expander.compute_window(t, t1, 0.0, session.transport.state, session.pattern, session.tuning, session.fingering):
            sink.trigger_note(n.time, n.freq, n.velocity, n.length_sec)
        t = t1
    frames = sink.write_wav(wav_path, 0.0, seconds + sink.release)
    print(f"[play] rendered {len(sink.notes)} notes, {frames} frames -> {wav_path}", flush=True)
    return len(sink.notes)


async def run_realtime(doc: Dict[str, Any], port_filter: Optional[str], seconds: Optional[float] = None,
                       bpm: Optional[float] = None, print_metrics: bool = False) -> None:
    timeline = MonotonicTimeline()
    sink = MidoSink(open_mido_output(port_filter), timeline)
    session = Session.from_doc(doc, sink, timeline=timeline)
    if bpm:
        session.transport.set_bpm(bpm)
    await session.play()
    print(f"[play] playing at {session.transport.bpm:g} bpm", flush=True)
    try:
        elapsed = 0.0
        while seconds is None or elapsed < seconds:
            await asyncio.sleep(1.0)
            elapsed += 1.0
            if print_metrics:
                m = session.get_metrics()
                sch = m["scheduler"]
                print(
                    f"[metrics] windows={sch['windows']} notes={sch['notes']} skipped={sch['skipped_ticks']} "
                    f"late_p95={sch['tickLateMsP95']}ms capped={m['expander']['capped_windows']}",
                    flush=True,
                )
    finally:
        session.close()


def main():
    ap = argparse.ArgumentParser(description="Play an altertune-1.0 workspace via MIDI or render it to WAV")
    ap.add_argument("doc", nargs="?", default="workspace.json", help="Path to workspace JSON (default: workspace.json)")
    ap.add_argument("--port", help="Substring to match MIDI output port")
    ap.add_argument("--bpm", type=float, help="Override the document tempo")
    ap.add_argument("--seconds", type=float, default=0.0, help="Stop after this many seconds. 0 = until interrupted")
    ap.add_argument("--wav", help="Render offline to this WAV file instead of playing (requires --seconds)")
    ap.add_argument("--metrics", action="store_true", help="Print scheduler metrics once per second")
    args = ap.parse_args()

    try:
        doc = load_doc(args.doc)
        if args.wav:
            if args.seconds <= 0:
                ap.error("--wav requires --seconds > 0")
            render_offline(doc, args.seconds, args.wav, bpm=args.bpm)
            return
        asyncio.run(run_realtime(doc, args.port, seconds=args.seconds or None, bpm=args.bpm, print_metrics=args.metrics))
    except ValidationError as e:
        ap.exit(1, f"invalid workspace: {e}\n")
    except KeyboardInterrupt:
        print("[play] stopped", flush=True)


if __name__ == "__main__":
    main()
