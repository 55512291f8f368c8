from __future__ import annotations

import argparse

from altertune.clock import MonotonicTimeline
from altertune.sinks import MidoSink, open_mido_output


def main():
    ap = argparse.ArgumentParser(description="Cancel queued notes and send All Notes Off / All Sound Off")
    ap.add_argument("--port", required=True, help="Substring to match MIDI output port")
    args = ap.parse_args()
    out = open_mido_output(args.port)
    MidoSink(out, MonotonicTimeline()).panic()
    print("panic sent (CC64/120/123 on 16 channels)")


if __name__ == "__main__":
    main()
