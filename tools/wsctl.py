from __future__ import annotations

import argparse
import asyncio
import json

import websockets


async def run(url: str, cmd: str, args: argparse.Namespace):
    async with websockets.connect(url) as ws:
        # hello, doc, state arrive first
        doc_version = 0
        for _ in range(3):
            msg = json.loads(await ws.recv())
            if msg.get("type") == "doc":
                doc_version = int(msg["payload"].get("docVersion", 0))
        if cmd == "play":
            await ws.send(json.dumps({"type": "play"}))
        elif cmd == "stop":
            await ws.send(json.dumps({"type": "stop"}))
        elif cmd == "tempo":
            await ws.send(json.dumps({"type": "setTempo", "bpm": float(args.bpm)}))
        elif cmd == "fret":
            ops = [{"op": "replace", "path": f"/fingering/frets/{int(args.string)}", "value": int(args.fret)}]
            await ws.send(json.dumps({"type": "applyPatch", "payload": {"baseVersion": doc_version, "ops": ops}}))
        elif cmd == "replace":
            new_doc = json.loads(args.doc)
            await ws.send(json.dumps({"type": "replaceJSON", "payload": {"baseVersion": doc_version, "doc": new_doc}}))
        elif cmd == "presets":
            await ws.send(json.dumps({"type": "listPresets"}))
        elif cmd == "save-preset":
            await ws.send(json.dumps({"type": "savePreset", "payload": {"name": args.name}}))
        elif cmd == "apply-preset":
            await ws.send(json.dumps({"type": "applyPreset", "payload": {"id": args.id}}))
        # Print next few messages
        for _ in range(3):
            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=2.0)
                print(msg)
            except asyncio.TimeoutError:
                break


def main():
    ap = argparse.ArgumentParser(description="Simple WS controller for the AlterTune server")
    ap.add_argument("--url", default="ws://127.0.0.1:8765")
    sub = ap.add_subparsers(dest="cmd", required=True)
    sub.add_parser("play")
    sub.add_parser("stop")
    p_tempo = sub.add_parser("tempo"); p_tempo.add_argument("--bpm", required=True)
    p_fret = sub.add_parser("fret"); p_fret.add_argument("--string", required=True); p_fret.add_argument("--fret", required=True, help="-1 mutes the string")
    p_replace = sub.add_parser("replace"); p_replace.add_argument("--doc", required=True)
    sub.add_parser("presets")
    p_save = sub.add_parser("save-preset"); p_save.add_argument("--name", default="")
    p_apply = sub.add_parser("apply-preset"); p_apply.add_argument("--id", required=True)
    args = ap.parse_args()
    asyncio.run(run(args.url, args.cmd, args))


if __name__ == "__main__":
    main()
