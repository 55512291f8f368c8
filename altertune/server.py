"""WebSocket control surface for a playing workspace.

The workspace document lives on disk; edits arrive as whole documents or
JSON patches against a docVersion and are persisted before they reach the
running session. The scheduler shares this server's event loop.
"""

from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import os
import tempfile
import time
from typing import Any, Dict, List, Optional, Set

import websockets

from altertune.clock import MonotonicTimeline
from altertune.patch_utils import PatchError, apply_patch
from altertune.presets import JsonPresetStore, map_frets
from altertune.session import Session
from altertune.sinks import MidoSink, open_mido_output
from altertune.validator import canonicalize, validate_workspace


def _atomic_write_json(path: str, obj: Dict[str, Any]) -> None:
    data = json.dumps(obj, ensure_ascii=False, indent=2) + "\n"
    d = os.path.dirname(os.path.abspath(path)) or "."
    fd, tmp = tempfile.mkstemp(prefix=".tmp_doc_", dir=d, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


def _load_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"workspace file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _canon_sha(doc: Dict[str, Any]) -> str:
    canon_bytes = json.dumps(doc, ensure_ascii=False, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return hashlib.sha256(canon_bytes).hexdigest()


class Workbench:
    def __init__(self, doc_path: str, sink, presets_path: Optional[str] = None, timeline=None):
        self.doc_path = doc_path
        self.doc: Dict[str, Any] = canonicalize(_load_json(doc_path))
        self.doc_version = int(self.doc.get("docVersion", 0))
        try:
            self._file_mtime: Optional[float] = os.path.getmtime(self.doc_path)
        except OSError:
            self._file_mtime = None
        self.session = Session.from_doc(self.doc, sink, timeline=timeline)
        if presets_path is None:
            presets_path = os.path.join(os.path.dirname(os.path.abspath(doc_path)), "presets.json")
        self.presets = JsonPresetStore(presets_path)

    # --- State/doc ---
    def get_state(self) -> Dict[str, Any]:
        st = self.session.get_state()
        st["docVersion"] = self.doc_version
        return st

    def get_doc(self) -> Dict[str, Any]:
        return {
            "docVersion": self.doc_version,
            "json": self.doc,
            "sha256": _canon_sha(self.doc),
            "path": os.path.abspath(self.doc_path),
        }

    # --- Control ---
    async def do_play(self) -> None:
        if not self.session.transport.playing:
            await self.session.play()

    def do_stop(self) -> None:
        self.session.stop()

    def do_set_tempo(self, bpm: float) -> Dict[str, Any]:
        # Goes through the document so the file and the session agree
        doc = dict(self.doc)
        transport = dict(doc.get("transport") or {})
        self.session.transport.set_bpm(bpm)
        transport["bpm"] = self.session.transport.bpm
        doc["transport"] = transport
        return self.do_replace_json(self.doc_version, doc)

    def do_replace_json(self, base_version: int, new_doc: Dict[str, Any]) -> Dict[str, Any]:
        if base_version != self.doc_version:
            return {"ok": False, "error": "stale", "expected": self.doc_version}
        errors = validate_workspace(new_doc)
        if errors:
            return {"ok": False, "error": "validation", "details": errors}
        canon = canonicalize(new_doc)
        self.doc_version += 1
        canon["docVersion"] = self.doc_version
        _atomic_write_json(self.doc_path, canon)
        print(f"[ws] saved {self.doc_path} (docVersion={self.doc_version})", flush=True)
        try:
            self._file_mtime = os.path.getmtime(self.doc_path)
        except OSError:
            self._file_mtime = None
        self.doc = canon
        self.session.load_doc(self.doc)
        return {"ok": True, "docVersion": self.doc_version}

    def do_apply_patch(self, base_version: int, ops: List[Dict[str, Any]]) -> Dict[str, Any]:
        if base_version != self.doc_version:
            return {"ok": False, "error": "stale", "expected": self.doc_version}
        try:
            patched = apply_patch(self.doc, ops)
        except PatchError as e:
            return {"ok": False, "error": "patch_apply", "details": str(e)}
        return self.do_replace_json(base_version, patched)

    def reload_if_changed(self) -> bool:
        """Pick up edits made to the file by other tools; True when reloaded."""
        try:
            m = os.path.getmtime(self.doc_path)
        except OSError:
            return False
        if m == self._file_mtime:
            return False
        self._file_mtime = m
        loaded = _load_json(self.doc_path)
        if _canon_sha(loaded) == _canon_sha(self.doc):
            return False
        errs = validate_workspace(loaded)
        if errs:
            print(f"[ws] ignoring invalid external edit: {errs[0]}", flush=True)
            return False
        canon = canonicalize(loaded)
        self.doc_version = max(self.doc_version, int(canon.get("docVersion", 0))) + 1
        canon["docVersion"] = self.doc_version
        self.doc = canon
        self.session.load_doc(self.doc)
        return True

    # --- Presets ---
    def list_presets(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.presets.list(strings_count=len(self.session.tuning))]

    def save_preset(self, name: str) -> Dict[str, Any]:
        p = self.presets.save(
            name,
            self.session.fingering,
            len(self.session.tuning),
            tuning_name=self.session.tuning.name,
        )
        return p.to_dict()

    def apply_preset(self, preset_id: str) -> Dict[str, Any]:
        p = self.presets.get(preset_id)
        if p is None:
            return {"ok": False, "error": "not_found"}
        frets = map_frets(p.fingering.frets, len(self.session.tuning))
        doc = dict(self.doc)
        doc["fingering"] = {"name": p.name, "frets": frets}
        return self.do_replace_json(self.doc_version, doc)


def _msg(kind: str, payload: Any = None, req_id: Any = None) -> str:
    obj: Dict[str, Any] = {"type": kind, "ts": time.time()}
    if req_id is not None:
        obj["id"] = req_id
    if payload is not None:
        obj["payload"] = payload
    return json.dumps(obj)


async def _dispatch(wb: Workbench, obj: Dict[str, Any]) -> List[str]:
    """Handle one client command; returns the replies to send back."""
    t = obj.get("type")
    req_id = obj.get("id")
    payload = obj.get("payload") or {}
    replies: List[str] = []

    def result(res: Dict[str, Any]) -> None:
        if res.get("ok"):
            replies.append(_msg("doc", wb.get_doc()))
            replies.append(_msg("ack", res, req_id))
        else:
            replies.append(_msg("error", res, req_id))

    if t == "ping":
        replies.append(_msg("pong", None, req_id))
    elif t == "play":
        await wb.do_play()
        replies.append(_msg("ack", {"ok": True}, req_id))
    elif t == "stop":
        wb.do_stop()
        replies.append(_msg("ack", {"ok": True}, req_id))
    elif t == "setTempo":
        try:
            bpm = float(obj.get("bpm", payload.get("bpm")))
        except (TypeError, ValueError):
            replies.append(_msg("error", {"ok": False, "error": "invalid_bpm"}, req_id))
        else:
            result(wb.do_set_tempo(bpm))
    elif t == "getState":
        replies.append(_msg("state", wb.get_state(), req_id))
    elif t == "getDoc":
        replies.append(_msg("doc", wb.get_doc(), req_id))
    elif t == "replaceJSON":
        new_doc = payload.get("doc")
        base = int(payload.get("baseVersion", -1))
        if not isinstance(new_doc, dict):
            replies.append(_msg("error", {"ok": False, "error": "invalid_doc"}, req_id))
        else:
            result(wb.do_replace_json(base, new_doc))
    elif t == "applyPatch":
        ops = payload.get("ops")
        base = int(payload.get("baseVersion", -1))
        if not isinstance(ops, list):
            replies.append(_msg("error", {"ok": False, "error": "invalid_ops"}, req_id))
        else:
            result(wb.do_apply_patch(base, ops))
    elif t == "listPresets":
        replies.append(_msg("presets", wb.list_presets(), req_id))
    elif t == "savePreset":
        saved = wb.save_preset(str(payload.get("name", "")))
        replies.append(_msg("ack", {"ok": True, "preset": saved}, req_id))
        replies.append(_msg("presets", wb.list_presets()))
    elif t == "renamePreset":
        ok = wb.presets.rename(str(payload.get("id")), str(payload.get("name", "")))
        replies.append(_msg("ack" if ok else "error", {"ok": ok} if ok else {"ok": False, "error": "not_found"}, req_id))
        replies.append(_msg("presets", wb.list_presets()))
    elif t == "deletePreset":
        ok = wb.presets.remove(str(payload.get("id")))
        replies.append(_msg("ack" if ok else "error", {"ok": ok} if ok else {"ok": False, "error": "not_found"}, req_id))
        replies.append(_msg("presets", wb.list_presets()))
    elif t == "applyPreset":
        result(wb.apply_preset(str(payload.get("id"))))
    else:
        replies.append(_msg("error", {"ok": False, "error": "unknown_type", "type": t}, req_id))
    return replies


async def serve_ws(wb: Workbench, host: str, port: int, metrics_interval: float = 0.5):
    clients: Set[Any] = set()

    async def broadcast(text: str):
        if not clients:
            return
        await asyncio.gather(*[c.send(text) for c in list(clients)], return_exceptions=True)

    async def metrics_task():
        last_doc_version = wb.doc_version
        while True:
            await asyncio.sleep(metrics_interval)
            metrics = wb.session.get_metrics()
            metrics["ws"] = {"clients": len(clients)}
            await broadcast(_msg("metrics", metrics))
            await broadcast(_msg("state", wb.get_state()))
            try:
                wb.reload_if_changed()
            except (OSError, ValueError) as e:
                print(f"[ws] could not reload {wb.doc_path}: {e}", flush=True)
            if wb.doc_version != last_doc_version:
                last_doc_version = wb.doc_version
                await broadcast(_msg("doc", wb.get_doc()))

    async def handler(ws, *_maybe_path):
        print(f"[ws] client connected: {getattr(ws, 'remote_address', None)}", flush=True)
        clients.add(ws)
        await ws.send(_msg("hello", {"protocol": 1, "docVersion": wb.doc_version}))
        await ws.send(_msg("doc", wb.get_doc()))
        await ws.send(_msg("state", wb.get_state()))
        try:
            async for message in ws:
                try:
                    obj = json.loads(message)
                except ValueError:
                    continue
                if not isinstance(obj, dict):
                    continue
                print(f"[ws] recv type={obj.get('type')}", flush=True)
                for reply in await _dispatch(wb, obj):
                    await ws.send(reply)
                if obj.get("type") != "getState":
                    await ws.send(_msg("state", wb.get_state()))
        finally:
            clients.discard(ws)

    async with websockets.serve(handler, host, port):
        print(f"[ws] AlterTune listening on ws://{host}:{port}", flush=True)
        task = asyncio.create_task(metrics_task())
        try:
            await asyncio.Future()
        finally:
            task.cancel()
            wb.do_stop()


def main():
    ap = argparse.ArgumentParser(description="AlterTune WS server (doc/state/metrics + transport)")
    ap.add_argument("--doc", default="workspace.json")
    ap.add_argument("--port", help="Substring to match MIDI output port")
    ap.add_argument("--presets", help="Preset store path (default: presets.json next to --doc)")
    ap.add_argument("--ws-port", type=int, default=8765)
    args = ap.parse_args()

    timeline = MonotonicTimeline()
    sink = MidoSink(open_mido_output(args.port), timeline)
    wb = Workbench(args.doc, sink, presets_path=args.presets, timeline=timeline)

    # Always bind to localhost to avoid external exposure
    try:
        asyncio.run(serve_ws(wb, "127.0.0.1", args.ws_port))
    except KeyboardInterrupt:
        print("[ws] shutting down", flush=True)


if __name__ == "__main__":
    main()
