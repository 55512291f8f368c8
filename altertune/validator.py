from __future__ import annotations

import argparse
import copy
import hashlib
import json
import sys
from typing import Any, Dict, List

from altertune.models import MAX_FRET, MAX_STRINGS, MIN_FRET
from altertune.theory import NOTE_NAMES


DOC_VERSION = "altertune-1.0"

MIN_OCTAVE = 0
MAX_OCTAVE = 8
MAX_CENTS = 100.0


class ValidationError(Exception):
    pass


def _err(errors: List[str], path: str, msg: str) -> None:
    errors.append(f"{path}: {msg}")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _validate_pitch(errors: List[str], path: str, p: Any) -> None:
    if not isinstance(p, dict):
        _err(errors, path, "required object")
        return
    if p.get("note") not in NOTE_NAMES:
        _err(errors, f"{path}/note", "must be one of " + " ".join(NOTE_NAMES))
    octv = p.get("octave")
    if not _is_int(octv) or not (MIN_OCTAVE <= octv <= MAX_OCTAVE):
        _err(errors, f"{path}/octave", f"integer {MIN_OCTAVE}..{MAX_OCTAVE} required")
    if "cents" in p and p["cents"] is not None:
        c = p["cents"]
        if not _is_number(c) or abs(float(c)) > MAX_CENTS:
            _err(errors, f"{path}/cents", f"number within ±{MAX_CENTS:g} required when present")


def validate_workspace(doc: Dict[str, Any]) -> List[str]:
    """Check a workspace document; returns human-readable errors with
    JSON-pointer-like paths (empty list when valid)."""
    errors: List[str] = []
    if not isinstance(doc, dict):
        return ["/: must be object"]

    if doc.get("version") != DOC_VERSION:
        _err(errors, "/version", f"must equal '{DOC_VERSION}'")

    # Tuning
    string_indices: set = set()
    tuning = doc.get("tuning")
    if not isinstance(tuning, dict):
        _err(errors, "/tuning", "required object")
    else:
        strings = tuning.get("strings")
        if not isinstance(strings, list) or not (1 <= len(strings) <= MAX_STRINGS):
            _err(errors, "/tuning/strings", f"array of 1..{MAX_STRINGS} strings required")
        else:
            for si, st in enumerate(strings):
                spath = f"/tuning/strings/{si}"
                if not isinstance(st, dict):
                    _err(errors, spath, "must be object")
                    continue
                idx = st.get("stringIndex")
                if not _is_int(idx) or idx < 0:
                    _err(errors, f"{spath}/stringIndex", "required integer ≥0")
                elif idx in string_indices:
                    _err(errors, f"{spath}/stringIndex", f"duplicate string index {idx}")
                else:
                    string_indices.add(idx)
                _validate_pitch(errors, f"{spath}/pitch", st.get("pitch"))

    # Fingering
    fing = doc.get("fingering")
    if not isinstance(fing, dict):
        _err(errors, "/fingering", "required object")
    else:
        frets = fing.get("frets")
        if not isinstance(frets, list):
            _err(errors, "/fingering/frets", "required array")
        else:
            for fi, f in enumerate(frets):
                if not _is_int(f) or not (MIN_FRET <= f <= MAX_FRET):
                    _err(errors, f"/fingering/frets/{fi}", f"integer {MIN_FRET}..{MAX_FRET} required (-1 = muted)")

    # Pattern
    pat = doc.get("pattern")
    if not isinstance(pat, dict):
        _err(errors, "/pattern", "required object")
    else:
        spb = pat.get("stepsPerBar")
        bars = pat.get("bars")
        if not _is_int(spb) or spb < 1:
            _err(errors, "/pattern/stepsPerBar", "integer ≥1 required")
            spb = None
        if not _is_int(bars) or bars < 1:
            _err(errors, "/pattern/bars", "integer ≥1 required")
            bars = None
        total = spb * bars if spb and bars else None
        events = pat.get("events")
        if not isinstance(events, list):
            _err(errors, "/pattern/events", "required array")
        else:
            for ei, ev in enumerate(events):
                epath = f"/pattern/events/{ei}"
                if not isinstance(ev, dict):
                    _err(errors, epath, "must be object")
                    continue
                step = ev.get("step")
                if not _is_int(step) or step < 0:
                    _err(errors, f"{epath}/step", "required integer ≥0")
                elif total is not None and step >= total:
                    _err(errors, f"{epath}/step", f"must be < stepsPerBar*bars ({total})")
                strs = ev.get("strings")
                if not isinstance(strs, list) or not all(_is_int(s) and s >= 0 for s in strs):
                    _err(errors, f"{epath}/strings", "array of string indices ≥0 required")
                vel = ev.get("velocity")
                if vel is not None and (not _is_number(vel) or not (0.0 <= float(vel) <= 1.0)):
                    _err(errors, f"{epath}/velocity", "number 0..1 required when present")
                ls = ev.get("lengthSteps")
                if ls is not None and (not _is_number(ls) or float(ls) <= 0):
                    _err(errors, f"{epath}/lengthSteps", "number >0 required when present")
                sm = ev.get("strumMs")
                if sm is not None and (not _is_number(sm) or float(sm) < 0):
                    _err(errors, f"{epath}/strumMs", "number ≥0 required when present")

    # Transport
    tr = doc.get("transport")
    if tr is not None:
        if not isinstance(tr, dict):
            _err(errors, "/transport", "must be object if present")
        else:
            bpm = tr.get("bpm")
            if not _is_number(bpm) or float(bpm) <= 0:
                _err(errors, "/transport/bpm", "number >0 required")
            sw = tr.get("swing")
            if sw is not None and (not _is_number(sw) or not (0.0 <= float(sw) <= 1.0)):
                _err(errors, "/transport/swing", "number 0..1 required when present")
            hm = tr.get("humanizeMs")
            if hm is not None and (not _is_number(hm) or float(hm) < 0):
                _err(errors, "/transport/humanizeMs", "number ≥0 required when present")

    return errors


def canonicalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Return a canonicalized deep copy for stable diffs.

    - Sort tuning strings by stringIndex
    - Sort pattern events by step, strings kept in strum order
    - Use deterministic key ordering on dump
    """
    out = copy.deepcopy(doc)
    tuning = out.get("tuning")
    if isinstance(tuning, dict) and isinstance(tuning.get("strings"), list):
        tuning["strings"].sort(key=lambda s: s.get("stringIndex", 0))
    pat = out.get("pattern")
    if isinstance(pat, dict) and isinstance(pat.get("events"), list):
        pat["events"].sort(key=lambda e: e.get("step", 0))
    return out


def sha256_canonical(doc: Dict[str, Any]) -> str:
    """Compute SHA-256 of canonical JSON string (sorted keys, compact)."""
    s = json.dumps(doc, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Validate and canonicalize altertune-1.0 workspace JSON")
    ap.add_argument("path", help="Path to workspace JSON file")
    ap.add_argument("--write", "-w", action="store_true", help="Rewrite file with canonical formatting")
    ap.add_argument("--print-hash", action="store_true", help="Print SHA-256 of canonical JSON")
    args = ap.parse_args(argv)

    try:
        with open(args.path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except Exception as e:
        print(f"error: failed to read {args.path}: {e}", file=sys.stderr)
        return 2

    errors = validate_workspace(doc)
    if errors:
        print("invalid workspace:")
        for e in errors:
            print(f" - {e}")
        return 1

    canon = canonicalize(doc)
    if args.print_hash:
        print(sha256_canonical(canon))

    if args.write:
        data = json.dumps(canon, sort_keys=True, indent=2, ensure_ascii=False)
        if not data.endswith("\n"):
            data += "\n"
        with open(args.path, "w", encoding="utf-8") as f:
            f.write(data)
        print(f"wrote canonical form to {args.path}")
    else:
        print("ok: valid and canonicalizable")

    return 0


if __name__ == "__main__":
    sys.exit(main())
