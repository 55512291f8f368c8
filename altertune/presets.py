from __future__ import annotations

import json
import os
import tempfile
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from altertune.models import Fingering


def _atomic_write_json(path: str, obj: Any) -> None:
    data = json.dumps(obj, ensure_ascii=False, indent=2) + "\n"
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_presets_", dir=d, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FingeringPreset:
    id: str
    name: str
    strings_count: int
    fingering: Fingering
    tuning_name: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "stringsCount": self.strings_count,
            "fingering": self.fingering.to_dict(),
            "tuningName": self.tuning_name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FingeringPreset":
        return cls(
            id=str(d["id"]),
            name=str(d.get("name", "")),
            strings_count=int(d.get("stringsCount", 0)),
            fingering=Fingering.from_dict(d.get("fingering", {})),
            tuning_name=d.get("tuningName"),
            created_at=int(d.get("createdAt", 0)),
            updated_at=int(d.get("updatedAt", 0)),
        )


class PresetStore:
    """Key-value contract for named fingerings, keyed by preset id."""

    def list(self, strings_count: Optional[int] = None) -> List[FingeringPreset]:  # pragma: no cover - interface
        raise NotImplementedError

    def get(self, preset_id: str) -> Optional[FingeringPreset]:  # pragma: no cover - interface
        raise NotImplementedError

    def save(self, name: str, fingering: Fingering, strings_count: int,
             tuning_name: Optional[str] = None, preset_id: Optional[str] = None) -> FingeringPreset:  # pragma: no cover - interface
        raise NotImplementedError

    def rename(self, preset_id: str, new_name: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def remove(self, preset_id: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


class JsonPresetStore(PresetStore):
    """Presets kept in one JSON file, rewritten atomically on every change."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, FingeringPreset]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        items = raw.get("fingerings", []) if isinstance(raw, dict) else []
        out: Dict[str, FingeringPreset] = {}
        for item in items:
            p = FingeringPreset.from_dict(item)
            out[p.id] = p
        return out

    def _dump(self, presets: Dict[str, FingeringPreset]) -> None:
        _atomic_write_json(self.path, {"fingerings": [p.to_dict() for p in presets.values()]})

    def list(self, strings_count: Optional[int] = None) -> List[FingeringPreset]:
        """Newest first; with strings_count, matching presets come first."""
        items = sorted(self._load().values(), key=lambda p: p.updated_at, reverse=True)
        if strings_count is None:
            return items
        same = [p for p in items if p.strings_count == strings_count]
        other = [p for p in items if p.strings_count != strings_count]
        return same + other

    def get(self, preset_id: str) -> Optional[FingeringPreset]:
        return self._load().get(preset_id)

    def save(self, name: str, fingering: Fingering, strings_count: int,
             tuning_name: Optional[str] = None, preset_id: Optional[str] = None) -> FingeringPreset:
        presets = self._load()
        now = _now_ms()
        name = (name or "").strip() or f"Preset {time.strftime('%Y-%m-%d %H:%M:%S')}"
        pid = preset_id or str(uuid.uuid4())
        existing = presets.get(pid)
        preset = FingeringPreset(
            id=pid,
            name=name,
            strings_count=int(strings_count),
            fingering=Fingering(frets=list(fingering.frets), name=name),
            tuning_name=tuning_name,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        presets[pid] = preset
        self._dump(presets)
        return preset

    def rename(self, preset_id: str, new_name: str) -> bool:
        presets = self._load()
        p = presets.get(preset_id)
        if p is None:
            return False
        p.name = new_name
        p.fingering.name = new_name
        p.updated_at = _now_ms()
        self._dump(presets)
        return True

    def remove(self, preset_id: str) -> bool:
        presets = self._load()
        if presets.pop(preset_id, None) is None:
            return False
        self._dump(presets)
        return True


def map_frets(frets: List[int], target_count: int) -> List[int]:
    """Fit a preset's frets to a tuning with a different string count.

    Extra low strings are dropped; missing low strings are padded open.
    """
    src = list(frets)
    if len(src) == target_count:
        return src
    if len(src) > target_count:
        return src[len(src) - target_count:]
    return [0] * (target_count - len(src)) + src
