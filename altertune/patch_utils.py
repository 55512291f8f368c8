from __future__ import annotations

import copy
from typing import Any, Dict, List

import jsonpatch


class PatchError(ValueError):
    pass


def apply_patch(doc: Dict[str, Any], ops: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply an RFC 6902 JSON Patch ops array to a deep copy of doc.

    The input document is never modified. Malformed ops or paths that do
    not resolve raise PatchError.
    """
    if not isinstance(ops, list):
        raise PatchError("ops must be a list")
    base = copy.deepcopy(doc)
    try:
        patch = jsonpatch.JsonPatch(ops)
        return patch.apply(base, in_place=True)
    except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException, KeyError, IndexError, TypeError) as e:
        raise PatchError(str(e)) from e
