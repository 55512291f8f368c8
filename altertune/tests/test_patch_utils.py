import unittest

from altertune.patch_utils import PatchError, apply_patch
from altertune.validator import validate_workspace


def make_doc():
    return {
        "version": "altertune-1.0",
        "docVersion": 0,
        "tuning": {
            "name": "Drop D",
            "strings": [
                {"stringIndex": 0, "pitch": {"note": "D", "octave": 2}},
                {"stringIndex": 1, "pitch": {"note": "A", "octave": 2}},
                {"stringIndex": 2, "pitch": {"note": "D", "octave": 3}},
            ],
        },
        "fingering": {"name": None, "frets": [0, 0, 0]},
        "pattern": {"stepsPerBar": 8, "bars": 1, "events": [{"step": 0, "strings": [0, 1, 2]}]},
        "transport": {"bpm": 96},
    }


class TestPatchUtils(unittest.TestCase):
    def test_apply_patch_changes_fret(self):
        doc = make_doc()
        ops = [{"op": "replace", "path": "/fingering/frets/2", "value": 7}]
        patched = apply_patch(doc, ops)
        self.assertEqual(patched["fingering"]["frets"], [0, 0, 7])
        # input untouched
        self.assertEqual(doc["fingering"]["frets"], [0, 0, 0])
        self.assertEqual(validate_workspace(patched), [])

    def test_add_event(self):
        ops = [{"op": "add", "path": "/pattern/events/-", "value": {"step": 4, "strings": [2], "strumMs": 0}}]
        patched = apply_patch(make_doc(), ops)
        self.assertEqual(len(patched["pattern"]["events"]), 2)
        self.assertEqual(validate_workspace(patched), [])

    def test_bad_paths_raise(self):
        with self.assertRaises(PatchError):
            apply_patch(make_doc(), [{"op": "replace", "path": "/fingering/frets/9", "value": 1}])
        with self.assertRaises(PatchError):
            apply_patch(make_doc(), [{"op": "remove", "path": "/nope"}])
        with self.assertRaises(PatchError):
            apply_patch(make_doc(), [{"op": "frobnicate", "path": "/transport/bpm"}])
        with self.assertRaises(PatchError):
            apply_patch(make_doc(), {"op": "replace"})

    def test_failed_test_op(self):
        ops = [{"op": "test", "path": "/transport/bpm", "value": 120}, {"op": "replace", "path": "/transport/bpm", "value": 60}]
        with self.assertRaises(PatchError):
            apply_patch(make_doc(), ops)


if __name__ == "__main__":
    unittest.main()
