import unittest

from altertune.models import Pitch
from altertune.theory import (
    NOTE_NAMES,
    freq_to_midi,
    midi_name,
    midi_to_freq,
    note_to_semitone,
    pitch_name,
    pitch_to_freq,
    pitch_to_midi,
    transposed_freq,
)


class TestTheory(unittest.TestCase):
    def test_all_spellings_map_to_pitch_classes(self):
        self.assertEqual(len(NOTE_NAMES), 17)
        for note in NOTE_NAMES:
            self.assertIn(note_to_semitone(note), range(12))
        # Enharmonic pairs agree
        for a, b in (("C#", "Db"), ("D#", "Eb"), ("F#", "Gb"), ("G#", "Ab"), ("A#", "Bb")):
            self.assertEqual(note_to_semitone(a), note_to_semitone(b))

    def test_midi_convention(self):
        self.assertEqual(pitch_to_midi(Pitch("C", 4)), 60)
        self.assertEqual(pitch_to_midi(Pitch("A", 4)), 69)
        self.assertEqual(pitch_to_midi(Pitch("E", 2)), 40)
        self.assertEqual(midi_name(40), "E2")

    def test_frequencies(self):
        self.assertAlmostEqual(midi_to_freq(69), 440.0)
        self.assertAlmostEqual(midi_to_freq(69, a4=432.0), 432.0)
        self.assertAlmostEqual(pitch_to_freq(Pitch("E", 4)), 329.6276, places=3)
        self.assertAlmostEqual(freq_to_midi(440.0), 69.0)

    def test_cents_are_logarithmic(self):
        base = pitch_to_freq(Pitch("A", 4))
        up = pitch_to_freq(Pitch("A", 4, cents=100.0))
        self.assertAlmostEqual(up, midi_to_freq(70))
        self.assertAlmostEqual(pitch_to_freq(Pitch("A", 4, cents=-50.0)), base * 2 ** (-50 / 1200))
        self.assertEqual(pitch_name(Pitch("A", 4, cents=-50.0)), "A4-50c")

    def test_transposed_freq(self):
        e2 = Pitch("E", 2)
        self.assertAlmostEqual(transposed_freq(e2, 0), pitch_to_freq(e2))
        self.assertAlmostEqual(transposed_freq(e2, 12), 2 * pitch_to_freq(e2))
        self.assertAlmostEqual(transposed_freq(e2, 5), pitch_to_freq(Pitch("A", 2)))


if __name__ == "__main__":
    unittest.main()
