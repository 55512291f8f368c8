import math
import unittest

from altertune.expander import PatternExpander, compute_window, pattern_duration, step_duration
from altertune.models import ArpEvent, ArpeggioPattern, Fingering, Pitch, StringTuning, TransportState, Tuning
from altertune.theory import pitch_to_freq, transposed_freq


def open_fingering(n=6):
    return Fingering(frets=[0] * n)


def arp_pattern():
    # Chords with strums, single plucks, a shifted velocity and a custom length
    return ArpeggioPattern(
        steps_per_bar=16,
        bars=2,
        events=[
            ArpEvent(0, [0, 1, 2, 3, 4, 5]),
            ArpEvent(2, [4]),
            ArpEvent(4, [3], velocity=0.5),
            ArpEvent(7, [2, 5], strum_ms=20.0),
            ArpEvent(16, [1], length_steps=4),
            ArpEvent(30, [5, 0]),
        ],
    )


class TestDurations(unittest.TestCase):
    def test_durations_positive_and_finite(self):
        for bpm in (30, 61.5, 100, 120, 300):
            for spb in (2, 3, 7, 16, 64):
                for bars in (1, 2, 16):
                    sd = step_duration(bpm, spb)
                    pd = pattern_duration(bpm, spb, bars)
                    self.assertTrue(math.isfinite(sd) and sd > 0)
                    self.assertTrue(math.isfinite(pd) and pd > 0)
                    self.assertAlmostEqual(sd, (60.0 / bpm) * (4.0 / spb))
                    self.assertAlmostEqual(pd, sd * spb * bars)

    def test_invalid_inputs_give_zero(self):
        self.assertEqual(step_duration(0, 16), 0.0)
        self.assertEqual(step_duration(-10, 16), 0.0)
        self.assertEqual(step_duration(120, 0), 0.0)
        self.assertEqual(step_duration(float("nan"), 16), 0.0)
        self.assertEqual(pattern_duration(120, 16, 0), 0.0)


class TestComputeWindow(unittest.TestCase):
    def setUp(self):
        self.tuning = Tuning.standard()
        self.transport = TransportState(bpm=120)

    def test_single_high_e_scenario(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [5])])
        notes = compute_window(0.0, 0.2, 0.0, self.transport, pat, self.tuning, open_fingering())
        self.assertEqual(len(notes), 1)
        n = notes[0]
        self.assertAlmostEqual(n.time, 0.0)
        self.assertAlmostEqual(n.freq, 329.63, places=2)
        self.assertEqual(n.velocity, 0.8)
        # default 2 steps * 0.125 s * 0.95
        self.assertAlmostEqual(n.length_sec, 0.2375)

    def test_window_is_half_open(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [5]), ArpEvent(2, [4])])
        # step 2 starts exactly at 0.25
        first = compute_window(0.0, 0.25, 0.0, self.transport, pat, self.tuning, open_fingering())
        second = compute_window(0.25, 0.5, 0.0, self.transport, pat, self.tuning, open_fingering())
        self.assertEqual([round(n.time, 9) for n in first], [0.0])
        self.assertEqual([round(n.time, 9) for n in second], [0.25])

    def test_window_decomposition(self):
        pat = arp_pattern()
        fing = Fingering(frets=[3, 2, 0, 0, 1, -1])
        whole = compute_window(0.3, 9.7, 0.1, self.transport, pat, self.tuning, fing)
        self.assertGreater(len(whole), 20)
        # split points include event onsets (0.1 + k * 0.125) and arbitrary instants
        for splits in ([0.35], [1.1, 1.1 + 1e-9], [0.6, 2.1, 2.2, 4.1, 8.0], [0.3 + 0.01 * i for i in range(1, 940)]):
            bounds = [0.3] + splits + [9.7]
            pieces = []
            for a, b in zip(bounds, bounds[1:]):
                pieces.extend(compute_window(a, b, 0.1, self.transport, pat, self.tuning, fing))
            key = lambda n: (n.time, n.freq)
            self.assertEqual(sorted(pieces, key=key), sorted(whole, key=key))

    def test_repetition_shifts_by_pattern_duration(self):
        pat = arp_pattern()
        fing = open_fingering()
        period = pattern_duration(120, 16, 2)  # 4 s
        base = compute_window(0.5, 3.0, 0.0, self.transport, pat, self.tuning, fing)
        for n in (1, 3, 10):
            shifted = compute_window(0.5 + n * period, 3.0 + n * period, 0.0, self.transport, pat, self.tuning, fing)
            self.assertEqual(len(shifted), len(base))
            for a, b in zip(base, shifted):
                self.assertAlmostEqual(b.time - a.time, n * period, places=9)
                self.assertEqual((a.freq, a.velocity, a.length_sec), (b.freq, b.velocity, b.length_sec))

    def test_muted_string_never_sounds(self):
        pat = arp_pattern()
        fing = Fingering(frets=[0, 0, 0, 0, 0, -1])
        e4 = pitch_to_freq(Pitch("E", 4))
        notes = compute_window(0.0, 20.0, 0.0, self.transport, pat, self.tuning, fing)
        self.assertTrue(notes)
        self.assertFalse(any(abs(n.freq - e4) < 1e-6 for n in notes))

    def test_strum_spread_in_declared_order(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [5, 0, 3], strum_ms=10.0), ArpEvent(8, [1, 2])])
        notes = compute_window(0.0, 2.0, 0.0, self.transport, pat, self.tuning, open_fingering())
        opens = self.tuning.open_pitches()
        self.assertEqual(len(notes), 5)
        self.assertEqual([round(n.time, 6) for n in notes[:3]], [0.0, 0.01, 0.02])
        self.assertEqual([n.freq for n in notes[:3]], [pitch_to_freq(opens[i]) for i in (5, 0, 3)])
        # default 8 ms spread
        self.assertEqual([round(n.time, 6) for n in notes[3:]], [1.0, 1.008])

    def test_strum_position_counts_skipped_strings(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0, 9, 2])])
        notes = compute_window(0.0, 0.1, 0.0, self.transport, pat, self.tuning, open_fingering())
        self.assertEqual([round(n.time, 6) for n in notes], [0.0, 0.016])

    def test_fretted_and_missing_frets(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0, 1, 4])])
        fing = Fingering(frets=[12, 3])  # string 4 has no entry -> open
        notes = compute_window(0.0, 0.1, 0.0, self.transport, pat, self.tuning, fing)
        opens = self.tuning.open_pitches()
        self.assertAlmostEqual(notes[0].freq, 2 * pitch_to_freq(opens[0]))
        self.assertAlmostEqual(notes[1].freq, transposed_freq(opens[1], 3))
        self.assertAlmostEqual(notes[2].freq, pitch_to_freq(opens[4]))

    def test_out_of_range_strings_are_skipped(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [-1, 6, 11, 2])])
        notes = compute_window(0.0, 0.1, 0.0, self.transport, pat, self.tuning, open_fingering())
        self.assertEqual(len(notes), 1)

    def test_sparse_string_indices(self):
        tuning = Tuning(strings=[StringTuning(0, Pitch("D", 2)), StringTuning(3, Pitch("G", 3))])
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0, 1, 2, 3])])
        notes = compute_window(0.0, 0.1, 0.0, self.transport, pat, tuning, Fingering())
        self.assertEqual([n.freq for n in notes], [pitch_to_freq(Pitch("D", 2)), pitch_to_freq(Pitch("G", 3))])

    def test_event_fields_and_length_floor(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [2], velocity=0.3, length_steps=4), ArpEvent(1, [3], length_steps=0.01)])
        notes = compute_window(0.0, 0.2, 0.0, self.transport, pat, self.tuning, open_fingering())
        self.assertEqual(notes[0].velocity, 0.3)
        self.assertAlmostEqual(notes[0].length_sec, 4 * 0.125 * 0.95)
        self.assertEqual(notes[1].length_sec, 0.01)

    def test_invalid_configuration_yields_nothing(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [5])])
        fing = open_fingering()
        for bpm in (0, -120, float("nan"), float("inf")):
            self.assertEqual(compute_window(0.0, 5.0, 0.0, TransportState(bpm=bpm), pat, self.tuning, fing), [])
        for spb, bars in ((0, 1), (-4, 1), (16, 0)):
            bad = ArpeggioPattern(spb, bars, [ArpEvent(0, [5])])
            self.assertEqual(compute_window(0.0, 5.0, 0.0, self.transport, bad, self.tuning, fing), [])
        self.assertEqual(compute_window(0.0, 5.0, 0.0, self.transport, ArpeggioPattern(16, 1, []), self.tuning, fing), [])
        # empty or reversed window
        self.assertEqual(compute_window(1.0, 1.0, 0.0, self.transport, pat, self.tuning, fing), [])
        self.assertEqual(compute_window(2.0, 1.0, 0.0, self.transport, pat, self.tuning, fing), [])

    def test_events_beyond_cycle_are_excluded(self):
        pat = ArpeggioPattern(16, 2, [ArpEvent(0, [5]), ArpEvent(20, [4])])
        pat.set_bars(1)
        self.assertEqual([e.step for e in pat.events], [0])
        # and directly constructed invalid events never play
        raw = ArpeggioPattern(16, 1, [ArpEvent(0, [5]), ArpEvent(20, [4]), ArpEvent(-1, [3])])
        notes = compute_window(0.0, 2.0, 0.0, self.transport, raw, self.tuning, open_fingering())
        self.assertEqual(len(notes), 1)

    def test_window_before_pattern_start(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [5])])
        notes = compute_window(0.0, 4.5, 3.0, self.transport, pat, self.tuning, open_fingering())
        # repetitions anchored at 3.0 - 2.0 = 1.0 and 3.0
        self.assertEqual([round(n.time, 9) for n in notes], [1.0, 3.0])

    def test_output_sorted_by_time(self):
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0, 1, 2, 3, 4, 5], strum_ms=200.0), ArpEvent(1, [5])])
        notes = compute_window(0.0, 1.0, 0.0, self.transport, pat, self.tuning, open_fingering())
        times = [n.time for n in notes]
        self.assertEqual(times, sorted(times))


class TestEventCap(unittest.TestCase):
    def test_cap_is_exact(self):
        tuning = Tuning.standard()
        every_step = ArpeggioPattern(64, 1, [ArpEvent(s, [0, 1, 2, 3, 4, 5]) for s in range(64)])
        exp = PatternExpander()
        notes = exp.compute_window(0.0, 10.0, 0.0, TransportState(bpm=300), every_step, tuning, open_fingering())
        self.assertEqual(len(notes), 4096)
        self.assertEqual(exp.get_metrics()["capped_windows"], 1)

    def test_custom_cap(self):
        exp = PatternExpander(max_events=10)
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0, 1, 2])])
        notes = exp.compute_window(0.0, 100.0, 0.0, TransportState(bpm=120), pat, Tuning.standard(), open_fingering())
        self.assertEqual(len(notes), 10)
        times = [n.time for n in notes]
        self.assertEqual(times, sorted(times))

    def test_muted_runaway_is_bounded(self):
        exp = PatternExpander(max_events=100)
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0])])
        notes = exp.compute_window(0.0, 1.0, 0.0, TransportState(bpm=1e9), pat, Tuning.standard(), Fingering(frets=[-1] * 6))
        self.assertEqual(notes, [])
        m = exp.get_metrics()
        self.assertEqual(m["walk_bounded"], 1)
        self.assertEqual(m["capped_windows"], 0)

    def test_custom_constants(self):
        exp = PatternExpander(default_strum_ms=0.0, default_length_steps=1, default_velocity=1.0, length_factor=0.5)
        pat = ArpeggioPattern(16, 1, [ArpEvent(0, [0, 1])])
        notes = exp.compute_window(0.0, 0.1, 0.0, TransportState(bpm=120), pat, Tuning.standard(), open_fingering())
        self.assertEqual([n.time for n in notes], [0.0, 0.0])
        self.assertEqual(notes[0].velocity, 1.0)
        self.assertAlmostEqual(notes[0].length_sec, 0.0625)


if __name__ == "__main__":
    unittest.main()
