from __future__ import annotations

import math

from altertune.models import Pitch


NOTE_TO_SEMITONE = {
    "C": 0,
    "C#": 1,
    "Db": 1,
    "D": 2,
    "D#": 3,
    "Eb": 3,
    "E": 4,
    "F": 5,
    "F#": 6,
    "Gb": 6,
    "G": 7,
    "G#": 8,
    "Ab": 8,
    "A": 9,
    "A#": 10,
    "Bb": 10,
    "B": 11,
}

NOTE_NAMES = tuple(NOTE_TO_SEMITONE.keys())

# Sharp spellings used when printing a pitch class
PITCH_CLASS_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

A4_HZ = 440.0


def note_to_semitone(note: str) -> int:
    """Map one of the 17 note spellings to its pitch class 0..11."""
    return NOTE_TO_SEMITONE[note]


def pitch_to_midi(p: Pitch) -> int:
    # MIDI: C-1 = 0, C4 = 60, A4 = 69
    return (int(p.octave) + 1) * 12 + note_to_semitone(p.note)


def midi_to_freq(midi: float, a4: float = A4_HZ) -> float:
    return a4 * math.pow(2.0, (midi - 69) / 12.0)


def freq_to_midi(freq: float, a4: float = A4_HZ) -> float:
    """Inverse of midi_to_freq; returns a fractional MIDI number."""
    return 69.0 + 12.0 * math.log2(freq / a4)


def pitch_to_freq(p: Pitch, a4: float = A4_HZ) -> float:
    freq = midi_to_freq(pitch_to_midi(p), a4)
    if p.cents:
        freq *= math.pow(2.0, p.cents / 1200.0)
    return freq


def transposed_freq(open_pitch: Pitch, fret: int, a4: float = A4_HZ) -> float:
    """Frequency of an open string raised by `fret` semitones.

    Frets are whole semitones; cents on the open pitch are not carried.
    """
    return midi_to_freq(pitch_to_midi(open_pitch) + int(fret), a4)


def pitch_name(p: Pitch) -> str:
    name = f"{p.note}{p.octave}"
    if p.cents:
        name += f"{p.cents:+g}c"
    return name


def midi_name(midi: int) -> str:
    return f"{PITCH_CLASS_NAMES[midi % 12]}{midi // 12 - 1}"
