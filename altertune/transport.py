from __future__ import annotations

from typing import Callable, List

from altertune.models import TransportState


MIN_BPM = 30
MAX_BPM = 300
DEFAULT_BPM = 120

PlayingObserver = Callable[[bool], None]


class TransportModel:
    """bpm + playing, with observers notified on play/stop transitions."""

    def __init__(self, state: TransportState | None = None) -> None:
        self.state = state or TransportState()
        self._observers: List[PlayingObserver] = []

    @property
    def bpm(self) -> float:
        return self.state.bpm

    @property
    def playing(self) -> bool:
        return self.state.playing

    def subscribe(self, observer: PlayingObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def set_playing(self, playing: bool) -> None:
        playing = bool(playing)
        if playing == self.state.playing:
            return
        self.state.playing = playing
        try:
            for obs in list(self._observers):
                obs(playing)
        except Exception:
            # A failed transition leaves the transport where it was
            self.state.playing = not playing
            raise

    def toggle(self) -> None:
        self.set_playing(not self.state.playing)

    def set_bpm(self, bpm: float) -> None:
        # Takes effect on the next scheduler tick; nothing already queued moves
        try:
            b = round(float(bpm))
        except (TypeError, ValueError, OverflowError):
            b = DEFAULT_BPM
        if not b:
            b = DEFAULT_BPM
        self.state.bpm = float(max(MIN_BPM, min(MAX_BPM, b)))
