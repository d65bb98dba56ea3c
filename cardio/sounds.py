from __future__ import annotations

from pathlib import Path

from kivy.core.audio import SoundLoader

from cardio.audio import Cue

# Directory holding ``<cue>.wav`` files
SOUNDS_DIR = Path(__file__).resolve().parent.parent / "assets" / "sounds"


class CueSoundPlayer:
    """Play cardio cue sounds.

    Sounds are loaded lazily from ``assets/sounds`` to keep memory usage
    minimal.  A missing file makes the cue silent rather than failing.
    """

    def __init__(self, base_dir: Path = SOUNDS_DIR, volume: float = 1.0, enabled: bool = True):
        self._base = Path(base_dir)
        self._cache: dict[str, object] = {}
        self._current = None
        self.volume = volume
        self.enabled = enabled
        # Preload the countdown so the first cue has no load latency.
        self._load(Cue.COUNTDOWN.value)

    def _load(self, name: str):
        snd = self._cache.get(name)
        if snd is None:
            path = self._base / f"{name}.wav"
            snd = SoundLoader.load(str(path))
            self._cache[name] = snd
        return snd

    def play(self, cue_id: str) -> None:
        """Play ``cue_id`` from the start, replacing any cue already playing."""
        if not self.enabled:
            return
        snd = self._load(cue_id)
        if snd:
            self.stop()
            snd.volume = self.volume
            snd.play()
            self._current = snd

    def stop(self) -> None:
        if self._current is not None:
            self._current.stop()
            self._current = None
