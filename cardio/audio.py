"""Pick the single authoritative delivery path for audio cues.

In the foreground cues are played locally and the matching notification
sounds are suppressed.  In the background only the notification carries the
sound.  The coordinator also makes sure each phase crossing and each
countdown is cued at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from cardio import DEFAULT_COUNTDOWN_LEAD, DEFAULT_CUE_WINDOW
from cardio.schedule import COUNTDOWN_KINDS, Phase, PhaseKind


class Cue(str, Enum):
    """Identifiers of the bundled cue sounds."""

    COUNTDOWN = "countdown"
    WORK = "work"
    REST = "rest"
    FINISH = "finish"


class LifecycleState(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


class CuePath(str, Enum):
    LOCAL_AUDIO = "local_audio"
    NOTIFICATION = "notification"


class CuePlayer(Protocol):
    def play(self, cue_id: str) -> None: ...

    def stop(self) -> None: ...


class ScheduledEvent(Protocol):
    def cancel(self) -> None: ...


class OneShotClock(Protocol):
    """The subset of :class:`kivy.clock.Clock` the coordinator relies on."""

    def schedule_once(self, callback: Callable[[float], None], timeout: float = 0) -> ScheduledEvent: ...


@dataclass(frozen=True)
class Presentation:
    """How a delivered notification should be shown."""

    show_alert: bool
    play_sound: bool


def cue_for_phase(phase: Phase) -> Cue:
    """Return the cue announcing the start of ``phase``."""

    if phase.kind is PhaseKind.COMPLETED:
        return Cue.FINISH
    if phase.kind in (PhaseKind.REST, PhaseKind.WALK):
        return Cue.REST
    return Cue.WORK


class AudioCueCoordinator:
    """Decide whether, and which, cue plays locally."""

    def __init__(
        self,
        player: CuePlayer,
        clock: OneShotClock,
        cue_window: float = DEFAULT_CUE_WINDOW,
        countdown_lead: float = DEFAULT_COUNTDOWN_LEAD,
    ) -> None:
        self.player = player
        self.clock = clock
        self.cue_window = cue_window
        self.countdown_lead = countdown_lead
        self.state = LifecycleState.FOREGROUND
        # Wall time of the last transition into the foreground. Cue moments
        # before it belonged to the notification path.
        self.foreground_since: float | None = None
        self._cued_crossings: set[tuple[str, int]] = set()
        self._cued_countdowns: set[tuple[str, int]] = set()
        self._stop_event: ScheduledEvent | None = None
        self._playing: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def authoritative_path(self) -> CuePath:
        if self.state is LifecycleState.FOREGROUND:
            return CuePath.LOCAL_AUDIO
        return CuePath.NOTIFICATION

    def on_foreground(self, now: float) -> None:
        self.state = LifecycleState.FOREGROUND
        self.foreground_since = now

    def on_background(self) -> None:
        self.state = LifecycleState.BACKGROUND
        self.stop()

    def presentation_for(self, sound: str | None) -> Presentation:
        """Return how a notification carrying ``sound`` is presented now."""

        if self.authoritative_path() is CuePath.LOCAL_AUDIO:
            return Presentation(show_alert=False, play_sound=False)
        return Presentation(show_alert=True, play_sound=sound is not None)

    def forget(self, session_id: str) -> None:
        """Stop playback and drop the once-only bookkeeping for a session."""

        self.stop()
        self._cued_crossings = {k for k in self._cued_crossings if k[0] != session_id}
        self._cued_countdowns = {k for k in self._cued_countdowns if k[0] != session_id}

    # ------------------------------------------------------------------
    # Cues
    # ------------------------------------------------------------------

    def _owned_by_notification(self, moment: float) -> bool:
        return self.foreground_since is not None and moment < self.foreground_since

    def on_phase_advance(self, session_id: str, previous: Phase, current: Phase, phase_index: int) -> bool:
        """React to a crossing from ``previous`` into ``current``.

        Returns ``True`` when a cue was started locally.
        """

        key = (session_id, phase_index)
        if key in self._cued_crossings:
            return False
        self._cued_crossings.add(key)
        # a new phase always ends whatever the previous one was playing
        self.stop()
        if self.authoritative_path() is not CuePath.LOCAL_AUDIO:
            return False
        if self._owned_by_notification(current.start_at):
            logging.debug("Crossing into %s already cued by notification", current.kind.value)
            return False
        logging.debug("Cue %s -> %s", previous.kind.value, current.kind.value)
        self._play(cue_for_phase(current))
        return True

    def on_countdown(self, session_id: str, phase: Phase, phase_index: int, remaining: float) -> bool:
        """Play the countdown cue once when a work/run phase nears its end."""

        if phase.kind not in COUNTDOWN_KINDS or remaining <= 0 or remaining > self.countdown_lead:
            return False
        key = (session_id, phase_index)
        if key in self._cued_countdowns:
            return False
        if self.authoritative_path() is not CuePath.LOCAL_AUDIO:
            return False
        moment = max(phase.start_at, phase.end_at - self.countdown_lead)
        self._cued_countdowns.add(key)
        if self._owned_by_notification(moment):
            return False
        self._play(Cue.COUNTDOWN)
        return True

    def _play(self, cue: Cue) -> None:
        try:
            self.player.play(cue.value)
        except Exception:
            logging.exception("Failed to play %s cue", cue.value)
            return
        self._playing = cue.value
        self._stop_event = self.clock.schedule_once(self._on_window_elapsed, self.cue_window)

    def _on_window_elapsed(self, dt) -> None:
        self._stop_event = None
        self.stop()

    def stop(self) -> None:
        """Stop local playback and cancel the pending window timer."""

        if self._stop_event is not None:
            self._stop_event.cancel()
            self._stop_event = None
        if self._playing is None:
            return
        self._playing = None
        try:
            self.player.stop()
        except Exception:
            logging.exception("Failed to stop cue playback")

    @property
    def playing(self) -> str | None:
        return self._playing
