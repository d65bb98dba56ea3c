"""Orchestration of the cardio session components.

:class:`CardioEngine` is the only object the app talks to.  Each public
method runs to completion (state write plus notification reconciliation)
before returning, so user actions never interleave.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable

from cardio import accountant
from cardio.audio import AudioCueCoordinator, Presentation
from cardio.clock import ClockReading, read_clock
from cardio.errors import AlreadyPaused, NoActiveSession, NotPaused
from cardio.notifications import NotificationScheduler
from cardio.schedule import CardioMode, CardioParams
from cardio.session import CardioSession, history_entry, new_session
from cardio.settings import CardioConfig
from cardio.store import SessionStore, reap_sessions


def _now(now: float | None) -> float:
    return time.time() if now is None else now


class CardioEngine:
    """Drive one interval workout across foreground and background."""

    def __init__(
        self,
        store: SessionStore,
        scheduler: NotificationScheduler,
        coordinator: AudioCueCoordinator,
        config: CardioConfig | None = None,
        history_sink: Callable[[dict], None] | None = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.coordinator = coordinator
        self.config = config or CardioConfig()
        self.history_sink = history_sink
        self._session: CardioSession | None = None

    @property
    def session(self) -> CardioSession | None:
        return self._session

    @property
    def has_active_session(self) -> bool:
        return self._session is not None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self) -> CardioSession:
        if self._session is None:
            raise NoActiveSession("No cardio session is active")
        return self._session

    def _persist(self, session: CardioSession) -> None:
        self._session = session
        try:
            self.store.save(session)
        except sqlite3.Error:
            logging.exception("Could not persist cardio session %s", session.session_id)

    def _teardown(self, session_id: str) -> None:
        self.scheduler.cancel_all(session_id)
        self.coordinator.forget(session_id)
        try:
            self.store.delete(session_id)
        except sqlite3.Error:
            logging.exception("Could not delete cardio session %s", session_id)
        if self._session is not None and self._session.session_id == session_id:
            self._session = None

    def _apply(self, reading: ClockReading) -> None:
        session = reading.session
        if session is not self._session:
            self._persist(session)
        if reading.crossed:
            self.coordinator.on_phase_advance(
                session.session_id, reading.previous_phase, reading.phase, reading.phase_index
            )
            if session.is_completed:
                logging.info("Cardio session %s reached completion", session.session_id)
        if not session.is_paused:
            self.coordinator.on_countdown(
                session.session_id, reading.phase, reading.phase_index, reading.remaining
            )

    # ------------------------------------------------------------------
    # Start-up and lifecycle
    # ------------------------------------------------------------------

    def boot(self, now: float | None = None) -> CardioSession | None:
        """Reap unusable rows, then adopt and re-sync the surviving session."""

        now = _now(now)
        self.coordinator.on_foreground(now)
        try:
            result = reap_sessions(self.store, now, self.config.stale_session_hours)
        except sqlite3.Error:
            logging.exception("Could not read persisted cardio sessions")
            return None
        self.scheduler.cancel_orphans(result.orphaned)
        if result.adopted is None:
            self._session = None
            return None

        self._session = result.adopted
        reading = read_clock(result.adopted, now)
        self._apply(reading)
        self.scheduler.reconcile(self._session, now)
        logging.info(
            "Adopted cardio session %s at phase %d", self._session.session_id, self._session.phase_index
        )
        return self._session

    def on_foreground(self, now: float | None = None) -> ClockReading | None:
        now = _now(now)
        self.coordinator.on_foreground(now)
        if self._session is None:
            return None
        self.scheduler.prune_fired(self._session.session_id, now)
        return self.tick(now)

    def on_background(self, now: float | None = None) -> None:
        now = _now(now)
        self.coordinator.on_background()
        if self._session is None:
            return
        self._apply(read_clock(self._session, now))
        self.scheduler.reconcile(self._session, now)

    def on_notification_delivered(
        self, notification_id: str, sound: str | None = None, now: float | None = None
    ) -> Presentation:
        """Handle a delivery from the transport and say how to present it.

        Deliveries of unknown or already-handled notifications are not
        presented again.
        """

        now = _now(now)
        if not self.scheduler.mark_delivered(notification_id):
            return Presentation(show_alert=False, play_sound=False)
        presentation = self.coordinator.presentation_for(sound)
        if self._session is not None:
            self.tick(now)
        return presentation

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def current(self, now: float | None = None) -> ClockReading | None:
        """Read the clock without side effects."""

        if self._session is None:
            return None
        return read_clock(self._session, _now(now))

    def tick(self, now: float | None = None) -> ClockReading | None:
        """Recompute the phase, persist any advance and fire due cues."""

        if self._session is None:
            return None
        reading = read_clock(self._session, _now(now))
        self._apply(reading)
        return reading

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def start(self, mode: CardioMode, params: CardioParams, now: float | None = None) -> CardioSession:
        """Start a new session, replacing any active one."""

        now = _now(now)
        session = new_session(mode, params, now)
        if self._session is not None:
            logging.info("Replacing cardio session %s", self._session.session_id)
            self._teardown(self._session.session_id)
        self._persist(session)
        self.scheduler.reconcile(session, now)
        logging.info("Started %s session %s", session.mode.value, session.session_id)
        return session

    def pause(self, now: float | None = None) -> CardioSession:
        now = _now(now)
        if self._require().is_paused:
            raise AlreadyPaused(f"Session {self._session.session_id} is already paused")
        self.tick(now)
        paused = accountant.pause(self._session, now)
        self._persist(paused)
        self.coordinator.stop()
        self.scheduler.reconcile(paused, now)
        return paused

    def resume(self, now: float | None = None) -> CardioSession:
        now = _now(now)
        if not self._require().is_paused:
            raise NotPaused(f"Session {self._session.session_id} is not paused")
        resumed = accountant.resume(self._session, now)
        self._persist(resumed)
        self.scheduler.reconcile(resumed, now)
        self.tick(now)
        return self._session

    def skip(self, now: float | None = None) -> CardioSession:
        now = _now(now)
        self._require()
        self.tick(now)
        before = self._session
        skipped = accountant.skip(before, now)
        if skipped.phase_index == before.phase_index:
            return before
        self._persist(skipped)
        self.coordinator.on_phase_advance(
            skipped.session_id, before.current_phase, skipped.current_phase, skipped.phase_index
        )
        self.scheduler.reconcile(skipped, now)
        return skipped

    def add_time(self, seconds: float, now: float | None = None) -> CardioSession:
        now = _now(now)
        self._require()
        self.tick(now)
        extended = accountant.add_time(self._session, seconds, now)
        if extended is not self._session:
            self._persist(extended)
            self.scheduler.reconcile(extended, now)
        return extended

    def finish(self, now: float | None = None) -> dict:
        """End the session and hand its summary to the history sink."""

        now = _now(now)
        self._require()
        self.tick(now)
        session = self._session
        entry = history_entry(session, now, ended_early=not session.is_completed)
        self._teardown(session.session_id)
        if self.history_sink is not None:
            try:
                self.history_sink(entry)
            except Exception:
                logging.exception("Could not record cardio session %s in history", session.session_id)
        logging.info("Finished cardio session %s", session.session_id)
        return entry

    def cancel(self) -> None:
        """Drop the active session and every notification.  Always succeeds."""

        if self._session is None:
            return
        session_id = self._session.session_id
        self._teardown(session_id)
        logging.info("Cancelled cardio session %s", session_id)

    def reset(self, now: float | None = None) -> CardioSession:
        """Restart the current workout from ``now`` with the same settings."""

        session = self._require()
        self.cancel()
        return self.start(session.mode, session.params, now)
