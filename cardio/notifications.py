"""Keep the transport's scheduled notifications in step with the schedule.

Every state change goes through :meth:`NotificationScheduler.reconcile`,
which cancels the whole existing set before scheduling a new one.  A session
therefore never has two live copies of the same notification, and a failed
pass leaves no notifications rather than a partial set.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, replace
from typing import Protocol

from cardio import DEFAULT_COUNTDOWN_LEAD, DEFAULT_MIN_NOTIFICATION_GAP
from cardio.audio import Cue, cue_for_phase
from cardio.errors import NotificationSchedulingFailure
from cardio.schedule import COUNTDOWN_KINDS, CardioMode, Phase, PhaseKind
from cardio.session import CardioSession
from cardio.store import NotificationRecord, SessionStore

BOUNDARY = "boundary"
COUNTDOWN = "countdown"


class NotificationTransport(Protocol):
    def schedule_absolute(
        self, notification_id: str, fire_at: float, title: str, body: str, sound: str | None = None
    ) -> str: ...

    def cancel(self, handle: str) -> None: ...


@dataclass(frozen=True)
class NotificationRequest:
    """A notification the scheduler wants the transport to deliver."""

    notification_id: str
    kind: str
    phase_index: int
    fire_at: float
    title: str
    body: str
    sound: str | None


def notification_id(session_id: str, phase_index: int, kind: str) -> str:
    return f"{session_id}:{phase_index}:{kind}"


_PHASE_DONE = {
    PhaseKind.WORK: ("WORK COMPLETE", "Round {n} finished. Time to rest"),
    PhaseKind.REST: ("REST OVER", "Round {n} rest done. Get ready to work"),
    PhaseKind.RUN: ("RUN COMPLETE", "Lap {n} run done. Switch to walking"),
    PhaseKind.WALK: ("WALK COMPLETE", "Lap {n} walk done. Time to run"),
}


def boundary_content(mode: CardioMode, phase: Phase, following: Phase) -> tuple[str, str]:
    """Return ``(title, body)`` announcing the end of ``phase``."""

    if following.is_terminal:
        if mode is CardioMode.HIIT:
            return "HIIT FINISHED", "Your HIIT session is complete"
        return "WALK-RUN FINISHED", "Your walk-run session is complete"
    title, body = _PHASE_DONE[phase.kind]
    return title, body.format(n=phase.cycle_index + 1)


def countdown_content(phase: Phase, lead: float) -> tuple[str, str]:
    unit = "Round" if phase.kind is PhaseKind.WORK else "Lap"
    return (
        f"{phase.kind.value.upper()} ENDING",
        f"{unit} {phase.cycle_index + 1} {phase.kind.value} ends in {lead:g} seconds",
    )


def enforce_min_spacing(times: list[float], gap: float) -> list[float]:
    """Return ``times`` sorted, with neighbours pushed at least ``gap`` apart.

    A single forward pass moves each time that sits too close to its
    predecessor later by the shortfall.  Order is preserved and nothing is
    dropped.
    """

    spaced: list[float] = []
    for t in sorted(times):
        if spaced and t - spaced[-1] < gap:
            t = spaced[-1] + gap
        spaced.append(t)
    return spaced


def plan_notifications(
    session: CardioSession,
    now: float,
    min_gap: float = DEFAULT_MIN_NOTIFICATION_GAP,
    countdown_lead: float = DEFAULT_COUNTDOWN_LEAD,
) -> list[NotificationRequest]:
    """Return the spaced notification set for the rest of ``session``.

    Nothing is planned while paused or once completed.  Candidates that
    would fire at or before ``now`` are dropped before spacing.
    """

    if session.is_paused or session.is_completed:
        return []
    schedule = session.schedule
    candidates: list[NotificationRequest] = []
    for index in range(session.phase_index, len(schedule) - 1):
        phase, following = schedule[index], schedule[index + 1]
        if phase.kind in COUNTDOWN_KINDS:
            title, body = countdown_content(phase, countdown_lead)
            candidates.append(
                NotificationRequest(
                    notification_id=notification_id(session.session_id, index, COUNTDOWN),
                    kind=COUNTDOWN,
                    phase_index=index,
                    fire_at=max(phase.start_at, phase.end_at - countdown_lead),
                    title=title,
                    body=body,
                    sound=Cue.COUNTDOWN.value,
                )
            )
        title, body = boundary_content(session.mode, phase, following)
        candidates.append(
            NotificationRequest(
                notification_id=notification_id(session.session_id, index, BOUNDARY),
                kind=BOUNDARY,
                phase_index=index,
                fire_at=phase.end_at,
                title=title,
                body=body,
                sound=cue_for_phase(following).value,
            )
        )

    upcoming = sorted((c for c in candidates if c.fire_at > now), key=lambda c: c.fire_at)
    spaced = enforce_min_spacing([c.fire_at for c in upcoming], min_gap)
    return [replace(c, fire_at=t) for c, t in zip(upcoming, spaced)]


class NotificationScheduler:
    """Mirror a session's schedule into the notification transport."""

    def __init__(
        self,
        transport: NotificationTransport,
        store: SessionStore,
        min_gap: float = DEFAULT_MIN_NOTIFICATION_GAP,
        countdown_lead: float = DEFAULT_COUNTDOWN_LEAD,
    ) -> None:
        self.transport = transport
        self.store = store
        self.min_gap = min_gap
        self.countdown_lead = countdown_lead
        # Bumped by cancel_all so an interrupted reconcile pass can tell it
        # has been superseded.
        self._generation = 0
        # Last known records per session, used when the store is unreadable.
        self._live: dict[str, list[NotificationRecord]] = {}

    def _records(self, session_id: str) -> list[NotificationRecord]:
        try:
            return self.store.notifications(session_id)
        except sqlite3.Error:
            logging.exception("Could not read notification records for %s", session_id)
            return list(self._live.get(session_id, []))

    def _submit(self, request: NotificationRequest) -> str:
        """Hand ``request`` to the transport and return its handle."""
        try:
            return self.transport.schedule_absolute(
                request.notification_id,
                request.fire_at,
                request.title,
                request.body,
                request.sound,
            )
        except Exception as exc:
            raise NotificationSchedulingFailure(
                f"Scheduling failed: {exc}", request.notification_id
            ) from exc

    def _withdraw(self, record: NotificationRecord) -> None:
        try:
            self.transport.cancel(record.handle)
        except Exception as exc:
            raise NotificationSchedulingFailure(
                f"Cancel failed: {exc}", record.notification_id
            ) from exc

    def _cancel_handles(self, records: list[NotificationRecord]) -> None:
        for record in records:
            if record.handle is None:
                continue
            try:
                self._withdraw(record)
            except NotificationSchedulingFailure as failure:
                logging.warning("%s", failure)

    def _clear(self, session_id: str) -> None:
        self._cancel_handles(self._records(session_id))
        self._live.pop(session_id, None)
        try:
            self.store.clear_notifications(session_id)
        except sqlite3.Error:
            logging.exception("Could not clear notification records for %s", session_id)

    def cancel_all(self, session_id: str) -> None:
        """Cancel every notification of ``session_id`` for good."""

        self._generation += 1
        self._clear(session_id)

    def cancel_orphans(self, records: list[NotificationRecord]) -> None:
        """Cancel transport handles whose store rows are already gone."""

        self._generation += 1
        self._cancel_handles(records)
        for record in records:
            self._live.pop(record.session_id, None)

    def reconcile(self, session: CardioSession, now: float) -> list[NotificationRecord]:
        """Replace the session's notifications with a fresh set.

        Returns the records now live.  Transport or store failures are
        logged and leave the session without notifications.
        """

        self._clear(session.session_id)
        requests = plan_notifications(session, now, self.min_gap, self.countdown_lead)
        if not requests:
            return []

        generation = self._generation
        records: list[NotificationRecord] = []
        for request in requests:
            try:
                handle = self._submit(request)
            except NotificationSchedulingFailure as failure:
                logging.warning("%s; session %s runs without notifications", failure, session.session_id)
                self._cancel_handles(records)
                return []
            records.append(
                NotificationRecord(session.session_id, request.notification_id, request.fire_at, handle)
            )
            if self._generation != generation:
                logging.info("Notification pass for %s superseded by cancel", session.session_id)
                self._cancel_handles(records)
                return []

        try:
            self.store.replace_notifications(session.session_id, records)
        except sqlite3.Error:
            logging.exception("Could not persist notifications for %s", session.session_id)
            self._cancel_handles(records)
            return []
        self._live[session.session_id] = records
        return records

    def mark_delivered(self, notification_id: str) -> bool:
        """Forget a delivered notification.  Repeated deliveries return ``False``."""

        try:
            removed = self.store.remove_notification(notification_id)
        except sqlite3.Error:
            logging.exception("Could not drop delivered notification %s", notification_id)
            removed = False
        for session_id, records in self._live.items():
            kept = [r for r in records if r.notification_id != notification_id]
            if len(kept) != len(records):
                self._live[session_id] = kept
                removed = True
        return removed

    def prune_fired(self, session_id: str, now: float) -> int:
        """Drop records whose fire time passed while nobody was listening."""

        try:
            fired = self.store.remove_fired(session_id, now)
        except sqlite3.Error:
            logging.exception("Could not prune fired notifications for %s", session_id)
            return 0
        if session_id in self._live:
            self._live[session_id] = [r for r in self._live[session_id] if r.fire_at > now]
        if fired:
            logging.info("%d notification(s) for %s fired while suspended", len(fired), session_id)
        return len(fired)
