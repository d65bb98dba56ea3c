"""Schedule transformations for pause, resume, skip and added time.

Each operation takes a session snapshot and returns a new one.  Schedules
are rebuilt as whole tuples so a failed write never leaves a half-shifted
schedule behind.
"""

from __future__ import annotations

from cardio.clock import effective_now, index_at, read_clock
from cardio.errors import AlreadyPaused, InvalidParameters, NotPaused
from cardio.schedule import Phase
from cardio.session import CardioSession


def shift_from(schedule: tuple[Phase, ...], delta: float, start: int) -> tuple[Phase, ...]:
    """Return ``schedule`` with every phase from ``start`` on moved by ``delta``."""

    if not delta:
        return schedule
    return tuple(
        phase.shifted(delta) if index >= start else phase
        for index, phase in enumerate(schedule)
    )


def pause(session: CardioSession, now: float) -> CardioSession:
    """Freeze ``session`` at ``now``.  Timestamps in the schedule do not move."""

    if session.is_paused:
        raise AlreadyPaused(f"Session {session.session_id} is already paused")
    position = read_clock(session, now).session
    return position.evolve(now, paused_at=now)


def resume(session: CardioSession, now: float) -> CardioSession:
    """Unfreeze ``session`` and push the remaining schedule back by the pause.

    Phases that had already finished when the pause began keep their
    timestamps, so repeated pause/resume cycles add up without disturbing
    the past.
    """

    if not session.is_paused:
        raise NotPaused(f"Session {session.session_id} is not paused")
    elapsed = max(0.0, now - session.paused_at)
    current = max(session.phase_index, index_at(session.schedule, session.paused_at))
    schedule = shift_from(session.schedule, elapsed, current)
    return session.evolve(
        now,
        schedule=schedule,
        phase_index=current,
        cycle_index=schedule[current].cycle_index,
        is_completed=schedule[current].is_terminal,
        paused_at=None,
        accumulated_pause_ms=session.accumulated_pause_ms + int(round(elapsed * 1000)),
    )


def skip(session: CardioSession, now: float) -> CardioSession:
    """End the current phase immediately and advance to the next one.

    Later phases keep their lengths and now start at the new boundary.  The
    terminal phase cannot be skipped; the session is returned unchanged.
    """

    position = read_clock(session, now).session
    index = position.phase_index
    current = position.schedule[index]
    if current.is_terminal:
        return position
    boundary = max(current.start_at, effective_now(position, now))
    phases = list(position.schedule[:index])
    phases.append(Phase(current.kind, current.start_at, boundary, current.cycle_index))
    # later phases are laid out again from the boundary, keeping their lengths
    t = boundary
    for phase in position.schedule[index + 1 :]:
        phases.append(Phase(phase.kind, t, t + phase.duration, phase.cycle_index))
        t += phase.duration
    schedule = tuple(phases)
    nxt = schedule[index + 1]
    skipped = position.evolve(
        now,
        schedule=schedule,
        phase_index=index + 1,
        cycle_index=nxt.cycle_index,
        is_completed=nxt.is_terminal,
    )
    return read_clock(skipped, now).session


def add_time(session: CardioSession, seconds: float, now: float) -> CardioSession:
    """Lengthen the current phase by ``seconds`` and push later phases back."""

    if seconds <= 0:
        raise InvalidParameters(f"Added time must be positive, got {seconds!r}")
    position = read_clock(session, now).session
    index = position.phase_index
    current = position.schedule[index]
    if current.is_terminal:
        return position
    extended = Phase(current.kind, current.start_at, current.end_at + seconds, current.cycle_index)
    schedule = tuple(
        extended if i == index else (phase.shifted(seconds) if i > index else phase)
        for i, phase in enumerate(position.schedule)
    )
    return position.evolve(now, schedule=schedule)
