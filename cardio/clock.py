"""Recompute the active phase of a session from wall-clock time.

Nothing here assumes a timer kept running while the process was suspended.
Every reading is derived from the persisted schedule and the time at which
the clock is asked.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from cardio.schedule import CardioMode, Phase, total_duration
from cardio.session import CardioSession


@dataclass(frozen=True)
class ClockReading:
    """Result of reading the phase clock at a given instant."""

    session: CardioSession
    previous_index: int
    remaining: float
    elapsed: float
    total_planned: float

    @property
    def phase(self) -> Phase:
        return self.session.current_phase

    @property
    def phase_index(self) -> int:
        return self.session.phase_index

    @property
    def crossed(self) -> bool:
        """True when the phase index moved past its previously stored value."""
        return self.session.phase_index > self.previous_index

    @property
    def previous_phase(self) -> Phase:
        return self.session.schedule[self.previous_index]

    @property
    def current_round(self) -> int | None:
        if self.session.mode is not CardioMode.HIIT or self.phase.is_terminal:
            return None
        return self.phase.cycle_index + 1

    @property
    def current_lap(self) -> int | None:
        if self.session.mode is not CardioMode.WALK_RUN or self.phase.is_terminal:
            return None
        return self.phase.cycle_index + 1


def effective_now(session: CardioSession, now: float) -> float:
    """Return the instant the schedule is compared against.

    A paused session is frozen at the moment it was paused.
    """
    return session.paused_at if session.paused_at is not None else now


def index_at(schedule: tuple[Phase, ...], t: float) -> int:
    """Return the index of the first phase ending after ``t``.

    When every phase has ended the terminal ``completed`` phase is returned.
    """

    ends = [phase.end_at for phase in schedule]
    return min(bisect_right(ends, t), len(schedule) - 1)


def read_clock(session: CardioSession, now: float) -> ClockReading:
    """Return the session's position at ``now``.

    The phase index never moves backwards, so calling this repeatedly with
    an advancing ``now`` is idempotent and monotonic.  ``session`` in the
    result is the same object when nothing changed.
    """

    t = effective_now(session, now)
    index = max(session.phase_index, index_at(session.schedule, t))
    phase = session.schedule[index]
    updated = session
    if index != session.phase_index or phase.is_terminal != session.is_completed:
        updated = session.evolve(
            now,
            phase_index=index,
            cycle_index=phase.cycle_index,
            is_completed=phase.is_terminal,
        )

    total = total_duration(session.schedule)
    pause_so_far = session.accumulated_pause_ms / 1000
    elapsed = min(total, max(0.0, t - session.started_at - pause_so_far))
    return ClockReading(
        session=updated,
        previous_index=session.phase_index,
        remaining=max(0.0, phase.end_at - t),
        elapsed=elapsed,
        total_planned=total,
    )
