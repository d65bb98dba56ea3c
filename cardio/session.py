"""Immutable snapshot of the active cardio session."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace

from cardio.errors import CorruptSession, InvalidParameters
from cardio.schedule import (
    CardioMode,
    CardioParams,
    Phase,
    PhaseKind,
    build_schedule,
    params_from_dict,
    params_to_dict,
)


def generate_session_id(now: float) -> str:
    """Return a new unique session id."""
    return f"cardio_{int(now * 1000)}_{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class CardioSession:
    """State of one interval workout.

    Instances are never mutated.  Every change produces a new snapshot with
    :meth:`evolve`, and the store replaces the persisted row as a whole.
    """

    session_id: str
    mode: CardioMode
    params: CardioParams
    schedule: tuple[Phase, ...]
    started_at: float
    phase_index: int = 0
    cycle_index: int = 0
    paused_at: float | None = None
    accumulated_pause_ms: int = 0
    is_completed: bool = False
    created_at: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    @property
    def current_phase(self) -> Phase:
        return self.schedule[self.phase_index]

    @property
    def terminal_index(self) -> int:
        return len(self.schedule) - 1

    def evolve(self, now: float | None = None, **changes) -> "CardioSession":
        """Return a copy with ``changes`` applied and ``last_updated`` bumped."""
        changes.setdefault("last_updated", time.time() if now is None else now)
        return replace(self, **changes)

    # --------------------------------------------------------------
    # Persistence helpers
    # --------------------------------------------------------------

    def to_dict(self) -> dict:
        """Return a JSON-serialisable representation of the session."""

        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "params": params_to_dict(self.params),
            "schedule": [phase.to_dict() for phase in self.schedule],
            "started_at": self.started_at,
            "phase_index": self.phase_index,
            "cycle_index": self.cycle_index,
            "paused_at": self.paused_at,
            "accumulated_pause_ms": self.accumulated_pause_ms,
            "is_completed": self.is_completed,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CardioSession":
        """Reconstruct a session, raising :class:`CorruptSession` on bad data."""

        session_id = data.get("session_id")
        try:
            mode = CardioMode(data["mode"])
            params = params_from_dict(mode, data["params"])
            schedule = tuple(Phase.from_dict(p) for p in data["schedule"])
            obj = cls(
                session_id=str(session_id),
                mode=mode,
                params=params,
                schedule=schedule,
                started_at=float(data["started_at"]),
                phase_index=int(data.get("phase_index", 0)),
                cycle_index=int(data.get("cycle_index", 0)),
                paused_at=(
                    float(data["paused_at"]) if data.get("paused_at") is not None else None
                ),
                accumulated_pause_ms=int(data.get("accumulated_pause_ms", 0)),
                is_completed=bool(data.get("is_completed", False)),
                created_at=float(data.get("created_at") or data["started_at"]),
                last_updated=float(data.get("last_updated") or data["started_at"]),
            )
        except (KeyError, TypeError, ValueError, InvalidParameters) as exc:
            raise CorruptSession(f"Unreadable session row: {exc}", session_id) from exc
        obj.check_invariants()
        return obj

    def check_invariants(self) -> None:
        """Raise :class:`CorruptSession` if the snapshot is structurally unusable."""

        if not self.session_id:
            raise CorruptSession("Session has no id")
        if not self.schedule:
            raise CorruptSession("Session has an empty schedule", self.session_id)
        if not self.schedule[-1].is_terminal:
            raise CorruptSession("Schedule does not end with a completed phase", self.session_id)
        if any(p.is_terminal for p in self.schedule[:-1]):
            raise CorruptSession("Completed phase before the end of the schedule", self.session_id)
        if any(p.end_at < p.start_at for p in self.schedule):
            raise CorruptSession("Schedule contains a phase ending before it starts", self.session_id)
        # gaps between phases are allowed, overlaps are not
        for index, (before, after) in enumerate(zip(self.schedule, self.schedule[1:])):
            if before.end_at > after.start_at:
                raise CorruptSession(
                    f"Phase {index} ends after phase {index + 1} starts", self.session_id
                )
        if not 0 <= self.phase_index < len(self.schedule):
            raise CorruptSession(
                f"Phase index {self.phase_index} outside schedule", self.session_id
            )
        if self.is_completed != self.current_phase.is_terminal:
            raise CorruptSession(
                f"Completion flag {self.is_completed} disagrees with phase {self.phase_index}",
                self.session_id,
            )
        if self.accumulated_pause_ms < 0:
            raise CorruptSession("Negative accumulated pause", self.session_id)


def new_session(
    mode: CardioMode,
    params: CardioParams,
    now: float,
    session_id: str | None = None,
) -> CardioSession:
    """Build a fresh session starting at ``now``.

    Raises :class:`InvalidParameters` before anything else happens if the
    params are unusable.
    """

    mode = CardioMode(mode)
    schedule = build_schedule(mode, params, now)
    return CardioSession(
        session_id=session_id or generate_session_id(now),
        mode=mode,
        params=params,
        schedule=schedule,
        started_at=now,
        phase_index=0,
        cycle_index=schedule[0].cycle_index,
        created_at=now,
        last_updated=now,
    )


def completed_cycles(session: CardioSession) -> int:
    """Return how many rounds (HIIT) or laps (walk-run) are finished.

    A round is complete once its work phase is over, so being in ``rest``
    counts the round.  Being in ``work`` does not.
    """

    current = session.current_phase
    if current.is_terminal:
        return current.cycle_index + 1
    if current.kind in (PhaseKind.REST, PhaseKind.WALK):
        return current.cycle_index + 1
    return current.cycle_index


def history_entry(session: CardioSession, now: float, ended_early: bool) -> dict:
    """Summarise ``session`` for the permanent workout history.

    The duration excludes every pause, including one still running at
    ``now``.
    """

    raw = max(0.0, now - session.started_at)
    extra_pause = max(0.0, now - session.paused_at) if session.is_paused else 0.0
    total_pause_ms = max(0, session.accumulated_pause_ms + int(round(extra_pause * 1000)))
    duration = max(0.0, raw - total_pause_ms / 1000)
    is_hiit = session.mode is CardioMode.HIIT
    return {
        "session_id": session.session_id,
        "type": session.mode.value,
        "name": "Quick HIIT" if is_hiit else "Walk-Run",
        "started_at": session.started_at,
        "ended_at": now,
        "duration": int(round(duration)),
        "pause_ms": total_pause_ms,
        "completed_cycles": completed_cycles(session),
        "ended_early": ended_early,
        "params": params_to_dict(session.params),
    }
