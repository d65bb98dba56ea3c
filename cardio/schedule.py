"""Construction of cardio phase schedules.

A schedule is a tuple of :class:`Phase` records carrying absolute start and
end timestamps (epoch seconds).  Absolute times let the phase clock work out
where a session is from the wall clock alone, without replaying the workout
from its start.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from numbers import Real
from typing import Union

from cardio.errors import InvalidParameters


class CardioMode(str, Enum):
    """Kind of interval workout."""

    HIIT = "hiit"
    WALK_RUN = "walk_run"


class PhaseKind(str, Enum):
    """Kind of a single timed segment."""

    WORK = "work"
    REST = "rest"
    RUN = "run"
    WALK = "walk"
    COMPLETED = "completed"


# Phases that receive a countdown cue shortly before they end
COUNTDOWN_KINDS = frozenset({PhaseKind.WORK, PhaseKind.RUN})


@dataclass(frozen=True)
class HiitParams:
    """Work/rest rounds.  Durations are in seconds."""

    work_sec: float
    rest_sec: float
    rounds: int
    include_trailing_rest: bool = False


@dataclass(frozen=True)
class WalkRunParams:
    """Run/walk laps.  Durations are in seconds."""

    run_sec: float
    walk_sec: float
    laps: int
    include_trailing_walk: bool = False


CardioParams = Union[HiitParams, WalkRunParams]


@dataclass(frozen=True)
class Phase:
    """A timed segment of a session with absolute timestamps."""

    kind: PhaseKind
    start_at: float
    end_at: float
    cycle_index: int

    @property
    def duration(self) -> float:
        return self.end_at - self.start_at

    @property
    def is_terminal(self) -> bool:
        return self.kind is PhaseKind.COMPLETED

    def shifted(self, delta: float) -> "Phase":
        """Return a copy moved by ``delta`` seconds."""
        return replace(self, start_at=self.start_at + delta, end_at=self.end_at + delta)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "start_at": self.start_at,
            "end_at": self.end_at,
            "cycle_index": self.cycle_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Phase":
        return cls(
            kind=PhaseKind(data["kind"]),
            start_at=float(data["start_at"]),
            end_at=float(data["end_at"]),
            cycle_index=int(data["cycle_index"]),
        )


def _check_duration(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidParameters(f"{name} must be a number, got {value!r}")
    if value <= 0:
        raise InvalidParameters(f"{name} must be greater than zero, got {value!r}")


def _check_count(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameters(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise InvalidParameters(f"{name} must be at least 1, got {value!r}")


def validate_params(mode: CardioMode, params: CardioParams) -> None:
    """Raise :class:`InvalidParameters` unless ``params`` suit ``mode``."""

    try:
        mode = CardioMode(mode)
    except ValueError:
        raise InvalidParameters(f"Unknown cardio mode {mode!r}") from None

    if mode is CardioMode.HIIT:
        if not isinstance(params, HiitParams):
            raise InvalidParameters("HIIT sessions require HiitParams")
        _check_duration("work_sec", params.work_sec)
        _check_duration("rest_sec", params.rest_sec)
        _check_count("rounds", params.rounds)
    else:
        if not isinstance(params, WalkRunParams):
            raise InvalidParameters("Walk-run sessions require WalkRunParams")
        _check_duration("run_sec", params.run_sec)
        _check_duration("walk_sec", params.walk_sec)
        _check_count("laps", params.laps)


def _alternating(
    start_at: float,
    active: tuple[PhaseKind, float],
    recovery: tuple[PhaseKind, float],
    cycles: int,
    trailing: bool,
) -> tuple[Phase, ...]:
    phases: list[Phase] = []
    t = float(start_at)
    for cycle in range(cycles):
        kind, seconds = active
        phases.append(Phase(kind, t, t + seconds, cycle))
        t += seconds
        if cycle < cycles - 1 or trailing:
            kind, seconds = recovery
            phases.append(Phase(kind, t, t + seconds, cycle))
            t += seconds
    phases.append(Phase(PhaseKind.COMPLETED, t, t, cycles - 1))
    return tuple(phases)


def build_schedule(mode: CardioMode, params: CardioParams, start_at: float) -> tuple[Phase, ...]:
    """Return the full phase schedule for a session starting at ``start_at``.

    The last round (or lap) has no trailing rest (or walk) unless the
    params ask for one.  A zero-length ``completed`` phase always closes the
    schedule.
    """

    validate_params(mode, params)
    if CardioMode(mode) is CardioMode.HIIT:
        return _alternating(
            start_at,
            (PhaseKind.WORK, params.work_sec),
            (PhaseKind.REST, params.rest_sec),
            params.rounds,
            params.include_trailing_rest,
        )
    return _alternating(
        start_at,
        (PhaseKind.RUN, params.run_sec),
        (PhaseKind.WALK, params.walk_sec),
        params.laps,
        params.include_trailing_walk,
    )


def params_to_dict(params: CardioParams) -> dict:
    if isinstance(params, HiitParams):
        return {
            "work_sec": params.work_sec,
            "rest_sec": params.rest_sec,
            "rounds": params.rounds,
            "include_trailing_rest": params.include_trailing_rest,
        }
    return {
        "run_sec": params.run_sec,
        "walk_sec": params.walk_sec,
        "laps": params.laps,
        "include_trailing_walk": params.include_trailing_walk,
    }


def params_from_dict(mode: CardioMode, data: dict) -> CardioParams:
    """Rebuild validated params for ``mode`` from their persisted form."""

    try:
        if CardioMode(mode) is CardioMode.HIIT:
            params = HiitParams(
                work_sec=data["work_sec"],
                rest_sec=data["rest_sec"],
                rounds=data["rounds"],
                include_trailing_rest=bool(data.get("include_trailing_rest", False)),
            )
        else:
            params = WalkRunParams(
                run_sec=data["run_sec"],
                walk_sec=data["walk_sec"],
                laps=data["laps"],
                include_trailing_walk=bool(data.get("include_trailing_walk", False)),
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidParameters(f"Malformed {mode} params: {data!r}") from exc
    validate_params(mode, params)
    return params


def total_duration(schedule: tuple[Phase, ...]) -> float:
    """Return the summed length of all phases in seconds.

    Pauses shift timestamps but not durations, so this stays constant across
    pause/resume cycles.
    """
    return float(sum(phase.duration for phase in schedule))
