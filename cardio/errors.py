"""Exception hierarchy for the cardio session engine."""

from __future__ import annotations


class CardioError(Exception):
    """Base exception for all cardio engine errors."""


class InvalidParameters(CardioError, ValueError):
    """Workout parameters were rejected before a schedule was built."""


class SessionStateError(CardioError):
    """A user action does not fit the current session state."""


class AlreadyPaused(SessionStateError):
    """Pause was requested for a session that is already paused."""


class NotPaused(SessionStateError):
    """Resume was requested for a session that is not paused."""


class NoActiveSession(SessionStateError):
    """An action needs an active session but none exists."""


class CorruptSession(CardioError):
    """A persisted session row fails structural invariants."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class NotificationSchedulingFailure(CardioError):
    """The notification transport refused to schedule or cancel."""

    def __init__(self, message: str, notification_id: str | None = None) -> None:
        super().__init__(message)
        self.notification_id = notification_id
