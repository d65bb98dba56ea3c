"""Shared constants for the cardio session engine."""

from __future__ import annotations

from pathlib import Path

# Seconds between two consecutive scheduled notifications
DEFAULT_MIN_NOTIFICATION_GAP = 2.0

# Seconds before the end of a work/run phase when the countdown cue fires
DEFAULT_COUNTDOWN_LEAD = 3.0

# Length of the playback window for a phase transition cue
DEFAULT_CUE_WINDOW = 2.0

# Sessions older than this are presumed abandoned
DEFAULT_STALE_SESSION_HOURS = 24

# Foreground refresh interval in seconds. Only used for UI updates.
DEFAULT_TICK_INTERVAL = 0.5

# Path to the SQLite database holding the active cardio session
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "data" / "cardio.db"

# Schema applied whenever a store is opened
SCHEMA_PATH = Path(__file__).resolve().parent.parent / "data" / "cardio_schema.sql"

__all__ = [
    "DEFAULT_MIN_NOTIFICATION_GAP",
    "DEFAULT_COUNTDOWN_LEAD",
    "DEFAULT_CUE_WINDOW",
    "DEFAULT_STALE_SESSION_HOURS",
    "DEFAULT_TICK_INTERVAL",
    "DEFAULT_DB_PATH",
    "SCHEMA_PATH",
]
