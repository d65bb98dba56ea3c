"""Cardio tunables persisted in the app's JSON settings file.

The file holds a list of ``{"key", "value", "type"}`` entries so the order
shown in a settings screen is stable.  :class:`CardioConfig` is the typed view
the engine consumes; :meth:`CardioConfig.save` writes it back.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List

from cardio import (
    DEFAULT_COUNTDOWN_LEAD,
    DEFAULT_CUE_WINDOW,
    DEFAULT_MIN_NOTIFICATION_GAP,
    DEFAULT_STALE_SESSION_HOURS,
    DEFAULT_TICK_INTERVAL,
)

# Path to the JSON file where settings are persisted.
SETTINGS_PATH = Path(__file__).resolve().parents[1] / "data" / "settings.json"

# Config field -> (settings key, entry type, coercion)
_FIELDS = {
    "sound_level": ("sound_level", "slider", float),
    "sound_on": ("sound_on", "bool", bool),
    "min_notification_gap": ("min_notification_gap_sec", "float", float),
    "countdown_lead": ("countdown_lead_sec", "float", float),
    "cue_window": ("cue_window_sec", "float", float),
    "stale_session_hours": ("stale_session_hours", "int", float),
    "tick_interval": ("tick_interval_sec", "float", float),
}


@dataclass(frozen=True)
class CardioConfig:
    """Tunables for the engine, read once from the settings file."""

    min_notification_gap: float = DEFAULT_MIN_NOTIFICATION_GAP
    countdown_lead: float = DEFAULT_COUNTDOWN_LEAD
    cue_window: float = DEFAULT_CUE_WINDOW
    stale_session_hours: float = DEFAULT_STALE_SESSION_HOURS
    tick_interval: float = DEFAULT_TICK_INTERVAL
    sound_on: bool = True
    sound_level: float = 1.0

    @classmethod
    def from_settings(cls) -> "CardioConfig":
        defaults = cls()
        values = {}
        for name, (key, _, coerce) in _FIELDS.items():
            raw = value_of(key, getattr(defaults, name))
            try:
                values[name] = coerce(raw)
            except (TypeError, ValueError):
                logging.warning("Ignoring bad value %r for setting %s", raw, key)
                values[name] = getattr(defaults, name)
        return cls(**values)

    def save(self) -> None:
        """Persist every field of this config."""
        update({_FIELDS[name][0]: value for name, value in asdict(self).items()})


def _default_entries() -> List[Dict[str, Any]]:
    defaults = asdict(CardioConfig())
    return [
        {"key": key, "value": defaults[name], "type": kind}
        for name, (key, kind, _) in _FIELDS.items()
    ]


# Default settings to initialize the file on first run.
DEFAULT_SETTINGS: List[Dict[str, Any]] = _default_entries()

# Internal cache so settings are only read from disk once.
_settings_cache: List[Dict[str, Any]] | None = None


def read_settings() -> List[Dict[str, Any]]:
    """Return the entries in :data:`SETTINGS_PATH`, adding missing defaults.

    An unreadable file is replaced by the defaults.  Entries for keys the
    file does not know yet are appended and written back.
    """
    entries: List[Dict[str, Any]] = []
    if SETTINGS_PATH.exists():
        try:
            with SETTINGS_PATH.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            if isinstance(data, list):
                entries = [item for item in data if isinstance(item, dict)]
        except (OSError, json.JSONDecodeError):
            logging.warning("Settings file %s unreadable, restoring defaults", SETTINGS_PATH)

    known = {item.get("key") for item in entries}
    missing = [dict(item) for item in DEFAULT_SETTINGS if item["key"] not in known]
    if missing or not entries:
        entries.extend(missing)
        write_settings(entries)
    return entries


def write_settings(entries: List[Dict[str, Any]]) -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    with SETTINGS_PATH.open("w", encoding="utf-8") as fh:
        json.dump(entries, fh, indent=2)


def _entries() -> List[Dict[str, Any]]:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = read_settings()
    return _settings_cache


def value_of(key: str, default: Any = None) -> Any:
    for item in _entries():
        if item.get("key") == key:
            return item.get("value")
    return default


def update(changes: Dict[str, Any]) -> None:
    """Apply ``changes`` (key -> value) and write the file once."""
    entries = _entries()
    by_key = {item.get("key"): item for item in entries}
    for key, value in changes.items():
        if key in by_key:
            by_key[key]["value"] = value
        else:
            entries.append({"key": key, "value": value, "type": type(value).__name__})
    write_settings(entries)
