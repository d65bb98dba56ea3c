"""SQLite persistence for the active cardio session.

The store keeps a single session row plus one row per scheduled
notification.  Every write replaces whole records inside one transaction so
readers never see a partially updated session.

:func:`reap_sessions` runs once at start-up and removes rows that are too
old or too broken to resume.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from cardio import DEFAULT_DB_PATH, DEFAULT_STALE_SESSION_HOURS, SCHEMA_PATH
from cardio.errors import CorruptSession
from cardio.session import CardioSession


@dataclass(frozen=True)
class NotificationRecord:
    """A notification handed to the transport for ``session_id``."""

    session_id: str
    notification_id: str
    fire_at: float
    handle: str | None = None


@dataclass(frozen=True)
class ReapResult:
    """Outcome of the start-up sweep."""

    adopted: CardioSession | None
    reaped_ids: list[str] = field(default_factory=list)
    # Notification rows of reaped sessions, still live in the transport
    orphaned: list[NotificationRecord] = field(default_factory=list)


_SESSION_COLUMNS = (
    "session_id, mode, params_json, schedule_json, started_at, phase_index, "
    "cycle_index, paused_at, accumulated_pause_ms, is_completed, created_at, last_updated"
)


def _row_to_dict(row: tuple) -> dict:
    (
        session_id,
        mode,
        params_json,
        schedule_json,
        started_at,
        phase_index,
        cycle_index,
        paused_at,
        pause_ms,
        is_completed,
        created_at,
        last_updated,
    ) = row
    return {
        "session_id": session_id,
        "mode": mode,
        "params": json.loads(params_json) if params_json else None,
        "schedule": json.loads(schedule_json) if schedule_json else None,
        "started_at": started_at,
        "phase_index": phase_index,
        "cycle_index": cycle_index,
        "paused_at": paused_at,
        "accumulated_pause_ms": pause_ms,
        "is_completed": bool(is_completed),
        "created_at": created_at,
        "last_updated": last_updated,
    }


class SessionStore:
    """Single-row store for the active session and its notification handles."""

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, schema_path: Path = SCHEMA_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.executescript(Path(schema_path).read_text(encoding="utf-8"))

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    # ------------------------------------------------------------------
    # Session rows
    # ------------------------------------------------------------------

    def save(self, session: CardioSession) -> None:
        """Replace the persisted row for ``session`` as a whole."""

        data = session.to_dict()
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO active_cardio_sessions ({_SESSION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    data["session_id"],
                    data["mode"],
                    json.dumps(data["params"]),
                    json.dumps(data["schedule"]),
                    data["started_at"],
                    data["phase_index"],
                    data["cycle_index"],
                    data["paused_at"],
                    data["accumulated_pause_ms"],
                    int(data["is_completed"]),
                    data["created_at"],
                    data["last_updated"],
                ),
            )

    def raw_sessions(self) -> list[dict]:
        """Return every session row as a dict without validating it.

        Rows whose JSON columns cannot be decoded are returned with
        ``params`` and ``schedule`` set to ``None`` so the reaper can
        discard them.
        """

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM active_cardio_sessions"
            ).fetchall()
        result = []
        for row in rows:
            try:
                result.append(_row_to_dict(row))
            except json.JSONDecodeError:
                logging.warning("Session %s has undecodable JSON columns", row[0])
                result.append(
                    {"session_id": row[0], "mode": row[1], "params": None,
                     "schedule": None, "started_at": row[4]}
                )
        return result

    def load_active(self) -> CardioSession | None:
        """Return the most recently updated session, if any.

        Raises :class:`CorruptSession` when that row fails validation.
        """

        rows = self.raw_sessions()
        if not rows:
            return None
        latest = max(rows, key=lambda r: r.get("last_updated") or r.get("started_at") or 0)
        return CardioSession.from_dict(latest)

    def delete(self, session_id: str) -> None:
        """Remove ``session_id`` and all of its notification rows."""

        with self._connect() as conn:
            conn.execute(
                "DELETE FROM active_cardio_notifications WHERE session_id = ?",
                (session_id,),
            )
            conn.execute(
                "DELETE FROM active_cardio_sessions WHERE session_id = ?",
                (session_id,),
            )

    # ------------------------------------------------------------------
    # Notification rows
    # ------------------------------------------------------------------

    def notifications(self, session_id: str) -> list[NotificationRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT session_id, notification_id, fire_at, handle
                FROM active_cardio_notifications
                WHERE session_id = ?
                ORDER BY fire_at
                """,
                (session_id,),
            ).fetchall()
        return [NotificationRecord(*row) for row in rows]

    def replace_notifications(self, session_id: str, records: list[NotificationRecord]) -> None:
        """Swap the stored notification set for ``session_id`` in one transaction."""

        with self._connect() as conn:
            conn.execute(
                "DELETE FROM active_cardio_notifications WHERE session_id = ?",
                (session_id,),
            )
            conn.executemany(
                """
                INSERT OR REPLACE INTO active_cardio_notifications
                    (notification_id, session_id, fire_at, handle)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (r.notification_id, session_id, r.fire_at, r.handle)
                    for r in records
                ],
            )

    def clear_notifications(self, session_id: str) -> None:
        self.replace_notifications(session_id, [])

    def remove_notification(self, notification_id: str) -> bool:
        """Delete one notification row.  Returns ``False`` if it was unknown."""

        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM active_cardio_notifications WHERE notification_id = ?",
                (notification_id,),
            )
            return cur.rowcount > 0

    def remove_fired(self, session_id: str, now: float) -> list[NotificationRecord]:
        """Delete and return the notification rows whose time has passed."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT session_id, notification_id, fire_at, handle
                FROM active_cardio_notifications
                WHERE session_id = ? AND fire_at <= ?
                ORDER BY fire_at
                """,
                (session_id, now),
            ).fetchall()
            conn.execute(
                "DELETE FROM active_cardio_notifications WHERE session_id = ? AND fire_at <= ?",
                (session_id, now),
            )
        return [NotificationRecord(*row) for row in rows]


def _invalid_reason(row: dict) -> str | None:
    if not row.get("mode"):
        return "mode missing"
    if not row.get("params"):
        return "params empty"
    if not row.get("schedule"):
        return "schedule empty"
    return None


def reap_sessions(
    store: SessionStore,
    now: float,
    max_age_hours: float = DEFAULT_STALE_SESSION_HOURS,
) -> ReapResult:
    """Delete stale or unusable session rows and return the survivor.

    A row is reaped when it started more than ``max_age_hours`` ago, when
    its mode, params or schedule is missing, or when it fails to parse.  If
    several valid rows remain the most recently updated one is adopted and
    the others are removed.
    """

    max_age = max_age_hours * 3600
    reaped: list[str] = []
    orphaned: list[NotificationRecord] = []
    survivors: list[CardioSession] = []

    def discard(session_id: str) -> None:
        orphaned.extend(store.notifications(session_id))
        store.delete(session_id)
        reaped.append(session_id)

    for row in store.raw_sessions():
        session_id = row.get("session_id")
        try:
            started_at = float(row.get("started_at"))
        except (TypeError, ValueError):
            started_at = None
        if started_at is None:
            reason = f"unreadable start time {row.get('started_at')!r}"
        elif now - started_at > max_age:
            reason = f"stale ({(now - started_at) / 3600:.1f} hours old)"
        else:
            reason = _invalid_reason(row)
        if reason is None:
            try:
                survivors.append(CardioSession.from_dict(row))
            except CorruptSession as exc:
                reason = f"corrupt ({exc})"
        if reason is not None:
            logging.info("Reaping cardio session %s: %s", session_id, reason)
            discard(session_id)

    if not survivors:
        return ReapResult(adopted=None, reaped_ids=reaped, orphaned=orphaned)

    survivors.sort(key=lambda s: s.last_updated, reverse=True)
    adopted, extras = survivors[0], survivors[1:]
    for extra in extras:
        logging.info("Reaping superseded cardio session %s", extra.session_id)
        discard(extra.session_id)
    return ReapResult(adopted=adopted, reaped_ids=reaped, orphaned=orphaned)
