import sqlite3

import pytest

from cardio import accountant
from cardio.errors import CorruptSession
from cardio.schedule import CardioMode, HiitParams, WalkRunParams
from cardio.session import CardioSession, history_entry, new_session
from cardio.store import NotificationRecord, reap_sessions
from conftest import T0

HOUR = 3600


def insert_raw(store, session_id, mode="hiit", params="{}", schedule="[]", started_at=T0):
    with sqlite3.connect(str(store.db_path)) as conn:
        conn.execute(
            """
            INSERT INTO active_cardio_sessions
                (session_id, mode, params_json, schedule_json, started_at, last_updated)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, mode, params, schedule, started_at, started_at),
        )


def test_save_and_load_roundtrip(store):
    session = new_session(CardioMode.WALK_RUN, WalkRunParams(60, 90, 4), T0, session_id="a")
    session = session.evolve(T0 + 10, paused_at=T0 + 10, accumulated_pause_ms=1500)
    store.save(session)
    assert store.load_active() == session


def test_save_replaces_whole_row(store):
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="a")
    store.save(session)
    store.save(session.evolve(T0 + 25, phase_index=1))
    rows = store.raw_sessions()
    assert len(rows) == 1
    assert rows[0]["phase_index"] == 1


def test_load_active_rejects_corrupt_row(store):
    insert_raw(store, "bad", params='{"work_sec": 20, "rest_sec": 10, "rounds": 3}',
               schedule='[{"kind": "work"}]')
    with pytest.raises(CorruptSession) as exc:
        store.load_active()
    assert exc.value.session_id == "bad"


def test_notification_records(store):
    records = [
        NotificationRecord("a", "a:1:boundary", T0 + 30, "h2"),
        NotificationRecord("a", "a:0:boundary", T0 + 20, "h1"),
    ]
    store.replace_notifications("a", records)
    assert [r.handle for r in store.notifications("a")] == ["h1", "h2"]
    store.replace_notifications("a", records[:1])
    assert [r.notification_id for r in store.notifications("a")] == ["a:1:boundary"]
    assert store.remove_notification("a:1:boundary")
    assert not store.remove_notification("a:1:boundary")


def test_delete_removes_notifications(store):
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="a")
    store.save(session)
    store.replace_notifications("a", [NotificationRecord("a", "a:0:boundary", T0 + 20, "h1")])
    store.delete("a")
    assert store.load_active() is None
    assert store.notifications("a") == []


def test_reaper_age_threshold(store):
    now = T0 + 25 * HOUR
    old = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="old")
    store.save(old)
    store.replace_notifications("old", [NotificationRecord("old", "old:0:boundary", T0 + 20, "h1")])
    result = reap_sessions(store, now, max_age_hours=24)
    assert result.adopted is None
    assert result.reaped_ids == ["old"]
    assert [r.handle for r in result.orphaned] == ["h1"]
    assert store.raw_sessions() == []

    recent = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0 + 2 * HOUR, session_id="recent")
    store.save(recent)
    result = reap_sessions(store, now, max_age_hours=24)
    assert result.adopted == recent
    assert result.reaped_ids == []


def test_reaper_discards_invalid_rows(store):
    insert_raw(store, "no_mode", mode="", params='{"a": 1}', schedule='[{"kind": "work"}]')
    insert_raw(store, "no_params", params="{}", schedule='[{"kind": "work"}]')
    insert_raw(store, "no_schedule", params='{"work_sec": 20}', schedule="[]")
    insert_raw(store, "garbled", params="{not json", schedule="[]")
    insert_raw(store, "corrupt", params='{"work_sec": 20, "rest_sec": 10, "rounds": 3}',
               schedule='[{"kind": "work", "start_at": 1, "end_at": 0, "cycle_index": 0}]')
    good = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="good")
    store.save(good)

    result = reap_sessions(store, T0 + 60)
    assert result.adopted == good
    assert sorted(result.reaped_ids) == ["corrupt", "garbled", "no_mode", "no_params", "no_schedule"]
    assert [r["session_id"] for r in store.raw_sessions()] == ["good"]


def test_reaper_keeps_most_recent_of_several(store):
    first = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="first")
    second = new_session(CardioMode.WALK_RUN, WalkRunParams(30, 30, 2), T0 + 5, session_id="second")
    store.save(second)
    store.save(first.evolve(T0 + 50))
    result = reap_sessions(store, T0 + 60)
    assert result.adopted.session_id == "first"
    assert result.reaped_ids == ["second"]


def test_session_from_dict_requires_terminal_phase():
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="a")
    data = session.to_dict()
    data["schedule"] = data["schedule"][:-1]
    with pytest.raises(CorruptSession):
        CardioSession.from_dict(data)


def test_history_entry_excludes_pauses():
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="a")
    session = session.evolve(T0 + 40, phase_index=2, accumulated_pause_ms=5000, paused_at=T0 + 40)
    entry = history_entry(session, T0 + 50, ended_early=True)
    assert entry["duration"] == 35
    assert entry["pause_ms"] == 15_000
    assert entry["completed_cycles"] == 1
    assert entry["name"] == "Quick HIIT"
    assert entry["type"] == "hiit"
    assert entry["ended_early"] is True


def test_reaper_discards_unreadable_start_time(store):
    insert_raw(store, "legacy", params='{"work_sec": 20, "rest_sec": 10, "rounds": 3}',
               schedule='[{"kind": "completed", "start_at": 0, "end_at": 0, "cycle_index": 0}]',
               started_at="2024-01-01T00:00:00Z")
    result = reap_sessions(store, T0)
    assert result.adopted is None
    assert result.reaped_ids == ["legacy"]
    assert store.raw_sessions() == []


def test_reaper_discards_overlapping_schedule(store):
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="swapped")
    phases = list(session.schedule)
    phases[0], phases[2] = phases[2], phases[0]
    store.save(session.evolve(T0, schedule=tuple(phases)))
    result = reap_sessions(store, T0 + 1)
    assert result.adopted is None
    assert result.reaped_ids == ["swapped"]


def test_reaper_discards_mismatched_completion_flag(store):
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="flagged")
    store.save(session.evolve(T0, is_completed=True))
    assert reap_sessions(store, T0 + 1).reaped_ids == ["flagged"]


def test_shifted_sessions_stay_loadable(store):
    session = new_session(CardioMode.HIIT, HiitParams(20, 10, 3), T0, session_id="a")
    session = accountant.pause(session, T0 + 25)
    session = accountant.resume(session, T0 + 40.3)
    session = accountant.skip(session, T0 + 41.7)
    session = accountant.add_time(session, 10, T0 + 42.1)
    session = accountant.skip(session, T0 + 43.9)
    store.save(session)
    result = reap_sessions(store, T0 + 44)
    assert result.adopted == session
