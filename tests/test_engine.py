import sqlite3

import pytest

from cardio.audio import AudioCueCoordinator
from cardio.engine import CardioEngine
from cardio.errors import AlreadyPaused, InvalidParameters, NoActiveSession, NotPaused
from cardio.notifications import NotificationScheduler
from cardio.schedule import CardioMode, HiitParams, PhaseKind, WalkRunParams
from conftest import T0, FakeClock, FakePlayer, FakeTransport

HIIT = HiitParams(20, 10, 3)


def test_start_persists_and_schedules(engine, store, transport):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    assert store.load_active() == session
    assert len(transport.live) == 8
    stored = sorted(r.notification_id for r in store.notifications(session.session_id))
    assert stored == transport.live_ids()


def test_invalid_start_leaves_current_session(engine, store):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    with pytest.raises(InvalidParameters):
        engine.start(CardioMode.HIIT, HiitParams(20, 10, 0), now=T0 + 1)
    assert engine.session == session
    assert store.load_active() == session


def test_start_replaces_previous_session(engine, store, transport):
    first = engine.start(CardioMode.HIIT, HIIT, now=T0)
    second = engine.start(CardioMode.WALK_RUN, WalkRunParams(30, 30, 2), now=T0 + 5)
    assert [r["session_id"] for r in store.raw_sessions()] == [second.session_id]
    assert all(nid.startswith(second.session_id) for nid in transport.live_ids())
    assert store.notifications(first.session_id) == []


def test_tick_plays_cues_in_foreground(engine, player):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.tick(T0 + 10)
    assert player.played == []
    engine.tick(T0 + 17.5)
    engine.tick(T0 + 18)
    assert player.played == ["countdown"]
    reading = engine.tick(T0 + 20.5)
    assert reading.phase.kind is PhaseKind.REST
    assert player.played == ["countdown", "rest"]
    engine.tick(T0 + 21)
    assert player.played == ["countdown", "rest"]


def test_pause_and_resume(engine, transport, store):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.pause(now=T0 + 5)
    assert transport.live == {}
    with pytest.raises(AlreadyPaused):
        engine.pause(now=T0 + 6)
    assert engine.current(T0 + 100).remaining == 15

    resumed = engine.resume(now=T0 + 25)
    assert resumed.accumulated_pause_ms == 20_000
    assert store.load_active() == resumed
    fire_times = sorted(e["fire_at"] for e in transport.live.values())
    assert fire_times[0] == T0 + 37
    assert fire_times[-1] == session.schedule[-1].end_at + 20
    with pytest.raises(NotPaused):
        engine.resume(now=T0 + 26)


def test_actions_need_a_session(engine):
    for action in (engine.pause, engine.resume, engine.skip, engine.finish, engine.reset):
        with pytest.raises(NoActiveSession):
            action()
    assert engine.tick(T0) is None
    engine.cancel()


def test_skip_moves_to_next_phase(engine, player, transport):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    skipped = engine.skip(now=T0 + 5)
    assert skipped.phase_index == 1
    assert player.played == ["rest"]
    assert not any(nid.startswith(f"{session.session_id}:0:") for nid in transport.live_ids())
    assert engine.current(T0 + 5).remaining == 10


def test_add_time_reschedules(engine, transport):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.add_time(10, now=T0 + 5)
    boundary = f"{session.session_id}:0:boundary"
    fire_at = {e["id"]: e["fire_at"] for e in transport.live.values()}
    assert fire_at[boundary] == T0 + 30


def test_finish_early_records_history(engine, store, transport, history):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    entry = engine.finish(now=T0 + 45)
    assert entry["ended_early"] is True
    assert entry["completed_cycles"] == 1
    assert entry["duration"] == 45
    assert history == [entry]
    assert store.raw_sessions() == []
    assert transport.live == {}
    assert engine.session is None


def test_finish_after_completion(engine, history):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.pause(now=T0 + 10)
    engine.resume(now=T0 + 15)
    entry = engine.finish(now=T0 + 200)
    assert entry["ended_early"] is False
    assert entry["completed_cycles"] == 3
    assert entry["pause_ms"] == 5000


def test_history_sink_failure_is_absorbed(store, scheduler, coordinator, caplog):
    def broken(entry):
        raise RuntimeError("history database locked")

    engine = CardioEngine(store, scheduler, coordinator, history_sink=broken)
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    entry = engine.finish(now=T0 + 5)
    assert entry["ended_early"] is True
    assert "Could not record cardio session" in caplog.text


def test_cancel_is_idempotent(engine, store, transport):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.cancel()
    engine.cancel()
    assert engine.session is None
    assert store.raw_sessions() == []
    assert transport.live == {}


def test_reset_restarts_same_workout(engine):
    first = engine.start(CardioMode.WALK_RUN, WalkRunParams(30, 30, 2), now=T0)
    second = engine.reset(now=T0 + 40)
    assert second.session_id != first.session_id
    assert second.params == first.params
    assert second.started_at == T0 + 40


def test_background_delivery_presentation(engine, transport):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.on_background(now=T0 + 1)
    delivered = sorted(transport.live.values(), key=lambda e: e["fire_at"])[1]
    shown = engine.on_notification_delivered(delivered["id"], delivered["sound"], now=T0 + 20)
    assert shown.show_alert and shown.play_sound
    again = engine.on_notification_delivered(delivered["id"], delivered["sound"], now=T0 + 20)
    assert not again.show_alert and not again.play_sound


def test_foreground_delivery_is_silent(engine, transport, player):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    delivered = sorted(transport.live.values(), key=lambda e: e["fire_at"])[0]
    shown = engine.on_notification_delivered(delivered["id"], delivered["sound"], now=T0 + 17)
    assert not shown.show_alert and not shown.play_sound
    assert player.played == ["countdown"]


def test_boot_adopts_persisted_session(engine, store):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)

    transport, player = FakeTransport(), FakePlayer()
    restarted = CardioEngine(
        store,
        NotificationScheduler(transport, store),
        AudioCueCoordinator(player, FakeClock()),
    )
    adopted = restarted.boot(now=T0 + 45)
    assert adopted.session_id == session.session_id
    assert adopted.phase_index == 2
    # crossings that happened while the process was gone are not replayed
    assert player.played == []
    assert transport.live
    assert all(e["fire_at"] > T0 + 45 for e in transport.live.values())


def test_boot_reaps_stale_session(engine, store, transport):
    engine.start(CardioMode.HIIT, HIIT, now=T0)
    assert transport.live
    restarted = CardioEngine(
        store,
        NotificationScheduler(transport, store),
        AudioCueCoordinator(FakePlayer(), FakeClock()),
    )
    assert restarted.boot(now=T0 + 25 * 3600) is None
    assert store.raw_sessions() == []
    # the old process's notifications are cancelled through the transport
    assert transport.live == {}


def test_foreground_after_suspension(engine, player, store):
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    engine.on_background(now=T0 + 1)
    reading = engine.on_foreground(now=T0 + 55)
    assert reading.phase_index == 3
    assert player.played == []
    assert all(r.fire_at > T0 + 55 for r in store.notifications(session.session_id))


def test_store_failure_does_not_break_actions(engine, store, monkeypatch, caplog):
    def locked(session):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "save", locked)
    session = engine.start(CardioMode.HIIT, HIIT, now=T0)
    assert engine.session == session
    assert "Could not persist cardio session" in caplog.text


def test_boot_survives_unreadable_rows(store, scheduler, coordinator):
    with sqlite3.connect(str(store.db_path)) as conn:
        conn.execute(
            "INSERT INTO active_cardio_sessions (session_id, mode, params_json, schedule_json, started_at) "
            "VALUES ('legacy', 'hiit', '{}', '[]', '2024-01-01T00:00:00Z')"
        )
    engine = CardioEngine(store, scheduler, coordinator)
    assert engine.boot(now=T0) is None
    assert store.raw_sessions() == []
