import os
import sys
from pathlib import Path

import pytest

# Keep Kivy from parsing pytest's command line arguments
os.environ.setdefault("KIVY_NO_ARGS", "1")
os.environ.setdefault("KIVY_NO_CONSOLELOG", "1")

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cardio.audio import AudioCueCoordinator
from cardio.engine import CardioEngine
from cardio.notifications import NotificationScheduler
from cardio.settings import CardioConfig
from cardio.store import SessionStore

T0 = 1_700_000_000.0


class FakeTransport:
    """Records scheduled notifications the way an OS scheduler would."""

    def __init__(self):
        self.live: dict[str, dict] = {}
        self.scheduled: list[dict] = []
        self.cancelled: list[str] = []
        self.fail_on: set[str] = set()
        self._next = 0

    def schedule_absolute(self, notification_id, fire_at, title, body, sound=None):
        if notification_id in self.fail_on:
            raise RuntimeError("permission denied")
        self._next += 1
        handle = f"h{self._next}"
        entry = {
            "id": notification_id,
            "fire_at": fire_at,
            "title": title,
            "body": body,
            "sound": sound,
        }
        self.live[handle] = entry
        self.scheduled.append(entry)
        return handle

    def cancel(self, handle):
        self.cancelled.append(handle)
        self.live.pop(handle, None)

    def live_ids(self):
        return sorted(entry["id"] for entry in self.live.values())


class FakePlayer:
    def __init__(self):
        self.played: list[str] = []
        self.stops = 0

    def play(self, cue_id):
        self.played.append(cue_id)

    def stop(self):
        self.stops += 1


class FakeEvent:
    def __init__(self, callback, timeout):
        self.callback = callback
        self.timeout = timeout
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Stand-in for ``kivy.clock.Clock`` that fires events on demand."""

    def __init__(self):
        self.events: list[FakeEvent] = []

    def schedule_once(self, callback, timeout=0):
        event = FakeEvent(callback, timeout)
        self.events.append(event)
        return event

    def schedule_interval(self, callback, timeout):
        return self.schedule_once(callback, timeout)

    def fire_all(self):
        for event in list(self.events):
            if not event.cancelled:
                event.callback(event.timeout)
        self.events.clear()


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    """Return a store backed by a fresh temporary database."""
    return SessionStore(tmp_path / "cardio.db")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> CardioConfig:
    return CardioConfig()


@pytest.fixture
def scheduler(transport, store, config) -> NotificationScheduler:
    return NotificationScheduler(
        transport, store, min_gap=config.min_notification_gap, countdown_lead=config.countdown_lead
    )


@pytest.fixture
def coordinator(player, fake_clock, config) -> AudioCueCoordinator:
    return AudioCueCoordinator(
        player, fake_clock, cue_window=config.cue_window, countdown_lead=config.countdown_lead
    )


@pytest.fixture
def history() -> list:
    return []


@pytest.fixture
def engine(store, scheduler, coordinator, config, history) -> CardioEngine:
    return CardioEngine(store, scheduler, coordinator, config, history_sink=history.append)
