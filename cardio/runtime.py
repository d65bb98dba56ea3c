"""Kivy glue: the foreground tick and an in-process notification transport."""

from __future__ import annotations

import itertools
import logging
import time
from typing import Callable

from kivy.clock import Clock

from cardio import DEFAULT_TICK_INTERVAL


class CardioTicker:
    """Refresh the engine periodically while the app is in the foreground.

    The tick only keeps the UI current.  The engine recomputes everything
    from wall-clock time, so a missed tick changes nothing.
    """

    def __init__(self, engine, interval: float = DEFAULT_TICK_INTERVAL, on_reading: Callable | None = None):
        self.engine = engine
        self.interval = interval
        self.on_reading = on_reading
        self._event = None

    @property
    def running(self) -> bool:
        return self._event is not None

    def start(self) -> None:
        """Ensure the tick event is running."""
        if self._event is None:
            self._event = Clock.schedule_interval(self._tick, self.interval)

    def stop(self) -> None:
        if self._event is not None:
            self._event.cancel()
            self._event = None

    def _tick(self, dt) -> None:
        reading = self.engine.tick()
        if self.on_reading is not None:
            self.on_reading(reading)


class ClockNotificationTransport:
    """Deliver scheduled notifications through Kivy's clock.

    Useful on desktop builds where no OS scheduler is available; delivery
    only happens while the process is alive.  ``on_deliver`` receives
    ``(notification_id, title, body, sound)``.
    """

    def __init__(self, on_deliver: Callable[[str, str, str, str | None], None]):
        self.on_deliver = on_deliver
        self._events: dict[str, object] = {}
        self._counter = itertools.count(1)

    def schedule_absolute(
        self, notification_id: str, fire_at: float, title: str, body: str, sound: str | None = None
    ) -> str:
        handle = f"{notification_id}#{next(self._counter)}"

        def _fire(dt):
            if self._events.pop(handle, None) is None:
                return
            self.on_deliver(notification_id, title, body, sound)

        delay = max(0.0, fire_at - time.time())
        self._events[handle] = Clock.schedule_once(_fire, delay)
        return handle

    def cancel(self, handle: str) -> None:
        event = self._events.pop(handle, None)
        if event is None:
            logging.debug("Notification handle %s already gone", handle)
            return
        event.cancel()

    @property
    def pending(self) -> list[str]:
        return list(self._events)
