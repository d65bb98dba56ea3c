from kivymd.app import MDApp
from kivymd.uix.boxlayout import MDBoxLayout
from kivymd.uix.button import MDRaisedButton
from kivymd.uix.label import MDLabel
from kivymd.toast import toast
from kivy.clock import Clock

import logging
from dataclasses import replace

from cardio import DEFAULT_DB_PATH
from cardio.audio import AudioCueCoordinator
from cardio.engine import CardioEngine
from cardio.errors import CardioError
from cardio.notifications import NotificationScheduler
from cardio.runtime import CardioTicker, ClockNotificationTransport
from cardio.schedule import CardioMode, HiitParams, WalkRunParams
from cardio.settings import CardioConfig
from cardio.sounds import CueSoundPlayer
from cardio.store import SessionStore


def build_engine(config: CardioConfig, on_deliver) -> CardioEngine:
    """Wire the engine with the Kivy-backed collaborators."""

    store = SessionStore(DEFAULT_DB_PATH)
    transport = ClockNotificationTransport(on_deliver)
    scheduler = NotificationScheduler(
        transport,
        store,
        min_gap=config.min_notification_gap,
        countdown_lead=config.countdown_lead,
    )
    player = CueSoundPlayer(volume=config.sound_level, enabled=config.sound_on)
    coordinator = AudioCueCoordinator(
        player,
        Clock,
        cue_window=config.cue_window,
        countdown_lead=config.countdown_lead,
    )
    return CardioEngine(store, scheduler, coordinator, config)


def format_remaining(seconds: float) -> str:
    total = int(seconds + 0.999)
    m, s = divmod(total, 60)
    return f"{m}:{s:02d}"


class CardioApp(MDApp):
    engine: CardioEngine | None = None
    ticker: CardioTicker | None = None

    def build(self):
        self.config_values = CardioConfig.from_settings()
        self.engine = build_engine(self.config_values, self.on_notification)
        self.ticker = CardioTicker(
            self.engine, self.config_values.tick_interval, on_reading=self.update_label
        )
        root = MDBoxLayout(orientation="vertical", padding="16dp", spacing="8dp")
        self.status = MDLabel(text="No session", halign="center")
        root.add_widget(self.status)
        for text, action in (
            ("Quick HIIT", lambda *_: self.run_action(self.engine.start, CardioMode.HIIT, HiitParams(20, 10, 8))),
            ("Walk-Run", lambda *_: self.run_action(self.engine.start, CardioMode.WALK_RUN, WalkRunParams(60, 90, 6))),
            ("Pause", lambda *_: self.run_action(self.engine.pause)),
            ("Resume", lambda *_: self.run_action(self.engine.resume)),
            ("Skip", lambda *_: self.run_action(self.engine.skip)),
            ("+10s", lambda *_: self.run_action(self.engine.add_time, 10)),
            ("Finish", lambda *_: self.run_action(self.engine.finish)),
            ("Cancel", lambda *_: self.run_action(self.engine.cancel)),
            ("Sound on/off", lambda *_: self.toggle_sound()),
        ):
            root.add_widget(MDRaisedButton(text=text, on_release=action, pos_hint={"center_x": 0.5}))
        return root

    def run_action(self, action, *args):
        try:
            action(*args)
        except CardioError as exc:
            toast(str(exc))
        self.update_label(self.engine.current())

    def toggle_sound(self):
        self.config_values = replace(self.config_values, sound_on=not self.config_values.sound_on)
        self.config_values.save()
        self.engine.coordinator.player.enabled = self.config_values.sound_on
        toast("Sound on" if self.config_values.sound_on else "Sound off")

    def update_label(self, reading):
        if reading is None:
            self.status.text = "No session"
            return
        phase = reading.phase.kind.value.upper()
        suffix = " (paused)" if reading.session.is_paused else ""
        self.status.text = f"{phase} {format_remaining(reading.remaining)}{suffix}"

    def on_notification(self, notification_id, title, body, sound):
        presentation = self.engine.on_notification_delivered(notification_id, sound)
        if presentation.show_alert:
            toast(f"{title}: {body}")

    def on_start(self):
        self.engine.boot()
        self.ticker.start()
        self.update_label(self.engine.current())

    def on_pause(self):
        self.ticker.stop()
        self.engine.on_background()
        return True

    def on_resume(self):
        self.engine.on_foreground()
        self.ticker.start()

    def on_stop(self):
        self.ticker.stop()
        if self.engine.has_active_session:
            logging.info("App closing with an active cardio session")
            self.engine.on_background()


if __name__ == "__main__":
    CardioApp().run()
