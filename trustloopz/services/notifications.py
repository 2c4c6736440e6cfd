from __future__ import annotations

import logging
from typing import Callable

from ..config import get_settings
from ..messaging.alerts import (
    ALERT_VIBRATION_PATTERN,
    REPEAT_VIBRATION_PATTERN,
    SAMPLE_RATE,
    AudioSink,
    Vibrator,
    synthesize_beep,
)
from ..messaging.apns import NotificationBackend
from ..messaging.toast import Toaster
from ..models import NotificationPreference, Permission
from .preferences import MOBILE_NOTIFICATIONS_KEY
from .scheduler import PollScheduler

settings = get_settings()
log = logging.getLogger(__name__)

UNSUPPORTED_MESSAGES = {
    "notifications": "Notifications are not supported on this device.",
    "vibration": "Vibration is not supported on this device.",
    "audio": "Audio alerts are not supported on this device.",
}


class NotificationDispatcher:
    """Owns the mobile-notification preference and renders alerts.

    Every alert is toasted in-app first; the OS notification, vibration and
    tone only follow when the user has enabled notifications and permission
    is granted. One dispatcher is shared by everything in a process.
    """

    def __init__(
        self,
        toaster: Toaster,
        store,
        scheduler: PollScheduler,
        backend: NotificationBackend | None = None,
        vibrator: Vibrator | None = None,
        audio: AudioSink | None = None,
        on_focus: Callable[[], None] | None = None,
    ) -> None:
        self.toaster = toaster
        self.store = store
        self.scheduler = scheduler
        self.backend = backend
        self.vibrator = vibrator
        self.audio = audio
        self.on_focus = on_focus
        self._requested = False
        self._explained: set[str] = set()
        self._sequence = 0

        self.preference = NotificationPreference(
            enabled=self.store.get(MOBILE_NOTIFICATIONS_KEY) == "true",
            permission=self._current_permission(),
        )

    def _current_permission(self) -> Permission:
        if self.backend is None:
            return Permission.UNSUPPORTED
        return self.backend.permission()

    def _explain_once(self, capability: str) -> None:
        if capability in self._explained:
            return
        self._explained.add(capability)
        log.info(f"[Notify] {UNSUPPORTED_MESSAGES[capability]}")
        if capability == "notifications":
            self.toaster.toast("Notifications Unavailable", UNSUPPORTED_MESSAGES[capability])

    def _permission_required(self) -> None:
        self.toaster.toast(
            "Notification Permission Required",
            "Please enable notifications to receive alerts on your mobile device.",
            "destructive",
        )

    @property
    def enabled(self) -> bool:
        return self.preference.enabled

    @property
    def permission(self) -> Permission:
        return self.preference.permission

    async def request_permission(self) -> bool:
        """Ask for OS notification permission, at most once per session.

        Never prompts when permission is already denied or unsupported.
        """
        if self.backend is None:
            self.preference.permission = Permission.UNSUPPORTED
            self._explain_once("notifications")
            return False

        current = self.backend.permission()
        self.preference.permission = current
        if current == Permission.GRANTED:
            return True
        if current in (Permission.DENIED, Permission.UNSUPPORTED) or self._requested:
            return False

        self._requested = True
        try:
            result = await self.backend.request_permission()
        except Exception as e:
            log.error(f"[Notify] Error requesting notification permission: {e}")
            return False
        self.preference.permission = result
        log.info(f"[Notify] permission is now {result.value}")
        return result == Permission.GRANTED

    async def toggle(self, enable: bool) -> None:
        if enable == self.preference.enabled:
            return

        if enable:
            self.preference.permission = self._current_permission()
            if self.permission in (Permission.DENIED, Permission.UNSUPPORTED):
                if self.permission == Permission.UNSUPPORTED:
                    self._explain_once("notifications")
                else:
                    self._permission_required()
                log.info(f"[Notify] refusing to enable notifications: permission {self.permission.value}")
                return
            if self.permission != Permission.GRANTED:
                granted = await self.request_permission()
                if not granted:
                    self._permission_required()
                    return

        self.preference.enabled = enable
        self.store.set(MOBILE_NOTIFICATIONS_KEY, "true" if enable else "false")

        if enable:
            self.toaster.toast(
                "Mobile Notifications Enabled",
                "You will now receive notifications on your mobile device for route deviations.",
            )
        else:
            self.toaster.toast(
                "Mobile Notifications Disabled",
                "You will no longer receive mobile notifications for route deviations.",
            )

    async def notify(self, title: str, body: str) -> bool:
        """Alert the user on every available channel.

        Returns True when an OS notification was rendered. Never raises; a
        failing channel does not stop the others.
        """
        self.toaster.toast(title, body, "destructive")

        if not self.preference.enabled:
            return False
        if self.backend is None:
            self._explain_once("notifications")
            return False
        self.preference.permission = self.backend.permission()
        if self.permission != Permission.GRANTED:
            return False

        self._sequence += 1
        seq = self._sequence
        shown = await self._show(title, body, seq)
        self._vibrate(seq)
        self._beep()
        return shown

    async def _show(self, title: str, body: str, seq: int) -> bool:
        try:
            handle = await self.backend.show(title, body)
        except Exception as e:
            log.error(f"[Notify] Error showing notification: {e}")
            return False

        def on_click() -> None:
            if self.on_focus is not None:
                self.on_focus()
            handle.close()

        handle.on_click = on_click
        try:
            self.scheduler.later(
                settings.NOTIFICATION_AUTO_CLOSE_SECONDS, handle.close, f"notify-close-{seq}"
            )
        except Exception as e:
            log.warning(f"[Notify] could not schedule auto-close: {e}")
        return True

    def _vibrate(self, seq: int) -> None:
        if self.vibrator is None:
            self._explain_once("vibration")
            return
        try:
            self.vibrator.vibrate(ALERT_VIBRATION_PATTERN)
            self.scheduler.later(
                settings.VIBRATION_REPEAT_SECONDS,
                self._repeat_vibration,
                f"notify-vibrate-{seq}",
            )
        except Exception as e:
            log.warning(f"[Notify] vibration failed: {e}")

    def _repeat_vibration(self) -> None:
        if self.vibrator is None:
            return
        try:
            self.vibrator.vibrate(REPEAT_VIBRATION_PATTERN)
        except Exception as e:
            log.warning(f"[Notify] vibration failed: {e}")

    def _beep(self) -> None:
        if self.audio is None:
            self._explain_once("audio")
            return
        try:
            self.audio.play(synthesize_beep(), SAMPLE_RATE)
        except Exception as e:
            log.info(f"[Notify] Audio alert not supported or blocked: {e}")
