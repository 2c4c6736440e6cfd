from __future__ import annotations

import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # API
    API_BASE_URL: str = "http://127.0.0.1:5000"
    WS_BASE_URL: str = ""  # derived from API_BASE_URL when empty
    API_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Location tracking
    GEOLOCATION_TIMEOUT_SECONDS: float = 10.0
    GEOLOCATION_POLL_SECONDS: float = 5.0

    # Check-in polling
    CHECKIN_POLL_SECONDS: float = 10.0

    # Realtime
    WS_RECONNECT_SECONDS: float = 5.0

    # Notifications
    NOTIFICATION_BACKEND: str = "console"  # 'console' | 'apns'
    NOTIFICATION_AUTO_CLOSE_SECONDS: float = 8.0
    VIBRATION_REPEAT_SECONDS: float = 2.0
    PREFERENCES_PATH: str = "~/.trustloopz/preferences.json"

    # Push / APNs (mobile notifications)
    APNS_USE_SANDBOX: bool = True
    APNS_TEAM_ID: str = ""
    APNS_KEY_ID: str = ""
    APNS_BUNDLE_ID: str = "com.trustloopz.app"
    APNS_DEVICE_TOKEN: str = ""
    APNS_PRIVATE_KEY_PATH: str = ""  # path to .p8 (preferred)
    APNS_PRIVATE_KEY: str = ""  # or inline full .p8 contents

    # Misc
    TIMEZONE: str = "UTC"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ---- Derived properties ----
    @property
    def WS_URL(self) -> str:
        """Socket endpoint; http(s) maps to ws(s) on the same host."""
        if self.WS_BASE_URL:
            return self.WS_BASE_URL.rstrip("/") + "/ws"
        base = self.API_BASE_URL.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base[len("https://"):] + "/ws"
        if base.startswith("http://"):
            return "ws://" + base[len("http://"):] + "/ws"
        return base + "/ws"

    @property
    def PREFERENCES_FILE(self) -> str:
        return os.path.expanduser(self.PREFERENCES_PATH)

    # ---- APNs helpers ----
    def get_apns_private_key(self) -> str:
        if self.APNS_PRIVATE_KEY_PATH and os.path.exists(self.APNS_PRIVATE_KEY_PATH):
            with open(self.APNS_PRIVATE_KEY_PATH, "r", encoding="utf-8") as f:
                return f.read()
        return self.APNS_PRIVATE_KEY


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Create singleton instance for direct imports
settings = get_settings()
