"""In-app toast messages."""
from __future__ import annotations

import logging
from typing import Literal, Protocol

log = logging.getLogger(__name__)

Variant = Literal["default", "destructive"]


class Toaster(Protocol):
    def toast(self, title: str, description: str, variant: Variant = "default") -> None:
        ...


class LogToaster:
    """Renders toasts as log records; the default for headless sessions."""

    def toast(self, title: str, description: str, variant: Variant = "default") -> None:
        if variant == "destructive":
            log.warning(f"[Toast] {title}: {description}")
        else:
            log.info(f"[Toast] {title}: {description}")


class RecordingToaster:
    """Keeps every toast in memory, e.g. for a UI layer that renders them later."""

    def __init__(self) -> None:
        self.toasts: list[tuple[str, str, Variant]] = []

    def toast(self, title: str, description: str, variant: Variant = "default") -> None:
        self.toasts.append((title, description, variant))

    def titles(self) -> list[str]:
        return [t[0] for t in self.toasts]
