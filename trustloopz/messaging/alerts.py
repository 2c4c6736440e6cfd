"""Vibration patterns and the synthesized alert tone."""
from __future__ import annotations

import math
import struct
from typing import Protocol

# Short-short-long, twice
ALERT_VIBRATION_PATTERN = [200, 100, 200, 100, 500, 500, 200, 100, 200]
REPEAT_VIBRATION_PATTERN = [200, 100, 200]

BEEP_FREQUENCY_HZ = 880.0  # A5
BEEP_DURATION_SECONDS = 0.2
BEEP_GAIN = 0.5
SAMPLE_RATE = 44100


class Vibrator(Protocol):
    def vibrate(self, pattern: list[int]) -> None:
        ...


class AudioSink(Protocol):
    def play(self, pcm: bytes, sample_rate: int) -> None:
        ...


def synthesize_beep(
    frequency: float = BEEP_FREQUENCY_HZ,
    duration: float = BEEP_DURATION_SECONDS,
    gain: float = BEEP_GAIN,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    """Return a mono sine beep as little-endian signed 16-bit PCM."""
    n = int(sample_rate * duration)
    amplitude = int(32767 * max(0.0, min(gain, 1.0)))
    samples = (
        int(amplitude * math.sin(2 * math.pi * frequency * i / sample_rate))
        for i in range(n)
    )
    return struct.pack(f"<{n}h", *samples)
