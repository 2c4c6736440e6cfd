import struct

from trustloopz.messaging.alerts import (
    ALERT_VIBRATION_PATTERN,
    BEEP_DURATION_SECONDS,
    SAMPLE_RATE,
    synthesize_beep,
)
from trustloopz.messaging.toast import LogToaster, RecordingToaster


def test_beep_is_16_bit_pcm_of_expected_length():
    """Test the beep is 0.2s of 16-bit mono PCM"""
    pcm = synthesize_beep()

    assert len(pcm) == int(SAMPLE_RATE * BEEP_DURATION_SECONDS) * 2


def test_beep_respects_gain():
    """Test beep samples stay within the configured gain"""
    pcm = synthesize_beep(gain=0.5)
    samples = struct.unpack(f"<{len(pcm) // 2}h", pcm)

    assert max(samples) <= int(32767 * 0.5)
    assert min(samples) >= -int(32767 * 0.5)
    assert max(samples) > 0


def test_silent_beep():
    """Test zero gain produces silence"""
    pcm = synthesize_beep(gain=0.0)

    assert set(pcm) == {0}


def test_alert_pattern_is_short_short_long_twice():
    """Test the alert vibration pattern"""
    assert ALERT_VIBRATION_PATTERN == [200, 100, 200, 100, 500, 500, 200, 100, 200]


def test_recording_toaster_keeps_order():
    """Test RecordingToaster keeps toasts in the order they were shown"""
    toaster = RecordingToaster()
    toaster.toast("First", "one")
    toaster.toast("Second", "two", "destructive")

    assert toaster.toasts == [("First", "one", "default"), ("Second", "two", "destructive")]
    assert toaster.titles() == ["First", "Second"]


def test_log_toaster_logs_destructive_as_warning(caplog):
    """Test LogToaster logs destructive toasts at WARNING"""
    with caplog.at_level("INFO", logger="trustloopz.messaging.toast"):
        LogToaster().toast("Location Update Failed", "Failed to send location update to server", "destructive")

    assert caplog.records[0].levelname == "WARNING"
    assert "Location Update Failed" in caplog.records[0].getMessage()
