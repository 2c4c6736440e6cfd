"""Tests for NotificationDispatcher"""
import pytest
from conftest import FakeAudio, FakeNotificationBackend, FakeVibrator

from trustloopz.messaging.alerts import ALERT_VIBRATION_PATTERN, REPEAT_VIBRATION_PATTERN
from trustloopz.models import Permission
from trustloopz.services.notifications import NotificationDispatcher
from trustloopz.services.preferences import MOBILE_NOTIFICATIONS_KEY, MemoryPreferenceStore


def make_dispatcher(toaster, scheduler, store=None, backend=None, vibrator=None, audio=None, on_focus=None):
    return NotificationDispatcher(
        toaster=toaster,
        store=store if store is not None else MemoryPreferenceStore(),
        scheduler=scheduler,
        backend=backend,
        vibrator=vibrator,
        audio=audio,
        on_focus=on_focus,
    )


# ============================================================================
# Preference loading
# ============================================================================

def test_preference_loaded_from_store(toaster, scheduler):
    """Test the saved preference is loaded at construction"""
    store = MemoryPreferenceStore({MOBILE_NOTIFICATIONS_KEY: "true"})
    backend = FakeNotificationBackend(Permission.GRANTED)

    dispatcher = make_dispatcher(toaster, scheduler, store=store, backend=backend)

    assert dispatcher.enabled is True
    assert dispatcher.permission == Permission.GRANTED


def test_no_backend_is_unsupported(toaster, scheduler):
    """Test no backend means notifications are unsupported"""
    dispatcher = make_dispatcher(toaster, scheduler)

    assert dispatcher.permission == Permission.UNSUPPORTED
    assert dispatcher.enabled is False


# ============================================================================
# request_permission
# ============================================================================

@pytest.mark.asyncio
async def test_request_permission_prompts_once_per_session(toaster, scheduler):
    """Test the permission prompt is shown at most once"""
    backend = FakeNotificationBackend(Permission.DEFAULT, grant_on_request=None)
    dispatcher = make_dispatcher(toaster, scheduler, backend=backend)

    assert await dispatcher.request_permission() is False
    assert await dispatcher.request_permission() is False
    assert backend.requests == 1


@pytest.mark.asyncio
async def test_request_permission_granted(toaster, scheduler):
    """Test a granted prompt updates the permission"""
    backend = FakeNotificationBackend(Permission.DEFAULT)
    dispatcher = make_dispatcher(toaster, scheduler, backend=backend)

    assert await dispatcher.request_permission() is True
    assert dispatcher.permission == Permission.GRANTED


@pytest.mark.asyncio
async def test_request_permission_never_prompts_when_denied(toaster, scheduler):
    """Test no prompt is shown once permission is denied"""
    backend = FakeNotificationBackend(Permission.DENIED)
    dispatcher = make_dispatcher(toaster, scheduler, backend=backend)

    assert await dispatcher.request_permission() is False
    assert backend.requests == 0


# ============================================================================
# toggle
# ============================================================================

@pytest.mark.asyncio
async def test_toggle_on_when_denied_is_a_noop(toaster, scheduler, store):
    """Test enabling with denied permission explains and changes nothing"""
    backend = FakeNotificationBackend(Permission.DENIED)
    dispatcher = make_dispatcher(toaster, scheduler, store=store, backend=backend)

    await dispatcher.toggle(True)

    assert dispatcher.enabled is False
    assert store.get(MOBILE_NOTIFICATIONS_KEY) is None
    assert backend.requests == 0
    assert toaster.toasts == [(
        "Notification Permission Required",
        "Please enable notifications to receive alerts on your mobile device.",
        "destructive",
    )]


@pytest.mark.asyncio
async def test_toggle_on_when_unsupported_explains_once(toaster, scheduler, store):
    """Test enabling without support explains only once"""
    dispatcher = make_dispatcher(toaster, scheduler, store=store)

    await dispatcher.toggle(True)
    await dispatcher.toggle(True)

    assert dispatcher.enabled is False
    assert toaster.titles().count("Notifications Unavailable") == 1


@pytest.mark.asyncio
async def test_toggle_on_requests_permission_then_persists(toaster, scheduler, store):
    """Test enabling asks for permission then persists the preference"""
    backend = FakeNotificationBackend(Permission.DEFAULT)
    dispatcher = make_dispatcher(toaster, scheduler, store=store, backend=backend)

    await dispatcher.toggle(True)

    assert backend.requests == 1
    assert dispatcher.enabled is True
    assert store.get(MOBILE_NOTIFICATIONS_KEY) == "true"
    assert toaster.titles()[-1] == "Mobile Notifications Enabled"


@pytest.mark.asyncio
async def test_toggle_on_refused_prompt_keeps_preference_off(toaster, scheduler, store):
    """Test a refused prompt keeps notifications off"""
    backend = FakeNotificationBackend(Permission.DEFAULT, grant_on_request=False)
    dispatcher = make_dispatcher(toaster, scheduler, store=store, backend=backend)

    await dispatcher.toggle(True)

    assert dispatcher.enabled is False
    assert dispatcher.permission == Permission.DENIED
    assert toaster.toasts[-1][0] == "Notification Permission Required"
    assert toaster.toasts[-1][2] == "destructive"


@pytest.mark.asyncio
async def test_toggle_off_persists(toaster, scheduler):
    """Test disabling persists the preference"""
    store = MemoryPreferenceStore({MOBILE_NOTIFICATIONS_KEY: "true"})
    dispatcher = make_dispatcher(toaster, scheduler, store=store, backend=FakeNotificationBackend(Permission.GRANTED))

    await dispatcher.toggle(False)

    assert dispatcher.enabled is False
    assert store.get(MOBILE_NOTIFICATIONS_KEY) == "false"
    assert toaster.titles() == ["Mobile Notifications Disabled"]


# ============================================================================
# notify
# ============================================================================

@pytest.fixture
def enabled_store():
    return MemoryPreferenceStore({MOBILE_NOTIFICATIONS_KEY: "true"})


@pytest.mark.asyncio
async def test_notify_uses_every_channel(toaster, scheduler, enabled_store):
    """Test notify uses toast, notification, vibration and tone"""
    backend = FakeNotificationBackend(Permission.GRANTED)
    vibrator = FakeVibrator()
    audio = FakeAudio()
    dispatcher = make_dispatcher(toaster, scheduler, store=enabled_store, backend=backend,
                                 vibrator=vibrator, audio=audio)

    shown = await dispatcher.notify("Route Deviation Alert", "Off route by 2.00km")

    assert shown is True
    assert toaster.toasts[0] == ("Route Deviation Alert", "Off route by 2.00km", "destructive")
    assert [b[:2] for b in backend.shown] == [("Route Deviation Alert", "Off route by 2.00km")]
    assert vibrator.patterns == [ALERT_VIBRATION_PATTERN]
    assert len(audio.played) == 1

    # Delayed work: auto-close after 8s, repeat vibration after 2s
    delays = sorted(job[0] for job in scheduler.delayed_jobs)
    assert delays == [2.0, 8.0]
    scheduler.run_delayed()
    assert vibrator.patterns[-1] == REPEAT_VIBRATION_PATTERN
    assert backend.shown[0][2].closed is True


@pytest.mark.asyncio
async def test_notify_without_vibration_still_shows_notification(toaster, scheduler, enabled_store):
    """Test a missing vibrator does not block the notification"""
    backend = FakeNotificationBackend(Permission.GRANTED)
    dispatcher = make_dispatcher(toaster, scheduler, store=enabled_store, backend=backend, audio=FakeAudio())

    shown = await dispatcher.notify("Route Deviation Alert", "Off route")

    assert shown is True
    assert len(backend.shown) == 1


@pytest.mark.asyncio
async def test_notify_audio_failure_does_not_block_other_channels(toaster, scheduler, enabled_store):
    """Test an audio failure does not block other channels"""
    backend = FakeNotificationBackend(Permission.GRANTED)
    vibrator = FakeVibrator()
    dispatcher = make_dispatcher(toaster, scheduler, store=enabled_store, backend=backend,
                                 vibrator=vibrator, audio=FakeAudio(fail=True))

    assert await dispatcher.notify("Alert", "body") is True
    assert vibrator.patterns == [ALERT_VIBRATION_PATTERN]


@pytest.mark.asyncio
async def test_notify_backend_failure_returns_false(toaster, scheduler, enabled_store):
    """Test a failing backend returns False and still vibrates"""
    backend = FakeNotificationBackend(Permission.GRANTED, fail_show=True)
    vibrator = FakeVibrator()
    dispatcher = make_dispatcher(toaster, scheduler, store=enabled_store, backend=backend, vibrator=vibrator)

    assert await dispatcher.notify("Alert", "body") is False
    assert toaster.titles() == ["Alert"]
    assert vibrator.patterns == [ALERT_VIBRATION_PATTERN]


@pytest.mark.asyncio
async def test_notify_never_shows_without_granted_permission(toaster, scheduler, enabled_store):
    """Test no notification is shown without granted permission"""
    backend = FakeNotificationBackend(Permission.DENIED)
    dispatcher = make_dispatcher(toaster, scheduler, store=enabled_store, backend=backend)

    assert await dispatcher.notify("Alert", "body") is False
    assert backend.shown == []
    assert toaster.titles() == ["Alert"]


@pytest.mark.asyncio
async def test_notify_when_disabled_only_toasts(toaster, scheduler):
    """Test a disabled preference only toasts"""
    backend = FakeNotificationBackend(Permission.GRANTED)
    vibrator = FakeVibrator()
    dispatcher = make_dispatcher(toaster, scheduler, backend=backend, vibrator=vibrator)

    assert await dispatcher.notify("Alert", "body") is False
    assert backend.shown == []
    assert vibrator.patterns == []
    assert toaster.titles() == ["Alert"]


@pytest.mark.asyncio
async def test_notification_click_focuses_and_closes(toaster, scheduler, enabled_store):
    """Test clicking a notification focuses the app and closes it"""
    focused = []
    backend = FakeNotificationBackend(Permission.GRANTED)
    dispatcher = make_dispatcher(toaster, scheduler, store=enabled_store, backend=backend,
                                 on_focus=lambda: focused.append(True))

    await dispatcher.notify("Alert", "body")
    handle = backend.shown[0][2]
    handle.click()

    assert focused == [True]
    assert handle.closed is True
