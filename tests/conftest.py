"""Shared fakes for the companion tests."""
import json

import httpx
import pytest

from trustloopz.api.client import TripApiClient
from trustloopz.messaging.apns import NotificationHandle
from trustloopz.messaging.toast import RecordingToaster
from trustloopz.models import Permission
from trustloopz.services.preferences import MemoryPreferenceStore
from trustloopz.services.registry import SubscriptionRegistry


class ManualScheduler:
    """PollScheduler driven by hand instead of a clock."""

    def __init__(self):
        self.interval_jobs = {}
        self.delayed_jobs = []

    def every(self, seconds, func, job_id):
        self.interval_jobs[job_id] = (seconds, func)

        def cancel():
            self.interval_jobs.pop(job_id, None)
        return cancel

    def later(self, seconds, func, job_id):
        entry = [seconds, func, job_id, False]
        self.delayed_jobs.append(entry)

        def cancel():
            entry[3] = True
        return cancel

    async def tick(self):
        """Run every interval job once."""
        for _, func in list(self.interval_jobs.values()):
            result = func()
            if hasattr(result, "__await__"):
                await result

    def run_delayed(self):
        """Run all pending one-shot jobs."""
        pending, self.delayed_jobs = self.delayed_jobs, []
        for seconds, func, job_id, cancelled in pending:
            if not cancelled:
                func()


class FakePositionSource:
    """PositionSource whose fixes and errors are pushed by the test."""

    def __init__(self):
        self.watches = {}
        self.cleared = []
        self._next = 1

    def watch_position(self, success, error, options):
        watch_id = self._next
        self._next += 1
        self.watches[watch_id] = (success, error, options)
        return watch_id

    def clear_watch(self, watch_id):
        self.cleared.append(watch_id)
        self.watches.pop(watch_id, None)

    def emit(self, fix):
        for success, _, _ in list(self.watches.values()):
            success(fix)

    def fail(self, error):
        for _, err, _ in list(self.watches.values()):
            err(error)


class FakeNotificationBackend:
    def __init__(self, permission=Permission.DEFAULT, grant_on_request=True, fail_show=False):
        self._permission = permission
        self.grant_on_request = grant_on_request
        self.fail_show = fail_show
        self.requests = 0
        self.shown = []

    def permission(self):
        return self._permission

    async def request_permission(self):
        self.requests += 1
        # grant_on_request=None models a dismissed prompt
        if self._permission == Permission.DEFAULT and self.grant_on_request is not None:
            self._permission = Permission.GRANTED if self.grant_on_request else Permission.DENIED
        return self._permission

    async def show(self, title, body):
        if self.fail_show:
            raise RuntimeError("notification service crashed")
        handle = NotificationHandle(title)
        self.shown.append((title, body, handle))
        return handle


class FakeVibrator:
    def __init__(self):
        self.patterns = []

    def vibrate(self, pattern):
        self.patterns.append(list(pattern))


class FakeAudio:
    def __init__(self, fail=False):
        self.fail = fail
        self.played = []

    def play(self, pcm, sample_rate):
        if self.fail:
            raise OSError("audio device busy")
        self.played.append((pcm, sample_rate))


def json_response(status_code, body):
    return httpx.Response(status_code, content=json.dumps(body).encode(), headers={"content-type": "application/json"})


def make_client(handler):
    """TripApiClient whose requests are answered by ``handler(request)``."""
    return TripApiClient(base_url="http://trustloopz.test", token="test-token", transport=httpx.MockTransport(handler))


@pytest.fixture
def toaster():
    return RecordingToaster()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def store():
    return MemoryPreferenceStore()


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def position_source():
    return FakePositionSource()
