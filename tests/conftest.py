import os
import threading
from datetime import datetime, timedelta, timezone

os.environ.setdefault("AUTHCORE_ENV", "testing")

import pyotp  # noqa: E402
import pytest  # noqa: E402

from authcore.auth import AuthService  # noqa: E402
from authcore.config import TestingConfig  # noqa: E402
from authcore.models import DeviceInfo  # noqa: E402

PASSWORD = "Correct1Horse"


class FrozenClock:
    """Manually advanced clock."""

    def __init__(self, start=None):
        self._now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self):
        with self._lock:
            return self._now

    def advance(self, **kwargs):
        with self._lock:
            self._now += timedelta(**kwargs)
            return self._now


class RecordingNotifier:
    def __init__(self):
        self.resets = []
        self.sent = threading.Event()

    def send_password_reset(self, email, token):
        self.resets.append((email, token))
        self.sent.set()


@pytest.fixture
def config():
    return TestingConfig()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(config, clock, notifier):
    svc = AuthService(config=config, clock=clock, notifier=notifier)
    yield svc
    svc.close()


@pytest.fixture
def device():
    return DeviceInfo(device_type="web", device_name="Firefox", os_version="14", app_version="1.0")


@pytest.fixture
def user(service):
    return service.register("alice@example.com", "alice", PASSWORD, {"first_name": "Alice", "last_name": "Liddell"})


def totp_code(secret, clock, config=TestingConfig):
    return pyotp.TOTP(secret, interval=config.TOTP_INTERVAL, digits=config.TOTP_DIGITS).at(clock.now())


def enable_mfa(service, user, clock):
    """Enroll and confirm a TOTP device; returns the setup payload."""
    setup = service.setup_mfa(user.id, name="Phone")
    service.confirm_mfa(user.id, setup.device_id, totp_code(setup.secret, clock))
    # Move past the confirmed time step so the next code is fresh
    clock.advance(seconds=TestingConfig.TOTP_INTERVAL * 3)
    return setup
