import os
import sys
from datetime import datetime, timedelta

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from incidence_engine import get_engine, shutdown_engine  # noqa: E402
from incidence_engine.cooldown import CooldownTracker  # noqa: E402
from incidence_engine.errors import (  # noqa: E402
    DeviceProtocolError,
    EmailDeliveryError,
    ModemUnreachableError,
)
from incidence_engine.sms_gateway import SmsRateLimiter  # noqa: E402
from models.beacon import Beacon  # noqa: E402
from models.device import Device  # noqa: E402


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "BLINDSPOT_TIMEZONE": "America/Santiago",
    "SMS_ACTIVATION_NUMBER": "+56900000001",
    "SMS_ACTIVATION_MESSAGE": "tns tns setdigout 1",
    "SMS_CONFIRMATION_NUMBER": "+56900000002",
    "SMS_CONFIRMATION_MESSAGE": "tns tns confirm",
    "SMS_ALERT_RECIPIENTS": "+56911111111,+56922222222,+56933333333",
    "EMAIL_PROVIDER": "smtp",
    "EMAIL_SENDER": "alerts@example.com",
    "EMAIL_RECIPIENTS": "ops@example.com,security@example.com",
    "TELEMETRY_API_KEY": None,
}

ALERT_NUMBERS = ["+56911111111", "+56922222222", "+56933333333"]


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------
class FakeClock:
    """Drives both the monotonic cooldown clock and the UTC wall clock."""

    def __init__(self):
        self.offset = 0.0
        self.base = datetime(2026, 3, 2, 15, 0, 0)

    def monotonic(self):
        return 1000.0 + self.offset

    def utcnow(self):
        return self.base + timedelta(seconds=self.offset)

    def sleep(self, seconds):
        self.offset += seconds

    advance = sleep


class InlineExecutor:
    def __init__(self):
        self.jobs = 0

    def submit(self, fn, *args, **kwargs):
        self.jobs += 1
        return fn(*args, **kwargs)


class FakeModem:
    def __init__(self):
        self.reachable = True
        self.failing = set()
        self.sent = []
        self.probes = 0

    def check_connection(self):
        self.probes += 1
        if not self.reachable:
            raise ModemUnreachableError(
                "Could not connect to modem at http://192.168.8.1: connection refused"
            )
        return True

    def send_sms(self, phone, message):
        if phone in self.failing:
            raise DeviceProtocolError(code="113018", message="system busy")
        self.sent.append((phone, message))
        return True

    def numbers(self):
        return [p for p, _ in self.sent]


class FakeEmail:
    def __init__(self):
        self.fail = False
        self.sent = []

    def send(self, subject, body):
        if self.fail:
            raise EmailDeliveryError("SMTP delivery failed: connection refused")
        self.sent.append((subject, body))
        return True


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def modem():
    return FakeModem()


@pytest.fixture
def email():
    return FakeEmail()


@pytest.fixture
def executor():
    return InlineExecutor()


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def app(clock, modem, email, executor, emitted):
    app = create_app(
        TEST_CONFIG,
        modem=modem,
        email=email,
        executor=executor,
        sleep=clock.sleep,
        emit=lambda name, payload: emitted.append((name, payload)),
    )
    with app.app_context():
        db.create_all()

        detector = get_engine()
        detector.cooldowns = CooldownTracker(35, clock=clock.monotonic, use_timers=False)
        detector.dispatcher.rate_limiter = SmsRateLimiter(35, clock=clock.utcnow)

        yield app

        db.session.remove()
        db.drop_all()
    shutdown_engine(app)


@pytest.fixture
def engine(app):
    return get_engine()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed(app):
    def _seed(devices=(), beacons=()):
        for dev_id, sector, flagged in devices:
            db.session.add(Device(id=dev_id, name=f"Tracker {dev_id}",
                                  assigned_sector=sector, is_blind_spot=flagged))
        for beacon_id, location, flagged in beacons:
            db.session.add(Beacon(id=beacon_id, mac=f"AA:BB:{beacon_id}",
                                  location=location, is_blind_spot=flagged))
        db.session.commit()
    return _seed
