"""Pytest fixtures.

Points settings at a throwaway SQLite database before any `careslot` module is
imported, replaces the Redis cache with an in-memory mock, and provides fakes for
the payment gateway, the video room provisioner and the notifier.
"""
import os
import pathlib
import uuid
from datetime import datetime, time, timezone

import pytest
from dotenv import load_dotenv

root = pathlib.Path(__file__).resolve().parent.parent
if (root / ".env.test").exists():
    load_dotenv(dotenv_path=str(root / ".env.test"))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_careslot.db")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("EMAIL_BACKEND", "console")
os.environ.setdefault("SMS_BACKEND", "console")

from careslot.core.constants import AppointmentStatus, PaymentStatus, UserRole  # noqa: E402
from careslot.services.notification_service import Notifier  # noqa: E402
from careslot.services.payment_gateway import (  # noqa: E402
    PaymentGateway,
    PaymentInitialization,
    PaymentVerification,
    RefundResult,
)
from careslot.services.video_service import RoomInfo, RoomProvisioner  # noqa: E402
from careslot.utils.errors import GatewayError  # noqa: E402


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture(scope="session")
def prepare_database():
    """Create clean schema for the test session."""
    from careslot.core.database import engine, Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(prepare_database):
    """Yield a SQLAlchemy session; every table is emptied afterwards."""
    from careslot.core.database import Base, SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        db.close()


# ============================================================================
# CACHE
# ============================================================================

class MockRedis:
    """Mock Redis for testing without a real Redis instance."""
    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ttl=None):
        self.store[key] = value

    async def delete_pattern(self, pattern):
        prefix = pattern.replace("*", "")
        for k in [k for k in self.store if k.startswith(prefix)]:
            del self.store[k]


@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    from careslot.cache.cache_service import redis_cache

    mm = MockRedis()
    monkeypatch.setattr(redis_cache, "get", mm.get)
    monkeypatch.setattr(redis_cache, "set", mm.set)
    monkeypatch.setattr(redis_cache, "delete_pattern", mm.delete_pattern)
    return mm


# ============================================================================
# COLLABORATOR FAKES
# ============================================================================

class FakeGateway(PaymentGateway):
    def __init__(self):
        self.verify_success = True
        self.verify_amount = None
        self.verify_error = False
        self.refund_error = False
        self.initialize_error = False
        self.calls = []

    async def initialize(self, amount_minor_units, payer_contact, reference):
        self.calls.append(("initialize", reference, amount_minor_units))
        if self.initialize_error:
            raise GatewayError("Paystack is down")
        return PaymentInitialization(
            redirect_url=f"https://checkout.example/{reference}",
            reference=reference,
        )

    async def verify(self, reference):
        self.calls.append(("verify", reference))
        if self.verify_error:
            raise GatewayError("timeout")
        return PaymentVerification(
            success=self.verify_success,
            amount_minor_units=self.verify_amount if self.verify_amount is not None else 1500000,
            status="success" if self.verify_success else "failed",
        )

    async def refund(self, reference, amount_minor_units):
        self.calls.append(("refund", reference, amount_minor_units))
        if self.refund_error:
            raise GatewayError("Refund was not accepted")
        return RefundResult(success=True)

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


class FakeRoomProvisioner(RoomProvisioner):
    def __init__(self):
        self.fail = False
        self.rooms = []
        self.tokens = []

    async def create_room(self, appointment_id, duration_minutes, expires_at=None):
        if self.fail:
            raise GatewayError("Daily.co API error")
        self.rooms.append(appointment_id)
        return RoomInfo(
            room_id=f"appointment-{appointment_id}",
            join_url=f"https://careslot.daily.co/appointment-{appointment_id}",
        )

    async def create_meeting_token(self, room_id, user_id, is_owner=False):
        self.tokens.append((room_id, user_id, is_owner))
        return f"token-{room_id}-{user_id}"


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.admin_sent = []

    def notify(self, user_id, kind, payload):
        self.sent.append((user_id, kind, payload))

    def notify_admins(self, kind, payload):
        self.admin_sent.append((kind, payload))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def rooms():
    return FakeRoomProvisioner()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def state_machine(gateway, rooms, notifier):
    from careslot.services.appointment_state import AppointmentStateMachine

    return AppointmentStateMachine(gateway, rooms, notifier)


@pytest.fixture
def payments(state_machine):
    from careslot.services.payment_service import PaymentService

    return PaymentService(state_machine)


# ============================================================================
# DATA
# ============================================================================

# 2030-01-07 is a Monday (day_of_week 1)
MONDAY = datetime(2030, 1, 7).date()
BEFORE_MONDAY = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


def make_user(db, user_type, tz="UTC", **kwargs):
    from careslot.models.user import User

    user = User(
        email=f"{user_type}_{uuid.uuid4().hex[:8]}@example.com",
        phone=f"+234{uuid.uuid4().int.__str__()[:10]}",
        full_name=kwargs.pop("full_name", f"Test {user_type.title()}"),
        user_type=user_type,
        status="active",
        timezone=tz,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_appointment(db, patient, provider, scheduled_at, **kwargs):
    from careslot.models.appointment import Appointment

    values = dict(
        patient_id=patient.id,
        provider_id=provider.id,
        scheduled_at=scheduled_at,
        duration_minutes=45,
        status=AppointmentStatus.SCHEDULED.value,
        payment_status=PaymentStatus.PENDING.value,
        amount=15000,
        currency="NGN",
        chief_complaint="Headache",
    )
    values.update(kwargs)
    appt = Appointment(**values)
    db.add(appt)
    db.commit()
    db.refresh(appt)
    return appt


@pytest.fixture
def people(db_session):
    """A provider (UTC) with a Monday 09:00-17:00 rule, two patients and an admin."""
    from careslot.models.availability import AvailabilityRule

    provider = make_user(db_session, UserRole.PROVIDER.value, full_name="Dr Ada")
    patient = make_user(db_session, UserRole.PATIENT.value, full_name="Bola")
    other_patient = make_user(db_session, UserRole.PATIENT.value, full_name="Chidi")
    admin = make_user(db_session, UserRole.ADMIN.value, full_name="Admin")

    db_session.add(
        AvailabilityRule(
            provider_id=provider.id,
            day_of_week=1,
            start_time=time(9, 0),
            end_time=time(17, 0),
            active=True,
        )
    )
    db_session.commit()

    return {
        "provider": provider,
        "patient": patient,
        "other_patient": other_patient,
        "admin": admin,
    }


def actor_for(user):
    from careslot.services.identity_service import Actor

    return Actor(id=user.id, role=user.user_type)
