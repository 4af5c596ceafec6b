# tests/conftest.py

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.errors import NotificationFailure
from app.lifecycle import AppointmentLifecycle
from clinic_api import create_app
from database.db_utils import AppointmentStore
from database.models import Base
from tools.payment_tools import UpiPaymentLinkProvider
from tools.video_tools import JitsiRoomProvisioner

OPERATOR_EMAIL = "doctor@clinic.test"
BASE_URL = "https://api.clinic.test"


class RecordingNotifier:
    """Keeps every notification instead of sending it."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to_email, email_type, details):
        if self.fail:
            raise NotificationFailure(f"Email '{email_type}' to {to_email} was not delivered.")
        self.sent.append((to_email, email_type, details))

    def of_type(self, email_type):
        return [n for n in self.sent if n[1] == email_type]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return AppointmentStore(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(store, notifier):
    return AppointmentLifecycle(
        store=store,
        notifier=notifier,
        payment_provider=UpiPaymentLinkProvider(upi_id="clinic@upi", payee_name="SidhaHealth", currency="INR"),
        room_provisioner=JitsiRoomProvisioner(prefix="sidhahealth", base_url="https://meet.jit.si"),
        operator_email=OPERATOR_EMAIL,
        consultation_fee=500,
        base_url=BASE_URL,
        currency="INR",
    )


@pytest.fixture
def client(lifecycle):
    app = create_app(lifecycle=lifecycle)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def book(lifecycle):
    def _book(consult_type="online", **overrides):
        fields = {
            "name": "Asha Rao",
            "email": "a@x.com",
            "phone": "+919800000000",
            "date": "2024-06-01",
            "time": "10:00",
            "consult_type": consult_type,
        }
        fields.update(overrides)
        return lifecycle.book(**fields)
    return _book
