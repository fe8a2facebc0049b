import os
import tempfile
from datetime import date, time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# Point the app at a throwaway SQLite file before anything imports settings
os.environ["TESTING"] = "1"
_db_dir = tempfile.mkdtemp(prefix="clinic_booking_")
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"

from clinic_booking.main import app  # noqa: E402
from clinic_booking.api.deps import get_notification_sink  # noqa: E402
from clinic_booking.core.database import Base, SessionLocal, engine, init_db  # noqa: E402
from clinic_booking.models.availability import DayOfWeek, PractitionerAvailability  # noqa: E402
from clinic_booking.models.clinic import Clinic  # noqa: E402
from clinic_booking.models.patient import Patient  # noqa: E402
from clinic_booking.models.practitioner import Practitioner  # noqa: E402

# 2026-03-02 is a Monday; Melbourne is on daylight time (UTC+11) then
MONDAY = date(2026, 3, 2)
TUESDAY = date(2026, 3, 3)


class RecordingSink:
    """Notification sink that keeps what it was asked to publish."""

    def __init__(self):
        self.events = []

    def publish(self, clinic_id, event):
        self.events.append((clinic_id, event))


class FailingSink:
    def publish(self, clinic_id, event):
        raise ConnectionError("notification channel unavailable")


@pytest.fixture
def test_db():
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def seeded(db):
    """
    Two clinics, two patients in the first and one in the second, and a
    practitioner in the first clinic working 09:00-17:00 on Mondays and
    Tuesdays.
    """
    main_clinic = Clinic(name="Northside Clinic", email="north@example.com")
    other_clinic = Clinic(name="Southside Clinic", email="south@example.com")
    db.add_all([main_clinic, other_clinic])
    db.flush()

    patient = Patient(clinic_id=main_clinic.id, first_name="Ada", last_name="Lovelace")
    second_patient = Patient(clinic_id=main_clinic.id, first_name="Edsger", last_name="Dijkstra")
    outsider = Patient(clinic_id=other_clinic.id, first_name="Alan", last_name="Turing")
    practitioner = Practitioner(
        clinic_id=main_clinic.id,
        name="Dr Grace Hopper",
        specializations=["general practice"],
    )
    db.add_all([patient, second_patient, outsider, practitioner])
    db.flush()

    for day in (DayOfWeek.MONDAY, DayOfWeek.TUESDAY):
        db.add(PractitionerAvailability(
            practitioner_id=practitioner.id,
            clinic_id=main_clinic.id,
            day_of_week=day,
            start_time=time(9, 0),
            end_time=time(17, 0),
            is_available=True,
        ))

    ids = SimpleNamespace(
        clinic_id=main_clinic.id,
        other_clinic_id=other_clinic.id,
        patient_id=patient.id,
        second_patient_id=second_patient.id,
        outsider_id=outsider.id,
        practitioner_id=practitioner.id,
    )
    db.commit()
    return ids


@pytest.fixture
def client(test_db, sink):
    app.dependency_overrides[get_notification_sink] = lambda: sink
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.pop(get_notification_sink, None)
