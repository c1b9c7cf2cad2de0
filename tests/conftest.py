"""Shared pytest fixtures: in-memory database and entity factories."""

from datetime import date, datetime, time, timedelta

import pytest
from sqlmodel import Session, SQLModel, create_engine, select
from sqlmodel.pool import StaticPool

import medcerts.models  # noqa: F401
from medcerts.models.booking import Booking, BookingStatus
from medcerts.models.event import CertificateTemplate, Event
from medcerts.models.qr_code import EventQRCode, QRCodeScan
from medcerts.models.user import User


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine with every table."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(engine):
    """Create a test database session."""
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(db_session: Session):
    """Factory for users."""
    counter = {"n": 0}

    def _make(**overrides) -> User:
        counter["n"] += 1
        values = {
            "email": f"attendee{counter['n']}@example.com",
            "name": f"Attendee {counter['n']}",
        }
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def test_user(make_user) -> User:
    return make_user(email="test@example.com", name="Test User")


@pytest.fixture
def template(db_session: Session) -> CertificateTemplate:
    template = CertificateTemplate(name="Attendance certificate", image_path="templates/a.png")
    db_session.add(template)
    db_session.commit()
    db_session.refresh(template)
    return template


@pytest.fixture
def make_event(db_session: Session, template: CertificateTemplate):
    """Factory for events; certificate automation is on by default."""

    def _make(**overrides) -> Event:
        values = {
            "title": "Cardiology Teaching",
            "date": date(2026, 3, 14),
            "start_time": time(9, 0),
            "end_time": time(11, 0),
            "auto_generate_certificate": True,
            "certificate_template_id": template.id,
        }
        values.update(overrides)
        event = Event(**values)
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)
        return event

    return _make


@pytest.fixture
def event(make_event) -> Event:
    return make_event()


@pytest.fixture
def make_booking(db_session: Session):
    """Factory for bookings."""

    def _make(event: Event, user: User, **overrides) -> Booking:
        values = {"event_id": event.id, "user_id": user.id}
        values.update(overrides)
        booking = Booking(**values)
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return _make


@pytest.fixture
def make_qr_code(db_session: Session):
    """Factory for QR codes open for a day around now."""

    def _make(event: Event, **overrides) -> EventQRCode:
        now = datetime.utcnow()
        values = {
            "event_id": event.id,
            "active": True,
            "scan_window_start": now - timedelta(hours=12),
            "scan_window_end": now + timedelta(hours=12),
        }
        values.update(overrides)
        qr_code = EventQRCode(**values)
        db_session.add(qr_code)
        db_session.commit()
        db_session.refresh(qr_code)
        return qr_code

    return _make


@pytest.fixture
def record_successful_scan(db_session: Session, make_qr_code):
    """Store a successful scan of the event's QR code (created on first use)."""

    def _record(event: Event, user: User, success: bool = True) -> QRCodeScan:
        qr_code = db_session.exec(
            select(EventQRCode).where(EventQRCode.event_id == event.id)
        ).first() or make_qr_code(event)
        scan = QRCodeScan(qr_code_id=qr_code.id, user_id=user.id, scan_success=success)
        db_session.add(scan)
        db_session.commit()
        return scan

    return _record


@pytest.fixture
def attended_booking(make_booking):
    """Factory for checked-in bookings."""

    def _make(event: Event, user: User, **overrides) -> Booking:
        values = {
            "status": BookingStatus.ATTENDED,
            "checked_in": True,
            "checked_in_at": datetime.utcnow(),
        }
        values.update(overrides)
        return make_booking(event, user, **values)

    return _make
