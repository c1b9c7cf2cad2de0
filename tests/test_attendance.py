"""Tests for attendance scans and their post-scan actions."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from medcerts.models.booking import Booking, BookingStatus
from medcerts.models.cron_task import CronTask, CronTaskStatus, CronTaskType
from medcerts.models.notification import NotificationDelivery, NotificationKind
from medcerts.models.qr_code import QRCodeScan
from medcerts.services.attendance import (
    AttendanceError,
    has_successful_scan,
    record_scan,
    scanned_user_ids,
)
from medcerts.services.enqueue import EnqueueOutcome, PostScanEmail

BASE_URL = "https://app.example"


class TestRecordScanValidation:
    """Tests for scan rejection paths."""

    def test_no_qr_code(self, db_session: Session, event, test_user):
        with pytest.raises(AttendanceError) as exc_info:
            record_scan(db_session, event.id, test_user, BASE_URL)

        assert exc_info.value.status_code == 404

    def test_inactive_qr_code(self, db_session: Session, event, test_user, make_qr_code):
        make_qr_code(event, active=False)

        with pytest.raises(AttendanceError) as exc_info:
            record_scan(db_session, event.id, test_user, BASE_URL)

        assert exc_info.value.message == "QR code is inactive"

    def test_before_window(self, db_session: Session, event, test_user, make_qr_code):
        now = datetime.utcnow()
        make_qr_code(event, scan_window_start=now + timedelta(hours=1))

        with pytest.raises(AttendanceError) as exc_info:
            record_scan(db_session, event.id, test_user, BASE_URL, now=now)

        assert "not yet active" in exc_info.value.message

    def test_after_window(self, db_session: Session, event, test_user, make_qr_code):
        now = datetime.utcnow()
        make_qr_code(event, scan_window_end=now - timedelta(minutes=1))

        with pytest.raises(AttendanceError) as exc_info:
            record_scan(db_session, event.id, test_user, BASE_URL, now=now)

        assert "expired" in exc_info.value.message

    def test_already_checked_in(self, db_session: Session, event, test_user, make_qr_code, attended_booking):
        make_qr_code(event)
        attended_booking(event, test_user)

        with pytest.raises(AttendanceError):
            record_scan(db_session, event.id, test_user, BASE_URL)

    def test_cancelled_booking_is_ignored(self, db_session: Session, event, test_user, make_qr_code, make_booking):
        make_qr_code(event)
        make_booking(event, test_user, status=BookingStatus.CANCELLED)

        result = record_scan(db_session, event.id, test_user, BASE_URL)

        assert result.has_booking is False


class TestRecordScan:
    """Tests for accepted scans."""

    def test_marks_booking_attended(self, db_session: Session, event, test_user, make_qr_code, make_booking):
        make_qr_code(event)
        booking = make_booking(event, test_user)
        now = datetime.utcnow()

        result = record_scan(db_session, event.id, test_user, BASE_URL, now=now)

        assert result.has_booking is True
        assert result.checked_in_at == now
        db_session.refresh(booking)
        assert booking.checked_in is True
        assert booking.status == BookingStatus.ATTENDED
        scan = db_session.exec(select(QRCodeScan)).one()
        assert scan.booking_id == booking.id

    def test_walk_in_scan_without_booking(self, db_session: Session, event, test_user, make_qr_code):
        make_qr_code(event)

        result = record_scan(db_session, event.id, test_user, BASE_URL)

        assert result.has_booking is False
        assert db_session.exec(select(Booking)).all() == []
        assert has_successful_scan(db_session, event.id, test_user.id)

    def test_duplicate_scan_reports_original(self, db_session: Session, event, test_user, make_qr_code):
        make_qr_code(event)
        first = record_scan(db_session, event.id, test_user, BASE_URL)

        second = record_scan(db_session, event.id, test_user, BASE_URL)

        assert second.duplicate is True
        assert second.checked_in_at == first.checked_in_at
        assert len(db_session.exec(select(QRCodeScan)).all()) == 1
        assert len(db_session.exec(select(CronTask)).all()) == 1

    def test_scan_schedules_certificate_task(self, db_session: Session, event, test_user, make_qr_code):
        make_qr_code(event)

        result = record_scan(db_session, event.id, test_user, BASE_URL)

        assert result.certificate_outcome == EnqueueOutcome.SCHEDULED
        task = db_session.exec(select(CronTask)).one()
        assert task.task_type == CronTaskType.CERTIFICATES_AUTO_GENERATE
        assert task.user_id == test_user.id
        assert task.status == CronTaskStatus.PENDING

    def test_feedback_request_queued(self, db_session: Session, make_event, test_user, make_qr_code):
        event = make_event(feedback_enabled=True, feedback_required_for_certificate=True)
        make_qr_code(event)

        result = record_scan(db_session, event.id, test_user, BASE_URL)

        assert result.certificate_outcome == EnqueueOutcome.FEEDBACK_GATED
        assert result.post_scan_email == PostScanEmail.FEEDBACK_REQUEST
        notification = db_session.exec(select(NotificationDelivery)).one()
        assert notification.kind == NotificationKind.FEEDBACK_REQUEST
        assert notification.recipient == test_user.email
        assert f"{BASE_URL}/feedback/event/{event.id}" in notification.message
        assert db_session.exec(select(CronTask)).all() == []

    def test_thank_you_without_certificate(self, db_session: Session, make_event, test_user, make_qr_code):
        event = make_event(auto_generate_certificate=False)
        make_qr_code(event)

        result = record_scan(db_session, event.id, test_user, BASE_URL)

        assert result.post_scan_email == PostScanEmail.THANK_YOU
        notification = db_session.exec(select(NotificationDelivery)).one()
        assert notification.kind == NotificationKind.ATTENDANCE_THANK_YOU

    def test_booked_feedback_event_schedules_invites(self, db_session: Session, make_event, test_user, make_qr_code):
        event = make_event(feedback_enabled=True, booking_enabled=True)
        make_qr_code(event)

        record_scan(db_session, event.id, test_user, BASE_URL)

        task_types = {task.task_type for task in db_session.exec(select(CronTask)).all()}
        assert task_types == {
            CronTaskType.CERTIFICATES_AUTO_GENERATE,
            CronTaskType.FEEDBACK_INVITES,
        }
        assert db_session.exec(select(NotificationDelivery)).all() == []

    def test_post_scan_failure_does_not_fail_scan(
        self, db_session: Session, event, test_user, make_qr_code, monkeypatch
    ):
        make_qr_code(event)

        def _boom(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("medcerts.services.attendance.schedule_certificate_task", _boom)

        result = record_scan(db_session, event.id, test_user, BASE_URL)

        assert result.certificate_outcome is None
        assert has_successful_scan(db_session, event.id, test_user.id)


class TestScannedUsers:
    """Tests for scanned_user_ids."""

    def test_distinct_successful_scanners(
        self, db_session: Session, event, make_event, make_user, record_successful_scan
    ):
        first, second, failed = make_user(), make_user(), make_user()
        record_successful_scan(event, first)
        record_successful_scan(event, first)
        record_successful_scan(event, second)
        record_successful_scan(event, failed, success=False)
        record_successful_scan(make_event(), make_user())

        assert set(scanned_user_ids(db_session, event.id)) == {first.id, second.id}

    def test_no_scans(self, db_session: Session):
        assert scanned_user_ids(db_session, uuid4()) == []
