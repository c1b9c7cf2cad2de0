"""Tests for the background workers.

Tests cover:
- WorkerBase lifecycle and failure isolation
- NotificationWorker delivery and retry backoff
- FeedbackInviteWorker invite fan-out
- WorkerRunner orchestration
"""

from contextlib import nullcontext
from datetime import datetime, timedelta
from unittest.mock import Mock
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from medcerts.models.cron_task import CronTask, CronTaskStatus, CronTaskType
from medcerts.models.notification import (
    DeliveryStatus,
    NotificationDelivery,
    NotificationKind,
)
from medcerts.services.cron_tasks import build_idempotency_key
from medcerts.services.email import EmailDeliveryError
from medcerts.workers.base import ItemFailure, WorkerBase, WorkerResult, WorkerStatus
from medcerts.workers.feedback_invite_worker import FeedbackInviteWorker, invite_key
from medcerts.workers.notification_worker import NotificationWorker
from medcerts.workers.runner import RunnerResult, WorkerRunner, run_worker_loop, run_worker_once

NOW = datetime(2026, 3, 15, 9, 0)


class ListWorker(WorkerBase[dict]):
    """In-memory worker over plain dict items."""

    def __init__(self, items, fail_fetch: bool = False, fail_recording: bool = False):
        super().__init__(batch_size=10, max_retries=0)
        self.items = items
        self.fail_fetch = fail_fetch
        self.fail_recording = fail_recording
        self.completed = []
        self.failed = []
        self.after_cycle_called = False

    @property
    def worker_name(self) -> str:
        return "ListWorker"

    def fetch_pending(self, session):
        if self.fail_fetch:
            raise RuntimeError("database unavailable")
        return self.items

    def mark_processing(self, session, item) -> bool:
        return not item.get("claimed", False)

    def process_item(self, session, item):
        if item.get("error"):
            raise item["error"]
        return "done"

    def mark_completed(self, session, item, outcome) -> None:
        self.completed.append((item["id"], outcome))

    def mark_failed(self, session, item, error, can_retry) -> None:
        if self.fail_recording:
            raise RuntimeError("row is gone")
        self.failed.append((item["id"], error))

    def get_item_id(self, item):
        return item["id"]

    def after_cycle(self, session, result) -> None:
        self.after_cycle_called = True


def _item(**extra) -> dict:
    return {"id": uuid4(), **extra}


# ============================================================================
# WorkerResult / WorkerBase Tests
# ============================================================================

class TestWorkerResult:
    """Tests for WorkerResult dataclass."""

    def test_worker_result_defaults(self):
        result = WorkerResult(status=WorkerStatus.NO_WORK)

        assert result.processed_count == 0
        assert result.failed_count == 0
        assert result.claimed_elsewhere == 0
        assert result.errors == []
        assert result.cycle_error is None

    def test_worker_result_to_dict(self):
        result = WorkerResult(
            status=WorkerStatus.PARTIAL,
            processed_count=10,
            failed_count=2,
            metadata={"generated": 10},
        )

        d = result.to_dict()

        assert d["status"] == "partial"
        assert d["processed_count"] == 10
        assert d["failed_count"] == 2
        assert d["metadata"] == {"generated": 10}


class TestWorkerBase:
    """Tests for the WorkerBase cycle."""

    def test_no_work(self):
        worker = ListWorker([])

        result = worker.run(Mock(), now=NOW)

        assert result.status == WorkerStatus.NO_WORK
        assert worker.now == NOW
        assert worker.after_cycle_called

    def test_all_items_processed(self):
        items = [_item(), _item()]
        worker = ListWorker(items)
        session = Mock()

        result = worker.run(session)

        assert result.status == WorkerStatus.SUCCESS
        assert result.processed_count == 2
        assert [item_id for item_id, _ in worker.completed] == [i["id"] for i in items]
        assert session.commit.call_count == 2

    def test_failure_is_isolated(self):
        bad = _item(error=ItemFailure("Event not found"))
        worker = ListWorker([_item(), bad, _item()])
        session = Mock()

        result = worker.run(session)

        assert result.status == WorkerStatus.PARTIAL
        assert result.processed_count == 2
        assert result.failed_count == 1
        assert worker.failed == [(bad["id"], "Event not found")]
        assert result.errors[0]["item_id"] == str(bad["id"])
        session.rollback.assert_called_once()

    def test_all_failed(self):
        worker = ListWorker([_item(error=ValueError("boom"))])

        result = worker.run(Mock())

        assert result.status == WorkerStatus.FAILED
        assert result.cycle_error is None

    def test_full_error_reaches_mark_failed(self):
        worker = ListWorker([_item(error=ValueError("x" * 2000))])

        result = worker.run(Mock())

        assert len(worker.failed[0][1]) == 2000
        # Reported copy is truncated
        assert len(result.errors[0]["error"]) == 500

    def test_failure_while_recording_failure_is_contained(self):
        first, broken, last = _item(), _item(error=ItemFailure("bad gateway")), _item()
        worker = ListWorker([first, broken, last], fail_recording=True)
        session = Mock()

        result = worker.run(session)

        assert result.cycle_error is None
        assert result.status == WorkerStatus.PARTIAL
        assert result.processed_count == 2
        assert result.failed_count == 1
        assert result.errors[0]["item_id"] == str(broken["id"])
        assert [item_id for item_id, _ in worker.completed] == [first["id"], last["id"]]
        assert worker.after_cycle_called
        assert session.rollback.call_count == 2

    def test_claimed_elsewhere_is_skipped(self):
        worker = ListWorker([_item(claimed=True), _item()])

        result = worker.run(Mock())

        assert result.claimed_elsewhere == 1
        assert result.processed_count == 1
        assert len(worker.completed) == 1

    def test_cycle_failure(self):
        worker = ListWorker([], fail_fetch=True)
        session = Mock()

        result = worker.run(session)

        assert result.status == WorkerStatus.FAILED
        assert result.cycle_error == "database unavailable"
        assert not worker.after_cycle_called
        session.rollback.assert_called_once()


# ============================================================================
# NotificationWorker Tests
# ============================================================================

@pytest.fixture
def email_sender():
    return Mock()


@pytest.fixture
def add_notification(db_session: Session, event, test_user):
    """Factory for notification deliveries."""

    def _add(**overrides) -> NotificationDelivery:
        values = {
            "user_id": test_user.id,
            "event_id": event.id,
            "kind": NotificationKind.FEEDBACK_REQUEST,
            "recipient": test_user.email,
            "subject": "Share your feedback",
            "message": "Please tell us how it went",
        }
        values.update(overrides)
        notification = NotificationDelivery(**values)
        db_session.add(notification)
        db_session.commit()
        db_session.refresh(notification)
        return notification

    return _add


class TestNotificationWorker:
    """Tests for NotificationWorker."""

    def test_worker_name(self, email_sender):
        assert NotificationWorker(email_sender=email_sender).worker_name == "NotificationWorker"

    def test_fetch_pending_and_due_retries(self, db_session: Session, email_sender, add_notification):
        pending = add_notification()
        due_retry = add_notification(
            status=DeliveryStatus.FAILED, retry_count=1, next_retry_at=NOW - timedelta(minutes=1)
        )
        add_notification(
            status=DeliveryStatus.FAILED, retry_count=1, next_retry_at=NOW + timedelta(minutes=1)
        )
        add_notification(status=DeliveryStatus.FAILED, retry_count=3, next_retry_at=None)
        add_notification(status=DeliveryStatus.SENT)

        worker = NotificationWorker(email_sender=email_sender)
        worker.now = NOW

        ids = {n.id for n in worker.fetch_pending(db_session)}

        assert ids == {pending.id, due_retry.id}

    def test_sends_pending_notification(self, db_session: Session, email_sender, add_notification):
        notification = add_notification()
        worker = NotificationWorker(email_sender=email_sender)

        result = worker.run(db_session, now=NOW)

        assert result.processed_count == 1
        email_sender.send.assert_called_once_with(
            notification.recipient, "Share your feedback", "Please tell us how it went"
        )
        db_session.refresh(notification)
        assert notification.status == DeliveryStatus.SENT
        assert notification.sent_at == NOW

    def test_failure_schedules_retry_with_backoff(self, db_session: Session, email_sender, add_notification):
        notification = add_notification()
        email_sender.send.side_effect = EmailDeliveryError("mailbox unavailable")
        worker = NotificationWorker(max_retries=3, email_sender=email_sender)

        result = worker.run(db_session, now=NOW)

        assert result.failed_count == 1
        db_session.refresh(notification)
        assert notification.status == DeliveryStatus.FAILED
        assert notification.retry_count == 1
        assert notification.error_message == "mailbox unavailable"
        assert notification.next_retry_at > NOW

    def test_final_failure_stops_retrying(self, db_session: Session, email_sender, add_notification):
        notification = add_notification(
            status=DeliveryStatus.FAILED, retry_count=2, next_retry_at=NOW - timedelta(minutes=1)
        )
        email_sender.send.side_effect = EmailDeliveryError("mailbox unavailable")
        worker = NotificationWorker(max_retries=3, email_sender=email_sender)

        worker.run(db_session, now=NOW)

        db_session.refresh(notification)
        assert notification.retry_count == 3
        assert notification.next_retry_at is None
        assert worker.fetch_pending(db_session) == []


# ============================================================================
# FeedbackInviteWorker Tests
# ============================================================================

def _add_marker(session: Session, event) -> CronTask:
    task_type = CronTaskType.FEEDBACK_INVITES
    marker = CronTask(
        task_type=task_type,
        event_id=event.id,
        user_id=None,
        run_at=NOW - timedelta(minutes=5),
        idempotency_key=build_idempotency_key(task_type, event.id, None, event.date),
    )
    session.add(marker)
    session.commit()
    session.refresh(marker)
    return marker


@pytest.fixture
def feedback_event(make_event):
    return make_event(feedback_enabled=True, booking_enabled=True)


def _invite_worker() -> FeedbackInviteWorker:
    return FeedbackInviteWorker(base_url="https://app.example", batch_size=25, claim_timeout_seconds=900)


class TestFeedbackInviteWorker:
    """Tests for FeedbackInviteWorker."""

    def test_invites_every_scanned_attendee(
        self, db_session: Session, feedback_event, make_user, record_successful_scan
    ):
        attendees = [make_user(), make_user()]
        for user in attendees:
            record_successful_scan(feedback_event, user)
        marker = _add_marker(db_session, feedback_event)

        summary = _invite_worker().process(db_session, now=NOW)

        assert summary.to_response()["invitesSent"] == 2
        assert summary.tasks_processed == 1
        assert summary.error is None
        notifications = db_session.exec(select(NotificationDelivery)).all()
        assert {n.recipient for n in notifications} == {u.email for u in attendees}
        assert all(n.kind == NotificationKind.FEEDBACK_REQUEST for n in notifications)

        db_session.expire_all()
        assert db_session.get(CronTask, marker.id).status == CronTaskStatus.COMPLETED
        records = db_session.exec(
            select(CronTask).where(CronTask.user_id != None)  # noqa: E711
        ).all()
        assert {r.idempotency_key for r in records} == {invite_key(marker, u.id) for u in attendees}
        assert all(r.status == CronTaskStatus.COMPLETED for r in records)

    def test_already_invited_attendee_is_skipped(
        self, db_session: Session, feedback_event, make_user, record_successful_scan
    ):
        invited, fresh = make_user(), make_user()
        record_successful_scan(feedback_event, invited)
        record_successful_scan(feedback_event, fresh)
        marker = _add_marker(db_session, feedback_event)
        db_session.add(CronTask(
            task_type=CronTaskType.FEEDBACK_INVITES,
            event_id=feedback_event.id,
            user_id=invited.id,
            run_at=NOW,
            idempotency_key=invite_key(marker, invited.id),
            status=CronTaskStatus.COMPLETED,
            processed_at=NOW,
        ))
        db_session.commit()

        summary = _invite_worker().process(db_session, now=NOW)

        assert summary.invites_sent == 1
        [notification] = db_session.exec(select(NotificationDelivery)).all()
        assert notification.recipient == fresh.email

    def test_disabled_event_completes_marker(
        self, db_session: Session, make_event, test_user, record_successful_scan
    ):
        event = make_event(feedback_enabled=True, booking_enabled=False)
        record_successful_scan(event, test_user)
        marker = _add_marker(db_session, event)

        summary = _invite_worker().process(db_session, now=NOW)

        assert summary.invites_sent == 0
        assert summary.tasks_processed == 1
        assert db_session.exec(select(NotificationDelivery)).all() == []
        db_session.expire_all()
        assert db_session.get(CronTask, marker.id).status == CronTaskStatus.COMPLETED

    def test_missing_event_fails_marker(self, db_session: Session):
        marker = CronTask(
            task_type=CronTaskType.FEEDBACK_INVITES,
            event_id=uuid4(),
            run_at=NOW - timedelta(minutes=5),
            idempotency_key="feedback_invites|missing|all|undated",
        )
        db_session.add(marker)
        db_session.commit()

        summary = _invite_worker().process(db_session, now=NOW)

        assert summary.tasks_processed == 0
        assert summary.to_response()["success"] is True
        db_session.expire_all()
        failed = db_session.get(CronTask, marker.id)
        assert failed.status == CronTaskStatus.FAILED
        assert failed.error_message == "Event not found"


# ============================================================================
# WorkerRunner Tests
# ============================================================================

def _mock_worker(name: str, result: WorkerResult | None = None, error: Exception | None = None) -> Mock:
    worker = Mock()
    worker.worker_name = name
    if error is not None:
        worker.run.side_effect = error
    else:
        worker.run.return_value = result or WorkerResult(status=WorkerStatus.NO_WORK)
    return worker


class TestWorkerRunner:
    """Tests for WorkerRunner."""

    def test_runner_initializes_default_workers(self):
        runner = WorkerRunner()

        assert [w.worker_name for w in runner.workers] == [
            "CertificateAutoGenerateWorker",
            "FeedbackInviteWorker",
            "NotificationWorker",
        ]

    def test_batch_size_override(self):
        runner = WorkerRunner(batch_size=5)

        assert all(w.batch_size == 5 for w in runner.workers)

    def test_run_once_aggregates_counts(self):
        workers = [
            _mock_worker("A", WorkerResult(status=WorkerStatus.SUCCESS, processed_count=3)),
            _mock_worker("B", WorkerResult(status=WorkerStatus.PARTIAL, processed_count=1, failed_count=2)),
        ]
        runner = WorkerRunner(workers=workers)

        result = runner.run_once(session=Mock())

        assert isinstance(result, RunnerResult)
        assert result.workers_run == 2
        assert result.total_processed == 4
        assert result.total_failed == 2
        assert result.completed_at is not None
        assert set(result.worker_results) == {"A", "B"}

    def test_worker_exception_does_not_stop_others(self):
        session = Mock()
        later = _mock_worker("Later")
        runner = WorkerRunner(workers=[_mock_worker("Broken", error=RuntimeError("boom")), later])

        result = runner.run_once(session=session)

        assert result.errors == ["Broken failed: boom"]
        assert result.workers_run == 1
        later.run.assert_called_once_with(session)
        session.rollback.assert_called_once()

    def test_cycle_error_is_reported(self):
        failed = WorkerResult(status=WorkerStatus.FAILED, cycle_error="database unavailable")
        runner = WorkerRunner(workers=[_mock_worker("A", failed)])

        result = runner.run_once(session=Mock())

        assert result.errors == ["A failed: database unavailable"]

    def test_runner_result_to_dict(self):
        result = RunnerResult(started_at=datetime(2026, 3, 15, 9, 0, 0))
        result.completed_at = datetime(2026, 3, 15, 9, 0, 5)
        result.total_processed = 15
        result.workers_run = 3

        d = result.to_dict()

        assert d["duration_ms"] == 5000.0
        assert d["total_processed"] == 15
        assert d["workers_run"] == 3

    def test_request_shutdown_sets_flag(self):
        runner = WorkerRunner(workers=[])
        assert runner.shutdown_requested is False

        runner.request_shutdown()

        assert runner.shutdown_requested is True

    def test_loop_stops_at_max_iterations(self):
        worker = _mock_worker("A")
        runner = WorkerRunner(workers=[worker])
        runner._session_for = Mock(return_value=nullcontext(Mock()))

        passes = runner.run_loop(interval_seconds=0, max_iterations=2)

        assert passes == 2
        assert worker.run.call_count == 2

    def test_loop_exits_when_shutdown_requested(self):
        runner = WorkerRunner(workers=[])
        runner.request_shutdown()

        assert runner.run_loop(interval_seconds=0) == 0

    def test_close_reaches_every_worker(self):
        failing, later = _mock_worker("A"), _mock_worker("B")
        failing.close.side_effect = RuntimeError("already closed")
        runner = WorkerRunner(workers=[failing, later])

        runner.close()

        later.close.assert_called_once()

    def test_run_worker_once_closes_runner(self, monkeypatch):
        runner = Mock()
        runner.run_once.return_value = RunnerResult(started_at=NOW)
        monkeypatch.setattr("medcerts.workers.runner.WorkerRunner", Mock(return_value=runner))

        result = run_worker_once()

        assert result is runner.run_once.return_value
        runner.close.assert_called_once()

    def test_run_worker_loop_closes_runner_on_error(self, monkeypatch):
        runner = Mock()
        runner.run_loop.side_effect = RuntimeError("database unavailable")
        monkeypatch.setattr("medcerts.workers.runner.WorkerRunner", Mock(return_value=runner))

        with pytest.raises(RuntimeError):
            run_worker_loop(max_iterations=1)

        runner.close.assert_called_once()
