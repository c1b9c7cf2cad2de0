"""Worker runner.

Runs the certificate pipeline jobs from a long-lived process instead of the
HTTP cron endpoints:
- run_worker_once(): one pass over every job
- run_worker_loop(): repeated passes until stopped

Job order matters: certificate generation and feedback invites run before
notification delivery, so emails they queue go out in the same pass.
"""

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlmodel import Session

from medcerts.config import get_settings
from medcerts.db.session import engine
from medcerts.services.generation_client import GenerationClient, resolve_base_url
from medcerts.workers.base import WorkerBase, WorkerResult
from medcerts.workers.certificate_worker import CertificateAutoGenerateWorker
from medcerts.workers.feedback_invite_worker import FeedbackInviteWorker
from medcerts.workers.notification_worker import NotificationWorker

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


@dataclass
class RunnerResult:
    """Aggregate of one pass over every job.

    Attributes:
        started_at: When the pass started
        completed_at: When the last job returned
        workers_run: Jobs that returned a WorkerResult
        total_processed: Items handled successfully, all jobs
        total_failed: Items marked failed, all jobs
        worker_results: WorkerResult per job name
        errors: One line per job whose cycle aborted
    """

    started_at: datetime
    completed_at: datetime | None = None
    workers_run: int = 0
    total_processed: int = 0
    total_failed: int = 0
    worker_results: dict[str, WorkerResult] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def record(self, name: str, worker_result: WorkerResult) -> None:
        """Fold one job's result into the totals."""
        self.worker_results[name] = worker_result
        self.workers_run += 1
        self.total_processed += worker_result.processed_count
        self.total_failed += worker_result.failed_count
        if worker_result.cycle_error:
            self.errors.append(f"{name} failed: {worker_result.cycle_error}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "workers_run": self.workers_run,
            "total_processed": self.total_processed,
            "total_failed": self.total_failed,
            "worker_results": {
                name: worker_result.to_dict()
                for name, worker_result in self.worker_results.items()
            },
            "errors": self.errors,
        }


def build_default_workers(
    batch_size: int | None = None,
    max_retries: int | None = None,
) -> list[WorkerBase]:
    """Build the certificate, feedback invite and notification workers.

    Args:
        batch_size: Override every worker's batch size
        max_retries: Override notification delivery retries
    """
    settings = get_settings()
    return [
        CertificateAutoGenerateWorker(
            generator=GenerationClient(settings),
            batch_size=batch_size or settings.CERT_JOB_BATCH_SIZE,
        ),
        FeedbackInviteWorker(
            base_url=resolve_base_url(settings.base_url_candidates),
            batch_size=batch_size or settings.FEEDBACK_INVITE_BATCH_SIZE,
        ),
        NotificationWorker(
            batch_size=batch_size or settings.WORKER_BATCH_SIZE,
            max_retries=max_retries or settings.WORKER_MAX_RETRIES,
        ),
    ]


class WorkerRunner:
    """Runs the pipeline jobs in order and aggregates their results.

    Usage:
        runner = WorkerRunner()
        result = runner.run_once()
    """

    def __init__(
        self,
        batch_size: int | None = None,
        max_retries: int | None = None,
        workers: list[WorkerBase] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            batch_size: Passed to build_default_workers
            max_retries: Passed to build_default_workers
            workers: Explicit job list, replaces the defaults
        """
        if workers is None:
            workers = build_default_workers(batch_size, max_retries)
        self._workers = workers
        self._stop = threading.Event()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def workers(self) -> list[WorkerBase]:
        return list(self._workers)

    @property
    def shutdown_requested(self) -> bool:
        return self._stop.is_set()

    @contextmanager
    def _session_for(self, session: Session | None) -> Iterator[Session]:
        # Without a caller session every job gets a fresh one
        if session is not None:
            yield session
            return
        with Session(engine) as own:
            yield own

    def run_once(self, session: Session | None = None) -> RunnerResult:
        """Run every job once.

        A job that raises is rolled back and reported in errors; the jobs
        after it still run.
        """
        result = RunnerResult(started_at=datetime.utcnow())

        for worker in self._workers:
            name = worker.worker_name
            with self._session_for(session) as job_session:
                try:
                    worker_result = worker.run(job_session)
                except Exception as e:
                    job_session.rollback()
                    result.errors.append(f"{name} failed: {e}")
                    self._logger.error(
                        "Job raised outside its cycle",
                        extra={"worker": name},
                        exc_info=True,
                    )
                    continue
            result.record(name, worker_result)

        result.completed_at = datetime.utcnow()
        self._logger.info("Pipeline pass complete", extra=result.to_dict())
        return result

    def run_loop(
        self,
        interval_seconds: int | None = None,
        max_iterations: int | None = None,
    ) -> int:
        """Run passes until stopped by a signal or max_iterations.

        Returns:
            Number of passes run
        """
        interval = interval_seconds or get_settings().WORKER_POLL_INTERVAL_SECONDS
        passes = 0

        self._logger.info(
            "Worker loop starting",
            extra={"interval_seconds": interval, "max_iterations": max_iterations},
        )

        with self._signal_handlers():
            while not self._stop.is_set():
                result = self.run_once()
                passes += 1
                self._logger.info(
                    f"Pass {passes} done",
                    extra={
                        "processed": result.total_processed,
                        "failed": result.total_failed,
                        "errors": len(result.errors),
                    },
                )
                if max_iterations is not None and passes >= max_iterations:
                    break
                # Returns early once a shutdown is requested
                self._stop.wait(interval)

        self._logger.info("Worker loop stopped", extra={"passes": passes})
        return passes

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        """Stop after the current pass on SIGINT/SIGTERM, restoring prior handlers."""

        def _handle(signum, frame):
            self._logger.info(f"Signal {signum} received, stopping after this pass")
            self.request_shutdown()

        previous = {
            sig: signal.signal(sig, _handle) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    def request_shutdown(self) -> None:
        self._stop.set()

    def close(self) -> None:
        """Release clients held by the jobs."""
        for worker in self._workers:
            try:
                worker.close()
            except Exception:
                self._logger.warning(
                    "Job failed to close",
                    extra={"worker": worker.worker_name},
                    exc_info=True,
                )


def run_worker_once(
    batch_size: int | None = None,
    max_retries: int | None = None,
) -> RunnerResult:
    """Run every job once with a default runner."""
    runner = WorkerRunner(batch_size=batch_size, max_retries=max_retries)
    try:
        return runner.run_once()
    finally:
        runner.close()


def run_worker_loop(
    interval_seconds: int | None = None,
    max_iterations: int | None = None,
    batch_size: int | None = None,
    max_retries: int | None = None,
) -> int:
    """Loop a default runner until interrupted or max_iterations is reached."""
    runner = WorkerRunner(batch_size=batch_size, max_retries=max_retries)
    try:
        return runner.run_loop(interval_seconds=interval_seconds, max_iterations=max_iterations)
    finally:
        runner.close()


def configure_worker_logging(level: int = logging.INFO) -> None:
    """Configure root logging for a worker process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("medcerts").setLevel(level)
    # Engine and HTTP client chatter only at warning level
    for noisy in ("sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
