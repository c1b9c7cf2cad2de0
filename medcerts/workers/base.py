"""Shared cycle machinery for the background jobs.

A job selects a batch of work items, claims each one, works it and records
the outcome. One item failing is recorded against that item and the cycle
carries on with the next. Jobs keep no state between cycles; anything a
later cycle needs lives in the database.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlmodel import Session

logger = logging.getLogger(__name__)

# Longest error text carried in results and logs
MAX_ERROR_LENGTH = 500


class WorkerStatus(str, Enum):
    """Overall outcome of one cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # some items failed
    FAILED = "failed"
    NO_WORK = "no_work"


class ItemFailure(Exception):
    """An expected item failure; logged without a traceback."""


def truncate_error(error: Exception | str) -> str:
    return str(error)[:MAX_ERROR_LENGTH]


@dataclass
class WorkerResult:
    """Counters and diagnostics collected over one cycle.

    ``claimed_elsewhere`` counts items another run claimed between
    selection and claim. ``cycle_error`` is set only when the cycle aborted
    outside of any single item.
    """

    status: WorkerStatus
    processed_count: int = 0
    failed_count: int = 0
    claimed_elsewhere: int = 0
    duration_ms: float = 0.0
    errors: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    cycle_error: str | None = None

    def add_failure(self, item_id: UUID, error: str, can_retry: bool) -> None:
        self.failed_count += 1
        self.errors.append({"item_id": str(item_id), "error": error, "can_retry": can_retry})

    def settle(self) -> None:
        """Derive the status from the item counters."""
        if self.processed_count and self.failed_count:
            self.status = WorkerStatus.PARTIAL
        elif self.processed_count:
            self.status = WorkerStatus.SUCCESS
        elif self.failed_count:
            self.status = WorkerStatus.FAILED
        else:
            self.status = WorkerStatus.NO_WORK

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "claimed_elsewhere": self.claimed_elsewhere,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
            "metadata": self.metadata,
            "cycle_error": self.cycle_error,
        }


T = TypeVar("T")


class WorkerBase(ABC, Generic[T]):
    """A batch job over work items of type T.

    Per cycle: ``before_cycle``, then ``fetch_pending``; for every item
    ``mark_processing`` (skip when it returns False), ``process_item`` and
    ``mark_completed``, each item committed on its own. A raised exception
    rolls the item back and hands it to ``mark_failed``. ``after_cycle``
    runs once every item has been handled.
    """

    def __init__(self, batch_size: int = 50, max_retries: int = 3) -> None:
        self.batch_size = batch_size
        self.max_retries = max_retries
        # Reference time for the current cycle, set by run()
        self.now: datetime = datetime.utcnow()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def worker_name(self) -> str:
        """Name used in logs and runner reports."""

    @abstractmethod
    def fetch_pending(self, session: Session) -> list[T]:
        """Select at most batch_size items due at self.now."""

    @abstractmethod
    def mark_processing(self, session: Session, item: T) -> bool:
        """Claim an item; False when another run already owns it."""

    @abstractmethod
    def process_item(self, session: Session, item: T) -> Any:
        """Work one item and return the outcome handed to mark_completed.

        Raises:
            ItemFailure: For an expected failure with a readable diagnostic
            Exception: Anything else is recorded the same way, with traceback
        """

    @abstractmethod
    def mark_completed(self, session: Session, item: T, outcome: Any) -> None:
        """Record a successful outcome."""

    @abstractmethod
    def mark_failed(
        self, session: Session, item: T, error: str, can_retry: bool
    ) -> None:
        """Record a failure. Called after the item's work was rolled back."""

    @abstractmethod
    def get_item_id(self, item: T) -> UUID:
        pass

    def before_cycle(self, session: Session) -> None:
        """Housekeeping before items are selected."""

    def after_cycle(self, session: Session, result: WorkerResult) -> None:
        """Flush work deferred to the end of the cycle."""

    def should_retry(self, item: T) -> bool:
        retry_count = getattr(item, "retry_count", None)
        return retry_count is not None and retry_count < self.max_retries

    def close(self) -> None:
        """Release clients the worker owns."""

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        """Run one cycle and report what happened.

        A failure outside item handling (selection, the cycle hooks) marks
        the whole result FAILED with ``cycle_error`` set; it does not raise.
        """
        started = datetime.utcnow()
        self.now = now or started
        result = WorkerResult(status=WorkerStatus.NO_WORK)

        try:
            self.before_cycle(session)
            items = self.fetch_pending(session)
            self._logger.debug(
                f"[{self.worker_name}] {len(items)} items due",
                extra={"batch_size": self.batch_size},
            )

            for item in items:
                self._run_item(session, item, result)

            self.after_cycle(session, result)
        except Exception as e:
            session.rollback()
            result.status = WorkerStatus.FAILED
            result.cycle_error = truncate_error(e)
            result.duration_ms = self._elapsed_ms(started)
            self._logger.error(
                f"[{self.worker_name}] Cycle aborted",
                extra={"error": result.cycle_error},
                exc_info=True,
            )
            return result

        result.settle()
        result.duration_ms = self._elapsed_ms(started)
        if result.status != WorkerStatus.NO_WORK:
            self._logger.info(f"[{self.worker_name}] Cycle finished", extra=result.to_dict())
        return result

    def _run_item(self, session: Session, item: T, result: WorkerResult) -> None:
        item_id = self.get_item_id(item)

        try:
            if not self.mark_processing(session, item):
                result.claimed_elsewhere += 1
                self._logger.debug(f"[{self.worker_name}] {item_id} claimed by another run")
                return

            outcome = self.process_item(session, item)
            self.mark_completed(session, item, outcome)
            session.commit()
        except Exception as e:
            session.rollback()
            self._record_failure(session, item, item_id, e, result)
            return

        result.processed_count += 1
        self._logger.info(
            f"[{self.worker_name}] {item_id} done",
            extra={"item_id": str(item_id), "outcome": str(outcome)},
        )

    def _record_failure(
        self,
        session: Session,
        item: T,
        item_id: UUID,
        error: Exception,
        result: WorkerResult,
    ) -> None:
        """Hand a failed item to mark_failed without letting anything escape.

        The full error text reaches mark_failed; reports and logs carry a
        truncated copy.
        """
        summary = truncate_error(error)
        can_retry = False
        try:
            can_retry = self.should_retry(item)
            self.mark_failed(session, item, str(error), can_retry)
            session.commit()
        except Exception:
            session.rollback()
            self._logger.warning(
                f"[{self.worker_name}] Could not record failure of {item_id}",
                extra={"item_id": str(item_id), "error": summary},
                exc_info=True,
            )
        result.add_failure(item_id, summary, can_retry)

        self._logger.error(
            f"[{self.worker_name}] {item_id} failed",
            extra={"item_id": str(item_id), "error": summary, "can_retry": can_retry},
            exc_info=not isinstance(error, ItemFailure),
        )

    @staticmethod
    def _elapsed_ms(start: datetime) -> float:
        return (datetime.utcnow() - start).total_seconds() * 1000
