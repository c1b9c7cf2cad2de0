"""Shared plumbing for workers that consume the cron_tasks queue.

Each cycle releases stale claims, selects due pending tasks of one type,
claims them one at a time with an atomic conditional update, and finishes
them with updates conditional on the claim still being held.
"""

import logging
from uuid import UUID

from sqlmodel import Session

from medcerts.config import get_settings
from medcerts.models.cron_task import CronTask, CronTaskStatus, CronTaskType
from medcerts.services.cron_tasks import (
    claim_task,
    fetch_due_tasks,
    finish_task,
    release_stale_claims,
)
from medcerts.workers.base import WorkerBase

logger = logging.getLogger(__name__)


class CronTaskWorker(WorkerBase[CronTask]):
    """Base worker for one cron task type.

    Subclasses set task_type and implement process_item/mark_completed.
    """

    task_type: CronTaskType

    def __init__(
        self,
        batch_size: int = 50,
        max_retries: int = 0,
        claim_timeout_seconds: int | None = None,
    ) -> None:
        super().__init__(batch_size=batch_size, max_retries=max_retries)
        self.claim_timeout_seconds = (
            claim_timeout_seconds or get_settings().TASK_CLAIM_TIMEOUT_SECONDS
        )

    def before_cycle(self, session: Session) -> None:
        release_stale_claims(session, self.task_type, self.now, self.claim_timeout_seconds)

    def fetch_pending(self, session: Session) -> list[CronTask]:
        """Fetch due pending tasks, oldest run_at first, capped at batch_size."""
        return fetch_due_tasks(session, self.task_type, self.now, self.batch_size)

    def mark_processing(self, session: Session, item: CronTask) -> bool:
        return claim_task(session, item, self.now)

    def mark_failed(
        self, session: Session, item: CronTask, error: str, can_retry: bool
    ) -> None:
        """Move the task to FAILED with the full diagnostic text.

        Failed tasks are never retried automatically; can_retry is ignored.
        A task another invocation already finished is left as it is.
        """
        task_id = item.id
        if not finish_task(session, task_id, CronTaskStatus.FAILED, self.now, error=error):
            logger.warning(
                "Cron task left processing before its failure was recorded",
                extra={"task_id": str(task_id), "task_type": self.task_type.value},
            )

    def get_item_id(self, item: CronTask) -> UUID:
        return item.id

    def should_retry(self, item: CronTask) -> bool:
        return False

    def complete_task(self, session: Session, item: CronTask) -> bool:
        """Move a claimed task straight to COMPLETED.

        Returns:
            False when another invocation already finished the task
        """
        if finish_task(session, item.id, CronTaskStatus.COMPLETED, self.now):
            return True
        logger.warning(
            "Cron task left processing before it was completed",
            extra={"task_id": str(item.id), "task_type": self.task_type.value},
        )
        return False
