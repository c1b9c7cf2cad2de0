"""Background workers.

This module provides the batch jobs of the certificate pipeline:
- Certificate auto-generation (cron_tasks consumer)
- Post-event feedback invites (cron_tasks consumer)
- Notification delivery

Workers can be started via:
- run_worker_once(): Single processing cycle
- run_worker_loop(): Continuous processing with interval
"""

from medcerts.workers.base import (
    ItemFailure,
    WorkerBase,
    WorkerResult,
    WorkerStatus,
)
from medcerts.workers.certificate_worker import (
    CertificateAutoGenerateWorker,
    CertificateJobSummary,
    CertificateTaskOutcome,
)
from medcerts.workers.cron_task_worker import CronTaskWorker
from medcerts.workers.feedback_invite_worker import FeedbackInviteSummary, FeedbackInviteWorker
from medcerts.workers.notification_worker import NotificationWorker
from medcerts.workers.runner import (
    RunnerResult,
    WorkerRunner,
    configure_worker_logging,
    run_worker_loop,
    run_worker_once,
)

__all__ = [
    # Base classes
    "ItemFailure",
    "WorkerBase",
    "WorkerResult",
    "WorkerStatus",
    "CronTaskWorker",
    # Workers
    "CertificateAutoGenerateWorker",
    "CertificateJobSummary",
    "CertificateTaskOutcome",
    "FeedbackInviteWorker",
    "FeedbackInviteSummary",
    "NotificationWorker",
    # Runner
    "WorkerRunner",
    "RunnerResult",
    "run_worker_once",
    "run_worker_loop",
    "configure_worker_logging",
]
