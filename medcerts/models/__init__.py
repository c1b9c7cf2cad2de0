"""SQLModel entities for the MedCerts backend."""

from medcerts.models.audit_log import AuditLog
from medcerts.models.booking import Booking, BookingStatus
from medcerts.models.certificate import Certificate, GenerationRequest
from medcerts.models.cron_task import CronTask, CronTaskStatus, CronTaskType
from medcerts.models.event import CertificateTemplate, Event
from medcerts.models.feedback import FeedbackResponse
from medcerts.models.notification import (
    DeliveryStatus,
    NotificationDelivery,
    NotificationKind,
)
from medcerts.models.qr_code import EventQRCode, QRCodeScan
from medcerts.models.user import User

__all__ = [
    "User",
    "Event",
    "CertificateTemplate",
    "Booking",
    "BookingStatus",
    "EventQRCode",
    "QRCodeScan",
    "CronTask",
    "CronTaskStatus",
    "CronTaskType",
    "Certificate",
    "GenerationRequest",
    "FeedbackResponse",
    "NotificationDelivery",
    "NotificationKind",
    "DeliveryStatus",
    "AuditLog",
]
