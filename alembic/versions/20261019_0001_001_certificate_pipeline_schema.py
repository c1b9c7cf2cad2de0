"""Certificate pipeline schema - events, attendance, certificates and cron tasks.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

This migration creates:
- users, certificate_templates and events (with certificate/feedback flags)
- event_bookings, event_qr_codes and qr_code_scans for attendance
- cron_tasks, the idempotent queue of scheduled work (unique idempotency_key)
- certificates, unique per (event_id, user_id)
- feedback_responses, notification_deliveries and audit_logs

Enum columns hold the Python enum member names, which is what SQLModel
persists.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums in PostgreSQL
    op.execute("CREATE TYPE bookingstatus AS ENUM ('CONFIRMED', 'WAITLIST', 'ATTENDED', 'CANCELLED')")
    op.execute("CREATE TYPE crontasktype AS ENUM ('CERTIFICATES_AUTO_GENERATE', 'FEEDBACK_INVITES')")
    op.execute("CREATE TYPE crontaskstatus AS ENUM ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')")
    op.execute("CREATE TYPE notificationkind AS ENUM ('FEEDBACK_REQUEST', 'ATTENDANCE_THANK_YOU')")
    op.execute("CREATE TYPE deliverystatus AS ENUM ('PENDING', 'PROCESSING', 'SENT', 'FAILED')")

    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY,
            email VARCHAR(255) NOT NULL UNIQUE,
            name VARCHAR(200),
            role VARCHAR(50) NOT NULL DEFAULT 'student',
            university VARCHAR(200),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_users_email ON users(email);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS certificate_templates (
            id UUID PRIMARY KEY,
            name VARCHAR(200) NOT NULL,
            image_path VARCHAR(500),
            fields JSON,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id UUID PRIMARY KEY,
            title VARCHAR(300) NOT NULL,
            date DATE,
            start_time TIME,
            end_time TIME,
            auto_generate_certificate BOOLEAN NOT NULL DEFAULT FALSE,
            certificate_template_id UUID REFERENCES certificate_templates(id),
            feedback_required_for_certificate BOOLEAN NOT NULL DEFAULT FALSE,
            certificate_auto_send_email BOOLEAN NOT NULL DEFAULT TRUE,
            feedback_enabled BOOLEAN NOT NULL DEFAULT FALSE,
            booking_enabled BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_events_date ON events(date);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS event_bookings (
            id UUID PRIMARY KEY,
            event_id UUID NOT NULL REFERENCES events(id),
            user_id UUID NOT NULL REFERENCES users(id),
            status bookingstatus NOT NULL DEFAULT 'CONFIRMED',
            checked_in BOOLEAN NOT NULL DEFAULT FALSE,
            checked_in_at TIMESTAMP,
            feedback_completed BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_event_bookings_event_id ON event_bookings(event_id);
        CREATE INDEX IF NOT EXISTS ix_event_bookings_user_id ON event_bookings(user_id);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS event_qr_codes (
            id UUID PRIMARY KEY,
            event_id UUID NOT NULL REFERENCES events(id),
            active BOOLEAN NOT NULL DEFAULT TRUE,
            scan_window_start TIMESTAMP NOT NULL,
            scan_window_end TIMESTAMP NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_event_qr_codes_event_id ON event_qr_codes(event_id);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS qr_code_scans (
            id UUID PRIMARY KEY,
            qr_code_id UUID NOT NULL REFERENCES event_qr_codes(id),
            user_id UUID NOT NULL REFERENCES users(id),
            booking_id UUID REFERENCES event_bookings(id),
            scanned_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            scan_success BOOLEAN NOT NULL DEFAULT TRUE
        );
        CREATE INDEX IF NOT EXISTS ix_qr_code_scans_qr_code_id ON qr_code_scans(qr_code_id);
        CREATE INDEX IF NOT EXISTS ix_qr_code_scans_user_id ON qr_code_scans(user_id);
    """)

    # Create cron_tasks table (idempotent work queue)
    op.execute("""
        CREATE TABLE IF NOT EXISTS cron_tasks (
            id UUID PRIMARY KEY,
            task_type crontasktype NOT NULL,
            event_id UUID NOT NULL REFERENCES events(id),
            user_id UUID REFERENCES users(id),
            idempotency_key VARCHAR(255) NOT NULL,
            status crontaskstatus NOT NULL DEFAULT 'PENDING',
            run_at TIMESTAMP NOT NULL,
            claimed_at TIMESTAMP,
            processed_at TIMESTAMP,
            error_message VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE UNIQUE INDEX IF NOT EXISTS ix_cron_tasks_idempotency_key ON cron_tasks(idempotency_key);
        CREATE INDEX IF NOT EXISTS ix_cron_tasks_task_type ON cron_tasks(task_type);
        CREATE INDEX IF NOT EXISTS ix_cron_tasks_event_id ON cron_tasks(event_id);
        CREATE INDEX IF NOT EXISTS ix_cron_tasks_user_id ON cron_tasks(user_id);
        CREATE INDEX IF NOT EXISTS ix_cron_tasks_status ON cron_tasks(status);
        CREATE INDEX IF NOT EXISTS ix_cron_tasks_run_at ON cron_tasks(run_at);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS certificates (
            id UUID PRIMARY KEY,
            event_id UUID NOT NULL REFERENCES events(id),
            user_id UUID NOT NULL REFERENCES users(id),
            booking_id UUID REFERENCES event_bookings(id),
            template_id UUID NOT NULL REFERENCES certificate_templates(id),
            friendly_id VARCHAR(40) NOT NULL,
            certificate_url VARCHAR(500) NOT NULL,
            certificate_data JSON,
            generated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            generated_by UUID,
            sent_via_email BOOLEAN NOT NULL DEFAULT FALSE,
            email_sent_at TIMESTAMP,
            email_error_message VARCHAR,
            CONSTRAINT uq_certificates_event_user UNIQUE (event_id, user_id)
        );
        CREATE INDEX IF NOT EXISTS ix_certificates_event_id ON certificates(event_id);
        CREATE INDEX IF NOT EXISTS ix_certificates_user_id ON certificates(user_id);
        CREATE INDEX IF NOT EXISTS ix_certificates_friendly_id ON certificates(friendly_id);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS feedback_responses (
            id UUID PRIMARY KEY,
            event_id UUID NOT NULL REFERENCES events(id),
            user_id UUID NOT NULL REFERENCES users(id),
            booking_id UUID REFERENCES event_bookings(id),
            responses JSON,
            completed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_feedback_responses_event_id ON feedback_responses(event_id);
        CREATE INDEX IF NOT EXISTS ix_feedback_responses_user_id ON feedback_responses(user_id);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_deliveries (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id),
            event_id UUID REFERENCES events(id),
            kind notificationkind NOT NULL,
            recipient VARCHAR(255) NOT NULL,
            subject VARCHAR(200),
            message TEXT NOT NULL,
            status deliverystatus NOT NULL DEFAULT 'PENDING',
            sent_at TIMESTAMP,
            error_message VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            retry_count INTEGER NOT NULL DEFAULT 0,
            next_retry_at TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_notification_deliveries_user_id ON notification_deliveries(user_id);
        CREATE INDEX IF NOT EXISTS ix_notification_deliveries_event_id ON notification_deliveries(event_id);
        CREATE INDEX IF NOT EXISTS ix_notification_deliveries_status ON notification_deliveries(status);
        CREATE INDEX IF NOT EXISTS ix_notification_deliveries_next_retry_at ON notification_deliveries(next_retry_at);
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id UUID PRIMARY KEY,
            user_id UUID REFERENCES users(id),
            action VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id UUID,
            details JSON,
            timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_audit_logs_user_id ON audit_logs(user_id);
        CREATE INDEX IF NOT EXISTS ix_audit_logs_action ON audit_logs(action);
        CREATE INDEX IF NOT EXISTS ix_audit_logs_entity_type ON audit_logs(entity_type);
        CREATE INDEX IF NOT EXISTS ix_audit_logs_entity_id ON audit_logs(entity_id);
        CREATE INDEX IF NOT EXISTS ix_audit_logs_timestamp ON audit_logs(timestamp);
    """)


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.execute("DROP TABLE IF EXISTS audit_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS notification_deliveries CASCADE")
    op.execute("DROP TABLE IF EXISTS feedback_responses CASCADE")
    op.execute("DROP TABLE IF EXISTS certificates CASCADE")
    op.execute("DROP TABLE IF EXISTS cron_tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS qr_code_scans CASCADE")
    op.execute("DROP TABLE IF EXISTS event_qr_codes CASCADE")
    op.execute("DROP TABLE IF EXISTS event_bookings CASCADE")
    op.execute("DROP TABLE IF EXISTS events CASCADE")
    op.execute("DROP TABLE IF EXISTS certificate_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS deliverystatus")
    op.execute("DROP TYPE IF EXISTS notificationkind")
    op.execute("DROP TYPE IF EXISTS crontaskstatus")
    op.execute("DROP TYPE IF EXISTS crontasktype")
    op.execute("DROP TYPE IF EXISTS bookingstatus")
