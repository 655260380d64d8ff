"""
Document Approval Workflow Engine
Scheduling & outbound email models.

Models:
    - ScheduledJob: persisted job registry (run history + config)
    - EmailLog: outbound email audit trail
"""

from datetime import datetime, timezone

from docflow.models import db
from docflow.utils.helpers import iso_or_none


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUSES = {"active", "paused", "failed"}
EMAIL_STATUSES = {"queued", "sent", "failed", "logged"}


class ScheduledJob(db.Model):
    """
    Registry of background jobs.

    Tracks job configuration, last run time, and run counters.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Unique job identifier: step_timeout_sweep, ...")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="interval", comment="interval, manual")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": iso_or_none(self.last_run_at),
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every delivery attempt is logged here, including log-only sends when no
    SMTP server is configured.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    reference_type = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(20), default="queued", comment="queued, sent, failed, logged")
    error_message = db.Column(db.Text, nullable=True)

    notification_id = db.Column(db.Integer, nullable=True)
    document_id = db.Column(db.Integer, nullable=True, index=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "reference_type": self.reference_type,
            "status": self.status,
            "error_message": self.error_message,
            "notification_id": self.notification_id,
            "document_id": self.document_id,
            "sent_at": iso_or_none(self.sent_at),
            "created_at": iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} -> {self.recipient_email}>"
