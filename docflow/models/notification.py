"""
Document Approval Workflow Engine
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from docflow.models import db
from docflow.utils.helpers import iso_or_none


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  Every event is persisted here;
    only allow-listed reference types are also delivered by email.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notification_recipient", "recipient_id", "recipient_kind", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, nullable=False)
    recipient_kind = db.Column(db.String(20), nullable=False, comment="student | employee")
    event_type = db.Column(db.String(40), nullable=False, comment="step_activated | document_approved | ...")
    reference_type = db.Column(db.String(40), nullable=False, comment="pending_action | document_rejected | ...")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "recipient_kind": self.recipient_kind,
            "event_type": self.event_type,
            "reference_type": self.reference_type,
            "title": self.title,
            "message": self.message,
            "document_id": self.document_id,
            "is_read": self.is_read,
            "read_at": iso_or_none(self.read_at),
            "created_at": iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
