"""
Document Approval Workflow Engine
Notification Service.

Maps workflow transitions to notification records and decides which of
them leave the application.

  emit()     persists an in-app Notification inside the caller's transaction
  deliver()  after commit, emails the allow-listed reference types only

ESCALATED_REFERENCE_TYPES is the single place that decides external
delivery; everything else (progress updates, comments, on-hold notices)
stays in-app.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from docflow.core.exceptions import NotFoundError
from docflow.models import db
from docflow.models.notification import Notification
from docflow.services.email_service import EmailService

logger = logging.getLogger(__name__)


# ── Event catalogue ──────────────────────────────────────────────────────────

# Reference types that are also pushed to email
ESCALATED_REFERENCE_TYPES = frozenset({"pending_action", "document_approved", "document_rejected"})

# event_type → (reference_type, title template, message template)
EVENT_CATALOGUE = {
    "step_activated": (
        "pending_action",
        "Signature needed: {document_title}",
        "{step_name} is now waiting for your signature.",
    ),
    "document_resubmitted": (
        "pending_action",
        "Resubmitted for your signature: {document_title}",
        "The submitter restarted {step_name}; it is waiting for your signature again.",
    ),
    "document_signed": (
        "document_progress",
        "Progress on {document_title}",
        "{step_name} was signed.",
    ),
    "document_approved": (
        "document_approved",
        "Approved: {document_title}",
        "Your document has been fully approved.",
    ),
    "document_rejected": (
        "document_rejected",
        "Rejected: {document_title}",
        "Rejected at {step_name}. Reason: {reason}",
    ),
    "document_on_hold": (
        "document_on_hold",
        "On hold: {document_title}",
        "{step_name} was not acted on within {timeout_days} days. Resubmit to restart it.",
    ),
    "comment_added": (
        "comment_added",
        "New note on {document_title}",
        "A note was added at {step_name}.",
    ),
}


def should_escalate(reference_type: str) -> bool:
    return reference_type in ESCALATED_REFERENCE_TYPES


@dataclass
class NotificationEvent:
    """A persisted notification plus the context needed to email it later."""

    notification: Notification
    context: dict = field(default_factory=dict)

    @property
    def escalates(self) -> bool:
        return should_escalate(self.notification.reference_type)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Emit ──────────────────────────────────────────────────────────────

    @staticmethod
    def emit(event_type, *, recipient_id, recipient_kind, document, **context) -> NotificationEvent:
        """
        Persist one notification for ``event_type`` (flush only; the caller
        owns the transaction).
        """
        reference_type, title_tmpl, message_tmpl = EVENT_CATALOGUE[event_type]
        ctx = {
            "document_id": document.id,
            "document_title": document.title,
            "doc_type": document.doc_type,
            "step_name": "",
            "reason": "",
            **context,
        }
        notif = Notification(
            recipient_id=recipient_id,
            recipient_kind=recipient_kind,
            event_type=event_type,
            reference_type=reference_type,
            title=title_tmpl.format_map(ctx)[:300],
            message=message_tmpl.format_map(ctx),
            document_id=document.id,
        )
        db.session.add(notif)
        db.session.flush()
        return NotificationEvent(notification=notif, context=ctx)

    # ── Deliver ───────────────────────────────────────────────────────────

    @staticmethod
    def deliver(events, directory) -> int:
        """
        Email the escalated events.  Runs after the workflow commit; failures
        are logged and never raised.

        Returns:
            Number of emails handed to EmailService.
        """
        sent = 0
        for event in events:
            notif = event.notification
            if not event.escalates:
                continue
            try:
                to_email = directory.email_for(notif.recipient_kind, notif.recipient_id)
                if not to_email:
                    logger.info(
                        "No email address for %s:%s; %s stays in-app",
                        notif.recipient_kind, notif.recipient_id, notif.reference_type,
                        extra={"document_id": notif.document_id},
                    )
                    continue
                EmailService.send_from_template(
                    to_email=to_email,
                    to_name=directory.display_name(notif.recipient_kind, notif.recipient_id),
                    template_name=notif.reference_type,
                    context=event.context,
                    notification_id=notif.id,
                    document_id=notif.document_id,
                )
                db.session.commit()
                sent += 1
                logger.info(
                    "Escalated notification %s", notif.id,
                    extra={"document_id": notif.document_id, "reference_type": notif.reference_type,
                           "event_type": notif.event_type},
                )
            except Exception:
                db.session.rollback()
                logger.error(
                    "Delivery of notification %s failed", notif.id, exc_info=True,
                    extra={"document_id": notif.document_id},
                )
        return sent

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _recipient_filter(actor):
        return (Notification.recipient_id == actor.id) & (Notification.recipient_kind == actor.role)

    @staticmethod
    def list_for_recipient(actor, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for the actor, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter(NotificationService._recipient_filter(actor))
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(actor) -> int:
        stmt = select(func.count(Notification.id)).where(
            NotificationService._recipient_filter(actor), Notification.is_read.is_(False),
        )
        return db.session.execute(stmt).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, actor) -> Notification:
        notif = db.session.get(Notification, notification_id)
        if notif is None or (notif.recipient_id, notif.recipient_kind) != (actor.id, actor.role):
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(actor) -> int:
        now = datetime.now(timezone.utc)
        result = db.session.execute(
            update(Notification)
            .where(NotificationService._recipient_filter(actor), Notification.is_read.is_(False))
            .values(is_read=True, read_at=now)
        )
        db.session.commit()
        return result.rowcount
