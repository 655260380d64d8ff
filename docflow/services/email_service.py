"""
Document Approval Workflow Engine
Email Service.

External delivery channel for escalated notifications.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - MAIL_SERVER / MAIL_PORT / MAIL_USE_TLS / MAIL_USERNAME / MAIL_PASSWORD
    - Falls back to logging-only mode when MAIL_SERVER is unset
    - Every attempt is recorded in EmailLog

Configuration (env vars):
    MAIL_SERVER          SMTP host (default: None → log-only mode)
    MAIL_PORT            SMTP port (default: 587)
    MAIL_USE_TLS         Use TLS (default: true)
    MAIL_USERNAME        SMTP username
    MAIL_PASSWORD        SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any

from flask import current_app

from docflow.models import db
from docflow.models.scheduling import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates (keyed by notification reference_type)
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {header_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <p style="color: #334155;">Hello {recipient_name},</p>
        {body}
        <table style="width: 100%; border-collapse: collapse; margin: 12px 0; color: #334155;">
            <tr><td style="padding: 4px 0; width: 140px;">Document</td><td><strong>{document_title}</strong></td></tr>
            <tr><td style="padding: 4px 0;">Type</td><td>{doc_type_label}</td></tr>
            <tr><td style="padding: 4px 0;">Reference</td><td>#{document_id}</td></tr>
        </table>
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            Document approval system. This is an automated message.
        </p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "pending_action": {
        "subject": "Action required: {document_title}",
        "heading": "Document awaiting your signature",
        "header_color": "#1d4ed8",
        "body": "<p>A document has reached your step (<strong>{step_name}</strong>) and needs your review.</p>",
    },
    "document_approved": {
        "subject": "Approved: {document_title}",
        "heading": "Document fully approved",
        "header_color": "#15803d",
        "body": "<p>Every required signatory has signed your document.</p>",
    },
    "document_rejected": {
        "subject": "Rejected: {document_title}",
        "heading": "Document rejected",
        "header_color": "#b91c1c",
        "body": (
            "<p>Your document was rejected at <strong>{step_name}</strong>.</p>"
            "<p style=\"color: #64748b;\">Reason: {reason}</p>"
        ),
    },
}

DOC_TYPE_LABELS = {
    "proposal": "Project Proposal",
    "saf": "SAF Request",
    "facility": "Facility Request",
    "communication": "Communication Letter",
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        reference_type: str | None = None,
        notification_id: int | None = None,
        document_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        SMTP failures are recorded on the EmailLog and logged; they are never
        raised to the caller.  The caller commits.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            reference_type=reference_type,
            status="queued",
            notification_id=notification_id,
            document_id=document_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "logged"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (log-only): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
                extra={"document_id": document_id, "reference_type": reference_type},
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject,
                        extra={"document_id": document_id})
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc,
                         extra={"document_id": document_id})

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        notification_id: int | None = None,
        document_id: int | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict; unknown
        placeholders are left as-is.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        ctx = _SafeDict({k: escape(v) if isinstance(v, str) else v for k, v in context.items()})
        ctx.setdefault("recipient_name", to_name or "there")
        ctx.setdefault("doc_type_label", DOC_TYPE_LABELS.get(context.get("doc_type"), "Document"))
        ctx["heading"] = template["heading"]
        ctx["header_color"] = template["header_color"]
        ctx["body"] = template["body"].format_map(ctx)

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=template["subject"].format_map(ctx),
            html_body=_LAYOUT.format_map(ctx),
            template_name=template_name,
            reference_type=template_name,
            notification_id=notification_id,
            document_id=document_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
