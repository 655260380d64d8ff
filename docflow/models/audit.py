"""
Document Approval Workflow Engine
Audit domain model.

Models:
    - AuditLog: append-only audit trail for workflow events.
"""

import json
from datetime import datetime, timezone

from docflow.models import db
from docflow.utils.helpers import iso_or_none


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_SEVERITIES = {"info", "warning", "critical"}

AUDIT_CATEGORIES = {"document", "fund", "scheduler"}

AUDIT_ACTIONS = {
    "document.create",
    "document.sign",
    "document.reject",
    "document.resubmit",
    "document.expire",
    "document.delete",
    "document.note",
    "fund.deduct",
    "fund.set_balance",
    "fund.manual_entry",
    "scheduler.run",
}


class AuditLog(db.Model):
    """
    Immutable audit trail.

    One row per action.  ``details_json`` carries the structured payload
    (step ids, amounts, reasons).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_target", "target_type", "target_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    actor = db.Column(db.String(60), nullable=False, default="system", comment="<kind>:<id> or 'system'")
    action = db.Column(db.String(60), nullable=False, comment="document.sign | fund.deduct | ...")
    category = db.Column(db.String(30), nullable=False, default="document")
    severity = db.Column(db.String(20), nullable=False, default="info")

    target_type = db.Column(db.String(30), nullable=True)
    target_id = db.Column(db.String(36), nullable=True)

    details_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor": self.actor,
            "action": self.action,
            "category": self.category,
            "severity": self.severity,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "details": self.details,
            "timestamp": iso_or_none(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.target_type}/{self.target_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    action: str,
    actor: str = "system",
    category: str = "document",
    severity: str = "info",
    target_type: str | None = None,
    target_id=None,
    details: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = AuditLog(
        actor=actor,
        action=action,
        category=category,
        severity=severity,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details_json=json.dumps(details or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
