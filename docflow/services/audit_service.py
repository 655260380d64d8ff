"""
Fire-and-forget audit recording.

Called after the workflow transaction has committed.  The audit row is
written in its own short transaction; a failure is logged and swallowed so
it can never undo or fail a committed workflow action.
"""

import logging

from docflow.models import db
from docflow.models.audit import write_audit

logger = logging.getLogger(__name__)


def actor_ref(actor) -> str:
    """``<role>:<id>`` label used in audit rows and ledger ``created_by``."""
    if actor is None:
        return "system"
    return f"{actor.role}:{actor.id}"


def record_audit_event(actor, action, category="document", details=None,
                       target_id=None, target_type="document", severity="info") -> None:
    try:
        write_audit(
            action=action,
            actor=actor_ref(actor),
            category=category,
            severity=severity,
            target_type=target_type,
            target_id=target_id,
            details=details,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning(
            "Audit write failed for %s on %s/%s", action, target_type, target_id,
            exc_info=True,
        )
