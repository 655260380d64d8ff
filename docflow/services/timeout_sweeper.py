"""
Timeout Sweeper: expires pending steps that outlived the SLA.

Age of a pending step is measured from the later of:
  - the previous step's ``acted_at`` (document ``created_at`` for step 1)
  - the step's own ``activated_at`` (moves forward on resubmission)

A step whose age is at least STEP_TIMEOUT_DAYS is marked ``expired``, its
document goes ``on_hold`` and the submitter gets an in-app notice.

Each expiry is its own small transaction that re-reads the step under the
document lock, so the sweep is idempotent and can overlap with itself or
with a concurrent signature.

Runs as the ``step_timeout_sweep`` scheduler job; with TIMEOUT_SWEEP_INLINE
it also runs before workflow requests.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select

from docflow.core.exceptions import NotFoundError
from docflow.models import db
from docflow.models.document import Document, DocumentStep
from docflow.services import step_sequencer
from docflow.services.audit_service import record_audit_event
from docflow.services.notification import NotificationService
from docflow.services.signatory_directory import SignatoryDirectory
from docflow.services.transactions import lock_document, run_in_transaction
from docflow.utils.helpers import as_utc

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_DAYS = 5


def _timeout_days() -> int:
    try:
        return int(current_app.config.get("STEP_TIMEOUT_DAYS", _DEFAULT_TIMEOUT_DAYS))
    except RuntimeError:
        return _DEFAULT_TIMEOUT_DAYS


def reference_time(document: Document, step: DocumentStep) -> datetime:
    """When the clock started for ``step``."""
    previous = [s for s in document.steps if s.step_order < step.step_order]
    if previous:
        prev = max(previous, key=lambda s: s.step_order)
        started = as_utc(prev.acted_at) or as_utc(step.activated_at) or as_utc(document.created_at)
    else:
        started = as_utc(document.created_at)
    activated = as_utc(step.activated_at)
    if activated and activated > started:
        started = activated
    return started


def is_overdue(document: Document, step: DocumentStep, now: datetime, timeout_days: int) -> bool:
    return now - reference_time(document, step) >= timedelta(days=timeout_days)


def find_overdue_steps(now: datetime, timeout_days: int) -> list[tuple[int, int]]:
    """(document_id, step_id) of every pending step past the SLA."""
    pending = db.session.execute(
        select(DocumentStep).where(DocumentStep.status == "pending").order_by(DocumentStep.id)
    ).scalars().all()
    return [
        (step.document_id, step.id)
        for step in pending
        if is_overdue(step.document, step, now, timeout_days)
    ]


def _expire_step(document_id: int, step_id: int, now: datetime, timeout_days: int):
    def work():
        doc = lock_document(document_id)
        step = next((s for s in doc.steps if s.id == step_id), None)
        # Signed, rejected or already expired since the scan
        if step is None or step.status != "pending" or not is_overdue(doc, step, now, timeout_days):
            return None
        step_sequencer.apply_transition(step, "expire", now)
        step.expiry_annotation = f"Expired after {timeout_days} day(s) without action"
        doc.status = "on_hold"
        doc.updated_at = now
        event = NotificationService.emit(
            "document_on_hold",
            recipient_id=doc.submitter_id, recipient_kind=doc.submitter_kind,
            document=doc, step_name=step.display_name, timeout_days=timeout_days,
        )
        logger.info(
            "Step expired, document on hold",
            extra={"document_id": doc.id, "step_id": step.id, "step_order": step.step_order,
                   "event_type": "step_expired"},
        )
        return event

    return run_in_transaction("expire_step", work, document_id=document_id)


def sweep_expired_steps(now: datetime | None = None, timeout_days: int | None = None,
                        directory=None) -> dict:
    """
    Expire every overdue pending step.

    Returns:
        {"scanned": int, "expired": [document_id, ...], "failed": [document_id, ...]}
    """
    now = now or datetime.now(timezone.utc)
    timeout_days = timeout_days if timeout_days is not None else _timeout_days()
    directory = directory if directory is not None else SignatoryDirectory()

    candidates = find_overdue_steps(now, timeout_days)
    expired, failed = [], []
    for document_id, step_id in candidates:
        try:
            event = _expire_step(document_id, step_id, now, timeout_days)
        except NotFoundError:
            continue
        except Exception:
            logger.error("Expiring step %s failed", step_id, exc_info=True,
                         extra={"document_id": document_id, "step_id": step_id})
            failed.append(document_id)
            continue
        if event is None:
            continue
        expired.append(document_id)
        NotificationService.deliver([event], directory)
        record_audit_event(
            None, "document.expire", details={"step_id": step_id, "timeout_days": timeout_days},
            target_id=document_id, severity="warning",
        )

    if candidates:
        logger.info("Timeout sweep: %d candidate(s), %d expired, %d failed",
                    len(candidates), len(expired), len(failed))
    return {"scanned": len(candidates), "expired": expired, "failed": failed}
