"""
Signing Coordinator: the transactional unit of work behind every workflow
mutation.

Each public operation:
  1. validates input before any transaction opens (ValidationError)
  2. runs one transaction via ``run_in_transaction``: lock the document row,
     check eligibility and ordering, mutate steps + document, post ledger
     entries, persist in-app notifications
  3. after commit only: email the escalated notifications, write the audit
     row, re-render artifacts

Nothing in step 3 can undo or fail step 2, and nothing in step 3 runs when
step 2 rolled back.

Usage:
    from docflow.services import signing_service

    doc = signing_service.sign_step(document_id, actor, note="OK")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone

from sqlalchemy import select

from docflow.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NoExpiredStepError,
    NotFoundError,
    NotOnHoldError,
    ValidationError,
)
from docflow.core.forms import SAF_STAMPED_FIELDS, parse_form_data, to_payload
from docflow.models import db
from docflow.models.document import TERMINAL_DOCUMENT_STATUSES, Document, DocumentStep
from docflow.services import step_sequencer
from docflow.services.audit_service import actor_ref, record_audit_event
from docflow.services.ledger_service import post_document_deductions
from docflow.services.notification import NotificationService
from docflow.services.signatory_directory import SignatoryDirectory
from docflow.services.template_renderer import render_or_placeholder
from docflow.services.transactions import lock_document, run_in_transaction
from docflow.services.workflow_templates import (
    ACCOUNTING,
    CREATOR_STEP_NAME,
    EVP,
    OIC_OSA,
    VPAA,
    resolve_workflow,
)

logger = logging.getLogger(__name__)

# Completing a SAF step held by one of these positions stamps the date field
SAF_DATE_STAMPS = {
    OIC_OSA: "noted_date",
    VPAA: "recommended_date",
    EVP: "approved_date",
    ACCOUNTING: "release_date",
}


@dataclass
class _Outcome:
    """What a committed transaction leaves for the post-commit phase."""

    document_id: int
    action: str
    details: dict = field(default_factory=dict)
    events: list = field(default_factory=list)
    ledger_entries: list = field(default_factory=list)
    rerender: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _directory(directory):
    return directory if directory is not None else SignatoryDirectory()


def _check_text(**fields) -> None:
    """Reject non-string values for optional free-text fields."""
    errors = {
        name: "must be a string"
        for name, value in fields.items()
        if value is not None and not isinstance(value, str)
    }
    if errors:
        raise ValidationError(f"{', '.join(sorted(errors))} must be text", details=errors)


def _after_commit(outcome: _Outcome, actor, directory) -> Document:
    """Side effects that must only happen once the transaction is durable."""
    NotificationService.deliver(outcome.events, directory)
    record_audit_event(actor, outcome.action, details=outcome.details, target_id=outcome.document_id)
    for entry in outcome.ledger_entries:
        record_audit_event(
            actor, "fund.deduct", category="fund",
            details={"department_id": entry.department_id, "amount": str(entry.amount),
                     "document_id": outcome.document_id},
            target_id=entry.id, target_type="fund_ledger",
        )
    if outcome.rerender:
        _rerender_artifact(outcome.document_id)
    return db.session.get(Document, outcome.document_id)


def _rerender_artifact(document_id: int) -> None:
    try:
        doc = db.session.get(Document, document_id)
        form = parse_form_data(doc.doc_type, doc.form_data, department=doc.department)
        doc.file_path = render_or_placeholder(doc.doc_type, form, doc.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Artifact re-render failed", exc_info=True, extra={"document_id": document_id})


def _log_transition(message, document, step=None, actor=None, *args, **extra):
    logger.info(
        message, *args,
        extra={
            "document_id": document.id,
            "step_id": step.id if step else None,
            "step_order": step.step_order if step else None,
            "actor_id": actor.id if actor else None,
            **extra,
        },
    )


# ═════════════════════════════════════════════════════════════════════════════
#  CreateDocument
# ═════════════════════════════════════════════════════════════════════════════

def create_document(doc_type: str, raw_data, actor, directory=None) -> Document:
    """
    Validate the form, resolve the approval chain and insert the document
    with all of its steps in one transaction.

    Raises:
        ValidationError: bad doc_type or form fields
        LockContentionError: retries exhausted
    """
    _check_text(doc_type=doc_type)
    directory = _directory(directory)
    form = parse_form_data(doc_type, raw_data, department=actor.department)
    if doc_type == "saf":
        form = replace(form, **{name: None for name in SAF_STAMPED_FIELDS})
    specs = resolve_workflow(doc_type, form, actor, directory)

    def work():
        now = _now()
        doc = Document(
            doc_type=doc_type,
            title=form.title,
            description=getattr(form, "description", "") or "",
            status="submitted",
            submitter_id=actor.id,
            submitter_kind=actor.role,
            submitter_position=actor.position,
            department=form.department,
            form_data=to_payload(form),
            created_at=now,
        )
        db.session.add(doc)
        step_sequencer.build_steps(doc, specs, now)
        db.session.flush()
        doc.file_path = render_or_placeholder(doc_type, form, doc.id)
        _log_transition("Document created with %d steps", doc, None, actor, len(specs),
                        event_type="document_created")
        return _Outcome(
            document_id=doc.id,
            action="document.create",
            details={"doc_type": doc_type, "steps": [s.name for s in specs]},
        )

    outcome = run_in_transaction("create_document", work)
    return _after_commit(outcome, actor, directory)


# ═════════════════════════════════════════════════════════════════════════════
#  SignStep
# ═════════════════════════════════════════════════════════════════════════════

def _stamp_saf_date(doc: Document, step: DocumentStep, today: date) -> bool:
    field_name = SAF_DATE_STAMPS.get(step.position)
    if doc.doc_type != "saf" or field_name is None or step.name == CREATOR_STEP_NAME:
        return False
    data = dict(doc.form_data or {})
    data[field_name] = today.isoformat()
    doc.form_data = data
    return True


def _eligible_pending_step(doc: Document, actor, step_id: int | None) -> DocumentStep:
    """Resolve the target step and run the eligibility + hierarchy checks."""
    step = step_sequencer.resolve_target_step(doc, actor, step_id)
    step_sequencer.check_hierarchy(doc, step)
    if step.status != "pending":
        raise AuthorizationError(f"Step {step.step_order} is {step.status}, not awaiting your action")
    return step


def sign_step(document_id: int, actor, *, step_id: int | None = None, note: str | None = None,
              signature_ref: str | None = None, directory=None) -> Document:
    """
    Complete the actor's step, activate the next one and recompute the
    document status.  Posts fund deductions when the fund-trigger step of a
    SAF completes.

    Raises:
        ValidationError, NotFoundError, AuthorizationError, OutOfOrderError,
        LockContentionError
    """
    _check_text(note=note, signature_ref=signature_ref)
    directory = _directory(directory)

    def work():
        now = _now()
        doc = lock_document(document_id)
        step = _eligible_pending_step(doc, actor, step_id)

        step_sequencer.apply_transition(step, "complete", now)
        if note is not None:
            step.note = note.strip() or None
        if signature_ref:
            step.signature_ref = signature_ref
        nxt = step_sequencer.activate_next(doc, step, now)
        doc.status = step_sequencer.derive_status(doc)
        doc.updated_at = now

        outcome = _Outcome(
            document_id=doc.id,
            action="document.sign",
            details={"step_id": step.id, "step_order": step.step_order, "status": doc.status},
        )
        if doc.doc_type == "saf":
            outcome.rerender = _stamp_saf_date(doc, step, now.date())
            if step.is_fund_trigger:
                form = parse_form_data("saf", doc.form_data, department=doc.department)
                outcome.ledger_entries = post_document_deductions(doc, form, actor_ref(actor))

        if nxt is not None:
            outcome.events.append(NotificationService.emit(
                "step_activated",
                recipient_id=nxt.assignee_id, recipient_kind=nxt.assignee_kind,
                document=doc, step_name=nxt.display_name,
            ))
        if doc.status == "approved":
            outcome.events.append(NotificationService.emit(
                "document_approved",
                recipient_id=doc.submitter_id, recipient_kind=doc.submitter_kind, document=doc,
            ))
        elif not doc.is_submitted_by(actor):
            outcome.events.append(NotificationService.emit(
                "document_signed",
                recipient_id=doc.submitter_id, recipient_kind=doc.submitter_kind,
                document=doc, step_name=step.display_name,
            ))

        _log_transition("Step signed", doc, step, actor, event_type="step_completed")
        return outcome

    outcome = run_in_transaction("sign_step", work, document_id=document_id)
    return _after_commit(outcome, actor, directory)


# ═════════════════════════════════════════════════════════════════════════════
#  RejectStep
# ═════════════════════════════════════════════════════════════════════════════

def reject_step(document_id: int, actor, reason: str, *, step_id: int | None = None,
                directory=None) -> Document:
    """
    Reject the actor's step.  Terminal for the document: queued steps stay
    queued and nothing further is activated.
    """
    _check_text(reason=reason)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "required"})
    directory = _directory(directory)

    def work():
        now = _now()
        doc = lock_document(document_id)
        step = _eligible_pending_step(doc, actor, step_id)

        step_sequencer.apply_transition(step, "reject", now)
        step.note = reason
        doc.status = "rejected"
        doc.updated_at = now

        event = NotificationService.emit(
            "document_rejected",
            recipient_id=doc.submitter_id, recipient_kind=doc.submitter_kind,
            document=doc, step_name=step.display_name, reason=reason,
        )
        _log_transition("Step rejected", doc, step, actor, event_type="step_rejected")
        return _Outcome(
            document_id=doc.id,
            action="document.reject",
            details={"step_id": step.id, "step_order": step.step_order, "reason": reason},
            events=[event],
        )

    outcome = run_in_transaction("reject_step", work, document_id=document_id)
    return _after_commit(outcome, actor, directory)


# ═════════════════════════════════════════════════════════════════════════════
#  ResubmitDocument
# ═════════════════════════════════════════════════════════════════════════════

def resubmit_document(document_id: int, actor, directory=None) -> Document:
    """
    Restart the expired step of an on-hold document.

    Raises:
        AuthorizationError: actor is not the submitter
        NotOnHoldError: document is not on hold
        NoExpiredStepError: nothing to restart
    """
    directory = _directory(directory)

    def work():
        now = _now()
        doc = lock_document(document_id)
        if not doc.is_submitted_by(actor):
            raise AuthorizationError("Only the submitter can resubmit this document")
        if doc.status != "on_hold":
            raise NotOnHoldError(f"Document {doc.id} is {doc.status}, not on hold")
        expired = [s for s in doc.steps if s.status == "expired"]
        if not expired:
            raise NoExpiredStepError(f"Document {doc.id} has no expired step")
        step = min(expired, key=lambda s: s.step_order)

        step_sequencer.apply_transition(step, "reopen", now)
        doc.status = "submitted" if step.step_order == 1 else "in_progress"
        doc.updated_at = now

        event = NotificationService.emit(
            "document_resubmitted",
            recipient_id=step.assignee_id, recipient_kind=step.assignee_kind,
            document=doc, step_name=step.display_name,
        )
        _log_transition("Document resubmitted", doc, step, actor, event_type="document_resubmitted")
        return _Outcome(
            document_id=doc.id,
            action="document.resubmit",
            details={"step_id": step.id, "step_order": step.step_order, "status": doc.status},
            events=[event],
        )

    outcome = run_in_transaction("resubmit_document", work, document_id=document_id)
    return _after_commit(outcome, actor, directory)


# ═════════════════════════════════════════════════════════════════════════════
#  UpdateStepNote / DeleteDocument
# ═════════════════════════════════════════════════════════════════════════════

def update_step_note(document_id: int, step_id: int, actor, note: str, directory=None) -> DocumentStep:
    """The step's assignee edits the note on their own step, in any status."""
    if note is None:
        raise ValidationError("note is required", details={"note": "required"})
    _check_text(note=note)
    directory = _directory(directory)

    def work():
        doc = lock_document(document_id)
        step = next((s for s in doc.steps if s.id == step_id), None)
        if step is None:
            raise NotFoundError(resource="Step", resource_id=step_id)
        if not step.is_assigned_to(actor):
            raise AuthorizationError("Only the step's assignee can edit its note")
        step.note = note.strip() or None
        doc.updated_at = _now()

        outcome = _Outcome(document_id=doc.id, action="document.note", details={"step_id": step.id})
        if not doc.is_submitted_by(actor):
            outcome.events.append(NotificationService.emit(
                "comment_added",
                recipient_id=doc.submitter_id, recipient_kind=doc.submitter_kind,
                document=doc, step_name=step.display_name,
            ))
        return outcome

    outcome = run_in_transaction("update_step_note", work, document_id=document_id)
    _after_commit(outcome, actor, directory)
    return db.session.get(DocumentStep, step_id)


def delete_document(document_id: int, actor) -> None:
    """
    Hard-delete a document and its steps.

    Only the submitter may delete, and only while nobody but the submitter
    (step 1) has signed and the document is not approved or rejected.
    """

    def work():
        doc = lock_document(document_id)
        if not doc.is_submitted_by(actor):
            raise AuthorizationError("Only the submitter can delete this document")
        if doc.status in TERMINAL_DOCUMENT_STATUSES:
            raise InvalidStateError(f"Document {doc.id} is {doc.status} and can no longer be deleted")
        signed = [s.step_order for s in doc.steps if s.step_order > 1 and s.status == "completed"]
        if signed:
            raise InvalidStateError(f"Document {doc.id} already has approvals and can no longer be deleted")
        details = {"doc_type": doc.doc_type, "title": doc.title}
        db.session.delete(doc)
        logger.info("Document deleted", extra={"document_id": document_id, "actor_id": actor.id,
                                                "event_type": "document_deleted"})
        return _Outcome(document_id=document_id, action="document.delete", details=details)

    outcome = run_in_transaction("delete_document", work, document_id=document_id)
    record_audit_event(actor, outcome.action, details=outcome.details, target_id=document_id,
                       severity="warning")


# ═════════════════════════════════════════════════════════════════════════════
#  Queries
# ═════════════════════════════════════════════════════════════════════════════

def get_document(document_id: int) -> Document:
    doc = db.session.get(Document, document_id)
    if doc is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    return doc


def can_view(doc: Document, actor) -> bool:
    return actor.is_admin or doc.is_submitted_by(actor) or any(s.is_assigned_to(actor) for s in doc.steps)


def get_document_detail(document_id: int, actor, directory=None) -> dict:
    """Document with its steps and resolved names (``Unknown`` when absent)."""
    doc = get_document(document_id)
    if not can_view(doc, actor):
        raise AuthorizationError("You are neither the submitter nor a signatory of this document")
    return doc.to_dict(include_steps=True, directory=_directory(directory))


def get_assigned_documents(actor, status: str = "pending", directory=None) -> list[dict]:
    """
    Documents with a step assigned to the actor.

    ``status="pending"`` keeps only steps awaiting the actor now (oldest
    activation first); ``"all"`` includes every step they ever held.
    """
    if status not in ("pending", "all"):
        raise ValidationError("status must be 'pending' or 'all'", details={"status": "invalid"})
    directory = _directory(directory)
    stmt = select(DocumentStep).join(Document).where(
        DocumentStep.assignee_id == actor.id,
        DocumentStep.assignee_kind == actor.role,
    )
    if status == "pending":
        stmt = stmt.where(DocumentStep.status == "pending").order_by(
            DocumentStep.activated_at.asc(), DocumentStep.id.asc(),
        )
    else:
        stmt = stmt.order_by(Document.created_at.desc(), DocumentStep.step_order.asc())
    steps = db.session.execute(stmt).scalars().all()
    return [
        {**step.document.to_dict(directory=directory), "my_step": step.to_dict()}
        for step in steps
    ]


def get_my_documents(actor) -> list[dict]:
    docs = db.session.execute(
        select(Document)
        .where(Document.submitter_id == actor.id, Document.submitter_kind == actor.role)
        .order_by(Document.created_at.desc(), Document.id.desc())
    ).scalars().all()
    return [d.to_dict() for d in docs]

