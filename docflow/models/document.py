"""
Document Approval Workflow Engine
Document domain model.

Models:
    - Document: a submitted form travelling through its approval chain
    - DocumentStep: one ordered sign-off in that chain

All steps of a document are inserted together when the document is created;
afterwards only the signing coordinator and the timeout sweeper mutate them.
"""

from datetime import datetime, timezone

from docflow.models import db
from docflow.utils.helpers import iso_or_none


# ── Constants ────────────────────────────────────────────────────────────────

DOC_TYPES = ("proposal", "saf", "facility", "communication")

DOCUMENT_STATUSES = {"submitted", "in_progress", "on_hold", "approved", "rejected"}
TERMINAL_DOCUMENT_STATUSES = {"approved", "rejected"}

STEP_STATUSES = {"queued", "pending", "completed", "skipped", "rejected", "expired"}
# A lower-order step in one of these states never blocks a later step
DONE_STEP_STATUSES = frozenset({"completed", "skipped"})

SIGNATORY_KINDS = {"student", "employee"}

DOCUMENTATION_SUFFIX = " (for documentation)"


def _now():
    return datetime.now(timezone.utc)


class Document(db.Model):
    """
    A routed document.

    Business rules:
    - status == approved  iff every step is completed or skipped
    - status == rejected  iff some step is rejected
    - otherwise submitted / in_progress / on_hold while steps remain open
    - (submitter_id, submitter_kind) identifies the owner; students and
      employees have separate id spaces
    """

    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    doc_type = db.Column(
        db.String(20), nullable=False, index=True,
        comment="proposal | saf | facility | communication",
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(20), nullable=False, default="submitted", index=True,
        comment="submitted | in_progress | on_hold | approved | rejected",
    )

    submitter_id = db.Column(db.Integer, nullable=False, index=True)
    submitter_kind = db.Column(db.String(20), nullable=False, default="student")
    submitter_position = db.Column(db.String(100), default="")
    department = db.Column(db.String(150), default="", index=True)

    form_data = db.Column(db.JSON, default=dict, comment="Typed payload, shape selected by doc_type")
    file_path = db.Column(db.String(500), nullable=True, comment="Rendered artifact reference")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    steps = db.relationship(
        "DocumentStep",
        back_populates="document",
        order_by="DocumentStep.step_order",
        cascade="all, delete-orphan",
        lazy="select",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    def is_submitted_by(self, actor) -> bool:
        return actor.is_identity(self.submitter_id, self.submitter_kind)

    @property
    def current_step(self):
        """The pending step, or None when nothing is awaiting action."""
        return next((s for s in self.steps if s.status == "pending"), None)

    def progress(self) -> dict:
        done = sum(1 for s in self.steps if s.status in DONE_STEP_STATUSES)
        total = len(self.steps)
        current = self.current_step
        return {
            "completed_steps": done,
            "total_steps": total,
            "percent": round(100 * done / total) if total else 0,
            "current_step": current.display_name if current else None,
        }

    def to_dict(self, include_steps=False, directory=None) -> dict:
        d = {
            "id": self.id,
            "doc_type": self.doc_type,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "submitter_id": self.submitter_id,
            "submitter_kind": self.submitter_kind,
            "department": self.department,
            "form_data": self.form_data or {},
            "file_path": self.file_path,
            "progress": self.progress(),
            "created_at": iso_or_none(self.created_at),
            "updated_at": iso_or_none(self.updated_at),
        }
        if directory is not None:
            d["submitter_name"] = directory.display_name(self.submitter_kind, self.submitter_id)
        if include_steps:
            d["steps"] = [s.to_dict(directory=directory) for s in self.steps]
        return d

    def __repr__(self):
        return f"<Document #{self.id} {self.doc_type} [{self.status}]>"


class DocumentStep(db.Model):
    """
    One required sign-off.

    ``is_gating`` is False for documentation-only steps that follow the final
    approval gate; they are still sequenced and hierarchy-checked.
    ``is_fund_trigger`` marks the step whose completion posts fund deductions.
    """

    __tablename__ = "document_steps"
    __table_args__ = (
        db.UniqueConstraint("document_id", "step_order", name="uq_step_document_order"),
        db.Index("ix_step_assignee_status", "assignee_id", "assignee_kind", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_order = db.Column(db.Integer, nullable=False, comment="1-based, unique per document")
    name = db.Column(db.String(200), nullable=False)
    position = db.Column(db.String(100), default="", comment="Directory position the step was resolved from")

    assignee_id = db.Column(db.Integer, nullable=True)
    assignee_kind = db.Column(db.String(20), nullable=True, comment="student | employee")

    status = db.Column(
        db.String(20), nullable=False, default="queued", index=True,
        comment="queued | pending | completed | skipped | rejected | expired",
    )
    is_gating = db.Column(db.Boolean, nullable=False, default=True)
    is_fund_trigger = db.Column(db.Boolean, nullable=False, default=False)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expiry_annotation = db.Column(db.String(300), nullable=True)

    note = db.Column(db.Text, nullable=True)
    signature_ref = db.Column(db.String(500), nullable=True, comment="Opaque signature reference")

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    document = db.relationship("Document", back_populates="steps")

    def is_assigned_to(self, actor) -> bool:
        return actor.is_identity(self.assignee_id, self.assignee_kind)

    @property
    def display_name(self) -> str:
        if self.is_gating:
            return self.name
        return f"{self.name}{DOCUMENTATION_SUFFIX}"

    def to_dict(self, directory=None) -> dict:
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "step_order": self.step_order,
            "name": self.name,
            "display_name": self.display_name,
            "position": self.position,
            "assignee_id": self.assignee_id,
            "assignee_kind": self.assignee_kind,
            "status": self.status,
            "is_gating": self.is_gating,
            "is_fund_trigger": self.is_fund_trigger,
            "activated_at": iso_or_none(self.activated_at),
            "acted_at": iso_or_none(self.acted_at),
            "expired_at": iso_or_none(self.expired_at),
            "expiry_annotation": self.expiry_annotation,
            "note": self.note,
            "signature_ref": self.signature_ref,
        }
        if directory is not None:
            d["assignee_name"] = directory.display_name(self.assignee_kind, self.assignee_id)
        return d

    def __repr__(self):
        return f"<DocumentStep #{self.id} doc={self.document_id} order={self.step_order} [{self.status}]>"
