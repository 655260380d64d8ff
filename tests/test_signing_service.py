"""
Signing coordinator: create, sign, reject, note, delete and the read models.

Uses shared fixtures from conftest.py: directory (seeded signatories),
submitter, ssc_submitter, admin, session (autouse rollback).
"""

from datetime import datetime, timezone

import pytest

from conftest import (
    DEPT,
    assignee_of,
    communication_payload,
    proposal_payload,
    saf_payload,
    sign_next,
    sign_until,
)
from docflow.core.actor import Actor
from docflow.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    OutOfOrderError,
    TemplateRenderError,
    ValidationError,
)
from docflow.models import db
from docflow.models.audit import AuditLog
from docflow.models.document import Document, DocumentStep
from docflow.models.notification import Notification
from docflow.services import signing_service
from docflow.services.workflow_templates import EVP, OIC_OSA

EVP_ACTOR = Actor(id=15, role="employee", position=EVP)
ADVISER = Actor(id=10, role="employee", position="College Student Council Adviser")
STRANGER = Actor(id=77, role="employee", position="Librarian")


def _pending(doc):
    return [s for s in doc.steps if s.status == "pending"]


@pytest.fixture()
def proposal(directory, submitter):
    return signing_service.create_document("proposal", proposal_payload(), submitter, directory)


@pytest.fixture()
def two_step(directory, submitter):
    """Communication letter with a single approver: creator + one signature."""
    return signing_service.create_document("communication", communication_payload(), submitter, directory)


# ═════════════════════════════════════════════════════════════════════════════
#  CreateDocument
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateDocument:
    def test_creates_steps_with_only_first_pending(self, proposal):
        assert proposal.status == "submitted"
        assert [s.step_order for s in proposal.steps] == list(range(1, 9))
        assert proposal.steps[0].status == "pending"
        assert all(s.status == "queued" for s in proposal.steps[1:])
        assert proposal.department == DEPT

    def test_persists_form_data_and_artifact(self, proposal):
        assert proposal.form_data["venue"] == "Main Gymnasium"
        assert proposal.form_data["budget"] == "15000.00"
        assert proposal.file_path == f"artifacts/proposal_{proposal.id}.md"

    def test_unknown_doc_type(self, directory, submitter):
        with pytest.raises(ValidationError):
            signing_service.create_document("memo", {"title": "x"}, submitter, directory)
        assert Document.query.count() == 0

    def test_missing_title(self, directory, submitter):
        with pytest.raises(ValidationError) as exc:
            signing_service.create_document("proposal", proposal_payload(title=""), submitter, directory)
        assert exc.value.details["title"] == "required"

    def test_saf_requires_a_positive_amount(self, directory, submitter):
        with pytest.raises(ValidationError) as exc:
            signing_service.create_document(
                "saf", saf_payload(requested_ssc="0", requested_csc=""), submitter, directory,
            )
        assert "requested_ssc" in exc.value.details

    def test_saf_approval_dates_cannot_be_preset(self, directory, submitter):
        doc = signing_service.create_document(
            "saf", saf_payload(approved_date="2026-01-01", release_date="2026-01-02"), submitter, directory,
        )
        assert doc.form_data["approved_date"] is None
        assert doc.form_data["release_date"] is None

    def test_render_failure_falls_back_to_placeholder(self, app, monkeypatch, directory, submitter):
        class BrokenRenderer:
            def render(self, doc_type, form, document_id):
                raise TemplateRenderError("template missing")

        monkeypatch.setitem(app.extensions, "docflow.renderer", BrokenRenderer())
        doc = signing_service.create_document("proposal", proposal_payload(), submitter, directory)
        assert doc.file_path == app.config["PLACEHOLDER_ARTIFACT"]
        assert doc.status == "submitted"

    def test_audit_row_written(self, proposal):
        row = AuditLog.query.filter_by(action="document.create").one()
        assert row.target_id == str(proposal.id)
        assert row.actor == "student:100"


# ═════════════════════════════════════════════════════════════════════════════
#  SignStep
# ═════════════════════════════════════════════════════════════════════════════

class TestSignStep:
    def test_two_signatures_approve_two_step_document(self, two_step, submitter, directory):
        doc = signing_service.sign_step(two_step.id, submitter, directory=directory)
        assert doc.status == "in_progress"
        doc = signing_service.sign_step(doc.id, EVP_ACTOR, directory=directory)
        assert doc.status == "approved"
        assert all(s.status == "completed" for s in doc.steps)

    def test_third_actor_cannot_sign_completed_step(self, two_step, submitter, directory):
        signing_service.sign_step(two_step.id, submitter, directory=directory)
        doc = signing_service.sign_step(two_step.id, EVP_ACTOR, directory=directory)
        done = doc.steps[1]
        with pytest.raises(AuthorizationError):
            signing_service.sign_step(doc.id, STRANGER, step_id=done.id, directory=directory)
        with pytest.raises(AuthorizationError):
            signing_service.sign_step(doc.id, EVP_ACTOR, step_id=done.id, directory=directory)
        with pytest.raises(AuthorizationError):
            signing_service.sign_step(doc.id, EVP_ACTOR, directory=directory)

    def test_out_of_order_signature_is_refused(self, proposal, directory):
        evp_step = next(s for s in proposal.steps if s.position == EVP)
        with pytest.raises(OutOfOrderError) as exc:
            signing_service.sign_step(proposal.id, EVP_ACTOR, step_id=evp_step.id, directory=directory)
        assert exc.value.blocking_orders == list(range(1, evp_step.step_order))
        db.session.expire_all()
        assert db.session.get(DocumentStep, evp_step.id).status == "queued"

    def test_assignee_of_queued_step_has_nothing_to_sign(self, proposal, directory):
        with pytest.raises(AuthorizationError):
            signing_service.sign_step(proposal.id, ADVISER, directory=directory)

    def test_exactly_one_pending_step_until_approved(self, proposal, directory):
        doc = proposal
        while doc.status != "approved":
            assert len(_pending(doc)) == 1
            completed_before = [s.step_order for s in doc.steps if s.status == "completed"]
            assert completed_before == list(range(1, len(completed_before) + 1))
            doc = sign_next(doc, directory)
        assert _pending(doc) == []
        assert doc.progress()["percent"] == 100

    def test_approved_iff_all_steps_completed(self, proposal, directory):
        doc = sign_until(proposal, stop_before="EVP Approval", directory=directory)
        assert doc.status == "in_progress"
        doc = sign_next(doc, directory)
        assert doc.status == "approved"

    def test_note_and_signature_reference_recorded(self, proposal, submitter, directory):
        doc = signing_service.sign_step(
            proposal.id, submitter, note="  Submitted for review ", signature_ref="sig://100/1",
            directory=directory,
        )
        first = doc.steps[0]
        assert first.note == "Submitted for review"
        assert first.signature_ref == "sig://100/1"
        assert first.acted_at is not None
        assert doc.steps[1].status == "pending"
        assert doc.steps[1].activated_at is not None

    def test_unknown_document(self, directory, submitter):
        with pytest.raises(NotFoundError):
            signing_service.sign_step(9999, submitter, directory=directory)

    def test_saf_steps_stamp_approval_dates(self, directory, submitter):
        doc = signing_service.create_document("saf", saf_payload(), submitter, directory)
        doc = sign_until(doc, stop_before=f"{OIC_OSA} Approval", directory=directory)
        assert doc.form_data["noted_date"] is None
        doc = sign_next(doc, directory)
        today = datetime.now(timezone.utc).date().isoformat()
        assert doc.form_data["noted_date"] == today
        assert doc.form_data["approved_date"] is None

    def test_audit_failure_does_not_undo_signature(self, monkeypatch, proposal, submitter, directory):
        def broken(**kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr("docflow.services.audit_service.write_audit", broken)
        doc = signing_service.sign_step(proposal.id, submitter, directory=directory)
        db.session.expire_all()
        assert db.session.get(Document, doc.id).status == "in_progress"


# ═════════════════════════════════════════════════════════════════════════════
#  RejectStep
# ═════════════════════════════════════════════════════════════════════════════

class TestRejectStep:
    def test_reject_is_terminal(self, proposal, submitter, directory):
        signing_service.sign_step(proposal.id, submitter, directory=directory)
        doc = signing_service.reject_step(proposal.id, ADVISER, "Budget is incomplete", directory=directory)
        assert doc.status == "rejected"
        rejected = doc.steps[1]
        assert rejected.status == "rejected"
        assert rejected.note == "Budget is incomplete"
        assert all(s.status == "queued" for s in doc.steps[2:])

    def test_no_signing_after_rejection(self, proposal, submitter, directory):
        signing_service.sign_step(proposal.id, submitter, directory=directory)
        doc = signing_service.reject_step(proposal.id, ADVISER, "No", directory=directory)
        assert doc.current_step is None
        with pytest.raises(AuthorizationError):
            signing_service.sign_step(doc.id, assignee_of(doc.steps[2]), directory=directory)

    def test_reason_required(self, proposal, submitter, directory):
        with pytest.raises(ValidationError):
            signing_service.reject_step(proposal.id, submitter, "   ", directory=directory)

    @pytest.mark.parametrize("call,field", [
        (lambda doc, actor, d: signing_service.reject_step(doc.id, actor, 404, directory=d), "reason"),
        (lambda doc, actor, d: signing_service.sign_step(doc.id, actor, note=5, directory=d), "note"),
        (lambda doc, actor, d: signing_service.sign_step(doc.id, actor, signature_ref=1, directory=d),
         "signature_ref"),
        (lambda doc, actor, d: signing_service.update_step_note(doc.id, doc.steps[0].id, actor, 3), "note"),
    ])
    def test_non_string_text_is_a_validation_error(self, proposal, submitter, directory, call, field):
        with pytest.raises(ValidationError) as exc:
            call(proposal, submitter, directory)
        assert exc.value.details == {field: "must be a string"}
        db.session.expire_all()
        assert proposal.steps[0].status == "pending"
        assert proposal.steps[0].note is None

    def test_only_assignee_can_reject(self, proposal, directory):
        with pytest.raises(AuthorizationError):
            signing_service.reject_step(proposal.id, STRANGER, "No", directory=directory)

    def test_reject_out_of_order(self, proposal, directory):
        evp_step = next(s for s in proposal.steps if s.position == EVP)
        with pytest.raises(OutOfOrderError):
            signing_service.reject_step(proposal.id, EVP_ACTOR, "No", step_id=evp_step.id, directory=directory)


# ═════════════════════════════════════════════════════════════════════════════
#  UpdateStepNote
# ═════════════════════════════════════════════════════════════════════════════

class TestUpdateStepNote:
    def test_assignee_edits_note_in_any_status(self, proposal, submitter, directory):
        doc = signing_service.sign_step(proposal.id, submitter, directory=directory)
        step = signing_service.update_step_note(doc.id, doc.steps[0].id, submitter, "Corrected venue")
        assert step.note == "Corrected venue"
        assert step.status == "completed"

    def test_other_actor_cannot_edit(self, proposal):
        with pytest.raises(AuthorizationError):
            signing_service.update_step_note(proposal.id, proposal.steps[0].id, STRANGER, "x")

    def test_unknown_step(self, proposal, submitter):
        with pytest.raises(NotFoundError):
            signing_service.update_step_note(proposal.id, 9999, submitter, "x")

    def test_note_by_signatory_notifies_submitter(self, proposal, submitter, directory):
        signing_service.sign_step(proposal.id, submitter, directory=directory)
        signing_service.update_step_note(proposal.id, proposal.steps[1].id, ADVISER, "Please attach budget")
        notif = Notification.query.filter_by(event_type="comment_added").one()
        assert (notif.recipient_id, notif.recipient_kind) == (100, "student")


# ═════════════════════════════════════════════════════════════════════════════
#  DeleteDocument
# ═════════════════════════════════════════════════════════════════════════════

class TestDeleteDocument:
    def test_submitter_deletes_untouched_document(self, proposal, submitter):
        doc_id = proposal.id
        signing_service.delete_document(doc_id, submitter)
        assert db.session.get(Document, doc_id) is None
        assert DocumentStep.query.filter_by(document_id=doc_id).count() == 0

    def test_creator_signature_alone_does_not_block_delete(self, proposal, submitter, directory):
        signing_service.sign_step(proposal.id, submitter, directory=directory)
        signing_service.delete_document(proposal.id, submitter)
        assert Document.query.count() == 0

    def test_blocked_once_an_approver_signed(self, proposal, submitter, directory):
        doc = sign_next(proposal, directory)
        sign_next(doc, directory)
        with pytest.raises(InvalidStateError):
            signing_service.delete_document(proposal.id, submitter)

    def test_only_submitter_can_delete(self, proposal):
        with pytest.raises(AuthorizationError):
            signing_service.delete_document(proposal.id, STRANGER)


# ═════════════════════════════════════════════════════════════════════════════
#  Queries
# ═════════════════════════════════════════════════════════════════════════════

class TestQueries:
    def test_detail_visible_to_submitter_assignee_and_admin(self, proposal, submitter, admin, directory):
        for actor in (submitter, ADVISER, admin):
            detail = signing_service.get_document_detail(proposal.id, actor, directory)
            assert detail["id"] == proposal.id
            assert len(detail["steps"]) == 8

    def test_detail_hidden_from_strangers(self, proposal, directory):
        with pytest.raises(AuthorizationError):
            signing_service.get_document_detail(proposal.id, STRANGER, directory)

    def test_detail_resolves_names_with_unknown_fallback(self, directory):
        outsider = Actor(id=500, role="student", position="Member", department=DEPT)
        doc = signing_service.create_document("communication", communication_payload(), outsider, directory)
        detail = signing_service.get_document_detail(doc.id, outsider, directory)
        assert detail["submitter_name"] == "Unknown"
        assert detail["steps"][1]["assignee_name"] == "Elena Valdez"

    def test_assigned_pending_lists_only_current_steps(self, proposal, submitter, directory):
        assert signing_service.get_assigned_documents(ADVISER) == []
        signing_service.sign_step(proposal.id, submitter, directory=directory)
        items = signing_service.get_assigned_documents(ADVISER)
        assert [i["id"] for i in items] == [proposal.id]
        assert items[0]["my_step"]["status"] == "pending"

    def test_assigned_all_includes_finished_steps(self, proposal, submitter, directory):
        signing_service.sign_step(proposal.id, submitter, directory=directory)
        signing_service.sign_step(proposal.id, ADVISER, directory=directory)
        assert signing_service.get_assigned_documents(ADVISER, status="pending") == []
        items = signing_service.get_assigned_documents(ADVISER, status="all")
        assert items[0]["my_step"]["status"] == "completed"

    def test_assigned_rejects_unknown_filter(self):
        with pytest.raises(ValidationError):
            signing_service.get_assigned_documents(ADVISER, status="everything")

    def test_my_documents(self, proposal, two_step, submitter):
        items = signing_service.get_my_documents(submitter)
        assert {i["id"] for i in items} == {proposal.id, two_step.id}
        assert signing_service.get_my_documents(STRANGER) == []
