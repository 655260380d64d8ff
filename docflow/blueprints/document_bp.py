"""
Document workflow Blueprint.

Endpoints:
    POST   /api/v1/documents                              CreateDocument
           Body: { "doc_type": "proposal|saf|facility|communication", "data": {...} }
    GET    /api/v1/documents/mine                         documents I submitted
    GET    /api/v1/documents/assigned?status=pending|all  documents awaiting me
    GET    /api/v1/documents/<id>                         detail with steps
    POST   /api/v1/documents/<id>/sign                    { step_id?, note?, signature_ref? }
    POST   /api/v1/documents/<id>/reject                  { step_id?, reason }
    POST   /api/v1/documents/<id>/resubmit
    PUT    /api/v1/documents/<id>/steps/<sid>/note        { note }
    DELETE /api/v1/documents/<id>

Layer contract:
    - Blueprint: resolve the actor, parse the body, call signing_service,
      shape the JSON response.
    - NO db.session calls here; every write is owned by the service layer.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from docflow.blueprints import register_error_handlers
from docflow.middleware.actor import require_actor
from docflow.services import signing_service
from docflow.services.signatory_directory import SignatoryDirectory
from docflow.services.timeout_sweeper import sweep_expired_steps
from docflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

document_bp = Blueprint("documents", __name__, url_prefix="/api/v1/documents")
register_error_handlers(document_bp)


def _optional_int(value, field):
    if value in (None, ""):
        return None, None
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer")


def _optional_text(body, field):
    value = body.get(field)
    if value is None:
        return None, None
    if not isinstance(value, str):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be a string")
    return value, None


@document_bp.before_request
def _inline_timeout_sweep():
    """Expire overdue steps before serving, when inline sweeping is enabled."""
    if not current_app.config.get("TIMEOUT_SWEEP_INLINE"):
        return None
    try:
        sweep_expired_steps()
    except Exception:
        logger.exception("Inline timeout sweep failed")
    return None


# ── Create & read ──────────────────────────────────────────────────────────────


@document_bp.route("", methods=["POST"])
def create_document():
    actor, err = require_actor()
    if err:
        return err

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    doc_type, err = _optional_text(body, "doc_type")
    if err:
        return err
    doc_type = (doc_type or "").strip().lower()
    if not doc_type:
        return api_error(E.VALIDATION_REQUIRED, "doc_type is required")

    directory = SignatoryDirectory()
    doc = signing_service.create_document(doc_type, body.get("data"), actor, directory)
    return jsonify(doc.to_dict(include_steps=True, directory=directory)), 201


@document_bp.route("/mine", methods=["GET"])
def my_documents():
    actor, err = require_actor()
    if err:
        return err
    items = signing_service.get_my_documents(actor)
    return jsonify({"items": items, "total": len(items)}), 200


@document_bp.route("/assigned", methods=["GET"])
def assigned_documents():
    actor, err = require_actor()
    if err:
        return err
    status = request.args.get("status", "pending")
    items = signing_service.get_assigned_documents(actor, status=status)
    return jsonify({"items": items, "total": len(items)}), 200


@document_bp.route("/<int:document_id>", methods=["GET"])
def document_detail(document_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(signing_service.get_document_detail(document_id, actor)), 200


# ── Workflow actions ───────────────────────────────────────────────────────────


@document_bp.route("/<int:document_id>/sign", methods=["POST"])
def sign_document(document_id):
    actor, err = require_actor()
    if err:
        return err

    body = request.get_json(silent=True) or {}
    step_id, err = _optional_int(body.get("step_id"), "step_id")
    if err:
        return err
    note, err = _optional_text(body, "note")
    if err:
        return err
    signature_ref, err = _optional_text(body, "signature_ref")
    if err:
        return err

    directory = SignatoryDirectory()
    doc = signing_service.sign_step(
        document_id, actor,
        step_id=step_id,
        note=note,
        signature_ref=signature_ref,
        directory=directory,
    )
    return jsonify(doc.to_dict(include_steps=True, directory=directory)), 200


@document_bp.route("/<int:document_id>/reject", methods=["POST"])
def reject_document(document_id):
    actor, err = require_actor()
    if err:
        return err

    body = request.get_json(silent=True) or {}
    step_id, err = _optional_int(body.get("step_id"), "step_id")
    if err:
        return err
    reason, err = _optional_text(body, "reason")
    if err:
        return err
    reason = (reason or "").strip()
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "reason is required")

    directory = SignatoryDirectory()
    doc = signing_service.reject_step(document_id, actor, reason, step_id=step_id, directory=directory)
    return jsonify(doc.to_dict(include_steps=True, directory=directory)), 200


@document_bp.route("/<int:document_id>/resubmit", methods=["POST"])
def resubmit_document(document_id):
    actor, err = require_actor()
    if err:
        return err
    directory = SignatoryDirectory()
    doc = signing_service.resubmit_document(document_id, actor, directory)
    return jsonify(doc.to_dict(include_steps=True, directory=directory)), 200


@document_bp.route("/<int:document_id>/steps/<int:step_id>/note", methods=["PUT"])
def update_step_note(document_id, step_id):
    actor, err = require_actor()
    if err:
        return err
    body = request.get_json(silent=True) or {}
    if "note" not in body:
        return api_error(E.VALIDATION_REQUIRED, "note is required")
    note, err = _optional_text(body, "note")
    if err:
        return err
    step = signing_service.update_step_note(document_id, step_id, actor, note or "")
    return jsonify(step.to_dict()), 200


@document_bp.route("/<int:document_id>", methods=["DELETE"])
def delete_document(document_id):
    actor, err = require_actor()
    if err:
        return err
    signing_service.delete_document(document_id, actor)
    return jsonify({"deleted": True, "id": document_id}), 200
