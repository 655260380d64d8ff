"""
Student Allocated Funds Blueprint.

Endpoints:
    GET  /api/v1/funds                               balances + ledger, newest first
    PUT  /api/v1/funds/<department_id>               { initial_amount }
    POST /api/v1/funds/<department_id>/ledger        { type: add|deduct, amount, description? }

Reads are open to any signed-in actor; writes need an admin or an
Accounting Personnel actor.
"""

import logging

from flask import Blueprint, jsonify, request

from docflow.blueprints import register_error_handlers
from docflow.middleware.actor import require_actor
from docflow.services import ledger_service
from docflow.services.audit_service import actor_ref, record_audit_event
from docflow.utils.errors import E, api_error
from docflow.utils.helpers import parse_amount

logger = logging.getLogger(__name__)

fund_bp = Blueprint("funds", __name__, url_prefix="/api/v1/funds")
register_error_handlers(fund_bp)


def _require_fund_manager():
    actor, err = require_actor()
    if err:
        return None, err
    if not actor.can_manage_funds:
        return None, api_error(E.FORBIDDEN, "Only administrators or accounting personnel can change funds")
    return actor, None


def _amount_from(body, field):
    try:
        return parse_amount(body.get(field)), None
    except ValueError:
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be a non-negative amount",
                               details={field: "invalid"})


@fund_bp.route("", methods=["GET"])
def list_funds():
    _actor, err = require_actor()
    if err:
        return err
    return jsonify(ledger_service.list_funds()), 200


@fund_bp.route("/<path:department_id>", methods=["PUT"])
def set_fund_balance(department_id):
    actor, err = _require_fund_manager()
    if err:
        return err
    body = request.get_json(silent=True) or {}
    if body.get("initial_amount") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "initial_amount is required")
    amount, err = _amount_from(body, "initial_amount")
    if err:
        return err

    balance = ledger_service.set_fund_balance(department_id, amount)
    record_audit_event(actor, "fund.set_balance", category="fund",
                       details={"initial_amount": str(amount)},
                       target_id=department_id, target_type="fund_balance")
    return jsonify(balance.to_dict()), 200


@fund_bp.route("/<path:department_id>/ledger", methods=["POST"])
def post_ledger_entry(department_id):
    actor, err = _require_fund_manager()
    if err:
        return err
    body = request.get_json(silent=True) or {}
    entry_type = (body.get("type") or "").strip().lower()
    if not entry_type:
        return api_error(E.VALIDATION_REQUIRED, "type is required")
    amount, err = _amount_from(body, "amount")
    if err:
        return err

    entry = ledger_service.post_manual_entry(
        department_id, entry_type, amount, body.get("description", ""), actor_ref(actor),
    )
    record_audit_event(actor, "fund.manual_entry", category="fund",
                       details={"type": entry_type, "amount": str(amount), "department_id": department_id},
                       target_id=entry.id, target_type="fund_ledger")
    return jsonify(entry.to_dict()), 201
