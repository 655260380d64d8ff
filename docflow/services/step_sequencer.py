"""
Step Sequencer: per-document step ordering and the step state machine.

States:  queued → pending → completed | rejected | expired
         expired → pending (resubmission only)

Ordering is enforced by an explicit hierarchy check over lower step orders,
not by the state machine alone: step 1 is seeded ``pending`` alongside the
``queued`` remainder, and a sign request may name any step id.

Every function here mutates ORM objects in the caller's session and never
commits; the signing coordinator and the timeout sweeper own transactions.
"""

import logging
from datetime import datetime, timezone

from docflow.core.exceptions import AuthorizationError, InvalidStateError, OutOfOrderError
from docflow.models.document import DONE_STEP_STATUSES, Document, DocumentStep

logger = logging.getLogger(__name__)


# action → {"from": allowed source states, "to": target state}
STEP_TRANSITIONS = {
    "activate": {"from": {"queued"}, "to": "pending"},
    "complete": {"from": {"pending"}, "to": "completed"},
    "reject": {"from": {"pending"}, "to": "rejected"},
    "expire": {"from": {"pending"}, "to": "expired"},
    "reopen": {"from": {"expired"}, "to": "pending"},
}


def validate_transition(step: DocumentStep, action: str) -> dict:
    """
    Validate whether an action is valid for the step's current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = STEP_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": step.status, "to": None,
                "reason": f"Unknown action: {action}"}
    if step.status not in rule["from"]:
        return {"valid": False, "from": step.status, "to": rule["to"],
                "reason": f"Cannot '{action}' a step that is '{step.status}'"}
    return {"valid": True, "from": step.status, "to": rule["to"], "reason": None}


def apply_transition(step: DocumentStep, action: str, now: datetime | None = None) -> DocumentStep:
    """Move ``step`` along ``action`` and stamp the matching timestamp."""
    result = validate_transition(step, action)
    if not result["valid"]:
        raise InvalidStateError(result["reason"])
    now = now or datetime.now(timezone.utc)
    step.status = result["to"]
    if action in ("activate", "reopen"):
        step.activated_at = now
        step.expired_at = None
        step.expiry_annotation = None
    elif action in ("complete", "reject"):
        step.acted_at = now
    elif action == "expire":
        step.expired_at = now
    return step


def build_steps(document: Document, specs, now: datetime | None = None) -> list[DocumentStep]:
    """Persist resolved specs as steps numbered 1..n; step 1 starts pending."""
    now = now or datetime.now(timezone.utc)
    steps = []
    for order, spec in enumerate(specs, start=1):
        step = DocumentStep(
            step_order=order,
            name=spec.name,
            position=spec.position or "",
            assignee_id=spec.assignee_id,
            assignee_kind=spec.assignee_kind,
            is_gating=spec.is_gating,
            is_fund_trigger=spec.is_fund_trigger,
            status="queued",
        )
        if order == 1:
            apply_transition(step, "activate", now)
        document.steps.append(step)
        steps.append(step)
    return steps


def blocking_orders(document: Document, step: DocumentStep) -> list[int]:
    """Orders of lower steps that are not completed or skipped."""
    return sorted(
        s.step_order for s in document.steps
        if s.step_order < step.step_order and s.status not in DONE_STEP_STATUSES
    )


def check_hierarchy(document: Document, step: DocumentStep) -> None:
    blocking = blocking_orders(document, step)
    if blocking:
        raise OutOfOrderError(step.step_order, blocking)


def resolve_target_step(document: Document, actor, step_id: int | None = None) -> DocumentStep:
    """The step ``actor`` is acting on.

    An explicit ``step_id`` must belong to the document and be assigned to
    the actor.  Without one, the actor's earliest pending step is used.
    """
    if step_id is not None:
        step = next((s for s in document.steps if s.id == step_id), None)
        if step is None or not step.is_assigned_to(actor):
            raise AuthorizationError("You are not assigned to this step")
        return step
    mine = [s for s in document.steps if s.status == "pending" and s.is_assigned_to(actor)]
    if not mine:
        raise AuthorizationError("You have no pending step on this document")
    return min(mine, key=lambda s: s.step_order)


def activate_next(document: Document, completed: DocumentStep, now: datetime | None = None) -> DocumentStep | None:
    """Activate the queued step immediately after ``completed``, if any."""
    following = [s for s in document.steps if s.step_order > completed.step_order]
    if not following:
        return None
    nxt = min(following, key=lambda s: s.step_order)
    if nxt.status != "queued":
        return None
    apply_transition(nxt, "activate", now)
    return nxt


def derive_status(document: Document) -> str:
    """Document status implied by its steps after a sign/reject/expire."""
    statuses = [s.status for s in document.steps]
    if any(s == "rejected" for s in statuses):
        return "rejected"
    if statuses and all(s in DONE_STEP_STATUSES for s in statuses):
        return "approved"
    if any(s == "expired" for s in statuses):
        return "on_hold"
    return "in_progress"
