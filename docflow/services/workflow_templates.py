"""
Workflow Template Resolver: document type + form data → ordered step specs.

Runs once, at document creation.  The output is a plain list of StepSpec; the
step sequencer numbers and persists it.

Rules:
  - step 1 is always the creator's own signature, assigned to the submitter
  - fixed base sequences per doc_type, with steps included conditionally on
    form flags (facility technical needs, named guest speaker)
  - a Supreme Student Council President submitter skips the council
    adviser / dean / president steps
  - every step after the final approval gate is documentation-only
  - communication letters route to the submitter-chosen recipients instead
  - a step whose signatory cannot be resolved is omitted, never left blocked
"""

import logging
from dataclasses import dataclass
from typing import Callable

from docflow.core.actor import Actor
from docflow.core.forms import CommunicationData, FacilityData, FormData

logger = logging.getLogger(__name__)


# ── Positions (directory ``position`` strings) ───────────────────────────────

CSC_PRESIDENT = "College Student Council President"
SSC_PRESIDENT = "Supreme Student Council President"
CSC_ADVISER = "College Student Council Adviser"
COLLEGE_DEAN = "College Dean"
OIC_OSA = "OIC-OSA"
CPAO = "CPAO"
VPAA = "VPAA"
EVP = "EVP"
TECHNICAL_SUPPORT = "Technical Support"
INFORMATION_OFFICE = "Information Office"
SECURITY_HEAD = "Security Head"
PPFO = "PPFO"
ACCOUNTING = "Accounting Personnel"

STUDENT_POSITIONS = frozenset({CSC_PRESIDENT, SSC_PRESIDENT})
DEPARTMENT_SCOPED_POSITIONS = frozenset({CSC_PRESIDENT, CSC_ADVISER, COLLEGE_DEAN})

# Submitter rank that makes subordinate council approvals redundant
TOP_COUNCIL_POSITION = SSC_PRESIDENT
BYPASSED_POSITIONS = frozenset({CSC_ADVISER, COLLEGE_DEAN, CSC_PRESIDENT, SSC_PRESIDENT})

CREATOR_STEP_NAME = "Creator Signature"


@dataclass(frozen=True)
class StepSpec:
    """One resolved step, before it is numbered and persisted."""

    name: str
    position: str
    assignee_id: int
    assignee_kind: str
    is_gating: bool = True
    is_fund_trigger: bool = False
    is_gate: bool = False


@dataclass(frozen=True)
class _TemplateStep:
    position: str
    condition: Callable[[FormData], bool] | None = None
    is_gate: bool = False
    is_fund_trigger: bool = False

    @property
    def name(self) -> str:
        return f"{self.position} Approval"

    @property
    def kind(self) -> str:
        return "student" if self.position in STUDENT_POSITIONS else "employee"


def _needs_technical_setup(form: FacilityData) -> bool:
    return form.needs_technical_setup


def _has_guest_speaker(form: FacilityData) -> bool:
    return form.has_guest_speaker


WORKFLOW_TEMPLATES: dict[str, tuple[_TemplateStep, ...]] = {
    "proposal": (
        _TemplateStep(CSC_ADVISER),
        _TemplateStep(SSC_PRESIDENT),
        _TemplateStep(COLLEGE_DEAN),
        _TemplateStep(OIC_OSA),
        _TemplateStep(CPAO),
        _TemplateStep(VPAA),
        _TemplateStep(EVP, is_gate=True),
    ),
    "saf": (
        _TemplateStep(CSC_ADVISER),
        _TemplateStep(SSC_PRESIDENT),
        _TemplateStep(COLLEGE_DEAN),
        _TemplateStep(OIC_OSA),
        _TemplateStep(VPAA),
        _TemplateStep(EVP, is_gate=True),
        _TemplateStep(ACCOUNTING, is_fund_trigger=True),
    ),
    "facility": (
        _TemplateStep(CSC_ADVISER),
        _TemplateStep(COLLEGE_DEAN),
        _TemplateStep(TECHNICAL_SUPPORT, condition=_needs_technical_setup),
        _TemplateStep(INFORMATION_OFFICE, condition=_has_guest_speaker),
        _TemplateStep(SECURITY_HEAD, condition=_has_guest_speaker),
        _TemplateStep(OIC_OSA),
        _TemplateStep(EVP, is_gate=True),
        _TemplateStep(PPFO),
    ),
}


def is_bypass_submitter(submitter: Actor) -> bool:
    return submitter.position == TOP_COUNCIL_POSITION


def _creator_spec(submitter: Actor) -> StepSpec:
    return StepSpec(
        name=CREATOR_STEP_NAME,
        position=submitter.position,
        assignee_id=submitter.id,
        assignee_kind=submitter.role,
    )


def _fixed_steps(doc_type: str, form: FormData, submitter: Actor, directory) -> list[StepSpec]:
    bypass = is_bypass_submitter(submitter)
    specs: list[StepSpec] = []
    for tmpl in WORKFLOW_TEMPLATES[doc_type]:
        if tmpl.condition is not None and not tmpl.condition(form):
            continue
        if bypass and tmpl.position in BYPASSED_POSITIONS:
            continue
        department = form.department if tmpl.position in DEPARTMENT_SCOPED_POSITIONS else None
        signatory = directory.resolve(tmpl.kind, tmpl.position, department)
        if signatory is None:
            logger.warning(
                "Omitting unassignable step %r (department=%r)", tmpl.name, department,
                extra={"event_type": "step_omitted"},
            )
            continue
        specs.append(StepSpec(
            name=tmpl.name,
            position=tmpl.position,
            assignee_id=signatory.id,
            assignee_kind=signatory.kind,
            is_fund_trigger=tmpl.is_fund_trigger,
            is_gate=tmpl.is_gate,
        ))
    return specs


def _communication_steps(form: CommunicationData, directory) -> list[StepSpec]:
    specs: list[StepSpec] = []
    for label, recipients in (("Noted By", form.noted_by), ("Approved By", form.approved_by)):
        for recipient in recipients:
            signatory = directory.get(recipient.kind, recipient.id)
            if signatory is None or not signatory.is_active:
                logger.warning(
                    "Omitting %s step for unknown %s id=%s", label, recipient.kind, recipient.id,
                    extra={"event_type": "step_omitted"},
                )
                continue
            specs.append(StepSpec(
                name=label,
                position=signatory.position,
                assignee_id=signatory.id,
                assignee_kind=signatory.kind,
            ))
    return specs


def _demote_after_gate(specs: list[StepSpec]) -> list[StepSpec]:
    """Mark every step after the gate as documentation-only.

    When the gate step itself was omitted nothing is demoted.
    """
    gate_index = next((i for i, s in enumerate(specs) if s.is_gate), None)
    if gate_index is None:
        return specs
    return [
        s if i <= gate_index else StepSpec(
            name=s.name,
            position=s.position,
            assignee_id=s.assignee_id,
            assignee_kind=s.assignee_kind,
            is_gating=False,
            is_fund_trigger=s.is_fund_trigger,
        )
        for i, s in enumerate(specs)
    ]


def resolve_workflow(doc_type: str, form: FormData, submitter: Actor, directory) -> list[StepSpec]:
    """Build the ordered step list for a new document.

    ``directory`` needs ``resolve(kind, position, department)`` and
    ``get(kind, id)``; see ``SignatoryDirectory``.
    """
    if doc_type == "communication":
        routed = _communication_steps(form, directory)
    else:
        routed = _demote_after_gate(_fixed_steps(doc_type, form, submitter, directory))
    return [_creator_spec(submitter), *routed]
