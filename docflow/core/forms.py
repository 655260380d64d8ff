"""
Typed form payloads, one dataclass per document type.

``documents.form_data`` is stored as JSON; ``parse_form_data`` turns a raw
payload (request body or stored JSON) into the dataclass selected by
``doc_type`` and raises ``ValidationError`` with per-field details.
``to_payload`` is the inverse used when persisting.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from typing import ClassVar, Union

from docflow.core.exceptions import ValidationError
from docflow.utils.helpers import is_placeholder, parse_amount, parse_date, parse_flag

RECIPIENT_KINDS = frozenset({"student", "employee"})

# SAF approval dates are written by the engine as steps complete; a submitter
# can never set them.
SAF_STAMPED_FIELDS = ("noted_date", "recommended_date", "approved_date", "release_date")


class _Reader:
    """Collects per-field errors while coercing a raw payload."""

    def __init__(self, raw: dict):
        self.raw = raw
        self.errors: dict[str, str] = {}

    def text(self, name, *, required=False, default=""):
        value = self.raw.get(name)
        if value is None:
            value = default
        if not isinstance(value, str):
            value = str(value)
        value = value.strip()
        if required and not value:
            self.errors[name] = "required"
        return value

    def date(self, name):
        try:
            return parse_date(self.raw.get(name))
        except ValueError:
            self.errors[name] = "must be a date (YYYY-MM-DD)"
            return None

    def amount(self, name):
        try:
            return parse_amount(self.raw.get(name))
        except ValueError:
            self.errors[name] = "must be a non-negative amount"
            return Decimal("0.00")

    def flag(self, name):
        return parse_flag(self.raw.get(name))

    def text_list(self, name):
        value = self.raw.get(name) or []
        if isinstance(value, str):
            value = [line for line in value.splitlines()]
        if not isinstance(value, list):
            self.errors[name] = "must be a list"
            return []
        return [str(v).strip() for v in value if str(v).strip()]

    def recipients(self, name):
        value = self.raw.get(name) or []
        if not isinstance(value, list):
            self.errors[name] = "must be a list of {id, kind}"
            return []
        result = []
        for idx, entry in enumerate(value):
            if not isinstance(entry, dict):
                self.errors[f"{name}[{idx}]"] = "must be an object"
                continue
            kind = str(entry.get("kind") or "employee").strip().lower()
            try:
                person_id = int(entry.get("id"))
            except (TypeError, ValueError):
                self.errors[f"{name}[{idx}].id"] = "must be an integer"
                continue
            if kind not in RECIPIENT_KINDS:
                self.errors[f"{name}[{idx}].kind"] = f"must be one of {sorted(RECIPIENT_KINDS)}"
                continue
            result.append(Recipient(id=person_id, kind=kind))
        return result

    def check(self):
        if self.errors:
            raise ValidationError("Invalid form data", details=self.errors)


@dataclass(frozen=True)
class Recipient:
    id: int
    kind: str = "employee"


@dataclass
class ProposalData:
    doc_type: ClassVar[str] = "proposal"

    title: str
    department: str
    description: str = ""
    event_date: date | None = None
    venue: str = ""
    objectives: list[str] = field(default_factory=list)
    budget: Decimal = Decimal("0.00")
    earliest_start_time: str = ""
    schedule_summary: str = ""

    @classmethod
    def from_payload(cls, raw: dict, department: str) -> "ProposalData":
        r = _Reader(raw)
        data = cls(
            title=r.text("title", required=True),
            department=r.text("department", default=department, required=True),
            description=r.text("description"),
            event_date=r.date("event_date"),
            venue=r.text("venue"),
            objectives=r.text_list("objectives"),
            budget=r.amount("budget"),
            earliest_start_time=r.text("earliest_start_time"),
            schedule_summary=r.text("schedule_summary"),
        )
        r.check()
        return data


@dataclass
class SafData:
    doc_type: ClassVar[str] = "saf"

    title: str
    department: str
    description: str = ""
    implementation_date: date | None = None
    requested_ssc: Decimal = Decimal("0.00")
    requested_csc: Decimal = Decimal("0.00")
    noted_date: date | None = None
    recommended_date: date | None = None
    approved_date: date | None = None
    release_date: date | None = None

    @classmethod
    def from_payload(cls, raw: dict, department: str) -> "SafData":
        r = _Reader(raw)
        data = cls(
            title=r.text("title", required=True),
            department=r.text("department", default=department, required=True),
            description=r.text("description"),
            implementation_date=r.date("implementation_date"),
            requested_ssc=r.amount("requested_ssc"),
            requested_csc=r.amount("requested_csc"),
            noted_date=r.date("noted_date"),
            recommended_date=r.date("recommended_date"),
            approved_date=r.date("approved_date"),
            release_date=r.date("release_date"),
        )
        if "requested_ssc" not in r.errors and "requested_csc" not in r.errors:
            if data.requested_ssc <= 0 and data.requested_csc <= 0:
                r.errors["requested_ssc"] = "at least one fund amount must be greater than zero"
        r.check()
        return data

    @property
    def total_requested(self) -> Decimal:
        return self.requested_ssc + self.requested_csc


@dataclass
class FacilityData:
    doc_type: ClassVar[str] = "facility"

    title: str
    department: str
    event_name: str = ""
    event_date: date | None = None
    venue: str = ""
    needs_sound_system: bool = False
    needs_projector: bool = False
    needs_technical_support: bool = False
    guest_speaker: str = ""

    @classmethod
    def from_payload(cls, raw: dict, department: str) -> "FacilityData":
        r = _Reader(raw)
        data = cls(
            title=r.text("title", required=True),
            department=r.text("department", default=department, required=True),
            event_name=r.text("event_name"),
            event_date=r.date("event_date"),
            venue=r.text("venue"),
            needs_sound_system=r.flag("needs_sound_system"),
            needs_projector=r.flag("needs_projector"),
            needs_technical_support=r.flag("needs_technical_support"),
            guest_speaker=r.text("guest_speaker"),
        )
        r.check()
        return data

    @property
    def needs_technical_setup(self) -> bool:
        return self.needs_sound_system or self.needs_projector or self.needs_technical_support

    @property
    def has_guest_speaker(self) -> bool:
        return not is_placeholder(self.guest_speaker)


@dataclass
class CommunicationData:
    doc_type: ClassVar[str] = "communication"

    title: str
    department: str
    body: str
    letter_date: date | None = None
    noted_by: list[Recipient] = field(default_factory=list)
    approved_by: list[Recipient] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: dict, department: str) -> "CommunicationData":
        r = _Reader(raw)
        data = cls(
            title=r.text("title", required=True),
            department=r.text("department", default=department, required=True),
            body=r.text("body", required=True),
            letter_date=r.date("letter_date"),
            noted_by=r.recipients("noted_by"),
            approved_by=r.recipients("approved_by"),
        )
        if not data.noted_by and not data.approved_by and "noted_by" not in r.errors:
            r.errors["approved_by"] = "at least one noted_by or approved_by recipient is required"
        r.check()
        return data


FormData = Union[ProposalData, SafData, FacilityData, CommunicationData]

FORM_TYPES: dict[str, type] = {
    cls.doc_type: cls for cls in (ProposalData, SafData, FacilityData, CommunicationData)
}


def parse_form_data(doc_type: str, raw, *, department: str = "") -> FormData:
    """Parse ``raw`` into the dataclass for ``doc_type``.

    ``department`` is the fallback when the payload carries none (normally
    the submitter's own department).
    """
    form_cls = FORM_TYPES.get(doc_type)
    if form_cls is None:
        raise ValidationError(
            f"doc_type must be one of {sorted(FORM_TYPES)}",
            details={"doc_type": "invalid"},
        )
    if not isinstance(raw, dict) or not raw:
        raise ValidationError("data must be a non-empty object", details={"data": "required"})
    return form_cls.from_payload(raw, department)


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Recipient):
        return {"id": value.id, "kind": value.kind}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def to_payload(form: FormData) -> dict:
    """Serialise a form dataclass for the JSON column."""
    return {f.name: _jsonable(getattr(form, f.name)) for f in fields(form)}
