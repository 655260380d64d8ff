"""
Signatory Directory: resolves approval positions to concrete people.

The template resolver asks for "the <position> of <department>" and gets back
an active directory entry, or None when the seat is vacant.  Reads only; the
directory itself is maintained outside the workflow engine.

Usage:
    from docflow.services.signatory_directory import SignatoryDirectory

    directory = SignatoryDirectory()
    dean = directory.resolve("employee", "College Dean", "College of Engineering")
"""

import logging

from sqlalchemy import select

from docflow.models import db
from docflow.models.directory import Signatory

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


class SignatoryDirectory:
    """Database-backed directory over the ``signatories`` table."""

    def resolve(self, kind: str, position: str, department: str | None = None) -> Signatory | None:
        """First active (lowest id) signatory holding ``position``.

        When ``department`` is given the match is scoped to it.
        """
        stmt = select(Signatory).where(
            Signatory.kind == kind,
            Signatory.position == position,
            Signatory.is_active.is_(True),
        )
        if department:
            stmt = stmt.where(Signatory.department == department)
        match = db.session.execute(stmt.order_by(Signatory.id).limit(1)).scalar_one_or_none()
        if match is None:
            logger.info(
                "No active signatory for %s position=%r department=%r", kind, position, department,
            )
        return match

    def get(self, kind: str | None, person_id: int | None) -> Signatory | None:
        if kind is None or person_id is None:
            return None
        return db.session.get(Signatory, (person_id, kind))

    def display_name(self, kind: str | None, person_id: int | None) -> str:
        entry = self.get(kind, person_id)
        return entry.full_name if entry else UNKNOWN_NAME

    def email_for(self, kind: str | None, person_id: int | None) -> str | None:
        entry = self.get(kind, person_id)
        return entry.email if entry else None
