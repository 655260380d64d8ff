"""
Document Approval Workflow Engine
Signatory directory model.

Models:
    - Signatory: a person who can be assigned an approval step
"""

from datetime import datetime, timezone

from docflow.models import db


class Signatory(db.Model):
    """
    Directory entry for a student officer or an employee.

    ``(id, kind)`` is the identity: student and employee ids are issued
    independently, so the same integer can name two different people.
    """

    __tablename__ = "signatories"

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    kind = db.Column(db.String(20), primary_key=True, comment="student | employee")
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    position = db.Column(db.String(100), nullable=False, index=True)
    department = db.Column(db.String(150), default="", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "name": self.full_name,
            "email": self.email,
            "position": self.position,
            "department": self.department,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Signatory {self.kind}:{self.id} {self.position}>"
