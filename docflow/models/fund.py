"""
Document Approval Workflow Engine
Student Allocated Funds models.

Models:
    - FundBalance: one budget row per department (or council)
    - FundLedgerEntry: append-only add / deduct history
"""

from datetime import datetime, timezone
from decimal import Decimal

from docflow.models import db
from docflow.utils.helpers import iso_or_none


# ── Constants ────────────────────────────────────────────────────────────────

LEDGER_TYPES = {"add", "deduct"}

# Automatic SAF deductions vs. entries posted by an administrator
SOURCE_DOCUMENT = "document"
SOURCE_MANUAL = "manual"

# Council-wide fund; college funds use the college department name
SSC_FUND_DEPARTMENT = "Supreme Student Council"


def _money(value):
    return str(value if value is not None else Decimal("0.00"))


class FundBalance(db.Model):
    """
    Running balance for a department.

    Invariant: current_balance == initial_amount - used_amount.  Mutations go
    through single UPDATE statements (see ledger_service) so concurrent
    approvals never read-then-write.
    """

    __tablename__ = "fund_balances"

    department_id = db.Column(db.String(150), primary_key=True)
    initial_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    used_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "department_id": self.department_id,
            "initial_amount": _money(self.initial_amount),
            "used_amount": _money(self.used_amount),
            "current_balance": _money(self.current_balance),
            "updated_at": iso_or_none(self.updated_at),
        }

    def __repr__(self):
        return f"<FundBalance {self.department_id}: {self.current_balance}>"


class FundLedgerEntry(db.Model):
    """
    One movement of money.

    Deductions triggered by an approved SAF have source "document" and embed
    ``[doc:<id>:<category>]`` in the description; that token is how a repeated
    trigger is detected.
    """

    __tablename__ = "fund_ledger"
    __table_args__ = (
        db.Index("ix_ledger_department_type", "department_id", "type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.String(150), nullable=False)
    type = db.Column(db.String(10), nullable=False, comment="add | deduct")
    source = db.Column(db.String(20), nullable=False, default=SOURCE_MANUAL, comment="document | manual")
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    description = db.Column(db.String(500), nullable=False, default="")
    created_by = db.Column(db.String(60), nullable=True, comment="<kind>:<id> of the actor, or 'system'")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "department_id": self.department_id,
            "type": self.type,
            "source": self.source,
            "amount": _money(self.amount),
            "description": self.description,
            "created_by": self.created_by,
            "created_at": iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<FundLedgerEntry {self.id}: {self.type} {self.amount} {self.department_id}>"
