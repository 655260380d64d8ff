"""
Ledger Trigger & fund administration.

When the fund-trigger step of a SAF document completes, one deduction is
posted per nonzero requested category:

    SSC  → the council-wide "Supreme Student Council" fund
    CSC  → the fund of the document's college department

Idempotency: every automatic deduction carries ``[doc:<id>:<category>]`` in
its description and ``source="document"``.  A category that already has such
an entry for the same department is skipped, so a retried or re-entered
completion posts nothing new.  Both categories may land on the same
department (an SSC-department SAF) and still post one entry each.  Manual
entries never take part in the lookup.

Balance rows are changed with a single UPDATE ... SET used = used + x, so
concurrent approvals in one department never read-then-write.  A missing
row is inserted inside a savepoint; losing that insert race to another
transaction is harmless.
"""

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from docflow.core.exceptions import ValidationError
from docflow.models import db
from docflow.models.fund import (
    LEDGER_TYPES,
    SOURCE_DOCUMENT,
    SOURCE_MANUAL,
    SSC_FUND_DEPARTMENT,
    FundBalance,
    FundLedgerEntry,
)

logger = logging.getLogger(__name__)


def document_token(document_id: int, category: str) -> str:
    return f"[doc:{document_id}:{category}]"


def fund_categories(form) -> list[tuple[str, str, Decimal]]:
    """(label, department_id, amount) for every nonzero requested category."""
    categories = [
        ("SSC", SSC_FUND_DEPARTMENT, form.requested_ssc),
        ("CSC", form.department, form.requested_csc),
    ]
    return [(label, dept, amount) for label, dept, amount in categories if amount and amount > 0]


def has_posted_deduction(department_id: str, document_id: int, category: str) -> bool:
    stmt = select(FundLedgerEntry.id).where(
        FundLedgerEntry.department_id == department_id,
        FundLedgerEntry.type == "deduct",
        FundLedgerEntry.source == SOURCE_DOCUMENT,
        FundLedgerEntry.description.contains(document_token(document_id, category)),
    ).limit(1)
    return db.session.execute(stmt).first() is not None


def _find_balance(department_id: str):
    return db.session.get(FundBalance, department_id)


def _ensure_balance_row(department_id: str) -> None:
    if _find_balance(department_id) is not None:
        return
    try:
        with db.session.begin_nested():
            db.session.add(FundBalance(
                department_id=department_id,
                initial_amount=Decimal("0.00"),
                used_amount=Decimal("0.00"),
                current_balance=Decimal("0.00"),
            ))
            db.session.flush()
    except IntegrityError:
        logger.info("Fund balance row for %s was created concurrently", department_id)
        return
    logger.info("Created empty fund balance row for %s", department_id)


def _apply(department_id: str, entry_type: str, amount: Decimal) -> None:
    """Atomic balance change for one ledger movement."""
    _ensure_balance_row(department_id)
    if entry_type == "deduct":
        values = {
            "used_amount": FundBalance.used_amount + amount,
            "current_balance": FundBalance.current_balance - amount,
        }
    else:
        values = {
            "initial_amount": FundBalance.initial_amount + amount,
            "current_balance": FundBalance.current_balance + amount,
        }
    db.session.execute(
        update(FundBalance)
        .where(FundBalance.department_id == department_id)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )


def post_document_deductions(document, form, created_by: str = "system") -> list[FundLedgerEntry]:
    """
    Post the deductions for an approved SAF document.

    Runs inside the signing transaction (flush only).  Returns the entries
    actually posted; an empty list means everything was already recorded.
    """
    posted = []
    for label, department_id, amount in fund_categories(form):
        if has_posted_deduction(department_id, document.id, label):
            logger.info(
                "Skipping %s deduction for %s: already posted", label, department_id,
                extra={"document_id": document.id, "event_type": "ledger_skipped"},
            )
            continue
        _apply(department_id, "deduct", amount)
        entry = FundLedgerEntry(
            department_id=department_id,
            type="deduct",
            amount=amount,
            description=(
                f"{label} funds released for SAF '{document.title}' "
                f"{document_token(document.id, label)}"
            ),
            source=SOURCE_DOCUMENT,
            created_by=created_by,
        )
        db.session.add(entry)
        posted.append(entry)
        logger.info(
            "Posted %s deduction %s from %s", label, amount, department_id,
            extra={"document_id": document.id, "event_type": "ledger_posted"},
        )
    db.session.flush()
    return posted


# ── Fund administration ──────────────────────────────────────────────────────

def list_funds() -> dict:
    balances = db.session.execute(
        select(FundBalance).order_by(FundBalance.department_id)
    ).scalars().all()
    entries = db.session.execute(
        select(FundLedgerEntry).order_by(FundLedgerEntry.created_at.desc(), FundLedgerEntry.id.desc())
    ).scalars().all()
    return {
        "balances": [b.to_dict() for b in balances],
        "ledger": [e.to_dict() for e in entries],
    }


def set_fund_balance(department_id: str, initial_amount: Decimal) -> FundBalance:
    """Set the starting amount; used_amount is kept and current recomputed."""
    if not department_id:
        raise ValidationError("department_id is required", details={"department_id": "required"})
    _ensure_balance_row(department_id)
    db.session.execute(
        update(FundBalance)
        .where(FundBalance.department_id == department_id)
        .values(
            initial_amount=initial_amount,
            current_balance=initial_amount - FundBalance.used_amount,
        )
        .execution_options(synchronize_session="fetch")
    )
    db.session.commit()
    balance = db.session.get(FundBalance, department_id)
    db.session.refresh(balance)
    return balance


def post_manual_entry(department_id: str, entry_type: str, amount: Decimal,
                      description: str, created_by: str) -> FundLedgerEntry:
    if entry_type not in LEDGER_TYPES:
        raise ValidationError(
            f"type must be one of {sorted(LEDGER_TYPES)}", details={"type": "invalid"},
        )
    if amount <= 0:
        raise ValidationError("amount must be greater than zero", details={"amount": "invalid"})
    _apply(department_id, entry_type, amount)
    entry = FundLedgerEntry(
        department_id=department_id,
        type=entry_type,
        amount=amount,
        description=(description or "").strip() or f"Manual {entry_type}",
        source=SOURCE_MANUAL,
        created_by=created_by,
    )
    db.session.add(entry)
    db.session.commit()
    return entry
