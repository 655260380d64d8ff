"""
Bounded-retry transaction runner for workflow mutations.

Each sign / reject / resubmit / expire is one database transaction.  Lock
waits, deadlocks and serialization failures are retried with a short backoff
(TRANSACTION_MAX_ATTEMPTS, TRANSACTION_RETRY_BACKOFF); any other error rolls
back and propagates untouched.  When the retry budget runs out the caller
gets ``LockContentionError`` and nothing has been written.

Usage:
    from docflow.services.transactions import run_in_transaction

    outcome = run_in_transaction("sign", lambda: _sign_locked(doc_id, actor))
"""

import logging
import time

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from docflow.core.exceptions import LockContentionError, NotFoundError
from docflow.models import db
from docflow.models.document import Document, DocumentStep

logger = logging.getLogger(__name__)

_DEFAULT_MAX_ATTEMPTS = 3
_DEFAULT_BACKOFF_SECONDS = (0.1, 0.4)   # sleep[0] after 1st fail, sleep[1] after 2nd

# Substrings of driver messages that mean "try again", across MySQL,
# PostgreSQL and SQLite
_TRANSIENT_MARKERS = (
    "lock wait timeout",
    "deadlock",
    "database is locked",
    "could not serialize",
    "could not obtain lock",
    "lock timeout",
)


def is_transient(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    text = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _settings():
    try:
        cfg = current_app.config
    except RuntimeError:
        return _DEFAULT_MAX_ATTEMPTS, _DEFAULT_BACKOFF_SECONDS
    return (
        int(cfg.get("TRANSACTION_MAX_ATTEMPTS", _DEFAULT_MAX_ATTEMPTS)),
        tuple(cfg.get("TRANSACTION_RETRY_BACKOFF", _DEFAULT_BACKOFF_SECONDS)) or (0,),
    )


def run_in_transaction(operation: str, work, *, document_id=None):
    """Run ``work()`` and commit, retrying transient lock failures.

    ``work`` must do all of its reads inside the call so that every attempt
    starts from fresh state.  Its return value is passed through.
    """
    max_attempts, backoff = _settings()
    for attempt in range(max_attempts):
        try:
            result = work()
            db.session.commit()
            return result
        except OperationalError as exc:
            db.session.rollback()
            if not is_transient(exc):
                raise
            logger.warning(
                "%s hit lock contention attempt=%d/%d: %s",
                operation, attempt + 1, max_attempts, exc.orig if exc.orig else exc,
                extra={"document_id": document_id, "attempt": attempt + 1},
            )
            if attempt < max_attempts - 1:
                time.sleep(backoff[min(attempt, len(backoff) - 1)])
        except Exception:
            db.session.rollback()
            raise
    raise LockContentionError(operation, max_attempts)


def lock_document(document_id: int) -> Document:
    """Load a document with ``SELECT ... FOR UPDATE`` inside the current transaction."""
    stmt = (
        select(Document)
        .where(Document.id == document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    document = db.session.execute(stmt).scalar_one_or_none()
    if document is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    # Steps may have been loaded before the lock was taken
    db.session.expire(document, ["steps"])
    db.session.execute(
        select(DocumentStep)
        .where(DocumentStep.document_id == document_id)
        .execution_options(populate_existing=True)
    ).scalars().all()
    return document
