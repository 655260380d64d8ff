"""
Bounded retry of transient lock failures.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import proposal_payload
from docflow.core.exceptions import LockContentionError
from docflow.models import db
from docflow.models.document import Document
from docflow.models.notification import Notification
from docflow.services import signing_service
from docflow.services.transactions import is_transient, run_in_transaction


def _locked(message="database is locked"):
    return OperationalError("UPDATE documents SET ...", {}, Exception(message))


@pytest.mark.parametrize("message", [
    "database is locked",
    "Lock wait timeout exceeded; try restarting transaction",
    "Deadlock found when trying to get lock",
    "could not serialize access due to concurrent update",
    "canceling statement due to lock timeout",
])
def test_transient_markers(message):
    assert is_transient(_locked(message))


def test_other_errors_are_not_transient():
    assert not is_transient(_locked("no such table: documents"))
    assert not is_transient(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    assert not is_transient(ValueError("database is locked"))


def test_retries_then_succeeds():
    calls = []

    def work():
        calls.append(1)
        if len(calls) < 3:
            raise _locked()
        return "done"

    assert run_in_transaction("test", work) == "done"
    assert len(calls) == 3


def test_exhausted_retries_raise_lock_contention(app):
    calls = []

    def work():
        calls.append(1)
        raise _locked()

    with pytest.raises(LockContentionError):
        run_in_transaction("test", work)
    assert len(calls) == app.config["TRANSACTION_MAX_ATTEMPTS"]


def test_non_transient_errors_propagate_immediately():
    calls = []

    def work():
        calls.append(1)
        raise _locked("disk I/O error")

    with pytest.raises(OperationalError):
        run_in_transaction("test", work)
    assert len(calls) == 1


def test_contended_sign_leaves_no_partial_effects(monkeypatch, directory, submitter):
    doc = signing_service.create_document("proposal", proposal_payload(), submitter, directory)

    def always_locked(document_id):
        raise _locked()

    monkeypatch.setattr(signing_service, "lock_document", always_locked)
    with pytest.raises(LockContentionError):
        signing_service.sign_step(doc.id, submitter, directory=directory)

    db.session.expire_all()
    doc = db.session.get(Document, doc.id)
    assert doc.status == "submitted"
    assert doc.steps[0].status == "pending"
    assert Notification.query.count() == 0
