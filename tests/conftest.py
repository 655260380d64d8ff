"""
Shared pytest fixtures for the document workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - signatories: Seeded directory, one person per approval position
    - directory: SignatoryDirectory over the seeded rows
    - submitter / ssc_submitter / admin: acting users
"""

from datetime import datetime, timezone

import pytest

from docflow import create_app
from docflow.core.actor import Actor
from docflow.models import db as _db
from docflow.models.directory import Signatory
from docflow.services import signing_service
from docflow.services.signatory_directory import SignatoryDirectory
from docflow.services.workflow_templates import (
    ACCOUNTING,
    COLLEGE_DEAN,
    CPAO,
    CSC_ADVISER,
    CSC_PRESIDENT,
    EVP,
    INFORMATION_OFFICE,
    OIC_OSA,
    PPFO,
    SECURITY_HEAD,
    SSC_PRESIDENT,
    TECHNICAL_SUPPORT,
    VPAA,
)

DEPT = "College of Engineering"
OTHER_DEPT = "College of Nursing"

# (id, kind, first, last, position, department)
DIRECTORY_ROWS = [
    (1, "student", "Carla", "Reyes", CSC_PRESIDENT, DEPT),
    (2, "student", "Sam", "Lim", SSC_PRESIDENT, ""),
    (100, "student", "Nina", "Cruz", "Organization President", DEPT),
    (10, "employee", "Arturo", "Santos", CSC_ADVISER, DEPT),
    (11, "employee", "Lorna", "Dizon", COLLEGE_DEAN, DEPT),
    (12, "employee", "Ramon", "Garcia", OIC_OSA, ""),
    (13, "employee", "Bea", "Tan", CPAO, ""),
    (14, "employee", "Victor", "Uy", VPAA, ""),
    (15, "employee", "Elena", "Valdez", EVP, ""),
    (16, "employee", "Teo", "Manalo", TECHNICAL_SUPPORT, ""),
    (17, "employee", "Ines", "Ocampo", INFORMATION_OFFICE, ""),
    (18, "employee", "Sergio", "Hernandez", SECURITY_HEAD, ""),
    (19, "employee", "Paz", "Flores", PPFO, ""),
    (20, "employee", "Ana", "Cortez", ACCOUNTING, ""),
    (30, "employee", "Dario", "Navarro", COLLEGE_DEAN, OTHER_DEPT),
]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["ARTIFACT_FOLDER"] = str(tmp_path_factory.mktemp("artifacts"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Directory & actors ───────────────────────────────────────────────────


@pytest.fixture()
def signatories():
    """Seed one active signatory per position and return them keyed by (id, kind)."""
    rows = {}
    for person_id, kind, first, last, position, department in DIRECTORY_ROWS:
        entry = Signatory(
            id=person_id, kind=kind, first_name=first, last_name=last,
            email=f"{first.lower()}.{last.lower()}@school.test",
            position=position, department=department, is_active=True,
        )
        _db.session.add(entry)
        rows[(person_id, kind)] = entry
    _db.session.commit()
    return rows


@pytest.fixture()
def directory(signatories):
    return SignatoryDirectory()


@pytest.fixture()
def submitter():
    return Actor(id=100, role="student", position="Organization President", department=DEPT)


@pytest.fixture()
def ssc_submitter():
    return Actor(id=2, role="student", position=SSC_PRESIDENT, department=DEPT)


@pytest.fixture()
def admin():
    return Actor(id=1, role="admin", position="System Administrator")


# ── Helpers ──────────────────────────────────────────────────────────────


def assignee_of(step) -> Actor:
    """The actor that holds ``step``."""
    return Actor(id=step.assignee_id, role=step.assignee_kind, position=step.position)


def auth_headers(actor: Actor) -> dict:
    return {
        "X-User-Id": str(actor.id),
        "X-User-Role": actor.role,
        "X-User-Position": actor.position,
        "X-User-Department": actor.department,
    }


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def proposal_payload(**overrides):
    data = {
        "title": "Engineering Week 2026",
        "description": "Week-long exhibit of student projects",
        "event_date": "2026-11-20",
        "venue": "Main Gymnasium",
        "objectives": ["Showcase capstone projects", "Invite industry partners"],
        "budget": "15000.00",
    }
    data.update(overrides)
    return data


def saf_payload(**overrides):
    data = {
        "title": "Robotics Team Travel",
        "description": "Regional robotics competition",
        "implementation_date": "2026-12-01",
        "requested_ssc": "1000.00",
        "requested_csc": "500.00",
    }
    data.update(overrides)
    return data


def facility_payload(**overrides):
    data = {
        "title": "AVR Reservation",
        "event_name": "Thesis Defense Day",
        "event_date": "2026-11-25",
        "venue": "Audio-Visual Room",
        "guest_speaker": "N/A",
    }
    data.update(overrides)
    return data


def communication_payload(**overrides):
    data = {
        "title": "Request for Class Suspension",
        "body": "We request the suspension of afternoon classes for the event.",
        "letter_date": "2026-11-10",
        "noted_by": [],
        "approved_by": [{"id": 15, "kind": "employee"}],
    }
    data.update(overrides)
    return data


def sign_next(document, directory=None, **kwargs):
    """Sign the document's current pending step as its assignee."""
    step = document.current_step
    assert step is not None, f"{document!r} has no pending step"
    return signing_service.sign_step(document.id, assignee_of(step), directory=directory, **kwargs)


def sign_until(document, stop_before=None, directory=None):
    """Sign pending steps in order until ``stop_before`` (a step name) is pending or nothing is left."""
    while document.current_step is not None:
        if stop_before and document.current_step.name == stop_before:
            break
        document = sign_next(document, directory)
    return document
