"""
Shared pytest fixtures for the Casework Review Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_project / add_member: identity factories
    - make_record_type / make_record / make_incident: content factories
    - auth: bearer-token headers for a user
"""

import functools

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import Project, ProjectMember, User
from app.models.record import FieldDefinition, Incident, Record, RecordType
from app.services.jwt_service import generate_access_token
from app.utils.crypto import hash_password

TEST_PASSWORD = "Pass1234!"


@functools.lru_cache(maxsize=1)
def _password_hash():
    return hash_password(TEST_PASSWORD)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
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


# ── Identity factories ───────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role="user", **kwargs):
        counter["n"] += 1
        kwargs.setdefault("email", f"{role}{counter['n']}@casework.test")
        kwargs.setdefault("full_name", f"{role.capitalize()} {counter['n']}")
        kwargs.setdefault("password_hash", _password_hash())
        kwargs.setdefault("status", "active")
        user = User(role=role, **kwargs)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_project(make_user):
    counter = {"n": 0}

    def _make(owner=None, **kwargs):
        counter["n"] += 1
        owner = owner or make_user("user")
        kwargs.setdefault("slug", f"project-{counter['n']}")
        kwargs.setdefault("name", f"Project {counter['n']}")
        project = Project(created_by=owner.id, **kwargs)
        _db.session.add(project)
        _db.session.commit()
        return project

    return _make


@pytest.fixture()
def add_member():
    def _add(project, user, role="viewer", **kwargs):
        member = ProjectMember(project_id=project.id, user_id=user.id, role=role, **kwargs)
        _db.session.add(member)
        _db.session.commit()
        return member

    return _add


@pytest.fixture()
def auth():
    """Return a headers dict carrying a valid bearer token for *user*."""

    def _headers(user):
        token = generate_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Content factories ────────────────────────────────────────────────────


@pytest.fixture()
def make_record_type():
    def _make(project, slug="sighting", fields=None):
        rtype = RecordType(project_id=project.id, slug=slug, name=slug.capitalize())
        _db.session.add(rtype)
        _db.session.flush()
        if fields is None:
            fields = [
                {"slug": "title", "name": "Title", "field_type": "text", "is_required": True},
                {"slug": "count", "name": "Count", "field_type": "number"},
                {"slug": "category", "name": "Category", "field_type": "select",
                 "options": ["bird", "mammal", "other"]},
                {"slug": "tags", "name": "Tags", "field_type": "text", "is_array": True},
            ]
        for i, field in enumerate(fields):
            _db.session.add(FieldDefinition(record_type_id=rtype.id, sort_order=i, **field))
        _db.session.commit()
        return rtype

    return _make


@pytest.fixture()
def make_record():
    def _make(project, record_type, status="pending_review", data=None, **kwargs):
        record = Record(
            project_id=project.id,
            record_type_id=record_type.id,
            data=data if data is not None else {"title": "Heron at the lake"},
            status=status,
            **kwargs,
        )
        _db.session.add(record)
        _db.session.commit()
        return record

    return _make


@pytest.fixture()
def make_incident():
    counter = {"n": 0}

    def _make(status="pending", **kwargs):
        counter["n"] += 1
        kwargs.setdefault("title", f"Incident {counter['n']}")
        kwargs.setdefault("reference", f"INC-T{counter['n']:04d}")
        kwargs.setdefault("payload", {"location": "Harbour", "witnesses": 2})
        incident = Incident(status=status, **kwargs)
        _db.session.add(incident)
        _db.session.commit()
        return incident

    return _make
