"""Shared fixtures: an app on in-memory SQLite plus small model factories.

Factories commit inside their own app context and hand back detached rows
with their columns loaded, so tests can read ``user.id`` freely while every
request still runs in a fresh context of its own.
"""

from datetime import timedelta

import pytest

from skilllink import create_app
from skilllink.extensions import db
from skilllink.models import Assignment, Cohort, CohortUser, Submission, User
from skilllink.models.assignment import PUBLISHED
from skilllink.models.cohort import MEMBER_FACILITATOR, MEMBER_STUDENT
from skilllink.models.common import utcnow
from skilllink.models.user import ADMIN, FACILITATOR, STUDENT
from skilllink.security import generate_access_code, generate_invite_token, issue_access_token
from skilllink.services.gamification import ensure_badge_catalog

PASSWORD = "password123"


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        db.create_all()
        ensure_badge_catalog()
        db.session.commit()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client(use_cookies=False)


def _save(app, obj):
    with app.app_context():
        db.session.add(obj)
        db.session.commit()
        db.session.refresh(obj)
        return obj


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def make(role=STUDENT, email=None, name=None, password=PASSWORD, active=True):
        counter["n"] += 1
        u = User(email=email or f"{role.lower()}{counter['n']}@example.com",
                 name=name or f"{role.title()} {counter['n']}", role=role,
                 is_active_flag=active)
        u.set_password(password)
        if role == FACILITATOR:
            u.access_code = generate_access_code()
        return _save(app, u)

    return make


@pytest.fixture
def admin(make_user):
    return make_user(ADMIN, email="admin@example.com", name="Ada Admin")


@pytest.fixture
def facilitator(make_user):
    return make_user(FACILITATOR, email="fac@example.com", name="Fay Facilitator")


@pytest.fixture
def student(make_user):
    return make_user(STUDENT, email="stu@example.com", name="Sam Student")


@pytest.fixture
def make_cohort(app):
    def make(owner, name="Cohort A", students=(), facilitators=(), active=True, days=60):
        now = utcnow()
        c = Cohort(name=name, description="A cohort", start_date=now - timedelta(days=1),
                   end_date=now + timedelta(days=days), created_by_id=owner.id,
                   student_invite_link=generate_invite_token(),
                   facilitator_invite_link=generate_invite_token(), is_active=active)
        c = _save(app, c)
        with app.app_context():
            for f in facilitators:
                db.session.add(CohortUser(cohort_id=c.id, user_id=f.id, role=MEMBER_FACILITATOR))
            for s in students:
                db.session.add(CohortUser(cohort_id=c.id, user_id=s.id, role=MEMBER_STUDENT))
            db.session.commit()
        return c

    return make


@pytest.fixture
def cohort(make_cohort, facilitator, student):
    return make_cohort(facilitator, students=[student], facilitators=[facilitator])


@pytest.fixture
def make_assignment(app):
    def make(cohort, creator, title="Build a CLI", due_in=timedelta(days=3),
             max_score=100, status=PUBLISHED):
        a = Assignment(title=title, description="Do the thing", due_date=utcnow() + due_in,
                       max_score=max_score, status=status, cohort_id=cohort.id,
                       created_by_id=creator.id)
        return _save(app, a)

    return make


@pytest.fixture
def assignment(make_assignment, cohort, facilitator):
    return make_assignment(cohort, facilitator)


@pytest.fixture
def make_submission(app):
    def make(assignment, user, grade=None, submitted_at=None):
        s = Submission(assignment_id=assignment.id, user_id=user.id,
                       github_url="https://github.com/example/repo", files=[],
                       grade=grade, submitted_at=submitted_at or utcnow(),
                       graded_at=utcnow() if grade is not None else None)
        return _save(app, s)

    return make


@pytest.fixture
def auth_headers(app):
    def headers(user):
        with app.app_context():
            return {"Authorization": f"Bearer {issue_access_token(user)}"}

    return headers


@pytest.fixture
def refresh_cookie():
    def read(response):
        for header in response.headers.getlist("Set-Cookie"):
            if header.startswith("refreshToken="):
                return header.split(";", 1)[0].split("=", 1)[1]
        return None

    return read
