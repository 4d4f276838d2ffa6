"""Pytest fixtures for StudyHub service tests.

Provides a session-wide `app` built on an in-memory SQLite database, a fresh
schema per test, and small factories for accounts, studies and events. Domain
events are delivered inline right after commit so tests can assert on their
side effects synchronously. E-mail sending is suppressed; use
`mail.record_messages()` to inspect outgoing mail.

Tests that race several threads against each other use `file_app`, a second
app on a file-backed SQLite database, and `run_in_threads`.
"""
from __future__ import annotations

import itertools
import threading
from datetime import timedelta

import pytest

from studyhub import bcrypt, create_app, db
from studyhub.errors import StudyHubError
from studyhub.models import Account, Event, EventType, Study
from studyhub.utils.clock import utcnow

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "testing-secret-key",
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "MAIL_SUPPRESS_SEND": True,
    "MAIL_DEFAULT_SENDER": "noreply@studyhub.test",
    "APP_HOST": "http://studyhub.test",
    # Run domain event handlers right after commit, no APScheduler jobs
    "EVENT_DISPATCH_MODE": "inline",
    "DISPATCH_MAX_RETRIES": 2,
    "DISPATCH_RETRY_DELAY": timedelta(seconds=0),
    "BCRYPT_LOG_ROUNDS": 4,
    "RECRUITING_COOLDOWN": timedelta(hours=1),
    "EMAIL_TOKEN_RESEND_COOLDOWN": timedelta(minutes=5),
}

###############################################################################
# Core application & database fixtures
###############################################################################

@pytest.fixture(scope="session")  # one app instance for the entire test session
def app():
    """Create and configure a new app instance for this test session."""
    app = create_app(dict(TEST_CONFIG))
    yield app


@pytest.fixture(autouse=True)
def database(app):
    """Fresh schema for every test, inside one application context."""
    with app.app_context():
        db.create_all()
        yield db
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """
    App on a file-backed SQLite database.

    Every thread opens its own connection, so concurrent operations really
    interleave. Seed data inside ``with file_app.app_context():``.
    """
    app = create_app({**TEST_CONFIG, "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'studyhub.db'}"})
    yield app
    with app.app_context():
        db.engine.dispose()


@pytest.fixture
def run_in_threads(file_app):
    """
    Call ``target(arg)`` once per arg, each on its own thread with its own
    application context, all released together from a barrier.

    Returns the outcomes in completion order: the target's return value, or
    the StudyHubError it raised.
    """
    def _run(target, args):
        barrier = threading.Barrier(len(args))
        outcomes = []

        def _worker(arg):
            with file_app.app_context():
                barrier.wait(timeout=10)
                try:
                    outcomes.append(target(arg))
                except StudyHubError as e:
                    outcomes.append(e)

        threads = [threading.Thread(target=_worker, args=(arg,)) for arg in args]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        assert len(outcomes) == len(args), "a worker thread died"
        return outcomes

    return _run


###############################################################################
# Factories
###############################################################################

@pytest.fixture
def make_account():
    counter = itertools.count(1)

    def _make(nickname=None, tags=(), zones=(), **fields):
        nickname = nickname or f"user{next(counter)}"
        account = Account(
            email=f"{nickname}@example.com",
            nickname=nickname,
            password=bcrypt.generate_password_hash("password123").decode("utf-8"),
            email_verified=True,
            **fields,
        )
        account.tags.extend(tags)
        account.zones.extend(zones)
        db.session.add(account)
        db.session.commit()
        return account

    return _make


@pytest.fixture
def make_study():
    counter = itertools.count(1)

    def _make(manager, path=None, published=True, closed=False, recruiting=False,
              members=(), tags=(), zones=(), title=None):
        n = next(counter)
        now = utcnow()
        study = Study(
            path=path or f"study-{n}",
            title=title or f"Study {n}",
            short_description="A study group",
            full_description="Meets weekly.",
            published=published,
            published_at=now if published else None,
            closed=closed,
            closed_at=now if closed else None,
            recruiting=recruiting,
        )
        study.managers.append(manager)
        study.members.extend(members)
        study.member_count = len(study.members)
        study.tags.extend(tags)
        study.zones.extend(zones)
        db.session.add(study)
        db.session.commit()
        return study

    return _make


@pytest.fixture
def make_event():
    def _make(study, creator, event_type=EventType.FCFS, limit=2, title="Weekly meetup",
              enrollment_open=True):
        now = utcnow()
        end_enrollment_at = now + timedelta(days=1) if enrollment_open else now - timedelta(hours=1)
        event = Event(
            study=study,
            created_by=creator,
            title=title,
            description="Bring a laptop",
            event_type=event_type,
            limit_of_enrollments=limit,
            created_at=now,
            end_enrollment_at=end_enrollment_at,
            start_at=now + timedelta(days=2),
            end_at=now + timedelta(days=2, hours=2),
        )
        db.session.add(event)
        db.session.commit()
        return event

    return _make


@pytest.fixture
def manager(make_account):
    return make_account("manager")


@pytest.fixture
def study(make_study, manager):
    return make_study(manager, path="python-study")
