# studyhub/models/loaders.py
"""
Named fetch functions.

Each returns a fully populated aggregate so services never trigger lazy
loads halfway through a state transition.
"""
from sqlalchemy.orm import selectinload

from studyhub import db
from studyhub.models.event import Enrollment, Event
from studyhub.models.study import Study


def load_event_with_enrollments(event_id, for_update=False):
    stmt = (
        db.select(Event)
        .where(Event.id == event_id)
        .options(
            selectinload(Event.enrollments).selectinload(Enrollment.account),
            selectinload(Event.study).selectinload(Study.managers),
        )
    )
    if for_update:
        # Row lock on the event plus a fresh read of its enrollment collection
        stmt = stmt.with_for_update(of=Event).execution_options(populate_existing=True)
    return db.session.execute(stmt).scalar_one_or_none()


def load_study_with_managers_and_members(study_id, for_update=False):
    stmt = (
        db.select(Study)
        .where(Study.id == study_id)
        .options(selectinload(Study.managers), selectinload(Study.members))
    )
    if for_update:
        stmt = stmt.with_for_update(of=Study).execution_options(populate_existing=True)
    return db.session.execute(stmt).scalar_one_or_none()


def load_study_with_tags_and_zones(study_id):
    stmt = (
        db.select(Study)
        .where(Study.id == study_id)
        .options(selectinload(Study.tags), selectinload(Study.zones))
    )
    return db.session.execute(stmt).scalar_one_or_none()


def load_enrollment_with_event_and_study(enrollment_id):
    stmt = (
        db.select(Enrollment)
        .where(Enrollment.id == enrollment_id)
        .options(
            selectinload(Enrollment.account),
            selectinload(Enrollment.event).selectinload(Event.study),
        )
    )
    return db.session.execute(stmt).scalar_one_or_none()


def load_study_by_path(path):
    stmt = (
        db.select(Study)
        .where(Study.path == path)
        .options(
            selectinload(Study.managers),
            selectinload(Study.members),
            selectinload(Study.tags),
            selectinload(Study.zones),
        )
    )
    return db.session.execute(stmt).scalar_one_or_none()
