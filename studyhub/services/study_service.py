# studyhub/services/study_service.py
"""
Study lifecycle: Draft -> Published -> Closed, plus the recruiting flag that
may only be toggled while published and not closed.

Every mutating operation runs inside one unit of work; the domain events it
collects are published only after the commit succeeds.
"""
import logging
import re

from flask import current_app
from sqlalchemy import or_

from studyhub import db
from studyhub.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    RecruitingCooldownError,
    ValidationError,
)
from studyhub.models import Study, Tag, Zone
from studyhub.models.loaders import load_study_by_path, load_study_with_managers_and_members
from studyhub.services.domain_events import StudyCreated, StudyUpdated
from studyhub.utils.clock import utcnow
from studyhub.utils.locks import KeyedLock, study_lock
from studyhub.utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

PATH_PATTERN = re.compile(r'^[a-z0-9_-]{2,20}$')
MAX_TITLE_LENGTH = 50
RECOMMENDATION_LIMIT = 9
DASHBOARD_LIMIT = 5


class StudyService:
    """Lifecycle operations and queries for studies"""

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    @staticmethod
    def validate_path(path, current=None):
        if not path or not PATH_PATTERN.match(path):
            raise ValidationError(
                'Path must be 2-20 characters of lowercase letters, digits, "-" or "_"',
                field='path',
            )
        if path != current and db.session.execute(
            db.select(Study.id).where(Study.path == path)
        ).first() is not None:
            raise ValidationError(f'Path "{path}" is already in use', field='path')

    @staticmethod
    def validate_title(title):
        if not title or not title.strip():
            raise ValidationError('Title is required', field='title')
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f'Title must be at most {MAX_TITLE_LENGTH} characters', field='title')

    @staticmethod
    def create_study(account, path, title, short_description='', full_description=''):
        """
        Create a draft study with ``account`` as its first manager.

        Raises:
            ValidationError: malformed or duplicate path, missing or overlong title
        """
        StudyService.validate_path(path)
        StudyService.validate_title(title)

        with unit_of_work():
            study = Study(
                path=path,
                title=title,
                short_description=short_description,
                full_description=full_description,
            )
            study.managers.append(account)
            db.session.add(study)

        logger.info(f"Study '{path}' created by {account.nickname}")
        return study

    @staticmethod
    def get_study(path):
        study = load_study_by_path(path)
        if study is None:
            raise NotFoundError(f'No study with path "{path}"')
        return study

    @staticmethod
    def get_study_to_update(account, path):
        study = StudyService.get_study(path)
        StudyService.check_manager(study, account)
        return study

    @staticmethod
    def check_manager(study, account):
        if not study.is_manager(account):
            logger.warning(f"{getattr(account, 'nickname', None)} is not a manager of study '{study.path}'")
            raise PermissionDeniedError(f'Only managers may change study "{study.path}"')

    @staticmethod
    def _lock_study(study_id):
        """Reload the study under its row lock so state checks see committed values."""
        study = load_study_with_managers_and_members(study_id, for_update=True)
        if study is None:
            raise NotFoundError(f'Study {study_id} no longer exists')
        return study

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def publish(study, account):
        study_id = study.id
        with study_lock(study_id), unit_of_work() as uow:
            study = StudyService._lock_study(study_id)
            StudyService.check_manager(study, account)
            if study.published or study.closed:
                raise InvalidStateError(f'Study "{study.path}" is already published or closed')

            study.published = True
            study.published_at = utcnow()
            db.session.flush()
            uow.collect(StudyCreated(study_id=study.id))

        logger.info(f"Study '{study.path}' published by {account.nickname}")
        return study

    @staticmethod
    def close(study, account):
        study_id = study.id
        with study_lock(study_id), unit_of_work() as uow:
            study = StudyService._lock_study(study_id)
            StudyService.check_manager(study, account)
            if not study.published or study.closed:
                raise InvalidStateError(f'Study "{study.path}" is not published or already closed')

            study.closed = True
            study.closed_at = utcnow()
            study.recruiting = False
            uow.collect(StudyUpdated(study_id=study.id, message='The study has been closed.'))

        logger.info(f"Study '{study.path}' closed by {account.nickname}")
        return study

    @staticmethod
    def is_eligible_to_change_recruiting(study, now=None):
        if not study.published or study.closed:
            return False
        if study.recruiting_updated_at is None:
            return True
        cooldown = current_app.config['RECRUITING_COOLDOWN']
        return study.recruiting_updated_at < (now or utcnow()) - cooldown

    @staticmethod
    def _set_recruiting(study, recruiting, account, message):
        study_id = study.id
        with study_lock(study_id), unit_of_work() as uow:
            study = StudyService._lock_study(study_id)
            StudyService.check_manager(study, account)
            now = utcnow()
            if not StudyService.is_eligible_to_change_recruiting(study, now):
                retry_after = None
                if study.published and not study.closed:
                    retry_after = study.recruiting_updated_at + current_app.config['RECRUITING_COOLDOWN']
                raise RecruitingCooldownError(
                    f'Recruiting of study "{study.path}" can only change while published, '
                    f'once per cooldown period',
                    retry_after=retry_after,
                )

            study.recruiting = recruiting
            study.recruiting_updated_at = now
            uow.collect(StudyUpdated(study_id=study.id, message=message))

        logger.info(f"Study '{study.path}' recruiting={recruiting}")
        return study

    @staticmethod
    def start_recruit(study, account):
        return StudyService._set_recruiting(study, True, account, 'Recruiting of members has started.')

    @staticmethod
    def stop_recruit(study, account):
        return StudyService._set_recruiting(study, False, account, 'Recruiting of members has stopped.')

    @staticmethod
    def is_removable(study):
        return study.is_removable

    @staticmethod
    def remove(study, account):
        study_id = study.id
        with study_lock(study_id), unit_of_work():
            study = StudyService._lock_study(study_id)
            StudyService.check_manager(study, account)
            if not study.is_removable:
                raise InvalidStateError(f'Study "{study.path}" has been published and cannot be removed')
            path = study.path
            db.session.delete(study)

        KeyedLock.get_or_create('study').discard(study_id)
        logger.info(f"Study '{path}' removed")

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    @staticmethod
    def is_joinable(study, account):
        return study.is_joinable(account)

    @staticmethod
    def add_member(study, account):
        """Add ``account`` to the member set. Adding an existing member changes nothing."""
        with study_lock(study.id), unit_of_work():
            locked = StudyService._lock_study(study.id)
            if not locked.is_member(account):
                locked.members.append(account)
                logger.info(f"{account.nickname} joined study '{locked.path}'")
            locked.member_count = len(locked.members)
        return locked

    @staticmethod
    def remove_member(study, account):
        with study_lock(study.id), unit_of_work():
            locked = StudyService._lock_study(study.id)
            member = next((m for m in locked.members if m.id == account.id), None)
            if member is not None:
                locked.members.remove(member)
                logger.info(f"{account.nickname} left study '{locked.path}'")
            locked.member_count = len(locked.members)
        return locked

    # ------------------------------------------------------------------
    # Settings (managers only)
    # ------------------------------------------------------------------

    @staticmethod
    def update_description(study, account, short_description, full_description):
        StudyService.check_manager(study, account)
        with unit_of_work() as uow:
            study.short_description = short_description
            study.full_description = full_description
            uow.collect(StudyUpdated(study_id=study.id, message='The study description has been updated.'))
        return study

    @staticmethod
    def update_image(study, account, image):
        StudyService.check_manager(study, account)
        with unit_of_work():
            study.image = image
        return study

    @staticmethod
    def enable_banner(study, account):
        StudyService.check_manager(study, account)
        with unit_of_work():
            study.use_banner = True
        return study

    @staticmethod
    def disable_banner(study, account):
        StudyService.check_manager(study, account)
        with unit_of_work():
            study.use_banner = False
        return study

    @staticmethod
    def update_path(study, account, new_path):
        StudyService.check_manager(study, account)
        StudyService.validate_path(new_path, current=study.path)
        old_path = study.path
        with unit_of_work():
            study.path = new_path
        logger.info(f"Study path changed '{old_path}' -> '{new_path}'")
        return study

    @staticmethod
    def update_title(study, account, new_title):
        StudyService.check_manager(study, account)
        StudyService.validate_title(new_title)
        with unit_of_work():
            study.title = new_title
        return study

    @staticmethod
    def add_tag(study, account, tag):
        StudyService.check_manager(study, account)
        with unit_of_work():
            if all(t.id != tag.id for t in study.tags):
                study.tags.append(tag)
        return study

    @staticmethod
    def remove_tag(study, account, tag):
        StudyService.check_manager(study, account)
        with unit_of_work():
            existing = next((t for t in study.tags if t.id == tag.id), None)
            if existing is not None:
                study.tags.remove(existing)
        return study

    @staticmethod
    def add_zone(study, account, zone):
        StudyService.check_manager(study, account)
        with unit_of_work():
            if all(z.id != zone.id for z in study.zones):
                study.zones.append(zone)
        return study

    @staticmethod
    def remove_zone(study, account, zone):
        StudyService.check_manager(study, account)
        with unit_of_work():
            existing = next((z for z in study.zones if z.id == zone.id), None)
            if existing is not None:
                study.zones.remove(existing)
        return study

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def search(keyword, page=1, per_page=9):
        """Published studies whose title, a tag title or a zone name contains ``keyword``."""
        pattern = f'%{keyword}%'
        stmt = (
            db.select(Study)
            .where(Study.published.is_(True))
            .where(or_(
                Study.title.ilike(pattern),
                Study.tags.any(Tag.title.ilike(pattern)),
                Study.zones.any(Zone.local_name_of_city.ilike(pattern)),
            ))
            .order_by(Study.published_at.desc(), Study.id.desc())
        )
        return db.paginate(stmt, page=page, per_page=per_page, error_out=False)

    @staticmethod
    def recommended_for(account):
        """Open published studies sharing at least one tag and one zone with ``account``."""
        tag_ids = [t.id for t in account.tags]
        zone_ids = [z.id for z in account.zones]
        if not tag_ids or not zone_ids:
            return []
        stmt = (
            db.select(Study)
            .where(Study.published.is_(True), Study.closed.is_(False))
            .where(Study.tags.any(Tag.id.in_(tag_ids)))
            .where(Study.zones.any(Zone.id.in_(zone_ids)))
            .order_by(Study.published_at.desc(), Study.id.desc())
            .limit(RECOMMENDATION_LIMIT)
        )
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def managed_by(account):
        stmt = (
            db.select(Study)
            .where(Study.managers.any(id=account.id), Study.closed.is_(False))
            .order_by(Study.published_at.desc(), Study.id.desc())
            .limit(DASHBOARD_LIMIT)
        )
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def joined_by(account):
        stmt = (
            db.select(Study)
            .where(Study.members.any(id=account.id), Study.closed.is_(False))
            .order_by(Study.published_at.desc(), Study.id.desc())
            .limit(DASHBOARD_LIMIT)
        )
        return db.session.execute(stmt).scalars().all()
