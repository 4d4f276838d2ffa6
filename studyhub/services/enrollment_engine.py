# studyhub/services/enrollment_engine.py
"""
Event enrollment engine.

Capacity is counted over accepted enrollments only. Waiting enrollments are
promoted in enrollment order ``(enrolled_at, id)``; every mutation of an
event's enrollment collection runs under that event's lock (in-process
keyed lock plus a row lock on the event) so that, at every commit,

    accepted_count(event) <= limit_of_enrollments(event)
"""
import logging

from studyhub import db
from studyhub.errors import InvalidStateError, NotFoundError, ValidationError
from studyhub.models import Enrollment, Event, EventType
from studyhub.models.loaders import load_event_with_enrollments
from studyhub.services.domain_events import EnrollmentDecided, StudyUpdated
from studyhub.services.study_service import StudyService
from studyhub.utils.clock import utcnow
from studyhub.utils.locks import KeyedLock, event_lock
from studyhub.utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

EVENT_FIELDS = (
    'title',
    'description',
    'event_type',
    'limit_of_enrollments',
    'end_enrollment_at',
    'start_at',
    'end_at',
)


def _decided(enrollment):
    return EnrollmentDecided(
        enrollment_id=enrollment.id,
        event_id=enrollment.event_id,
        account_id=enrollment.account_id,
        accepted=enrollment.accepted,
    )


def validate_event_fields(title, limit_of_enrollments, end_enrollment_at, start_at, end_at):
    """Raise ValidationError for structurally invalid event data."""
    if not title or not title.strip():
        raise ValidationError('Event title is required', field='title')
    if limit_of_enrollments is None or limit_of_enrollments < 1:
        raise ValidationError('Limit of enrollments must be at least 1', field='limit_of_enrollments')
    if None in (end_enrollment_at, start_at, end_at):
        raise ValidationError('Enrollment deadline, start and end are required')
    if end_enrollment_at > start_at:
        raise ValidationError('Enrollment must close no later than the event starts', field='end_enrollment_at')
    if start_at >= end_at:
        raise ValidationError('Event must end after it starts', field='end_at')


class EnrollmentEngine:

    # ------------------------------------------------------------------
    # Algorithms over a loaded event. They mutate in memory only; callers
    # hold the event lock and own the transaction.
    # ------------------------------------------------------------------

    @staticmethod
    def promote_waitlist(event):
        """
        Accept the earliest waiting enrollments while capacity remains (FCFS only).

        Processes at most ``remaining_capacity`` entries, so a second call with
        no capacity freed in between changes nothing.

        Returns:
            list: Enrollments promoted by this call, in promotion order
        """
        if event.event_type != EventType.FCFS:
            return []
        promoted = []
        for _ in range(event.remaining_capacity):
            candidate = event.first_waiting_enrollment
            if candidate is None:
                break
            candidate.accepted = True
            promoted.append(candidate)
        if promoted:
            logger.info(f"Promoted {len(promoted)} waiting enrollment(s) on event {event.id}")
        return promoted

    @staticmethod
    def accept_waitlist_batch(event):
        """Accept ``min(remaining_capacity, waiting)`` earliest waiting enrollments (FCFS only)."""
        if event.event_type != EventType.FCFS:
            return []
        waiting = event.waiting_list
        batch = waiting[:min(event.remaining_capacity, len(waiting))]
        for enrollment in batch:
            enrollment.accepted = True
        if batch:
            logger.info(f"Accepted {len(batch)} waiting enrollment(s) on event {event.id}")
        return batch

    @staticmethod
    def accept(event, enrollment):
        """Returns True when the enrollment changed. Ineligible requests are ignored."""
        if not event.is_acceptable(enrollment):
            logger.info(f"Ignoring accept of enrollment {enrollment.id} on event {event.id}")
            return False
        enrollment.accepted = True
        return True

    @staticmethod
    def reject(event, enrollment):
        if not event.is_rejectable(enrollment):
            logger.info(f"Ignoring reject of enrollment {enrollment.id} on event {event.id}")
            return False
        enrollment.accepted = False
        return True

    @staticmethod
    def attend(enrollment):
        enrollment.attended = True

    @staticmethod
    def unattend(enrollment):
        enrollment.attended = False

    # ------------------------------------------------------------------
    # Transactional operations
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_event(event_id):
        event = load_event_with_enrollments(event_id, for_update=True)
        if event is None:
            raise NotFoundError(f'No event with id {event_id}')
        return event

    @staticmethod
    def _owned_enrollment(event, enrollment):
        for candidate in event.enrollments:
            if candidate.id == enrollment.id:
                return candidate
        raise NotFoundError(f'Enrollment {enrollment.id} does not belong to event {event.id}')

    @staticmethod
    def create_event(study, account, title, end_enrollment_at, start_at, end_at,
                     limit_of_enrollments=2, event_type=EventType.FCFS, description=None):
        StudyService.check_manager(study, account)
        if not study.published or study.closed:
            raise InvalidStateError(f'Events can only be created on a published, open study ("{study.path}")')
        validate_event_fields(title, limit_of_enrollments, end_enrollment_at, start_at, end_at)

        with unit_of_work() as uow:
            event = Event(
                study=study,
                created_by=account,
                title=title,
                description=description,
                event_type=event_type,
                limit_of_enrollments=limit_of_enrollments,
                created_at=utcnow(),
                end_enrollment_at=end_enrollment_at,
                start_at=start_at,
                end_at=end_at,
            )
            db.session.add(event)
            db.session.flush()
            uow.collect(StudyUpdated(study_id=study.id, message=f"A new event '{title}' has been created."))

        logger.info(f"Event {event.id} '{title}' ({event_type.value}) created on study '{study.path}'")
        return event

    @staticmethod
    def update_event(event, account, **changes):
        """
        Apply form changes to an event, then accept as many waiting
        enrollments as the new limit allows.

        Raises:
            ValidationError: invalid fields, or a limit below the accepted count
        """
        unknown = set(changes) - set(EVENT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown event field(s): {', '.join(sorted(unknown))}")

        event_id = event.id
        with event_lock(event_id), unit_of_work() as uow:
            event = EnrollmentEngine._lock_event(event_id)
            StudyService.check_manager(event.study, account)

            merged = {name: changes.get(name, getattr(event, name)) for name in EVENT_FIELDS}
            validate_event_fields(
                merged['title'],
                merged['limit_of_enrollments'],
                merged['end_enrollment_at'],
                merged['start_at'],
                merged['end_at'],
            )
            if merged['limit_of_enrollments'] < event.accepted_count:
                raise ValidationError(
                    f"Limit of enrollments cannot be lower than the {event.accepted_count} already accepted",
                    field='limit_of_enrollments',
                )

            for name, value in changes.items():
                setattr(event, name, value)

            promoted = EnrollmentEngine.accept_waitlist_batch(event)
            uow.collect_all(_decided(e) for e in promoted)
            uow.collect(StudyUpdated(
                study_id=event.study_id,
                message=f"The event '{event.title}' has been updated.",
            ))

        logger.info(f"Event {event_id} updated: {sorted(changes)}")
        return event

    @staticmethod
    def delete_event(event, account):
        event_id = event.id
        with event_lock(event_id), unit_of_work() as uow:
            event = EnrollmentEngine._lock_event(event_id)
            StudyService.check_manager(event.study, account)
            study_id, title = event.study_id, event.title
            db.session.delete(event)
            uow.collect(StudyUpdated(study_id=study_id, message=f"The event '{title}' has been cancelled."))

        KeyedLock.get_or_create('event').discard(event_id)
        logger.info(f"Event {event_id} '{title}' deleted")

    @staticmethod
    def enroll(event, account):
        """
        Enroll ``account``. A second call for the same account returns the
        existing enrollment unchanged, even once the window has closed.
        """
        event_id = event.id
        with event_lock(event_id), unit_of_work():
            event = EnrollmentEngine._lock_event(event_id)
            existing = event.enrollment_for(account)
            if existing is not None:
                logger.info(f"{account.nickname} is already enrolled in event {event_id}")
                return existing

            study = event.study
            if not study.published or study.closed:
                raise InvalidStateError(f'Study "{study.path}" is not accepting enrollments')
            if not event.is_open():
                raise InvalidStateError(f'Enrollment for event {event_id} has closed')

            enrollment = Enrollment(
                account=account,
                enrolled_at=utcnow(),
                accepted=event.is_able_to_auto_accept(),
            )
            event.enrollments.append(enrollment)
            db.session.flush()

        logger.info(
            f"{account.nickname} enrolled in event {event_id} "
            f"({'accepted' if enrollment.accepted else 'waiting'})"
        )
        return enrollment

    @staticmethod
    def leave(event, account):
        """
        Withdraw ``account``'s enrollment and promote the waitlist.

        Missing and attended enrollments are left untouched.

        Returns:
            list: Enrollments promoted into the freed capacity
        """
        event_id = event.id
        with event_lock(event_id), unit_of_work() as uow:
            event = EnrollmentEngine._lock_event(event_id)
            if not event.is_open():
                raise InvalidStateError(f'Enrollment for event {event_id} has closed')

            enrollment = event.enrollment_for(account)
            if enrollment is None:
                logger.info(f"{account.nickname} has no enrollment in event {event_id}; nothing to leave")
                return []
            if enrollment.attended:
                logger.warning(f"{account.nickname} attended event {event_id}; leave ignored")
                return []

            enrollment.detach()
            db.session.delete(enrollment)
            db.session.flush()

            promoted = EnrollmentEngine.promote_waitlist(event)
            uow.collect_all(_decided(e) for e in promoted)

        logger.info(f"{account.nickname} left event {event_id}")
        return promoted

    @staticmethod
    def accept_enrollment(event, enrollment, account):
        event_id = event.id
        with event_lock(event_id), unit_of_work() as uow:
            event = EnrollmentEngine._lock_event(event_id)
            StudyService.check_manager(event.study, account)
            target = EnrollmentEngine._owned_enrollment(event, enrollment)
            if EnrollmentEngine.accept(event, target):
                uow.collect(_decided(target))
                logger.info(f"Enrollment {target.id} on event {event_id} accepted")
        return target

    @staticmethod
    def reject_enrollment(event, enrollment, account):
        event_id = event.id
        with event_lock(event_id), unit_of_work() as uow:
            event = EnrollmentEngine._lock_event(event_id)
            StudyService.check_manager(event.study, account)
            target = EnrollmentEngine._owned_enrollment(event, enrollment)
            if EnrollmentEngine.reject(event, target):
                uow.collect(_decided(target))
                logger.info(f"Enrollment {target.id} on event {event_id} rejected")
        return target

    @staticmethod
    def check_in(event, enrollment, account):
        event_id = event.id
        with event_lock(event_id), unit_of_work():
            event = EnrollmentEngine._lock_event(event_id)
            StudyService.check_manager(event.study, account)
            target = EnrollmentEngine._owned_enrollment(event, enrollment)
            if not target.accepted:
                raise InvalidStateError(f'Enrollment {target.id} is not accepted and cannot be checked in')
            EnrollmentEngine.attend(target)
        logger.info(f"Enrollment {target.id} checked in on event {event_id}")
        return target

    @staticmethod
    def cancel_check_in(event, enrollment, account):
        event_id = event.id
        with event_lock(event_id), unit_of_work():
            event = EnrollmentEngine._lock_event(event_id)
            StudyService.check_manager(event.study, account)
            target = EnrollmentEngine._owned_enrollment(event, enrollment)
            EnrollmentEngine.unattend(target)
        logger.info(f"Check-in of enrollment {target.id} on event {event_id} cancelled")
        return target

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def events_of(study, now=None):
        """Split a study's events into upcoming and past, each ordered by start."""
        now = now or utcnow()
        events = db.session.execute(
            db.select(Event).where(Event.study_id == study.id).order_by(Event.start_at, Event.id)
        ).scalars().all()
        return {
            'upcoming': [e for e in events if e.end_at > now],
            'past': [e for e in events if e.end_at <= now],
        }
