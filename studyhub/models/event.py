# studyhub/models/event.py
import enum

from studyhub import db
from studyhub.utils.clock import utcnow


class EventType(enum.Enum):
    FCFS = 'FCFS'                  # auto-accept while capacity remains
    CONFIRMATIVE = 'CONFIRMATIVE'  # a manager accepts or rejects


def enrollment_order(enrollment):
    """Waitlist priority: enrollment time, then insertion sequence."""
    return (enrollment.enrolled_at, enrollment.id is None, enrollment.id or 0)


class Enrollment(db.Model):
    __tablename__ = 'enrollments'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('events.id'), nullable=True, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    enrolled_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    accepted = db.Column(db.Boolean, nullable=False, default=False)
    attended = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint('event_id', 'account_id', name='uq_enrollment_event_account'),
    )

    account = db.relationship('Account')

    def __repr__(self):
        return f'<Enrollment {self.id} event={self.event_id} account={self.account_id} accepted={self.accepted}>'

    def detach(self):
        """Unlink from the owning event without deleting the row yet."""
        if self.event is not None:
            self.event.enrollments.remove(self)
        self.event = None


class Event(db.Model):
    __tablename__ = 'events'

    id = db.Column(db.Integer, primary_key=True)
    study_id = db.Column(db.Integer, db.ForeignKey('studies.id'), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    title = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=True)
    event_type = db.Column(db.Enum(EventType), nullable=False, default=EventType.FCFS)
    limit_of_enrollments = db.Column(db.Integer, nullable=False, default=2)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    end_enrollment_at = db.Column(db.DateTime, nullable=False)
    start_at = db.Column(db.DateTime, nullable=False, index=True)
    end_at = db.Column(db.DateTime, nullable=False)

    study = db.relationship(
        'Study',
        backref=db.backref('events', lazy=True, cascade='all, delete-orphan'),
    )
    created_by = db.relationship('Account')
    enrollments = db.relationship(
        'Enrollment',
        backref='event',
        cascade='all, delete-orphan',
        order_by=[Enrollment.enrolled_at, Enrollment.id],
    )

    def __repr__(self):
        return f'<Event {self.id} {self.title!r} {self.event_type.value if self.event_type else None}>'

    @property
    def accepted_count(self):
        return sum(1 for e in self.enrollments if e.accepted)

    @property
    def remaining_capacity(self):
        return max(0, self.limit_of_enrollments - self.accepted_count)

    @property
    def waiting_list(self):
        """Not-yet-accepted enrollments in promotion order."""
        return sorted((e for e in self.enrollments if not e.accepted), key=enrollment_order)

    @property
    def first_waiting_enrollment(self):
        waiting = self.waiting_list
        return waiting[0] if waiting else None

    def is_open(self, now=None):
        return (now or utcnow()) < self.end_enrollment_at

    def enrollment_for(self, account):
        for enrollment in self.enrollments:
            if enrollment.account_id == account.id:
                return enrollment
        return None

    def is_enrollable(self, account, now=None):
        return self.is_open(now) and self.enrollment_for(account) is None

    def is_disenrollable(self, account, now=None):
        enrollment = self.enrollment_for(account)
        return self.is_open(now) and enrollment is not None and not enrollment.attended

    def is_attended(self, account):
        enrollment = self.enrollment_for(account)
        return enrollment is not None and enrollment.attended

    def is_able_to_auto_accept(self):
        return self.event_type == EventType.FCFS and self.remaining_capacity > 0

    def owns(self, enrollment):
        return any(e is enrollment or (e.id is not None and e.id == enrollment.id)
                   for e in self.enrollments)

    def is_acceptable(self, enrollment):
        return (
            self.event_type == EventType.CONFIRMATIVE
            and self.remaining_capacity > 0
            and self.owns(enrollment)
            and not enrollment.attended
            and not enrollment.accepted
        )

    def is_rejectable(self, enrollment):
        return (
            self.event_type == EventType.CONFIRMATIVE
            and self.owns(enrollment)
            and not enrollment.attended
            and enrollment.accepted
        )
