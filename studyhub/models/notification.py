# studyhub/models/notification.py
import enum

from studyhub import db
from studyhub.utils.clock import utcnow


class NotificationType(enum.Enum):
    STUDY_CREATED = 'STUDY_CREATED'
    STUDY_UPDATED = 'STUDY_UPDATED'
    EVENT_ENROLLMENT = 'EVENT_ENROLLMENT'


class Notification(db.Model):
    """Web notification shown to one account. Only ``checked`` ever changes."""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    link = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=True)
    checked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    notification_type = db.Column(db.Enum(NotificationType), nullable=False)

    account = db.relationship('Account', backref=db.backref('notifications', lazy='dynamic'))

    def __repr__(self):
        return f'<Notification {self.id} {self.notification_type.value} to={self.account_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'link': self.link,
            'message': self.message,
            'checked': self.checked,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'notification_type': self.notification_type.value,
        }
