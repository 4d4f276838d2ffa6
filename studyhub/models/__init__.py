# studyhub/models/__init__.py

from .. import db  # Import the SQLAlchemy instance from the studyhub package

# Import all models to ensure they're registered with SQLAlchemy
from studyhub.models.account import Account, Tag, Zone
from studyhub.models.study import Study
from studyhub.models.event import Event, Enrollment, EventType
from studyhub.models.notification import Notification, NotificationType

__all__ = [
    'Account',
    'Tag',
    'Zone',
    'Study',
    'Event',
    'Enrollment',
    'EventType',
    'Notification',
    'NotificationType',
]
