# studyhub/models/study.py
from urllib.parse import quote

from studyhub import db
from studyhub.utils.clock import utcnow

study_managers = db.Table(
    'study_managers',
    db.Column('study_id', db.Integer, db.ForeignKey('studies.id'), primary_key=True),
    db.Column('account_id', db.Integer, db.ForeignKey('accounts.id'), primary_key=True),
)

study_members = db.Table(
    'study_members',
    db.Column('study_id', db.Integer, db.ForeignKey('studies.id'), primary_key=True),
    db.Column('account_id', db.Integer, db.ForeignKey('accounts.id'), primary_key=True),
)

study_tags = db.Table(
    'study_tags',
    db.Column('study_id', db.Integer, db.ForeignKey('studies.id'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tags.id'), primary_key=True),
)

study_zones = db.Table(
    'study_zones',
    db.Column('study_id', db.Integer, db.ForeignKey('studies.id'), primary_key=True),
    db.Column('zone_id', db.Integer, db.ForeignKey('zones.id'), primary_key=True),
)


class Study(db.Model):
    """A study group. Lifecycle flags are mutated only through StudyService."""
    __tablename__ = 'studies'

    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(20), unique=True, nullable=False, index=True)
    title = db.Column(db.String(50), nullable=False)
    short_description = db.Column(db.String(100), nullable=True)
    full_description = db.Column(db.Text, nullable=True)
    image = db.Column(db.Text, nullable=True)
    use_banner = db.Column(db.Boolean, nullable=False, default=False)

    published = db.Column(db.Boolean, nullable=False, default=False)
    published_at = db.Column(db.DateTime, nullable=True, index=True)
    closed = db.Column(db.Boolean, nullable=False, default=False)
    closed_at = db.Column(db.DateTime, nullable=True)
    recruiting = db.Column(db.Boolean, nullable=False, default=False)
    recruiting_updated_at = db.Column(db.DateTime, nullable=True)

    member_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    managers = db.relationship('Account', secondary=study_managers)
    members = db.relationship('Account', secondary=study_members)
    tags = db.relationship('Tag', secondary=study_tags)
    zones = db.relationship('Zone', secondary=study_zones)

    def __repr__(self):
        return f'<Study {self.path}>'

    @property
    def encoded_path(self):
        return quote(self.path, safe='')

    @property
    def link(self):
        """Application-relative link used in notifications."""
        return f'/study/{self.encoded_path}'

    def is_manager(self, account):
        return account is not None and any(m.id == account.id for m in self.managers)

    def is_member(self, account):
        return account is not None and any(m.id == account.id for m in self.members)

    def is_joinable(self, account):
        return (
            self.published
            and not self.closed
            and self.recruiting
            and not self.is_member(account)
            and not self.is_manager(account)
        )

    @property
    def is_removable(self):
        # Published studies are kept forever
        return not self.published
